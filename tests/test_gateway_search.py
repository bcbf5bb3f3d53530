"""Tests for search planning, lite-model selection and the fan-out."""

import asyncio
import json
from datetime import datetime, timezone

import httpx

from gateway_credentials import CredentialRotator
from gateway_search import (
    DEFAULT_LITE_MODEL,
    LiteModelSelector,
    SearchOrchestrator,
    build_planning_prompt,
    parse_model_ids,
    parse_search_plan,
)


def make_orchestrator(**kw) -> SearchOrchestrator:
    values = dict(
        api_base="https://upstream.example",
        model="gpt-5-mini",
        search_keys=CredentialRotator(["tvly-1"], "Search key"),
        search_api_url="https://search.example/search",
        planning_timeout_seconds=5.0,
    )
    values.update(kw)
    return SearchOrchestrator(**values)


# ── 1. Plan parsing ──────────────────────────────────────────────────────


def test_parse_plan_embedded_in_prose() -> None:
    plan = parse_search_plan(
        'Here is the plan:\n{"search_queries": ["a", " b "],\n"num_results": 8}\nDone.'
    )
    assert plan is not None
    assert plan.search_queries == ["a", "b"]
    assert plan.num_results == 8
    assert not plan.is_empty


def test_parse_plan_caps_and_rejects() -> None:
    plan = parse_search_plan(
        json.dumps({"search_queries": [f"q{i}" for i in range(8)], "num_results": 99})
    )
    assert plan is not None
    assert len(plan.search_queries) == 5
    assert plan.num_results == 20

    assert parse_search_plan("no json here") is None
    assert parse_search_plan('{"search_queries": "nope"}') is None
    assert parse_search_plan('{"search_queries": ["a"], "num_results": -1}') is None
    assert parse_search_plan('{"search_queries": [], "num_results": 0}').is_empty


def test_plan_is_empty_when_either_side_is_zero() -> None:
    assert parse_search_plan('{"search_queries": ["a"], "num_results": 0}').is_empty
    assert parse_search_plan('{"search_queries": [], "num_results": 5}').is_empty
    assert parse_search_plan('{"search_queries": ["  "], "num_results": 5}').is_empty
    assert not parse_search_plan('{"search_queries": ["a"], "num_results": 1}').is_empty


def test_planning_prompt_includes_query_and_date() -> None:
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    prompt = build_planning_prompt("what is new in python", now=now)
    assert "what is new in python" in prompt
    assert "2025-01-02T03:04:05+00:00" in prompt
    assert "search_queries" in prompt


# ── 2. Lite model selection ──────────────────────────────────────────────


def test_lite_model_selection() -> None:
    selector = LiteModelSelector()
    assert selector.select(["gpt-5-pro", "gpt-5", "gpt-5-mini"]) == "gpt-5-mini"
    assert selector.select(["gemini-2.5-pro", "gemini-2.5-flash"]) == "gemini-2.5-flash"
    assert selector.select(["claude-sonnet", "deepseek-v3"]) == "deepseek-v3"
    assert selector.select(["llama-70b", "mistral-large"]) == "llama-70b"
    assert selector.select([]) == DEFAULT_LITE_MODEL


def test_lite_model_custom_predicates() -> None:
    selector = LiteModelSelector(predicates=[lambda m: m.endswith("-small")])
    assert selector.select(["big", "tiny-small"]) == "tiny-small"


def test_parse_model_ids_with_labels() -> None:
    assert parse_model_ids("gpt-5=GPT 5, gpt-5-mini ,,") == ["gpt-5", "gpt-5-mini"]
    assert parse_model_ids("") == []


# ── 3. Orchestrator ──────────────────────────────────────────────────────


def test_orchestrator_fans_out_and_drops_failures() -> None:
    seen: list[httpx.Request] = []

    def handler(req: httpx.Request) -> httpx.Response:
        seen.append(req)
        if req.url.host == "upstream.example":
            content = json.dumps({"search_queries": ["good", "bad"], "num_results": 4})
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})
        query = json.loads(req.content)["query"]
        if query == "bad":
            return httpx.Response(500)
        return httpx.Response(200, json={"query": query})

    async def _test():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await make_orchestrator().search(client, "question", "sk-planner")

    assert asyncio.run(_test()) == [{"query": "good"}]
    planning = seen[0]
    assert str(planning.url) == "https://upstream.example/v1/chat/completions"
    assert planning.headers["authorization"] == "Bearer sk-planner"
    assert json.loads(planning.content)["model"] == "gpt-5-mini"
    assert all(r.headers["authorization"] == "Bearer tvly-1" for r in seen[1:])


def test_orchestrator_planning_timeout() -> None:
    async def handler(req: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={})

    async def _test():
        orch = make_orchestrator(planning_timeout_seconds=0.05)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await orch.search(client, "question", "sk")

    assert asyncio.run(_test()) == []


def test_orchestrator_uses_gemini_planning_path() -> None:
    seen: list[httpx.Request] = []

    def handler(req: httpx.Request) -> httpx.Response:
        seen.append(req)
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    async def _test():
        orch = make_orchestrator(api_base="https://generativelanguage.googleapis.com")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await orch.search(client, "hi", "sk")

    assert asyncio.run(_test()) == []
    assert seen[0].url.path == "/v1beta/openai/chat/completions"
