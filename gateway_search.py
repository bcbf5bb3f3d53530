"""Web-search augmentation: LLM query planning plus concurrent search fan-out.

Search is advisory.  A planning failure or a "no search needed" plan yields
an empty result list, and a failed sub-query is dropped rather than failing
the whole request.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from gateway_credentials import CredentialRotator
from gateway_upstream import join_url, rewrite_upstream_url

LOG = logging.getLogger("chat-gateway.search")

DEFAULT_SEARCH_API_URL = "https://api.tavily.com/search"
DEFAULT_LITE_MODEL = "gemini-2.5-flash-lite"
MAX_SEARCH_QUERIES = 5
MAX_RESULTS_PER_QUERY = 20

# Ranked: the first marker that matches any configured model wins.
LITE_MODEL_MARKERS = (
    "deepseek-v",
    "qwen3-next",
    "-oss-",
    "-mini",
    "qwen3-max",
    "-k2",
    "-nano",
    "-flash",
    "-lite",
    "-instruct",
    "-fast",
    "-dash",
    "-alpha",
    "-haiku",
    "-4o",
    "-r1",
    "-air",
    "gpt",
)

# Applied to every query; not caller-configurable.
EXCLUDED_DOMAINS = (
    # disinformation outlets
    "ntdtv.com",
    "ntd.tv",
    "aboluowang.com",
    "epochtimes.com",
    "epochtimes.jp",
    "dafahao.com",
    "minghui.org",
    # strongly biased outlets
    "secretchina.com",
    "kanzhongguo.com",
    "soundofhope.org",
    "rfa.org",
    "bannedbook.org",
    "boxun.com",
    "peacehall.com",
    "creaders.net",
    "backchina.com",
    "guancha.cn",
    "wenxuecity.com",
    # conspiracy and pseudoscience
    "awaker.cn",
    "tuidang.org",
    "breitbart.com",
    "infowars.com",
    "naturalnews.com",
    "globalresearch.ca",
    "zerohedge.com",
    "thegatewaypundit.com",
    "newsmax.com",
    "oann.com",
    "dailywire.com",
    "theblaze.com",
    "redstate.com",
    "thenationalpulse.com",
    "thefederalist.com",
    "dailykos.com",
    "alternet.org",
    "commondreams.org",
    "thecanary.co",
    "occupydemocrats.com",
    "truthout.org",
    # tabloids
    "dailymail.co.uk",
    "thesun.co.uk",
    "nypost.com",
    "express.co.uk",
    "mirror.co.uk",
    "dailystar.co.uk",
    # satire and fake news
    "theonion.com",
    "clickhole.com",
    "babylonbee.com",
    "newspunch.com",
    "beforeitsnews.com",
    # state media
    "rt.com",
    "sputniknews.com",
    "tass.com",
    # other
    "wikileaks.org",
    "mediabiasfactcheck.com",
    "allsides.com",
)

_JSON_OBJECT_RE = re.compile(r"({.*})")

_PLANNING_TEMPLATE = """
# Role: Search Strategist

You turn a user's question into keyword queries for a web search API.
Maximise breadth and depth of the retrieved information while keeping the
queries free of overlap.

## Step 1: decide whether to search
Return no queries for small talk, pure logic or maths, translation or
rewriting requests, and questions that lack the context to search for.
Search for anything that needs current data, fact checking, market or
industry analysis, or a comparison of opinions.

## Step 2: expand orthogonally
Cover different dimensions with each query: definition, latest news, data,
expert opinion, comparison, technical documentation.

## Step 3: pick the query language
Prefer English for computing, finance, medicine and international topics.
Prefer the user's language for local policy, culture and services.

## Output
Reply with one JSON object and nothing else:
- "search_queries": 0 to 5 concise keyword strings (1-2 for simple facts,
  3-5 for deep research, best source language first)
- "num_results": results per query, 10 for 1-2 queries, 5 to 8 for 3-5
  queries (keep queries x results under 40)

Example for "convert this Python code to Java":
{"search_queries": [], "num_results": 0}

Example for "how much did Tesla stock drop last night?":
{"search_queries": ["Tesla stock price change last session reason"], "num_results": 10}

## Current date
__NOW__

## User question
<User_Question>
__QUERY__
</User_Question>
"""


# ── Lite Model Selection ───────────────────────────────────────────────────────────


def parse_model_ids(raw: Optional[str]) -> list[str]:
    """Model ids from ``id`` or ``id=label`` comma-separated entries."""
    out: list[str] = []
    for entry in (raw or "").split(","):
        model_id = entry.split("=", 1)[0].strip()
        if model_id:
            out.append(model_id)
    return out


def substring_predicate(marker: str) -> Callable[[str], bool]:
    needle = marker.lower()
    return lambda model_id: needle in model_id.lower()


class LiteModelSelector:
    """Pick the cheapest-looking model via a ranked list of predicates."""

    def __init__(
        self,
        predicates: Optional[Iterable[Callable[[str], bool]]] = None,
        default: str = DEFAULT_LITE_MODEL,
    ) -> None:
        if predicates is None:
            predicates = [substring_predicate(m) for m in LITE_MODEL_MARKERS]
        self._predicates = list(predicates)
        self._default = default

    def select(self, model_ids: list[str]) -> str:
        if not model_ids:
            return self._default
        for matches in self._predicates:
            for model_id in model_ids:
                if matches(model_id):
                    return model_id
        return model_ids[0]


# ── Search Plan ────────────────────────────────────────────────────────────────────


class SearchPlan(BaseModel):
    search_queries: list[str] = Field(default_factory=list)
    num_results: int = Field(default=0, ge=0)

    @field_validator("search_queries")
    @classmethod
    def clean_queries(cls, v: list[str]) -> list[str]:
        return [q.strip() for q in v if q.strip()][:MAX_SEARCH_QUERIES]

    @field_validator("num_results")
    @classmethod
    def cap_results(cls, v: int) -> int:
        return min(v, MAX_RESULTS_PER_QUERY)

    @property
    def is_empty(self) -> bool:
        return not self.search_queries or self.num_results == 0


def build_planning_prompt(query: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return (
        _PLANNING_TEMPLATE.replace("__NOW__", stamp).replace("__QUERY__", query).strip()
    )


def parse_search_plan(content: str) -> Optional[SearchPlan]:
    """Extract the JSON object embedded in a model reply.

    Line breaks are removed first so the greedy brace match spans the whole
    object.  Returns None when nothing parseable is found.
    """
    flat = (content or "").replace("\n", "")
    m = _JSON_OBJECT_RE.search(flat)
    text = m.group(1).strip() if m else flat
    try:
        data = json.loads(text)
    except ValueError:
        return None
    try:
        return SearchPlan.model_validate(data)
    except ValidationError:
        return None


def extract_message_content(data: Any) -> str:
    """``choices[0].message.content`` of a chat-completions body, or ''."""
    try:
        return str(data["choices"][0]["message"]["content"] or "")
    except (KeyError, IndexError, TypeError):
        return ""


# ── Orchestrator ───────────────────────────────────────────────────────────────────


class SearchOrchestrator:
    def __init__(
        self,
        *,
        api_base: str,
        model: str,
        search_keys: CredentialRotator,
        search_api_url: str = DEFAULT_SEARCH_API_URL,
        planning_timeout_seconds: float = 30.0,
    ) -> None:
        self._chat_url = rewrite_upstream_url(join_url(api_base, "/v1/chat/completions"))
        self._model = model
        self._search_keys = search_keys
        self._search_api_url = search_api_url
        self._planning_timeout = planning_timeout_seconds

    async def plan(
        self, client: httpx.AsyncClient, query: str, api_key: str
    ) -> Optional[SearchPlan]:
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": build_planning_prompt(query)}],
        }
        try:
            resp = await asyncio.wait_for(
                client.post(
                    self._chat_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                ),
                timeout=self._planning_timeout,
            )
            if not resp.is_success:
                LOG.warning("Search planning returned HTTP %d", resp.status_code)
                return None
            content = extract_message_content(resp.json())
        except asyncio.TimeoutError:
            LOG.warning("Search planning timed out after %.0fs", self._planning_timeout)
            return None
        except (httpx.HTTPError, ValueError) as exc:
            LOG.warning("Search planning failed: %s: %s", type(exc).__name__, exc)
            return None
        plan = parse_search_plan(content)
        if plan is None:
            LOG.debug("No search plan in model reply: %.200s", content)
        return plan

    async def search(
        self, client: httpx.AsyncClient, query: str, api_key: str
    ) -> list[Any]:
        plan = await self.plan(client, query, api_key)
        if plan is None or plan.is_empty:
            return []

        keys = [self._search_keys.random() for _ in plan.search_queries]
        results = await asyncio.gather(
            *(
                self._search_one(client, q, k, plan.num_results)
                for q, k in zip(plan.search_queries, keys)
            ),
            return_exceptions=True,
        )
        valid: list[Any] = []
        for q, result in zip(plan.search_queries, results):
            if isinstance(result, Exception):
                LOG.warning("Search for %r raised %s", q, result)
                continue
            if result is not None:
                valid.append(result)
        LOG.info(
            "Search fan-out: %d/%d queries succeeded (model=%s)",
            len(valid),
            len(plan.search_queries),
            self._model,
        )
        return valid

    async def _search_one(
        self, client: httpx.AsyncClient, query: str, key: str, num_results: int
    ) -> Optional[Any]:
        payload = {
            "query": query,
            "max_results": num_results,
            "include_answer": "basic",
            "auto_parameters": True,
            "exclude_domains": list(EXCLUDED_DOMAINS),
        }
        try:
            resp = await client.post(
                self._search_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {key}"},
            )
        except httpx.HTTPError as exc:
            LOG.error("Error fetching search results for %r: %s", query, exc)
            return None
        if not resp.is_success:
            LOG.error("Search API request failed for %r: HTTP %d", query, resp.status_code)
            return None
        try:
            return resp.json()
        except ValueError:
            LOG.error("Search API returned non-JSON body for %r", query)
            return None
