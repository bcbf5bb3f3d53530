"""Tests for upstream URL and header handling."""

import httpx

from gateway_upstream import (
    build_relay_headers,
    extract_credential,
    join_url,
    relay_response_headers,
    rewrite_query_credential,
    rewrite_upstream_url,
)


def test_rewrite_gemini_and_cloudflare_hosts() -> None:
    assert (
        rewrite_upstream_url("https://generativelanguage.googleapis.com/v1/chat/completions")
        == "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions"
    )
    assert (
        rewrite_upstream_url("https://generativelanguage.googleapis.com/v1/models?alt=json")
        == "https://generativelanguage.googleapis.com/v1beta/openai/models?alt=json"
    )
    assert (
        rewrite_upstream_url("https://gateway.ai.cloudflare.com/v1/acct/gw/v1/chat/completions")
        == "https://gateway.ai.cloudflare.com/v1/acct/gw/v1beta/openai/chat/completions"
    )


def test_rewrite_leaves_other_urls_alone() -> None:
    url = "https://api.openai.com/v1/chat/completions"
    assert rewrite_upstream_url(url) == url
    url = "https://generativelanguage.googleapis.com/v1beta/models/gemini:generateContent"
    assert rewrite_upstream_url(url) == url


def test_join_url() -> None:
    assert join_url("https://a.example/", "/v1/models") == "https://a.example/v1/models"
    assert join_url("https://a.example/openai", "v1") == "https://a.example/openai/v1"


def test_extract_credential() -> None:
    assert extract_credential("qkey", "Bearer hkey") == "qkey"
    assert extract_credential(None, "Bearer hkey") == "hkey"
    assert extract_credential(None, "bearer hkey") == "hkey"
    assert extract_credential(None, "rawkey") == "rawkey"
    assert extract_credential(None, None) == ""


def test_rewrite_query_credential() -> None:
    assert rewrite_query_credential("key=pw&alt=sse", "pw", "sk-1") == "key=sk-1&alt=sse"
    assert rewrite_query_credential("alt=sse&key=p%20w", "p w", "sk-1") == "alt=sse&key=sk-1"
    assert rewrite_query_credential("key=other", "pw", "sk-1") == "key=other"
    assert rewrite_query_credential("", "pw", "sk-1") == ""


def test_build_relay_headers_allow_list() -> None:
    headers = httpx.Headers(
        {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": "Bearer caller-pw",
            "Cookie": "session=1",
            "X-Forwarded-For": "10.0.0.1",
        }
    )
    out = build_relay_headers(headers, "sk-pool")
    assert out == {
        "content-type": "application/json",
        "accept": "text/event-stream",
        "Authorization": "Bearer sk-pool",
    }


def test_relay_response_headers_strip_hop_by_hop() -> None:
    headers = httpx.Headers(
        {
            "Content-Type": "text/event-stream",
            "Transfer-Encoding": "chunked",
            "Connection": "keep-alive",
            "WWW-Authenticate": "Basic",
            "X-Upstream": "1",
        }
    )
    out = relay_response_headers(headers, drop=["WWW-Authenticate"])
    assert out == {"content-type": "text/event-stream", "x-upstream": "1"}
