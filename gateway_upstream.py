"""Upstream URL and header handling for relayed requests."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional
from urllib.parse import quote, unquote_plus, urlsplit

import httpx

# Hosts that speak the OpenAI dialect under a /v1beta/openai prefix.
OPENAI_COMPAT_BETA_HOSTS = frozenset(
    {
        "generativelanguage.googleapis.com",
        "gateway.ai.cloudflare.com",
    }
)

_PATH_REWRITES = (
    ("/v1/chat", "/v1beta/openai/chat"),
    ("/v1/models", "/v1beta/openai/models"),
)

RELAY_REQUEST_HEADERS = ("content-type", "accept", "accept-encoding", "user-agent")

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def join_url(base: str, path: str) -> str:
    """Join base URL and path safely."""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def rewrite_upstream_url(url: str) -> str:
    """Map OpenAI-style paths onto providers that serve them elsewhere.

    URLs for any other host are returned untouched.
    """
    parts = urlsplit(url)
    if (parts.hostname or "").lower() not in OPENAI_COMPAT_BETA_HOSTS:
        return url
    path = parts.path
    for old, new in _PATH_REWRITES:
        path = path.replace(old, new, 1)
    if path == parts.path:
        return url
    return parts._replace(path=path).geturl()


def extract_credential(query_key: Optional[str], authorization: Optional[str]) -> str:
    """Caller credential from ``?key=`` or the Authorization header.

    The header may carry a bare key as well as ``Bearer <key>``.
    """
    raw = (query_key or authorization or "").strip()
    if raw[:7].lower() == "bearer ":
        raw = raw[7:]
    return raw.strip()


def rewrite_query_credential(query: str, credential: str, api_key: str) -> str:
    """Swap a ``key=<credential>`` query parameter for the resolved key.

    Other parameters keep their original encoding.
    """
    if not query or not credential:
        return query
    out: list[str] = []
    for pair in query.split("&"):
        name, sep, value = pair.partition("=")
        if sep and name == "key" and unquote_plus(value) == credential:
            pair = f"key={quote(api_key, safe='')}"
        out.append(pair)
    return "&".join(out)


def build_relay_headers(headers: Mapping[str, str], api_key: str) -> dict[str, str]:
    """Allow-listed caller headers plus the resolved upstream Authorization."""
    out: dict[str, str] = {}
    for name in RELAY_REQUEST_HEADERS:
        value = headers.get(name)
        if value:
            out[name] = value
    out["Authorization"] = f"Bearer {api_key}"
    return out


def relay_response_headers(
    headers: httpx.Headers, drop: Iterable[str] = ()
) -> dict[str, str]:
    """Upstream response headers minus hop-by-hop and explicitly dropped ones."""
    dropped = HOP_BY_HOP_HEADERS | {d.lower() for d in drop}
    return {k: v for k, v in headers.items() if k.lower() not in dropped}
