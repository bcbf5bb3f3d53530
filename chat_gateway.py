"""Chat Gateway – credential-pooling edge proxy for chat, search and WebDAV.

Callers talk to one deployment with either a shared password, a
quota-limited demo password or their own upstream API key.  The gateway
resolves the credential to a real key from a small pool and then:

- relays ``/v1*`` requests to an OpenAI-compatible upstream, streaming the
  response back byte-for-byte (SSE framing included)
- answers ``/search`` by letting a lite model plan web-search queries and
  fanning them out concurrently to a Tavily-style search API
- answers ``/summarize`` with a short conversation title from the lite model
- proxies ``/webdav*`` to a caller-specified WebDAV server, adding CORS and
  refusing to follow redirects that would turn writes into reads

Every rejection uses the same ``{"error", "timestamp"}`` JSON payload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import platform
import re
import secrets
import sys
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Route

from gateway_assets import detect_chat_type, render_icon, render_index, render_manifest
from gateway_credentials import (
    AuditLogger,
    CredentialGate,
    CredentialRotator,
    DemoCounter,
    DemoRateLimiter,
    mask_secret,
    now_iso,
    parse_key_list,
)
from gateway_errors import (
    AuthError,
    GatewayError,
    InvalidRequestError,
    UpstreamError,
)
from gateway_kv import KVStore, open_kv_store
from gateway_search import (
    DEFAULT_SEARCH_API_URL,
    LiteModelSelector,
    SearchOrchestrator,
    extract_message_content,
    parse_model_ids,
)
from gateway_upstream import (
    build_relay_headers,
    extract_credential,
    join_url,
    relay_response_headers,
    rewrite_query_credential,
    rewrite_upstream_url,
)

# ── Logging ───────────────────────────────────────────────────────────────────────────

LOG = logging.getLogger("chat-gateway")

# ── Version ───────────────────────────────────────────────────────────────────────────

__version__ = "1.0.0"

SERVER_TYPE = "PYTHON"

# Charged against the demo quota by /search and /summarize, per call.
AUXILIARY_DEMO_COST = 0.1
SUMMARY_EXCERPT_CHARS = 300

WEBDAV_USER_AGENT = "WebDAV-Client/1.0"
WEBDAV_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, PUT, POST, DELETE, PROPFIND, MKCOL, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type, Authorization, Depth, X-WebDAV-URL, X-WebDAV-Auth"
    ),
}
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
MASKED_HEADERS = frozenset({"authorization", "x-webdav-auth", "cookie"})


# ── Settings ──────────────────────────────────────────────────────────────────────────


@dataclass
class AppSettings:
    secret_password: str
    api_keys: list[str]
    model_ids: list[str]
    api_base: str
    demo_password: str = ""
    demo_max_times_per_hour: int = 15
    search_keys: list[str] = field(default_factory=list)
    title: str = "OpenAI Chat"
    search_api_url: str = DEFAULT_SEARCH_API_URL
    planning_timeout_seconds: float = 30.0
    kv_backend: str = "sqlite"
    kv_path: str = "./data/gateway.db"
    port: int = 8787
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    max_connections: int = 500
    max_keepalive: int = 200
    max_request_body_bytes: int = 10 * 1024 * 1024  # 10 MB
    drain_timeout_seconds: float = 30.0


@dataclass
class RuntimeState:
    inflight: int = 0
    served: int = 0
    errors: int = 0


# ── Helpers ───────────────────────────────────────────────────────────────────────────


def generate_request_id() -> str:
    """Generate a unique request ID for correlation."""
    return str(uuid.uuid4())


def normalize_base_url(value: str) -> str:
    """Normalize and validate a base URL."""
    url = (value or "").strip().rstrip("/")
    if not url:
        raise ValueError("API_BASE is required")
    if not (url.startswith("http://") or url.startswith("https://")):
        raise ValueError("API_BASE must start with http:// or https://")
    return url


def parse_leading_int(raw: Optional[str], default: int) -> int:
    """Leading integer of ``raw``; ``default`` when absent, unparseable or zero."""
    m = re.match(r"[+-]?\d+", (raw or "").strip())
    return (int(m.group(0)) or default) if m else default


def error_response(
    status: int, message: str, headers: Optional[dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        {"error": message, "timestamp": now_iso()}, status_code=status, headers=headers
    )


def credential_from(request: Request) -> str:
    return extract_credential(
        request.query_params.get("key"), request.headers.get("authorization")
    )


def raw_request_path(request: Request) -> str:
    """Request path exactly as the client encoded it."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return request.url.path


def request_has_body(request: Request) -> bool:
    cl = request.headers.get("content-length")
    return bool(cl and cl != "0") or "transfer-encoding" in request.headers


async def read_json_object(request: Request) -> dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        raise InvalidRequestError("invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("JSON body must be an object")
    return body


def truncate_middle(text: str, limit: int = SUMMARY_EXCERPT_CHARS) -> str:
    """Keep head and tail of long text around a ``......`` marker."""
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + "......" + text[-half:]


def build_summary_prompt(question: str, answer: str) -> str:
    return (
        "Write a short title (at most 20 words) for the following conversation.\n\n"
        f"Question:\n```\n{truncate_middle(question)}\n```\n\n"
        f"Answer:\n```\n{truncate_middle(answer)}\n```\n\n"
        "Requirements:\n"
        "1. The title is concise and captures the core of the conversation\n"
        "2. Do not wrap it in quotes or other punctuation\n"
        "3. Output the title text only"
    )


# ── Engine ────────────────────────────────────────────────────────────────────────────


class GatewayEngine:
    """Owns the pooled upstream HTTP client and request accounting."""

    def __init__(
        self,
        settings: AppSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._runtime = RuntimeState()
        self._start_time = time.time()

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            http2=True,
            timeout=None,
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=self.settings.max_connections,
                max_keepalive_connections=self.settings.max_keepalive,
            ),
        )

    async def startup(self) -> None:
        self._client = self._make_client()
        self._start_time = time.time()
        LOG.info(
            "Engine started: max_connections=%d, max_keepalive=%d",
            self.settings.max_connections,
            self.settings.max_keepalive,
        )

    async def shutdown(self) -> None:
        """Graceful shutdown: wait for in-flight requests then close the client."""
        LOG.info("Initiating graceful shutdown...")
        deadline = time.time() + self.settings.drain_timeout_seconds
        while time.time() < deadline and self._runtime.inflight > 0:
            LOG.info("Draining %d in-flight requests...", self._runtime.inflight)
            await asyncio.sleep(0.5)
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        LOG.info("Engine shutdown complete")

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("HTTP client not initialised")
        return self._client

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def begin(self) -> None:
        self._runtime.inflight += 1
        self._runtime.served += 1

    def end(self, failed: bool = False) -> None:
        self._runtime.inflight = max(0, self._runtime.inflight - 1)
        if failed:
            self._runtime.errors += 1

    def stats(self) -> dict[str, Any]:
        return {
            "total_inflight": self._runtime.inflight,
            "total_requests_served": self._runtime.served,
            "total_errors": self._runtime.errors,
            "uptime_seconds": round(self.uptime_seconds, 1),
        }

    def prometheus_metrics(
        self, demo: Optional[DemoCounter], api_keys: int, search_keys: int
    ) -> str:
        """Generate Prometheus-compatible metrics output."""
        st = self.stats()
        lines = [
            "# HELP gateway_requests_total Proxied requests served",
            "# TYPE gateway_requests_total counter",
            f"gateway_requests_total {st['total_requests_served']}",
            "",
            "# HELP gateway_errors_total Proxied requests that failed upstream",
            "# TYPE gateway_errors_total counter",
            f"gateway_errors_total {st['total_errors']}",
            "",
            "# HELP gateway_inflight Current in-flight proxied requests",
            "# TYPE gateway_inflight gauge",
            f"gateway_inflight {st['total_inflight']}",
            "",
            "# HELP gateway_uptime_seconds Gateway uptime",
            "# TYPE gateway_uptime_seconds gauge",
            f"gateway_uptime_seconds {st['uptime_seconds']}",
            "",
            "# HELP gateway_credential_pool_size Keys configured per pool",
            "# TYPE gateway_credential_pool_size gauge",
            f'gateway_credential_pool_size{{pool="api"}} {api_keys}',
            f'gateway_credential_pool_size{{pool="search"}} {search_keys}',
        ]
        if demo is not None:
            lines += [
                "",
                "# HELP gateway_demo_calls_hour Demo calls charged in the current hour",
                "# TYPE gateway_demo_calls_hour gauge",
                f"gateway_demo_calls_hour {round(demo.times, 2)}",
                "",
                "# HELP gateway_demo_max_per_hour Demo quota per hour",
                "# TYPE gateway_demo_max_per_hour gauge",
                f"gateway_demo_max_per_hour {demo.max_times}",
            ]
        return "\n".join(lines) + "\n"


# ── App Factory ─────────────────────────────────────────────────────────────────


def load_settings() -> AppSettings:
    """Load settings from environment variables with validation."""
    secret = os.getenv("SECRET_PASSWORD", "").strip()
    generated_secret = not secret
    if generated_secret:
        secret = f"gateway.{secrets.token_hex(8)}"
    cors_raw = os.getenv("CORS_ORIGINS", "*")

    settings = AppSettings(
        secret_password=secret,
        api_keys=parse_key_list(os.getenv("API_KEYS", "")),
        model_ids=parse_model_ids(os.getenv("MODEL_IDS") or "gpt-5-pro,gpt-5,gpt-5-mini"),
        api_base=normalize_base_url(os.getenv("API_BASE") or "https://api.openai.com"),
        demo_password=os.getenv("DEMO_PASSWORD", "").strip(),
        demo_max_times_per_hour=parse_leading_int(os.getenv("DEMO_MAX_TIMES_PER_HOUR"), 15),
        search_keys=parse_key_list(os.getenv("TAVILY_KEYS", "")),
        title=os.getenv("TITLE") or "OpenAI Chat",
        search_api_url=os.getenv("SEARCH_API_URL") or DEFAULT_SEARCH_API_URL,
        planning_timeout_seconds=max(1.0, float(os.getenv("PLANNING_TIMEOUT_SECONDS", "30"))),
        kv_backend=os.getenv("KV_BACKEND", "sqlite").strip().lower(),
        kv_path=os.getenv("KV_PATH", "./data/gateway.db"),
        port=int(os.getenv("PORT", "8787")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in cors_raw.split(",") if o.strip()],
        max_connections=max(10, int(os.getenv("MAX_CONNECTIONS", "500"))),
        max_keepalive=max(10, int(os.getenv("MAX_KEEPALIVE", "200"))),
        max_request_body_bytes=int(os.getenv("MAX_REQUEST_BODY_BYTES", str(10 * 1024 * 1024))),
        drain_timeout_seconds=float(os.getenv("DRAIN_TIMEOUT_SECONDS", "30")),
    )

    if generated_secret:
        LOG.warning("SECRET_PASSWORD not set - generated a random one, shared access is effectively off")
    if not settings.api_keys:
        LOG.warning("API_KEYS is empty - password callers cannot be served")
    if settings.demo_password and len(settings.demo_password) < 8:
        LOG.warning("DEMO_PASSWORD is short (%d chars)", len(settings.demo_password))

    return settings


def create_app(
    settings: Optional[AppSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    kv_store: Optional[KVStore] = None,
    rotator: Optional[CredentialRotator] = None,
    search_rotator: Optional[CredentialRotator] = None,
    limiter: Optional[DemoRateLimiter] = None,
) -> FastAPI:
    cfg = settings or load_settings()

    log_fmt = (
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        if cfg.log_level != "DEBUG"
        else "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
    )
    logging.basicConfig(level=cfg.log_level, format=log_fmt, stream=sys.stdout)

    owns_kv = kv_store is None
    kv = open_kv_store(cfg.kv_backend, cfg.kv_path) if owns_kv else kv_store
    if rotator is None:
        rotator = CredentialRotator(cfg.api_keys, "API key")
    if search_rotator is None:
        search_rotator = CredentialRotator(cfg.search_keys, "Search key")
    if limiter is None:
        limiter = DemoRateLimiter(kv, cfg.demo_max_times_per_hour)
    gate = CredentialGate(
        cfg.secret_password, cfg.demo_password, rotator, limiter, AuditLogger()
    )
    engine = GatewayEngine(cfg, transport=transport)
    lite_model = LiteModelSelector().select(cfg.model_ids)
    orchestrator = SearchOrchestrator(
        api_base=cfg.api_base,
        model=lite_model,
        search_keys=search_rotator,
        search_api_url=cfg.search_api_url,
        planning_timeout_seconds=cfg.planning_timeout_seconds,
    )
    chat_url = rewrite_upstream_url(join_url(cfg.api_base, "/v1/chat/completions"))
    chat_type = detect_chat_type(cfg.title)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await engine.startup()
        LOG.info(
            "Chat Gateway v%s ready on port %s (upstream=%s, kv=%s, lite_model=%s)",
            __version__, cfg.port, cfg.api_base, kv.name, lite_model,
        )
        try:
            yield
        finally:
            await engine.shutdown()
            if owns_kv:
                kv.close()

    app = FastAPI(
        title="Chat Gateway",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = cfg
    app.state.engine = engine
    app.state.gate = gate
    app.state.limiter = limiter

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Gateway-Version"],
    )

    # WebDAV preflight (registered after CORS, so it runs before it)
    @app.middleware("http")
    async def webdav_preflight_middleware(request: Request, call_next):
        if request.method == "OPTIONS" and request.url.path.startswith("/webdav"):
            return Response(
                status_code=204,
                headers={**WEBDAV_CORS_HEADERS, "Access-Control-Max-Age": "86400"},
            )
        return await call_next(request)

    # Security headers middleware
    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        req_id = request.headers.get("x-request-id", "") or generate_request_id()
        request.state.request_id = req_id
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Request-ID"] = req_id
        response.headers["X-Gateway-Version"] = __version__
        return response

    # Request size limit middleware
    @app.middleware("http")
    async def body_size_middleware(request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl and cl.isdigit() and int(cl) > cfg.max_request_body_bytes:
            return error_response(
                413, f"Request body too large (max {cfg.max_request_body_bytes} bytes)"
            )
        return await call_next(request)

    # Exception handlers
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            LOG.warning(
                "%s: %s [req=%s]",
                type(exc).__name__, exc.detail, getattr(request.state, "request_id", ""),
            )
        return error_response(exc.status_code, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        req_id = getattr(request.state, "request_id", "")
        LOG.exception("Unhandled error: %s [req=%s]", exc, req_id)
        return error_response(500, "internal server error")

    def stream_upstream(up: httpx.Response) -> AsyncIterator[bytes]:
        """Raw upstream bytes, unbuffered; closes the upstream when done."""

        async def gen() -> AsyncIterator[bytes]:
            failed = False
            try:
                try:
                    async for chunk in up.aiter_raw():
                        if chunk:
                            yield chunk
                except httpx.StreamConsumed:
                    # transport handed back an already-read response
                    if up.content:
                        yield up.content
            except Exception:
                failed = True
                raise
            finally:
                try:
                    await up.aclose()
                finally:
                    engine.end(failed)

        return gen()

    # Proxy: generic /v1 relay
    async def relay(request: Request) -> Response:
        req_id = getattr(request.state, "request_id", "")
        credential = credential_from(request)
        grant = await gate.authorize(credential, request_id=req_id)

        query = request.url.query
        if grant.via_password:
            query = rewrite_query_credential(query, credential, grant.api_key)
        target = rewrite_upstream_url(join_url(cfg.api_base, raw_request_path(request)))
        if query:
            target = f"{target}?{query}"

        headers = build_relay_headers(request.headers, grant.api_key)
        content = None
        if request_has_body(request):
            content = request.stream()
            cl = request.headers.get("content-length")
            if cl:
                headers["content-length"] = cl

        client = engine.client
        engine.begin()
        start = time.perf_counter()
        try:
            up = await client.send(
                client.build_request(request.method, target, headers=headers, content=content),
                stream=True,
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            lat = (time.perf_counter() - start) * 1000
            engine.end(failed=True)
            LOG.warning(
                "Upstream error for %s: %s: %s [req=%s, lat=%.0fms]",
                target[:80], type(exc).__name__, exc, req_id, lat,
            )
            raise UpstreamError("Proxy request failed") from exc

        LOG.debug(
            "Relayed %s %s -> %d (%s) [req=%s]",
            request.method, target[:80], up.status_code, grant.kind.value, req_id,
        )
        return StreamingResponse(
            stream_upstream(up),
            status_code=up.status_code,
            headers=relay_response_headers(up.headers),
        )

    # Proxy: WebDAV
    async def webdav_proxy(request: Request) -> Response:
        req_id = getattr(request.state, "request_id", "")
        method = request.method.upper()
        webdav_url = request.headers.get("x-webdav-url")
        if not webdav_url:
            raise InvalidRequestError("Missing X-WebDAV-URL header")

        path = raw_request_path(request)
        target = webdav_url
        if path.startswith("/webdav/"):
            target = webdav_url.rstrip("/") + path[len("/webdav"):]

        headers = {"User-Agent": WEBDAV_USER_AGENT}
        webdav_auth = request.headers.get("x-webdav-auth")
        if webdav_auth:
            headers["Authorization"] = webdav_auth
        for name in ("Content-Type", "Depth"):
            value = request.headers.get(name)
            if value:
                headers[name] = value

        body: Optional[bytes] = None
        if method not in BODYLESS_METHODS:
            body = await request.body()
            if body:
                headers["Content-Length"] = str(len(body))

        LOG.debug("[WebDAV] %s %s [req=%s]", method, target, req_id)
        client = engine.client
        engine.begin()
        try:
            up = await client.send(
                client.build_request(method, target, headers=headers, content=body),
                stream=True,
                follow_redirects=False,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            engine.end(failed=True)
            LOG.warning("WebDAV proxy error for %s: %s [req=%s]", target, exc, req_id)
            raise UpstreamError(f"WebDAV proxy error: {exc}") from exc

        if up.status_code in REDIRECT_STATUSES:
            location = up.headers.get("location", "")
            await up.aclose()
            engine.end(failed=True)
            LOG.warning("[WebDAV] redirect %d to %s [req=%s]", up.status_code, location, req_id)
            raise UpstreamError(
                "WebDAV server answered with a redirect; check whether the URL "
                f"should use HTTPS. Redirect target: {location}"
            )

        rh = relay_response_headers(
            up.headers, drop=["www-authenticate", *(h.lower() for h in WEBDAV_CORS_HEADERS)]
        )
        rh.update(WEBDAV_CORS_HEADERS)
        return StreamingResponse(stream_upstream(up), status_code=up.status_code, headers=rh)

    # Routes: static
    @app.get("/", include_in_schema=False)
    @app.get("/index.html", include_in_schema=False)
    async def index():
        html = render_index(cfg.title, cfg.model_ids, bool(cfg.search_keys))
        return HTMLResponse(html, headers={"Cache-Control": "public, max-age=14400"})

    @app.get("/favicon.svg", include_in_schema=False)
    async def favicon():
        return Response(
            render_icon(chat_type),
            media_type="image/svg+xml",
            headers={"Cache-Control": "public, max-age=43200"},
        )

    @app.get("/manifest.json", include_in_schema=False)
    @app.get("/site.webmanifest", include_in_schema=False)
    async def manifest():
        return Response(
            render_manifest(cfg.title),
            media_type="application/json;charset=UTF-8",
            headers={"Cache-Control": "public, max-age=43200"},
        )

    # Routes: diagnostics
    @app.api_route("/whoami", methods=["GET", "POST"])
    async def whoami(request: Request):
        """Echo the request as the gateway received it."""
        return JSONResponse(
            {
                "serverType": SERVER_TYPE,
                "serverInfo": {
                    "python": platform.python_version(),
                    "platform": sys.platform,
                    "version": __version__,
                },
                "url": str(request.url),
                "headers": {
                    k: mask_secret(v) if k in MASKED_HEADERS else v
                    for k, v in request.headers.items()
                },
                "method": request.method,
            }
        )

    async def demo_snapshot() -> Optional[DemoCounter]:
        return await limiter.snapshot() if cfg.demo_password else None

    @app.get("/health")
    async def health():
        """Health check with pool and counter status."""
        healthy = len(rotator) > 0
        demo = await demo_snapshot()
        return JSONResponse(
            {
                "status": "ok" if healthy else "degraded",
                "version": __version__,
                "api_keys": len(rotator),
                "search_keys": len(search_rotator),
                "kv_backend": kv.name,
                "lite_model": lite_model,
                "demo": demo.to_dict() if demo else None,
                **engine.stats(),
            },
            status_code=200 if healthy else 503,
        )

    @app.head("/health")
    async def health_head():
        """HEAD health check for monitoring probes."""
        return Response(status_code=200 if len(rotator) > 0 else 503)

    @app.get("/metrics")
    async def metrics():
        """Prometheus-compatible metrics endpoint."""
        text = engine.prometheus_metrics(
            await demo_snapshot(), len(rotator), len(search_rotator)
        )
        return Response(content=text, media_type="text/plain; version=0.0.4; charset=utf-8")

    # Routes: search augmentation
    @app.post("/search")
    async def search(request: Request):
        req_id = getattr(request.state, "request_id", "")
        body = await read_json_object(request)
        query = body.get("query")
        if not isinstance(query, str) or not query.strip():
            raise InvalidRequestError("Missing query parameter")
        grant = await gate.authorize(credential_from(request), AUXILIARY_DEMO_COST, req_id)
        results = await orchestrator.search(engine.client, query, grant.api_key)
        return JSONResponse(results)

    @app.post("/summarize")
    async def summarize(request: Request):
        req_id = getattr(request.state, "request_id", "")
        body = await read_json_object(request)
        question, answer = body.get("question"), body.get("answer")
        if not (isinstance(question, str) and question) or not (isinstance(answer, str) and answer):
            raise InvalidRequestError("Missing question or answer parameter")

        grant = await gate.authorize(credential_from(request), AUXILIARY_DEMO_COST, req_id)
        if not grant.via_password:
            raise AuthError("Invalid API key. Provide a valid key.", status_code=403)

        payload = {
            "model": lite_model,
            "messages": [{"role": "user", "content": build_summary_prompt(question, answer)}],
            "max_tokens": 300,
        }
        try:
            resp = await engine.client.post(
                chat_url, json=payload, headers={"Authorization": f"Bearer {grant.api_key}"}
            )
            if not resp.is_success:
                LOG.warning("Summary upstream returned HTTP %d [req=%s]", resp.status_code, req_id)
                raise UpstreamError("Failed to generate summary")
            summary = extract_message_content(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError("Failed to generate summary") from exc
        return JSONResponse({"success": True, "summary": summary.strip()})

    # Routes: WebDAV and /v1 accept any verb, so they are plain Starlette routes
    async def webdav_endpoint(request: Request) -> Response:
        try:
            return await webdav_proxy(request)
        except GatewayError as exc:
            return error_response(exc.status_code, exc.detail, headers=WEBDAV_CORS_HEADERS)

    async def dispatch(request: Request) -> Response:
        api_path = request.url.path
        if not api_path.startswith("/v1"):
            raise InvalidRequestError(f"{api_path} Invalid API path. Must start with /v1")
        return await relay(request)

    app.router.routes.extend(
        [
            Route("/webdav", webdav_endpoint, include_in_schema=False),
            Route("/webdav/{subpath:path}", webdav_endpoint, include_in_schema=False),
            # everything else is either a /v1 relay or rejected
            Route("/{path:path}", dispatch, include_in_schema=False),
        ]
    )

    return app


def main() -> None:
    s = load_settings()
    uvicorn.run(
        "chat_gateway:create_app",
        factory=True,
        host="0.0.0.0",
        port=s.port,
        reload=False,
        log_level=s.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
