"""Caller credential resolution.

``CredentialGate`` turns whatever the caller sent (``?key=`` or the
``Authorization`` header) into one upstream API key, or rejects it.  The
shared secret and the demo secret both resolve through a round-robin
``CredentialRotator``; the demo secret is additionally metered by a
``DemoRateLimiter`` with an hour-bucketed counter kept in the KV store.
"""

from __future__ import annotations

import hmac
import json
import logging
import random
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from gateway_errors import AuthError, EmptyPoolError, QuotaError
from gateway_kv import KVStore

LOG = logging.getLogger("chat-gateway.credentials")

# Credentials this short that match neither secret are treated as a guessed
# password rather than a real upstream key.
# TODO: expose as a setting once a deployment needs a different threshold.
SHORT_CREDENTIAL_MAX_LENGTH = 10

DEMO_COUNTER_KEY = "demo_counter"
SECONDS_PER_HOUR = 3600


# ── Helpers ───────────────────────────────────────────────────────────────────────────


def now_iso() -> str:
    """Return current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def mask_secret(value: str) -> str:
    """Mask a secret value for display, showing only prefix/suffix."""
    s = (value or "").strip()
    if not s:
        return ""
    if len(s) <= 8:
        return f"{s[:2]}***"
    return f"{s[:4]}...{s[-4:]}"


def parse_key_list(raw: Optional[str]) -> list[str]:
    """Split a comma-separated key list, dropping blanks."""
    return [k.strip() for k in (raw or "").split(",") if k.strip()]


# ── Audit Logger ─────────────────────────────────────────────────────────────────


class AuditLogger:
    """Structured audit logging for credential decisions."""

    def __init__(self) -> None:
        self._log = logging.getLogger("chat-gateway.audit")

    def log(
        self,
        action: str,
        request_id: str = "",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        entry: dict[str, Any] = {
            "timestamp": now_iso(),
            "action": action,
            "request_id": request_id,
        }
        if details:
            entry["details"] = details
        self._log.info(json.dumps(entry))


# ── Upstream Key Selector ──────────────────────────────────────────────────────────


class CredentialRotator:
    """Round-robin and random selection over an immutable key pool.

    The cursor is advanced without a lock.  Two near-simultaneous requests
    may observe the same or skip a key; the goal is load spreading, not
    exclusivity.
    """

    def __init__(self, keys: list[str], pool_name: str = "API key") -> None:
        self._keys = tuple(keys)
        self._pool_name = pool_name
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._keys)

    def next(self) -> str:
        if not self._keys:
            raise EmptyPoolError(self._pool_name)
        key = self._keys[self._cursor % len(self._keys)]
        self._cursor = (self._cursor + 1) % len(self._keys)
        return key

    def random(self) -> str:
        if not self._keys:
            raise EmptyPoolError(self._pool_name)
        return random.choice(self._keys)


# ── Demo Rate Limiter ──────────────────────────────────────────────────────────────


@dataclass
class DemoCounter:
    hour: int
    times: float = 0
    max_times: int = 15

    def to_dict(self) -> dict[str, Any]:
        return {"hour": self.hour, "times": self.times, "maxTimes": self.max_times}

    @classmethod
    def from_dict(cls, raw: Any) -> Optional[DemoCounter]:
        if not isinstance(raw, dict):
            return None
        try:
            return cls(
                hour=int(raw["hour"]),
                times=float(raw["times"]),
                max_times=int(raw["maxTimes"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class DemoDecision:
    allowed: bool
    message: str
    record: DemoCounter


class DemoRateLimiter:
    """Fixed-window demo quota bucketed by wall-clock hour.

    The record is read, checked and written back without a transaction, so
    concurrent calls inside one hour can both pass the check before either
    writes and overshoot ``max_times`` by up to ``concurrency - 1``.  When
    the KV store is unavailable the counter lives in this instance only.
    """

    def __init__(
        self,
        kv: KVStore,
        max_times: int,
        clock: Callable[[], float] = time.time,
        record_ttl_seconds: float = 2 * SECONDS_PER_HOUR,
    ) -> None:
        self._kv = kv
        self._max_times = max_times
        self._clock = clock
        self._record_ttl = record_ttl_seconds
        self._memory = DemoCounter(hour=0, times=0, max_times=max_times)

    def current_hour(self) -> int:
        return int(self._clock() // SECONDS_PER_HOUR)

    async def _load(self) -> Optional[DemoCounter]:
        if not self._kv.available:
            return replace(self._memory)
        return DemoCounter.from_dict(await self._kv.get(DEMO_COUNTER_KEY))

    async def _save(self, record: DemoCounter) -> None:
        if self._kv.available and await self._kv.set(
            DEMO_COUNTER_KEY, record.to_dict(), ttl=self._record_ttl
        ):
            return
        self._memory = replace(record)

    async def snapshot(self) -> DemoCounter:
        """Current-hour record without counting a call."""
        hour = self.current_hour()
        record = await self._load()
        if record is None or record.hour != hour:
            return DemoCounter(hour=hour, times=0, max_times=self._max_times)
        return record

    async def check_and_increment(self, delta: float = 1) -> DemoDecision:
        hour = self.current_hour()
        record = await self._load()
        if record is None or record.hour != hour:
            record = DemoCounter(hour=hour, times=0, max_times=self._max_times)

        if record.times >= record.max_times:
            return DemoDecision(
                allowed=False,
                message=(
                    f"Exceeded maximum API calls ({record.max_times}) for this hour. "
                    "Please try again next hour."
                ),
                record=record,
            )

        record.times += delta
        await self._save(record)
        return DemoDecision(allowed=True, message="OK", record=record)


# ── Credential Gate ────────────────────────────────────────────────────────────────


class CredentialKind(str, Enum):
    SHARED = "shared"
    DEMO = "demo"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class CredentialGrant:
    api_key: str
    kind: CredentialKind
    credential: str

    @property
    def via_password(self) -> bool:
        return self.kind in (CredentialKind.SHARED, CredentialKind.DEMO)


class CredentialGate:
    def __init__(
        self,
        secret_password: str,
        demo_password: str,
        rotator: CredentialRotator,
        limiter: DemoRateLimiter,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._secret = secret_password
        self._demo = demo_password
        self._rotator = rotator
        self._limiter = limiter
        self._audit = audit or AuditLogger()

    def is_shared_secret(self, credential: str) -> bool:
        return bool(self._secret) and constant_time_compare(credential, self._secret)

    def is_demo_secret(self, credential: str) -> bool:
        return bool(self._demo) and constant_time_compare(credential, self._demo)

    async def authorize(
        self,
        credential: str,
        demo_cost: float = 1,
        request_id: str = "",
    ) -> CredentialGrant:
        """Resolve a caller credential to an upstream key or raise.

        ``demo_cost`` is what one call charges against the demo quota;
        auxiliary endpoints pass a fraction of a call.
        """
        if not credential:
            self._reject("missing", request_id)
            raise AuthError(
                "Missing API key. Provide via ?key= parameter or Authorization header"
            )

        if self.is_shared_secret(credential):
            return self._grant(CredentialKind.SHARED, credential, request_id)

        if self.is_demo_secret(credential):
            decision = await self._limiter.check_and_increment(demo_cost)
            if not decision.allowed:
                self._reject("demo_quota", request_id, times=decision.record.times)
                raise QuotaError(decision.message)
            return self._grant(
                CredentialKind.DEMO, credential, request_id, times=decision.record.times
            )

        if len(credential) <= SHORT_CREDENTIAL_MAX_LENGTH:
            self._reject("short", request_id, credential=mask_secret(credential))
            raise AuthError("Wrong password.")

        return CredentialGrant(
            api_key=credential, kind=CredentialKind.PASSTHROUGH, credential=credential
        )

    def _grant(
        self, kind: CredentialKind, credential: str, request_id: str, **details: Any
    ) -> CredentialGrant:
        api_key = self._rotator.next()
        self._audit.log(
            "credential_granted",
            request_id,
            {"kind": kind.value, "upstream_key": mask_secret(api_key), **details},
        )
        return CredentialGrant(api_key=api_key, kind=kind, credential=credential)

    def _reject(self, reason: str, request_id: str, **details: Any) -> None:
        self._audit.log("credential_rejected", request_id, {"reason": reason, **details})
