"""Error taxonomy shared by every gateway route.

Each error carries the HTTP status it maps to; ``chat_gateway`` renders all
of them with the same ``{"error", "timestamp"}`` payload.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code = 500

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class AuthError(GatewayError):
    """Missing, wrong or too-short caller credential."""

    status_code = 401


class QuotaError(GatewayError):
    """Demo quota for the current hour is spent."""

    status_code = 429


class UpstreamError(GatewayError):
    """Transport failure or unusable response from a downstream service."""

    status_code = 502


class InvalidRequestError(GatewayError):
    """Missing required field or header."""

    status_code = 400


class ConfigError(GatewayError):
    status_code = 500


class EmptyPoolError(ConfigError):
    """A credential pool has no keys to select from."""

    def __init__(self, pool_name: str = "API key") -> None:
        super().__init__(f"{pool_name} list is empty")
        self.pool_name = pool_name
