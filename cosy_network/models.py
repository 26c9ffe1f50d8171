"""Value types shared by the request, codec and dispatcher modules.

All models use Pydantic v2.
"""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Generic, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


# =============================================================================
# Request Enums
# =============================================================================


class HTTPMethod(str, Enum):
    """HTTP methods a descriptor may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class CachePolicy(str, Enum):
    """Caching directive carried by a descriptor.

    httpx keeps no response cache, so the policy only shapes the
    Cache-Control header of the outgoing request.
    """

    USE_PROTOCOL_CACHE_POLICY = "use_protocol_cache_policy"
    RELOAD_IGNORING_CACHE_DATA = "reload_ignoring_cache_data"
    RETURN_CACHE_DATA_ELSE_LOAD = "return_cache_data_else_load"
    RETURN_CACHE_DATA_DONT_LOAD = "return_cache_data_dont_load"

    @property
    def cache_control(self) -> str | None:
        """Cache-Control value to send, or None to leave the header out."""
        if self is CachePolicy.RELOAD_IGNORING_CACHE_DATA:
            return "no-cache"
        if self in (
            CachePolicy.RETURN_CACHE_DATA_ELSE_LOAD,
            CachePolicy.RETURN_CACHE_DATA_DONT_LOAD,
        ):
            return "max-stale"
        return None


class DateStrategy(str, Enum):
    """How datetime values are written into JSON bodies."""

    ISO8601 = "iso8601"
    SECONDS_SINCE_EPOCH = "seconds_since_epoch"
    MILLISECONDS_SINCE_EPOCH = "milliseconds_since_epoch"


# =============================================================================
# Dispatch Results
# =============================================================================


def _status_of(code: int) -> HTTPStatus | int:
    try:
        return HTTPStatus(code)
    except ValueError:
        return code


class RawResponse(BaseModel):
    """An HTTP response returned without decoding the body.

    Header keys are lowercase. Header values are arrays for repeated headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    content: bytes = Field(default=b"", description="Raw response body")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")

    @property
    def status(self) -> HTTPStatus | int:
        return _status_of(self.status_code)

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        return values[0] if values else None


class DecodedResponse(BaseModel, Generic[T]):
    """A successful response whose body was decoded into the declared type."""

    model_config = ConfigDict(extra="forbid")

    body: T = Field(description="Decoded response body")
    status_code: int = Field(description="HTTP status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )

    @property
    def status(self) -> HTTPStatus | int:
        return _status_of(self.status_code)

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        return values[0] if values else None


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class DispatcherConfig(BaseModel):
    """Configuration for a dispatcher and the httpx client behind it."""

    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(default=30.0, description="Client-wide timeout in seconds")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers sent with every request (supports ${ENV_VAR} substitution)",
    )
    follow_redirects: bool = Field(default=False, description="Follow 3xx redirects")
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
    cert: str | None = Field(default=None, description="Client certificate for mTLS")
    key: str | None = Field(default=None, description="Client key for mTLS")
    key_password: str | None = Field(default=None, description="Password for the client key")
    ciphers: str | None = Field(default=None, description="OpenSSL cipher string")
    date_strategy: DateStrategy = Field(
        default=DateStrategy.ISO8601, description="Encoding of datetime values in bodies"
    )
    auth_header: str = Field(
        default="Authorization", description="Header carrying the rotating auth token"
    )
    auth_token: str | None = Field(default=None, description="Initial auth token")

    @model_validator(mode="after")
    def check_client_cert(self) -> Self:
        if bool(self.cert) != bool(self.key):
            raise ValueError("cert and key must be set together")
        return self
