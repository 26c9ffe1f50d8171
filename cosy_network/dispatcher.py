"""Dispatcher - Executes request descriptors and classifies the responses.

The dispatcher builds the httpx.Request described by an APIRequest, sends
it once, and maps the status code onto one of three outcomes:

    failing_status_codes  -> DecodedApiError carrying the decoded error body
    success_status_codes  -> DecodedResponse carrying the decoded body
    anything else         -> UnhandledStatusCodeError

The failing set is checked first. Nothing is retried.

APIDispatcher blocks on an httpx.Client; AsyncAPIDispatcher awaits an
httpx.AsyncClient. Both share the classification functions below, so the
two shapes cannot drift apart.
"""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any, Generic, TypeVar

import httpx

from cosy_network.codec import JSONCodec
from cosy_network.config_loader import create_async_client, create_client, shared_client
from cosy_network.models import DecodedResponse, DispatcherConfig, RawResponse
from cosy_network.request import APIRequest

logger = logging.getLogger(__name__)

ErrorT = TypeVar("ErrorT")


class DispatchError(Exception):
    """Base class for dispatch errors."""


class TransportError(DispatchError):
    """Raised when the request never produced a response (connection, TLS, timeout)."""

    def __init__(self, message: str, cause: BaseException) -> None:
        super().__init__(message)
        self.cause = cause


class InvalidResponseError(DispatchError):
    """Raised when the transport returned something that is not an HTTP response."""


class DecodedApiError(DispatchError, Generic[ErrorT]):
    """Raised for a declared failing status code.

    body holds the response decoded as the descriptor's error_body_type.
    """

    def __init__(self, body: ErrorT, status_code: int, headers: dict[str, list[str]]) -> None:
        super().__init__(f"API returned failing status {status_code}: {body!r}")
        self.body = body
        self.status_code = status_code
        self.headers = headers


class UnhandledStatusCodeError(DispatchError):
    """Raised when a status code is in neither the success nor the failing set."""

    def __init__(self, status_code: int, headers: dict[str, list[str]], content: bytes) -> None:
        super().__init__(f"Status code {status_code} is not handled by the request")
        self.status_code = status_code
        self.headers = headers
        self.content = content


# =============================================================================
# Response Classification
# =============================================================================


def to_raw_response(response: Any, elapsed_ms: float = 0.0) -> RawResponse:
    """Convert an httpx Response to a RawResponse.

    Raises:
        InvalidResponseError: If the response has no integer status code.
    """
    status_code = getattr(response, "status_code", None)
    if not isinstance(status_code, int) or isinstance(status_code, bool):
        raise InvalidResponseError(
            f"Transport returned {type(response).__name__} without a numeric status code"
        )

    # Headers - lowercase keys, list values
    headers: dict[str, list[str]] = {}
    for key, value in response.headers.multi_items():
        headers.setdefault(key.lower(), []).append(value)

    http_version = "HTTP/1.1"
    if isinstance(getattr(response, "http_version", None), str):
        http_version = response.http_version

    return RawResponse(
        status_code=status_code,
        headers=headers,
        content=response.content,
        elapsed_ms=elapsed_ms,
        http_version=http_version,
    )


def check_failure(request: APIRequest, response: RawResponse, codec: JSONCodec) -> None:
    """Raise DecodedApiError if the status code is a declared failure.

    A body that does not decode as error_body_type raises DecodingError instead.
    """
    if response.status_code in request.failing_status_codes:
        logger.debug(
            "Status %s is a declared failure, decoding error body", response.status_code
        )
        body = codec.decode(response.content, request.error_body_type)
        raise DecodedApiError(body, response.status_code, response.headers)


def _unhandled(response: RawResponse) -> UnhandledStatusCodeError:
    logger.warning("Status code %s is not handled by the request", response.status_code)
    return UnhandledStatusCodeError(response.status_code, response.headers, response.content)


def classify(request: APIRequest, response: RawResponse, codec: JSONCodec) -> DecodedResponse:
    """Classify a response and decode its body.

    Raises:
        DecodedApiError: Status code is in the failing set.
        DecodingError: Body does not match the declared response or error type.
        UnhandledStatusCodeError: Status code is in neither set.
    """
    check_failure(request, response, codec)

    if response.status_code in request.success_status_codes:
        body = codec.decode(response.content, request.response_body_type)
        return DecodedResponse(
            body=body,
            status_code=response.status_code,
            headers=response.headers,
        )

    raise _unhandled(response)


def check_success(request: APIRequest, response: RawResponse, codec: JSONCodec) -> None:
    """Classify a response without decoding a success body."""
    check_failure(request, response, codec)
    if request.success_status_codes and response.status_code not in request.success_status_codes:
        raise _unhandled(response)


def _transport_error(request: httpx.Request, e: httpx.HTTPError) -> TransportError:
    target = f"{request.method} {request.url}"
    if isinstance(e, httpx.TimeoutException):
        return TransportError(f"{target} request timeout: {e}", e)
    if isinstance(e, httpx.ConnectError):
        return TransportError(f"{target} connection error: {e}", e)
    return TransportError(f"{target} request error: {e}", e)


# =============================================================================
# Token Rotation
# =============================================================================


class TokenStore:
    """Lock-guarded holder of the current auth token.

    Concurrent dispatches read and rotate the token through this object
    only, so a rotation is never observed half-written.
    """

    def __init__(self, token: str | None = None) -> None:
        self._token = token
        self._lock = Lock()

    def get(self) -> str | None:
        with self._lock:
            return self._token

    def set(self, token: str | None) -> None:
        with self._lock:
            self._token = token

    def rotate(self, token: str) -> bool:
        """Replace the held token with a non-empty one. Returns True if it changed."""
        if not token:
            return False
        with self._lock:
            changed = token != self._token
            self._token = token
        return changed


class _TokenRotation:
    """Attaches the held token to requests and picks up rotated tokens.

    Mixed in ahead of a dispatcher class; overrides its _prepare/_observe hooks.
    """

    header_name: str
    token_store: TokenStore

    def _init_auth(self, token: str | TokenStore | None, header_name: str) -> None:
        self.header_name = header_name
        self.token_store = token if isinstance(token, TokenStore) else TokenStore(token)

    @property
    def token(self) -> str | None:
        return self.token_store.get()

    def _prepare(self, request: APIRequest, http_request: httpx.Request) -> None:
        token = self.token_store.get()
        # Headers set on the descriptor win over the held token
        if token and not request.has_header(self.header_name):
            http_request.headers[self.header_name] = token

    def _observe(self, response: RawResponse) -> None:
        value = response.header(self.header_name)
        if value and self.token_store.rotate(value):
            logger.debug("Rotated %s token from response headers", self.header_name)


# =============================================================================
# Dispatchers
# =============================================================================


class _DispatcherBase:
    def __init__(self, codec: JSONCodec | None) -> None:
        self._codec = codec or JSONCodec()

    @property
    def codec(self) -> JSONCodec:
        return self._codec

    def _prepare(self, request: APIRequest, http_request: httpx.Request) -> None:
        """Hook run on the built request before it is sent."""

    def _observe(self, response: RawResponse) -> None:
        """Hook run on every response before it is classified."""

    def _build(self, request: APIRequest) -> httpx.Request:
        http_request = request.build_request(self._client)
        self._prepare(request, http_request)
        logger.debug("Dispatching %s %s", http_request.method, http_request.url)
        return http_request

    def _received(self, response: Any, elapsed_ms: float) -> RawResponse:
        raw = to_raw_response(response, elapsed_ms)
        logger.debug("Received status %s in %.1f ms", raw.status_code, elapsed_ms)
        self._observe(raw)
        return raw


class APIDispatcher(_DispatcherBase):
    """Executes request descriptors on an httpx.Client.

    Usage:
        dispatcher = APIDispatcher()
        result = dispatcher.dispatch(GetUser(user_id=42))
        print(result.body.name, result.status_code)

    With no client the process-wide shared client is used, and close()
    leaves it open. A client created by from_config() is owned and closed.
    """

    def __init__(self, client: httpx.Client | None = None, codec: JSONCodec | None = None) -> None:
        super().__init__(codec)
        self._client = client if client is not None else shared_client()
        self._owns_client = False

    @classmethod
    def from_config(cls, config: DispatcherConfig, **kwargs: Any) -> "APIDispatcher":
        """Create a dispatcher that owns a client built from config."""
        dispatcher = cls(
            client=create_client(config),
            codec=JSONCodec(date_strategy=config.date_strategy),
            **kwargs,
        )
        dispatcher._owns_client = True
        return dispatcher

    def __enter__(self) -> "APIDispatcher":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this dispatcher owns it."""
        if self._owns_client:
            self._client.close()

    def _execute(self, request: APIRequest) -> RawResponse:
        """Build, send and convert one request.

        Raises:
            UrlCompositionError, EncodingError: Before anything is sent.
            TransportError: If the send fails.
            InvalidResponseError: If no status code came back.
        """
        http_request = self._build(request)
        try:
            start_time = time.perf_counter()
            response = self._client.send(http_request)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.HTTPError as e:
            raise _transport_error(http_request, e) from e
        return self._received(response, elapsed_ms)

    def dispatch(self, request: APIRequest[Any, Any, Any]) -> DecodedResponse:
        """Execute request and decode the body as its response_body_type."""
        return classify(request, self._execute(request), self._codec)

    def dispatch_raw(self, request: APIRequest[Any, Any, Any]) -> RawResponse:
        """Execute request and return the undecoded response.

        Only the failing set is consulted; any other status is returned.
        """
        response = self._execute(request)
        check_failure(request, response, self._codec)
        return response

    def send(self, request: APIRequest[Any, Any, Any]) -> None:
        """Execute request, discarding the body of a successful response."""
        check_success(request, self._execute(request), self._codec)


class AsyncAPIDispatcher(_DispatcherBase):
    """Executes request descriptors on an httpx.AsyncClient.

    Usage:
        async with AsyncAPIDispatcher() as dispatcher:
            result = await dispatcher.dispatch(GetUser(user_id=42))

    With no client a new AsyncClient is created and owned by the dispatcher.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        codec: JSONCodec | None = None,
    ) -> None:
        super().__init__(codec)
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()

    @classmethod
    def from_config(cls, config: DispatcherConfig, **kwargs: Any) -> "AsyncAPIDispatcher":
        """Create a dispatcher that owns an async client built from config."""
        dispatcher = cls(
            client=create_async_client(config),
            codec=JSONCodec(date_strategy=config.date_strategy),
            **kwargs,
        )
        dispatcher._owns_client = True
        return dispatcher

    async def __aenter__(self) -> "AsyncAPIDispatcher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this dispatcher owns it."""
        if self._owns_client:
            await self._client.aclose()

    async def _execute(self, request: APIRequest) -> RawResponse:
        http_request = self._build(request)
        try:
            start_time = time.perf_counter()
            response = await self._client.send(http_request)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.HTTPError as e:
            raise _transport_error(http_request, e) from e
        return self._received(response, elapsed_ms)

    async def dispatch(self, request: APIRequest[Any, Any, Any]) -> DecodedResponse:
        """Execute request and decode the body as its response_body_type."""
        return classify(request, await self._execute(request), self._codec)

    async def dispatch_raw(self, request: APIRequest[Any, Any, Any]) -> RawResponse:
        """Execute request and return the undecoded response."""
        response = await self._execute(request)
        check_failure(request, response, self._codec)
        return response

    async def send(self, request: APIRequest[Any, Any, Any]) -> None:
        """Execute request, discarding the body of a successful response."""
        check_success(request, await self._execute(request), self._codec)


class AuthenticatedAPIDispatcher(_TokenRotation, APIDispatcher):
    """APIDispatcher that sends a rotating auth token.

    The held token goes out under header_name. Whenever a response carries
    the same header, its value becomes the new token, whatever the status.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        codec: JSONCodec | None = None,
        token: str | TokenStore | None = None,
        header_name: str = "Authorization",
    ) -> None:
        super().__init__(client=client, codec=codec)
        self._init_auth(token, header_name)

    @classmethod
    def from_config(cls, config: DispatcherConfig, **kwargs: Any) -> "AuthenticatedAPIDispatcher":
        kwargs.setdefault("token", config.auth_token)
        kwargs.setdefault("header_name", config.auth_header)
        return super().from_config(config, **kwargs)


class AsyncAuthenticatedAPIDispatcher(_TokenRotation, AsyncAPIDispatcher):
    """AsyncAPIDispatcher that sends a rotating auth token."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        codec: JSONCodec | None = None,
        token: str | TokenStore | None = None,
        header_name: str = "Authorization",
    ) -> None:
        super().__init__(client=client, codec=codec)
        self._init_auth(token, header_name)

    @classmethod
    def from_config(
        cls, config: DispatcherConfig, **kwargs: Any
    ) -> "AsyncAuthenticatedAPIDispatcher":
        kwargs.setdefault("token", config.auth_token)
        kwargs.setdefault("header_name", config.auth_header)
        return super().from_config(config, **kwargs)
