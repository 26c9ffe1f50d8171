"""Request descriptor - Declarative description of one HTTP call.

An APIRequest fully determines the httpx.Request to send without doing
any I/O. Endpoints are usually declared as subclasses that pin the fixed
parts (base URL, path, method, status codes, body types) as defaults:

    @dataclass(kw_only=True)
    class GetUser(APIRequest[None, User, ApiError]):
        user_id: int
        base_url_path: str = "https://api.example.com"
        method: HTTPMethod = HTTPMethod.GET
        success_status_codes: Collection[int] = (200,)
        failing_status_codes: Collection[int] = (400, 404)
        response_body_type: Any = User
        error_body_type: Any = ApiError

        def __post_init__(self) -> None:
            self.path = f"/users/{self.user_id}"
            super().__post_init__()
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import httpx

from cosy_network.codec import EncodingError, JSONCodec
from cosy_network.models import CachePolicy, HTTPMethod

BodyT = TypeVar("BodyT")
ResponseT = TypeVar("ResponseT")
ErrorT = TypeVar("ErrorT")

HeaderInput = Mapping[str, str] | Iterable[tuple[str, str]]


class _NoBody:
    """Marker for a descriptor that sends no body."""

    def __repr__(self) -> str:
        return "NO_BODY"


NO_BODY: Any = _NoBody()


class UrlCompositionError(Exception):
    """Raised when a descriptor cannot be turned into an absolute URL.

    reason is "components" when base URL + path does not parse, and "url"
    when the parsed components do not form an absolute http(s) URL.
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(kw_only=True)
class APIRequest(Generic[BodyT, ResponseT, ErrorT]):
    """One outbound HTTP call.

    Header and query parameter order is preserved. Headers are added, not
    replaced, so repeated names reach the wire in addition order.
    """

    base_url_path: str
    path: str = ""
    method: HTTPMethod = HTTPMethod.GET
    success_status_codes: Collection[int] = ()
    failing_status_codes: Collection[int] = ()
    query_parameters: Mapping[str, str] | None = None
    request_headers: HeaderInput | None = None
    caching_policy: CachePolicy = CachePolicy.RELOAD_IGNORING_CACHE_DATA
    body: BodyT = NO_BODY
    response_body_type: Any = Any
    error_body_type: Any = Any
    encoder: JSONCodec = field(default_factory=JSONCodec)

    def __post_init__(self) -> None:
        if not isinstance(self.method, HTTPMethod):
            self.method = HTTPMethod(str(self.method).upper())
        self._added_headers: list[tuple[str, str]] = []

    @property
    def has_body(self) -> bool:
        return self.body is not NO_BODY

    @property
    def headers(self) -> list[tuple[str, str]]:
        """request_headers followed by add_header additions, in order (a copy)."""
        headers: list[tuple[str, str]] = []
        if self.request_headers is not None:
            items = (
                self.request_headers.items()
                if isinstance(self.request_headers, Mapping)
                else self.request_headers
            )
            headers.extend((name, value) for name, value in items)
        headers.extend(self._added_headers)
        return headers

    def add_header(self, name: str, value: str) -> None:
        """Add a header, keeping any existing values of the same name."""
        self._added_headers.append((name, value))

    def has_header(self, name: str) -> bool:
        lower = name.lower()
        return any(key.lower() == lower for key, _ in self.headers)

    def build_url(self) -> httpx.URL:
        """Combine base URL, path and query parameters into one URL.

        Declared query parameters are appended after the query already present
        in the path, which is kept exactly as written. Nothing is deduplicated.

        Raises:
            UrlCompositionError: If the URL cannot be parsed or is not absolute.
        """
        raw = self.base_url_path + self.path
        try:
            url = httpx.URL(raw)
        except (httpx.InvalidURL, TypeError) as e:
            raise UrlCompositionError(
                f"Cannot parse URL components from {raw!r}: {e}", reason="components"
            ) from e

        if self.query_parameters:
            extra = str(httpx.QueryParams(list(self.query_parameters.items())))
            before_fragment, hash_sign, fragment = str(url).partition("#")
            if not url.query:
                joined = before_fragment.rstrip("?") + "?" + extra
            else:
                joined = before_fragment + "&" + extra
            try:
                url = httpx.URL(joined + hash_sign + fragment)
            except httpx.InvalidURL as e:
                raise UrlCompositionError(
                    f"Cannot create URL from {raw!r} with query parameters: {e}",
                    reason="url",
                ) from e

        if url.scheme not in ("http", "https") or not url.host:
            raise UrlCompositionError(
                f"Cannot create an absolute http(s) URL from {raw!r}", reason="url"
            )
        return url

    def build_request(
        self, client: httpx.Client | httpx.AsyncClient | None = None
    ) -> httpx.Request:
        """Build the httpx.Request this descriptor describes.

        Content-Type defaults to application/json only when a body is
        present and the caller did not set one. With a client, the request
        is built through it so the client's default headers and cookies are
        merged in (descriptor headers replace client headers of the same name).

        Raises:
            UrlCompositionError: If the URL cannot be composed.
            EncodingError: If the body cannot be serialized.
        """
        url = self.build_url()
        headers = self.headers

        cache_control = self.caching_policy.cache_control
        if cache_control is not None and not self.has_header("Cache-Control"):
            headers.append(("Cache-Control", cache_control))

        content: bytes | None = None
        if self.has_body:
            content = self.encoder.encode(self.body)
            if not self.has_header("Content-Type"):
                headers.append(("Content-Type", "application/json"))

        try:
            if client is not None:
                return client.build_request(
                    self.method.value, url, headers=headers, content=content
                )
            return httpx.Request(self.method.value, url, headers=headers, content=content)
        except UnicodeEncodeError as e:
            # HTTP header names and values must be ASCII
            raise EncodingError(
                f"Cannot encode request headers: {e.object[e.start:e.end]!r} is not ASCII"
            ) from e
