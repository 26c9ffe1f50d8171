"""Pytest configuration and fixtures for cosy-network tests.

This file provides:
- RecordingHandler: httpx.MockTransport handler that records requests and
  replies with canned responses
- Fixtures: clients and dispatchers wired to a RecordingHandler
"""

from __future__ import annotations

from typing import Any, Callable, Generator

import httpx
import pytest

from cosy_network.dispatcher import APIDispatcher


class RecordingHandler:
    """MockTransport handler that records every request it receives.

    Each reply is built fresh for the request, so one handler can serve any
    number of requests. The last queued reply repeats.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._queue: list[Callable[[httpx.Request], httpx.Response]] = []
        self.respond(200, json={})

    def respond(
        self,
        status_code: int = 200,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Queue a single canned response, replacing any queued ones."""
        self._queue = []
        self.then(status_code, json=json, content=content, headers=headers)

    def then(
        self,
        status_code: int = 200,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Queue a response after the ones already queued."""

        def reply(request: httpx.Request) -> httpx.Response:
            if content is None and json is not None:
                return httpx.Response(status_code, json=json, headers=headers)
            return httpx.Response(status_code, content=content or b"", headers=headers)

        self._queue.append(reply)

    def reply_with(self, reply: Callable[[httpx.Request], httpx.Response]) -> None:
        """Answer every request with reply(request)."""
        self._queue = [reply]

    def fail_with(self, error: Exception) -> None:
        def reply(request: httpx.Request) -> httpx.Response:
            raise error

        self._queue = [reply]

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self._queue) - 1)
        return self._queue[index](request)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def client(handler: RecordingHandler) -> Generator[httpx.Client, None, None]:
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    try:
        yield http_client
    finally:
        http_client.close()


@pytest.fixture
def async_client_factory(
    handler: RecordingHandler,
) -> Callable[[], httpx.AsyncClient]:
    """Build an AsyncClient on the handler. Create it inside the running loop."""

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def dispatcher(client: httpx.Client) -> APIDispatcher:
    return APIDispatcher(client=client)
