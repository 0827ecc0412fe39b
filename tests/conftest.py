import asyncio
import json
from typing import Any, Dict, Iterable, List

import httpx
import pytest
from fastapi.testclient import TestClient
from loguru import logger

from chatstream.client.chat_client import ChatClient
from chatstream.server.backends import ChatBackend
from chatstream.server.emitter import encode_event
from chatstream.server.main import create_app

BASE_URL = "http://test"
HANG = object()


class FakeBackend(ChatBackend):
    """Deterministic backend: replays statuses, tool results and tokens."""

    def __init__(
        self,
        tokens: Iterable[str] = ("Hi", " there"),
        answer: str | None = None,
        statuses: Iterable[tuple] = (("Thinking", "analysis"),),
        tool_results: Iterable[tuple] = (),
        error: Exception | None = None,
        title: str = "Greeting chat",
        title_error: Exception | None = None,
    ):
        self.tokens = list(tokens)
        self.answer = answer
        self.statuses = list(statuses)
        self.tool_results = list(tool_results)
        self.error = error
        self.title = title
        self.title_error = title_error
        self.calls: List[tuple] = []
        self.reset_count = 0

    async def ask(self, message, options, on_status=None, on_token=None, on_tool_executed=None):
        self.calls.append((message, options))
        if options.get("stateless"):
            if self.title_error:
                raise self.title_error
            return {"answer": f'"Title: {self.title}"', "usage": {}, "model": "fake"}

        for status_message, step in self.statuses:
            await on_status(status_message, step)
        for tool_name, tool_result in self.tool_results:
            await on_tool_executed(tool_name, tool_result)
        for token in self.tokens:
            await on_token(token)
        if self.error:
            raise self.error
        return {
            "answer": self.answer if self.answer is not None else "".join(self.tokens),
            "usage": {"prompt_tokens": 3, "completion_tokens": 2},
            "model": "fake",
            "debug_id": "dbg-1",
        }

    async def reset(self):
        self.reset_count += 1


class ScriptedTransport:
    """
    httpx MockTransport handler. Serves the CSRF token endpoint and replays
    one scripted NDJSON body per chat request, chunk by chunk.
    """

    def __init__(self, bodies: Iterable[List[Any]] = (), token: str = "tok-1", token_status: int = 200,
                 chat_status: int = 200, error_body: str = ""):
        self.bodies = list(bodies)
        self.token = token
        self.token_status = token_status
        self.chat_status = chat_status
        self.error_body = error_body
        self.token_requests = 0
        self.chat_requests: List[httpx.Request] = []
        self.other_requests: List[httpx.Request] = []
        self.responses: Dict[str, httpx.Response] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/csrf-token"):
            self.token_requests += 1
            return httpx.Response(self.token_status, json={"token": self.token})
        if path.endswith("/chat"):
            self.chat_requests.append(request)
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text=self.error_body)
            chunks = self.bodies.pop(0) if self.bodies else []
            return httpx.Response(
                200,
                headers={"content-type": "application/x-ndjson"},
                content=self._stream(chunks),
            )
        self.other_requests.append(request)
        for suffix, response in self.responses.items():
            if path.endswith(suffix):
                return response
        return httpx.Response(404, json={"detail": "not found"})

    async def _stream(self, chunks):
        for chunk in chunks:
            if chunk is HANG:
                await asyncio.sleep(3600)
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk


def line(event_type: str, payload: Any = None) -> bytes:
    return encode_event(event_type, payload)


def parse_ndjson(body: str) -> List[Dict[str, Any]]:
    return [json.loads(l) for l in body.split("\n") if l.strip().startswith("{")]


def make_chat_client(transport: ScriptedTransport, **kwargs) -> ChatClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return ChatClient(BASE_URL, http=http, **kwargs)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def app(fake_backend):
    return create_app(backend=fake_backend, csrf_enabled=True)


@pytest.fixture
def api(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def csrf_headers(api) -> Dict[str, str]:
    token = api.get("/api/csrf-token").json()["token"]
    return {"X-CSRF-Token": token}


@pytest.fixture
def log_records():
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)
