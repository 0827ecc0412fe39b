"""
MODULE OVERVIEW:
The producer side of the NDJSON protocol.

WHAT IS HAPPENING HERE:
Every lifecycle event becomes exactly one line: `{"type": ..., "payload": ...}`
followed by `\n`. Each line is queued as its own chunk, and Starlette writes
each chunk to the socket as soon as it is yielded, so the user sees tokens
as fast as the model produces them. Nothing is batched.

Before the first event we send a ~2KB comment line. Proxies and browsers
often hold back the first few kilobytes of a response; the pad pushes the
stream past those thresholds. It starts with ":" so clients drop it as
noise.

The response headers turn off every layer that could buffer or decorate the
body: HTTP caches, nginx (`X-Accel-Buffering: no`) and debug toolbars.

Order on the wire: status* , (delta | tool_executed)* , result | error , title?
The emitter refuses anything after the terminal event except that one title.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Set
from fastapi.responses import StreamingResponse
from loguru import logger

from chatstream.shared.config import settings
from chatstream.shared.errors import EmitterClosedError

NDJSON_MEDIA_TYPE = "application/x-ndjson"

NDJSON_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "X-Debug-Token": "disabled",
}

GENERIC_STREAM_ERROR = "❌ System error: an unexpected error occurred."

# Producer tasks still running; the app lifespan cancels them on shutdown.
stream_tasks: Set[asyncio.Task] = set()


def padding_line(size: int = settings.PADDING_BYTES) -> bytes:
    return (":" + " " * size + "\n").encode("ascii")


def encode_event(event_type: str, payload: Any) -> bytes:
    line = json.dumps({"type": event_type, "payload": payload}, ensure_ascii=False, default=str)
    # Lone surrogates and other unencodable characters are replaced, never raised.
    return (line + "\n").encode("utf-8", errors="replace")


class NDJSONEmitter:
    def __init__(self, padding_bytes: int = settings.PADDING_BYTES):
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False
        self.terminal_type: str | None = None
        self.title_sent = False
        self.events_emitted = 0
        if padding_bytes > 0:
            self._queue.put_nowait(padding_line(padding_bytes))

    @property
    def terminated(self) -> bool:
        return self.terminal_type is not None

    def emit(self, event_type: str, payload: Any) -> None:
        if self._closed:
            raise EmitterClosedError(f"stream closed, cannot emit {event_type}")
        if self.terminated:
            if event_type != "title" or self.terminal_type != "result" or self.title_sent:
                raise EmitterClosedError(f"{event_type} after terminal {self.terminal_type}")
        elif event_type == "title":
            raise EmitterClosedError("title before the terminal event")

        if event_type in ("result", "error"):
            self.terminal_type = event_type
        elif event_type == "title":
            self.title_sent = True

        self._queue.put_nowait(encode_event(event_type, payload))
        self.events_emitted += 1

    def status(self, message: str, step: str) -> None:
        self.emit("status", {"message": message, "step": step})

    def delta(self, text: str) -> None:
        self.emit("delta", {"text": text})

    def tool_executed(self, tool: str, **fields: Any) -> None:
        self.emit("tool_executed", {"tool": tool, **fields})

    def result(self, result: dict) -> None:
        self.emit("result", result)

    def title(self, title: str) -> None:
        self.emit("title", {"title": title})

    def error(self, message: str) -> None:
        self.emit("error", message)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                break
            yield chunk


async def _run_producer(producer: Callable[[NDJSONEmitter], Awaitable[None]], emitter: NDJSONEmitter) -> None:
    try:
        await producer(emitter)
    except asyncio.CancelledError:
        logger.debug("event=stream_producer_cancelled")
        raise
    except Exception as e:
        logger.exception(f"event=stream_producer_failed error={e!r}")
        if not emitter.terminated:
            emitter.error(GENERIC_STREAM_ERROR)
    finally:
        emitter.close()


def ndjson_response(
    producer: Callable[[NDJSONEmitter], Awaitable[None]],
    padding_bytes: int = settings.PADDING_BYTES,
) -> StreamingResponse:
    """
    Streams whatever `producer` emits. The producer runs as its own task so a
    slow client never blocks it; if the client disconnects, the body
    generator is closed and the producer is cancelled.
    """
    emitter = NDJSONEmitter(padding_bytes)

    async def body() -> AsyncIterator[bytes]:
        task = asyncio.create_task(_run_producer(producer, emitter))
        stream_tasks.add(task)
        task.add_done_callback(stream_tasks.discard)
        try:
            async for chunk in emitter.chunks():
                yield chunk
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(body(), media_type=NDJSON_MEDIA_TYPE, headers=NDJSON_HEADERS)
