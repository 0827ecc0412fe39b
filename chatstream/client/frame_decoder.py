"""
MODULE OVERVIEW:
Turns the raw NDJSON response body into text lines.

WHAT IS HAPPENING HERE:
The transport hands us chunks of arbitrary size. A chunk may end in the middle
of a line, or even in the middle of a multi-byte UTF-8 character. We keep an
incremental decoder for the bytes and a single pending string for the
unterminated tail. Every complete line leaves the buffer as soon as its `\n`
arrives, so there is never more than one partial line buffered.
Streams do not always end with a newline: `finish()` hands back the tail once.
"""
import codecs
from typing import AsyncIterator, List


class FrameDecoder:
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self._finished = False

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes | str) -> List[str]:
        """Accepts one transport chunk and returns the lines it completed."""
        if self._finished:
            raise RuntimeError("FrameDecoder.feed() called after finish()")
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        segments = (self._pending + text).split("\n")
        self._pending = segments.pop()
        return [line for line in segments if line.strip()]

    def finish(self) -> List[str]:
        """Flushes the decoder and returns the unterminated final line, once."""
        if self._finished:
            return []
        self._finished = True
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [line for line in tail.split("\n") if line.strip()]


async def iter_lines(chunks: AsyncIterator[bytes], encoding: str = "utf-8") -> AsyncIterator[str]:
    """Drives a FrameDecoder over an async byte iterator, final line included."""
    decoder = FrameDecoder(encoding)
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.finish():
        yield line
