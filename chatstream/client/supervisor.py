"""
MODULE OVERVIEW:
Owns the abort/timeout policy around one streamed turn.

WHAT IS HAPPENING HERE:
The whole exchange runs under a single wall-clock deadline. If it expires,
`asyncio.wait_for` cancels the read (closing the HTTP stream) and the turn
concludes with the timeout bubble. If the stream finishes first, the
deadline simply disappears with the finished `wait_for`, so it can never
fire twice. A deadline that expires after `result` while the read is still
waiting for the optional `title` just stops the read: the turn stays a result.
Whatever the exit path, the `finally` block releases the UI.
"""
import asyncio
from typing import Awaitable, Callable
from loguru import logger

from chatstream.client.base_client import describe_transport_error
from chatstream.client.dispatcher import EventDispatcher, TurnOutcome
from chatstream.shared.config import settings


class StreamSupervisor:
    def __init__(self, dispatcher: EventDispatcher, timeout_s: float = settings.STREAM_TIMEOUT_S):
        self.dispatcher = dispatcher
        self.timeout_s = timeout_s
        self.timed_out = False

    async def run(self, read_loop: Callable[[], Awaitable[None]]) -> TurnOutcome | None:
        try:
            await asyncio.wait_for(read_loop(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            if self.dispatcher.state.terminated:
                # Only the optional title was still pending; the turn is already over.
                logger.debug(f"event=title_wait_abandoned timeout_s={self.timeout_s}")
                return self.dispatcher.state.outcome
            self.timed_out = True
            logger.error(f"event=stream_timeout timeout_s={self.timeout_s}")
            self.dispatcher.timeout()
        except Exception as e:
            logger.error(f"event=stream_failed error={e!r}")
            self.dispatcher.fail_transport(describe_transport_error(e))
        else:
            self.dispatcher.finish()
        finally:
            self.dispatcher.release()
        return self.dispatcher.state.outcome
