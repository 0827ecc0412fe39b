"""
Exception types shared by the server and the client.
"""


class ChatStreamError(Exception):
    """Base class for every error raised by chatstream."""


class TransportFailure(ChatStreamError):
    """A request failed before (or instead of) producing a stream body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthenticationRequired(TransportFailure):
    """401/403: the caller must reauthenticate (and drop its CSRF token)."""


class EmitterClosedError(ChatStreamError):
    """An event was emitted after the stream's terminal event."""


# Server-side LLM taxonomy. Backends raise these so the chat turn can map
# them to a readable `error` event.
class LlmError(ChatStreamError):
    pass


class LlmAuthenticationError(LlmError):
    pass


class LlmQuotaError(LlmError):
    pass


class LlmRateLimitError(LlmError):
    pass


class LlmServiceUnavailableError(LlmError):
    pass
