"""
MODULE OVERVIEW:
This module defines the typed data structures shared by the chat server and
its streaming client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
The NDJSON stream carries exactly six kinds of events. Each kind is its own
model, and together they form a union discriminated by the `type` field.
Anything the server sends that we do not know yet becomes an `UnknownEvent`,
so a newer server never crashes an older client.
The REST request/response bodies for the companion endpoints live here too.
"""
import json
from typing import Annotated, Any, Literal, Union
from datetime import datetime, timezone
from uuid import uuid4
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

KNOWN_EVENT_TYPES = ("status", "delta", "tool_executed", "result", "title", "error")

MEMORY_PROPOSAL_TOOL = "propose_to_remember"
MEMORY_PROPOSAL_ACTION = "memory_proposal"


# ==========================
# STREAM PAYLOADS
# ==========================
class StatusPayload(BaseModel):
    message: str = ""
    step: str = ""

class DeltaPayload(BaseModel):
    text: str = ""

# WHAT IS HAPPENING HERE:
# Tool notifications carry tool-specific fields, so unknown keys are kept.
# A memory proposal arrives under `proposal` as {fact, category, ...}.
class ToolExecutedPayload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    tool: str = ""
    proposal: dict[str, Any] | None = None
    conversation_id: str | None = None

# `result` ends the turn, so its fields are read leniently: numeric ids become
# strings and a missing or null `usage` becomes {}.
class ResultPayload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    answer: str | None = None
    conversation_id: str | None = None
    debug_id: str | None = None
    usage: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None

    @field_validator("usage", mode="before")
    @classmethod
    def _usage_or_empty(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

class TitlePayload(BaseModel):
    title: str = ""


# ==========================
# STREAM EVENTS
# ==========================
class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    payload: StatusPayload = Field(default_factory=StatusPayload)

class DeltaEvent(BaseModel):
    type: Literal["delta"] = "delta"
    payload: DeltaPayload = Field(default_factory=DeltaPayload)

class ToolExecutedEvent(BaseModel):
    type: Literal["tool_executed"] = "tool_executed"
    payload: ToolExecutedPayload = Field(default_factory=ToolExecutedPayload)

class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    payload: ResultPayload = Field(default_factory=ResultPayload)

class TitleEvent(BaseModel):
    type: Literal["title"] = "title"
    payload: TitlePayload = Field(default_factory=TitlePayload)

class ErrorEvent(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    type: Literal["error"] = "error"
    # A bare string or {"message": ...}; older servers put `message` at top level.
    payload: Any = None
    message: str | None = None

    @property
    def text(self) -> str:
        payload = self.payload
        if isinstance(payload, str) and payload:
            return payload
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        if self.message:
            return self.message
        if payload:
            return json.dumps(payload, ensure_ascii=False, default=str)
        return "Unknown error"

class UnknownEvent(BaseModel):
    """Sentinel for event types this client does not understand."""
    type: str
    payload: Any = None
    reason: str = "unknown type"


KnownEvent = Annotated[
    Union[StatusEvent, DeltaEvent, ToolExecutedEvent, ResultEvent, TitleEvent, ErrorEvent],
    Field(discriminator="type"),
]
StreamEvent = Union[StatusEvent, DeltaEvent, ToolExecutedEvent, ResultEvent, TitleEvent, ErrorEvent, UnknownEvent]

_known_event_adapter = TypeAdapter(KnownEvent)


def parse_stream_event(obj: dict[str, Any]) -> StreamEvent:
    """
    Turns a decoded JSON object (already known to carry a `type`) into a typed event.
    Never raises: unknown types and malformed payloads degrade to `UnknownEvent`,
    except `result` and `error`, which still end the turn with their unreadable
    fields dropped.
    """
    event_type = obj.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        return UnknownEvent(type=str(event_type), payload=obj.get("payload"))
    try:
        return _known_event_adapter.validate_python(obj)
    except ValidationError as e:
        logger.warning(f"event=invalid_payload type={event_type} errors={e.error_count()}")
        if event_type == "result":
            return ResultEvent()
        if event_type == "error":
            return ErrorEvent(payload=obj.get("payload"))
        return UnknownEvent(type=event_type, payload=obj.get("payload"), reason="invalid payload")


# ==========================
# REQUEST / RESPONSE BODIES
# ==========================
class ChatOptions(BaseModel):
    model_config = ConfigDict(extra="allow")

    persona: str | None = None
    debug: bool = False

# WHAT IS HAPPENING HERE:
# `debug` is sent both at top level and inside `options`; the top-level flag wins.
class ChatRequest(BaseModel):
    message: str = ""
    conversation_id: str | None = None
    options: ChatOptions = Field(default_factory=ChatOptions)
    debug: bool | None = None

    @property
    def debug_enabled(self) -> bool:
        return self.debug if self.debug is not None else self.options.debug

class CsrfTokenResponse(BaseModel):
    token: str

class ResetResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None

class CostEstimateRequest(BaseModel):
    message: str = ""
    conversation_id: str | None = None

class CostEstimate(BaseModel):
    prompt_tokens: int = 0
    estimated_output_tokens: int = 2048
    cost_model_currency: float = 0.0
    cost_reference: float = 0.0
    currency: str = "USD"

class ConversationSummary(BaseModel):
    id: str
    title: str | None = None
    created_at: datetime
    updated_at: datetime
    status: Literal["active", "deleted"] = "active"
    message_count: int = 0

class MessageRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "model"]
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tokens: int = 0

class RenameRequest(BaseModel):
    title: str = ""

class MemoryConfirmRequest(BaseModel):
    fact: str
    category: str = "other"
    scope: Literal["conversation", "user"]
    conversation_id: str | None = None
