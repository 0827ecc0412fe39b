"""
MODULE OVERVIEW:
The turn state machine: classified events in, visible state out.

WHAT IS HAPPENING HERE:
One dispatcher owns one turn. Its `TurnState` moves through
IDLE -> LOADING -> STREAMING -> TERMINATED and nothing else writes to it.

  status         -> progress label, text untouched
  delta          -> first one swaps the indicator for a bubble; text is
                    appended and the whole answer re-rendered every time
  tool_executed  -> side channel (memory proposal), state does not move
  result         -> authoritative final text, conversation id reconciled
  title          -> conversation label, only once an id is known
  error          -> failure bubble, partial answer removed

Every turn concludes visibly: result, error, timeout, transport failure, or
the "no response" failure when the stream just stops. After that, late
events are logged and dropped. The one exception is `title`, which the
server sends after `result` on purpose.
"""
from dataclasses import dataclass
from enum import Enum
from loguru import logger

from chatstream.client.memory_proposal import MemoryProposalPanel
from chatstream.client.view import ChatMessage, ChatView, LocationState
from chatstream.shared.events import CONVERSATION_CREATED, TITLE_UPDATED, UiEventBus
from chatstream.shared.models import (
    MEMORY_PROPOSAL_TOOL,
    DeltaEvent,
    ErrorEvent,
    ResultEvent,
    StatusEvent,
    StreamEvent,
    TitleEvent,
    ToolExecutedEvent,
    UnknownEvent,
)

TIMEOUT_MESSAGE = "⏱️ Timeout: the server stopped responding. Please try again."
NO_RESPONSE_MESSAGE = (
    "No response received. Check the AI configuration (model, API key) and the server logs."
)
NEW_CONVERSATION_TITLE = "New conversation"


class TurnPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class TurnOutcome(str, Enum):
    RESULT = "result"
    ERROR = "error"
    TIMEOUT = "timeout"
    NO_RESPONSE = "no_response"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class TurnState:
    phase: TurnPhase = TurnPhase.IDLE
    accumulated_text: str = ""
    bubble: ChatMessage | None = None
    outcome: TurnOutcome | None = None
    status_label: str | None = None
    conversation_id: str | None = None
    ignored_events: int = 0

    @property
    def bubble_created(self) -> bool:
        return self.bubble is not None

    @property
    def terminated(self) -> bool:
        return self.phase is TurnPhase.TERMINATED


class EventDispatcher:
    def __init__(
        self,
        view: ChatView,
        location: LocationState,
        bus: UiEventBus,
        memory_panel: MemoryProposalPanel | None = None,
        debug: bool = False,
    ):
        self.view = view
        self.location = location
        self.bus = bus
        self.memory_panel = memory_panel
        self.debug = debug
        self.state = TurnState(conversation_id=location.conversation_id)

    def begin(self) -> None:
        if self.state.phase is not TurnPhase.IDLE:
            raise RuntimeError(f"turn already started phase={self.state.phase.value}")
        self.state.phase = TurnPhase.LOADING
        self.view.set_loading(True)

    async def dispatch(self, event: StreamEvent) -> None:
        state = self.state
        if state.terminated and not self._accepts_after_termination(event):
            state.ignored_events += 1
            logger.debug(f"event=late_event_ignored type={event.type} outcome={state.outcome}")
            return

        if isinstance(event, StatusEvent):
            self._on_status(event)
        elif isinstance(event, DeltaEvent):
            self._on_delta(event)
        elif isinstance(event, ToolExecutedEvent):
            self._on_tool_executed(event)
        elif isinstance(event, ResultEvent):
            await self._on_result(event)
        elif isinstance(event, TitleEvent):
            await self._on_title(event)
        elif isinstance(event, ErrorEvent):
            self._fail(TurnOutcome.ERROR, f"❌ {event.text}")
        elif isinstance(event, UnknownEvent):
            logger.warning(f"event=unknown_event_type type={event.type} reason={event.reason}")
        else:
            logger.warning(f"event=unhandled_event class={type(event).__name__}")

    def _accepts_after_termination(self, event: StreamEvent) -> bool:
        return isinstance(event, TitleEvent) and self.state.outcome is TurnOutcome.RESULT

    # ==========================
    # EVENT HANDLERS
    # ==========================
    def _on_status(self, event: StatusEvent) -> None:
        if event.payload.message:
            self.state.status_label = event.payload.message
            self.view.update_loading_status(event.payload.message)

    def _on_delta(self, event: DeltaEvent) -> None:
        state = self.state
        if state.bubble is None:
            self.view.set_loading(False)
            state.bubble = self.view.add_message("", "assistant")
            state.phase = TurnPhase.STREAMING
        if not event.payload.text:
            return
        state.accumulated_text += event.payload.text
        self.view.set_markdown(state.bubble, state.accumulated_text)

    def _on_tool_executed(self, event: ToolExecutedEvent) -> None:
        payload = event.payload
        if payload.tool == MEMORY_PROPOSAL_TOOL and self.memory_panel is not None:
            proposal = payload.proposal
            if proposal is None and "fact" in (payload.model_extra or {}):
                proposal = dict(payload.model_extra)
            if proposal is not None:
                self.memory_panel.show(proposal, payload.conversation_id)
                return
        logger.debug(f"event=tool_executed_ignored tool={payload.tool}")

    async def _on_result(self, event: ResultEvent) -> None:
        state = self.state
        payload = event.payload
        self._terminate(TurnOutcome.RESULT)

        if payload.conversation_id:
            await self._reconcile_conversation(str(payload.conversation_id))

        if payload.answer:
            if state.bubble is not None:
                self.view.set_markdown(state.bubble, payload.answer)
            else:
                state.bubble = self.view.add_message(payload.answer, "assistant")
            state.accumulated_text = payload.answer
        # Without an answer the last incremental render stays as the final text.

        if self.debug and payload.debug_id and state.bubble is not None:
            state.bubble.debug_id = payload.debug_id

    async def _on_title(self, event: TitleEvent) -> None:
        conversation_id = self.location.conversation_id
        if not conversation_id or not event.payload.title:
            logger.debug("event=title_ignored reason=no_conversation")
            return
        await self.bus.publish(TITLE_UPDATED, {"conversation_id": conversation_id, "title": event.payload.title})

    async def _reconcile_conversation(self, conversation_id: str) -> None:
        self.state.conversation_id = conversation_id
        if self.location.reconcile(conversation_id):
            logger.info(f"conversation_id={conversation_id} event=conversation_created")
            await self.bus.publish(
                CONVERSATION_CREATED,
                {"conversation_id": conversation_id, "title": NEW_CONVERSATION_TITLE},
            )

    # ==========================
    # TERMINATION
    # ==========================
    def finish(self) -> None:
        """The stream ended. Without a terminal event this is a failure."""
        if not self.state.terminated:
            self._fail(TurnOutcome.NO_RESPONSE, NO_RESPONSE_MESSAGE)

    def timeout(self) -> None:
        if not self.state.terminated:
            self._fail(TurnOutcome.TIMEOUT, TIMEOUT_MESSAGE)

    def fail_transport(self, message: str) -> None:
        if not self.state.terminated:
            self._fail(TurnOutcome.TRANSPORT_ERROR, f"❌ Error: {message}")

    def release(self) -> None:
        """Clears the indicator and re-enables input, whatever happened."""
        self.view.set_loading(False)

    def _fail(self, outcome: TurnOutcome, message: str) -> None:
        state = self.state
        self._terminate(outcome)
        if state.bubble is not None:
            self.view.remove_message(state.bubble)
            state.bubble = None
        self.view.add_message(message, "assistant", kind="failure")
        logger.warning(f"event=turn_failed outcome={outcome.value} message={message!r}")

    def _terminate(self, outcome: TurnOutcome) -> None:
        self.state.phase = TurnPhase.TERMINATED
        self.state.outcome = outcome
        self.view.set_loading(False)
