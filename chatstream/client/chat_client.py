"""
MODULE OVERVIEW:
The streaming chat client: one `send()` is one turn.

WHAT IS HAPPENING HERE:
We use the HTTPX `stream()` context manager to keep the response body open
and read it chunk by chunk. The raw bytes go through the FrameDecoder, each
line through the EventClassifier, and each surviving event through the
turn's EventDispatcher, strictly in arrival order. The StreamSupervisor
wraps the whole exchange in the timeout.
"""
import httpx
from loguru import logger

from chatstream.client.base_client import BaseApiClient
from chatstream.client.classifier import EventClassifier
from chatstream.client.csrf import CsrfTokenProvider
from chatstream.client.dispatcher import EventDispatcher, TurnOutcome, TurnPhase, TurnState
from chatstream.client.frame_decoder import iter_lines
from chatstream.client.memory_proposal import MemoryProposalPanel
from chatstream.client.supervisor import StreamSupervisor
from chatstream.client.view import ChatView, LocationState
from chatstream.shared.config import settings
from chatstream.shared.errors import ChatStreamError
from chatstream.shared.events import UiEventBus
from chatstream.shared.models import ChatOptions, ChatRequest, CostEstimate, CostEstimateRequest


class ChatClient(BaseApiClient):
    def __init__(
        self,
        server_base_url: str = settings.BASE_URL,
        http: httpx.AsyncClient | None = None,
        csrf: CsrfTokenProvider | None = None,
        view: ChatView | None = None,
        location: LocationState | None = None,
        bus: UiEventBus | None = None,
        persona: str | None = None,
        debug: bool = False,
        timeout_s: float = settings.STREAM_TIMEOUT_S,
    ):
        super().__init__(server_base_url, http, csrf)
        self.view = view or ChatView()
        self.location = location or LocationState()
        self.bus = bus or UiEventBus()
        self.persona = persona
        self.debug = debug
        self.timeout_s = timeout_s
        self.memory_panel = MemoryProposalPanel(self, self.view)
        self.current_turn: EventDispatcher | None = None
        self.last_classifier: EventClassifier | None = None

    @property
    def busy(self) -> bool:
        return self.current_turn is not None and self.current_turn.state.phase in (
            TurnPhase.LOADING, TurnPhase.STREAMING
        )

    async def send(self, message: str) -> TurnState | None:
        message = message.strip()
        if not message:
            return None
        if self.busy:
            logger.warning("event=send_rejected reason=turn_in_flight")
            return None

        self.view.add_message(message, "user")
        dispatcher = EventDispatcher(self.view, self.location, self.bus, self.memory_panel, self.debug)
        classifier = EventClassifier()
        self.current_turn = dispatcher
        self.last_classifier = classifier
        dispatcher.begin()

        body = ChatRequest(
            message=message,
            conversation_id=self.location.conversation_id,
            options=ChatOptions(persona=self.persona, debug=self.debug),
            debug=self.debug,
        ).model_dump()

        supervisor = StreamSupervisor(dispatcher, self.timeout_s)
        outcome = await supervisor.run(lambda: self._read_stream(body, dispatcher, classifier))
        logger.info(
            f"conversation_id={self.location.conversation_id} event=turn_done outcome={outcome} "
            f"accepted={classifier.accepted} noise={classifier.dropped_noise} invalid={classifier.dropped_invalid}"
        )
        return dispatcher.state

    async def _read_stream(self, body: dict, dispatcher: EventDispatcher, classifier: EventClassifier) -> None:
        headers = await self.mutating_headers()
        headers["Accept"] = "application/x-ndjson"

        async with self.http.stream("POST", self.api_url("/chat"), json=body, headers=headers) as response:
            if not response.is_success:
                raw = await response.aread()
                self.raise_for_failure(response.status_code, raw.decode("utf-8", errors="replace"))

            encoding = response.charset_encoding or "utf-8"
            async for line in iter_lines(response.aiter_bytes(), encoding):
                event = classifier.classify(line)
                if event is None:
                    continue
                await dispatcher.dispatch(event)
                if dispatcher.state.outcome is TurnOutcome.ERROR:
                    break

    async def new_conversation(self) -> bool:
        """Clears server-side turn state, then the local transcript."""
        try:
            data = await self.request_json("POST", "/reset", mutating=True)
        except (ChatStreamError, httpx.HTTPError, ValueError) as e:
            logger.error(f"event=reset_failed error={e!r}")
            return False
        if not data.get("success"):
            logger.error(f"event=reset_failed error={data.get('error', 'Reset failed')!r}")
            return False

        self.memory_panel.dismiss()
        self.view.clear()
        self.location.conversation_id = None
        self.current_turn = None
        return True

    async def estimate_cost(self, message: str) -> CostEstimate:
        body = CostEstimateRequest(message=message, conversation_id=self.location.conversation_id)
        data = await self.request_json("POST", "/estimate-cost", json=body.model_dump())
        return CostEstimate.model_validate(data)
