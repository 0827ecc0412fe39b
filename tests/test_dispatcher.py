import pytest

from chatstream.client.classifier import EventClassifier
from chatstream.client.dispatcher import (
    NO_RESPONSE_MESSAGE,
    TIMEOUT_MESSAGE,
    EventDispatcher,
    TurnOutcome,
    TurnPhase,
)
from chatstream.client.view import THINKING_LABEL, ChatView, LocationState
from chatstream.shared.events import CONVERSATION_CREATED, TITLE_UPDATED, UiEventBus
from chatstream.shared.models import (
    DeltaEvent,
    ErrorEvent,
    ResultEvent,
    StatusEvent,
    TitleEvent,
    ToolExecutedEvent,
    UnknownEvent,
)


class FakePanel:
    def __init__(self):
        self.shown = []

    def show(self, proposal, conversation_id=None):
        self.shown.append((proposal, conversation_id))
        return True


class Harness:
    def __init__(self, conversation_id=None, debug=False):
        self.view = ChatView()
        self.location = LocationState(conversation_id)
        self.bus = UiEventBus()
        self.panel = FakePanel()
        self.published = []
        for topic in (CONVERSATION_CREATED, TITLE_UPDATED):
            self.bus.subscribe(topic, self._recorder(topic))
        self.dispatcher = EventDispatcher(self.view, self.location, self.bus, self.panel, debug=debug)
        self.dispatcher.begin()

    def _recorder(self, topic):
        async def record(detail):
            self.published.append((topic, detail))
        return record

    @property
    def state(self):
        return self.dispatcher.state

    def assistant_texts(self):
        return [m.text for m in self.view.assistant_messages()]


def status(message, step="analysis"):
    return StatusEvent(payload={"message": message, "step": step})


def delta(text):
    return DeltaEvent(payload={"text": text})


def result(answer=None, **extra):
    return ResultEvent(payload={"answer": answer, **extra})


@pytest.fixture
def harness():
    return Harness()


def test_begin_shows_indicator_and_disables_input(harness):
    assert harness.state.phase is TurnPhase.LOADING
    assert harness.view.loading_label == THINKING_LABEL
    assert harness.view.submit_enabled is False
    with pytest.raises(RuntimeError):
        harness.dispatcher.begin()


@pytest.mark.asyncio
async def test_happy_path_streams_then_finalizes(harness):
    await harness.dispatcher.dispatch(status("Thinking"))
    assert harness.view.loading_label == "Thinking"

    await harness.dispatcher.dispatch(delta("Hel"))
    assert harness.state.phase is TurnPhase.STREAMING
    assert harness.view.is_loading is False
    assert harness.assistant_texts() == ["Hel"]

    await harness.dispatcher.dispatch(delta("lo"))
    assert harness.assistant_texts() == ["Hello"]

    await harness.dispatcher.dispatch(result("Hello!", conversation_id="c42"))
    harness.dispatcher.finish()
    harness.dispatcher.release()

    assert harness.state.outcome is TurnOutcome.RESULT
    assert harness.assistant_texts() == ["Hello!"]
    assert harness.location.conversation_id == "c42"
    assert harness.view.submit_enabled is True
    assert [t for t, _ in harness.published] == [CONVERSATION_CREATED]


@pytest.mark.asyncio
async def test_status_before_delta_does_not_create_bubble(harness):
    await harness.dispatcher.dispatch(status("Step 1"))
    await harness.dispatcher.dispatch(status("Step 2"))
    assert harness.view.assistant_messages() == []
    assert harness.state.status_label == "Step 2"
    assert harness.view.loading_label == "Step 2"


@pytest.mark.asyncio
async def test_status_after_first_delta_leaves_text_alone(harness):
    await harness.dispatcher.dispatch(delta("abc"))
    await harness.dispatcher.dispatch(status("Still working"))
    assert harness.assistant_texts() == ["abc"]
    assert harness.view.loading_label is None


@pytest.mark.asyncio
async def test_empty_delta_creates_bubble_without_text(harness):
    await harness.dispatcher.dispatch(delta(""))
    assert harness.state.bubble_created
    assert harness.assistant_texts() == [""]


@pytest.mark.asyncio
async def test_accumulated_text_only_grows(harness):
    seen = []
    for piece in ["a", "", "bc", "d"]:
        await harness.dispatcher.dispatch(delta(piece))
        seen.append(harness.state.accumulated_text)
    assert seen == ["a", "a", "abc", "abcd"]
    assert all(later.startswith(earlier) for earlier, later in zip(seen, seen[1:]))


@pytest.mark.asyncio
async def test_error_after_deltas_replaces_partial_answer(harness):
    await harness.dispatcher.dispatch(delta("Partial"))
    await harness.dispatcher.dispatch(ErrorEvent(payload="Quota exceeded"))
    await harness.dispatcher.dispatch(delta(" more"))

    assert harness.state.outcome is TurnOutcome.ERROR
    messages = harness.view.assistant_messages()
    assert len(messages) == 1
    assert messages[0].kind == "failure"
    assert messages[0].text == "❌ Quota exceeded"
    assert harness.state.ignored_events == 1


@pytest.mark.asyncio
async def test_stream_that_ends_without_terminal_event(harness):
    await harness.dispatcher.dispatch(status("Thinking"))
    harness.dispatcher.finish()
    harness.dispatcher.release()

    assert harness.state.outcome is TurnOutcome.NO_RESPONSE
    assert harness.assistant_texts() == [NO_RESPONSE_MESSAGE]
    assert harness.view.is_loading is False


@pytest.mark.asyncio
async def test_termination_is_idempotent(harness):
    await harness.dispatcher.dispatch(result("Done"))
    harness.dispatcher.timeout()
    harness.dispatcher.fail_transport("boom")
    harness.dispatcher.finish()
    await harness.dispatcher.dispatch(ErrorEvent(payload="late"))

    assert harness.state.outcome is TurnOutcome.RESULT
    assert harness.assistant_texts() == ["Done"]


@pytest.mark.asyncio
async def test_timeout_message(harness):
    await harness.dispatcher.dispatch(delta("half"))
    harness.dispatcher.timeout()
    await harness.dispatcher.dispatch(result("too late"))

    assert harness.state.outcome is TurnOutcome.TIMEOUT
    assert harness.assistant_texts() == [TIMEOUT_MESSAGE]


@pytest.mark.asyncio
async def test_result_without_answer_keeps_streamed_text(harness):
    await harness.dispatcher.dispatch(delta("streamed"))
    await harness.dispatcher.dispatch(result(None))
    assert harness.assistant_texts() == ["streamed"]


@pytest.mark.asyncio
async def test_result_without_deltas_creates_the_bubble(harness):
    await harness.dispatcher.dispatch(result("Direct answer"))
    assert harness.assistant_texts() == ["Direct answer"]
    assert harness.state.bubble_created


@pytest.mark.asyncio
async def test_result_without_answer_or_deltas_adds_nothing(harness):
    await harness.dispatcher.dispatch(result(None))
    assert harness.view.assistant_messages() == []
    assert harness.state.outcome is TurnOutcome.RESULT


@pytest.mark.asyncio
async def test_debug_id_attached_only_in_debug_mode():
    debug_harness = Harness(debug=True)
    await debug_harness.dispatcher.dispatch(result("ok", debug_id="dbg-9"))
    assert debug_harness.view.assistant_messages()[0].debug_id == "dbg-9"

    plain = Harness(debug=False)
    await plain.dispatcher.dispatch(result("ok", debug_id="dbg-9"))
    assert plain.view.assistant_messages()[0].debug_id is None


@pytest.mark.asyncio
async def test_known_conversation_is_not_announced_again():
    harness = Harness(conversation_id="c1")
    await harness.dispatcher.dispatch(result("ok", conversation_id="c1"))
    assert harness.published == []


@pytest.mark.asyncio
async def test_title_after_result_updates_the_conversation(harness):
    await harness.dispatcher.dispatch(result("ok", conversation_id="c7"))
    await harness.dispatcher.dispatch(TitleEvent(payload={"title": "Weather chat"}))

    assert harness.published[-1] == (TITLE_UPDATED, {"conversation_id": "c7", "title": "Weather chat"})


@pytest.mark.asyncio
async def test_title_without_known_conversation_is_ignored(harness):
    await harness.dispatcher.dispatch(TitleEvent(payload={"title": "Orphan"}))
    assert harness.published == []


@pytest.mark.asyncio
async def test_title_after_error_is_ignored(harness):
    await harness.dispatcher.dispatch(ErrorEvent(payload="boom"))
    await harness.dispatcher.dispatch(TitleEvent(payload={"title": "Nope"}))
    assert harness.published == []


@pytest.mark.asyncio
async def test_memory_proposal_goes_to_the_panel(harness):
    await harness.dispatcher.dispatch(ToolExecutedEvent(payload={
        "tool": "propose_to_remember",
        "proposal": {"fact": "Likes tea", "category": "preference"},
        "conversation_id": "c3",
    }))
    await harness.dispatcher.dispatch(ToolExecutedEvent(payload={"tool": "propose_to_remember", "fact": "Flat"}))
    await harness.dispatcher.dispatch(ToolExecutedEvent(payload={"tool": "search_web"}))

    assert harness.panel.shown == [
        ({"fact": "Likes tea", "category": "preference"}, "c3"),
        ({"fact": "Flat"}, None),
    ]
    assert harness.state.phase is TurnPhase.LOADING


@pytest.mark.asyncio
async def test_unknown_event_changes_nothing(harness):
    await harness.dispatcher.dispatch(UnknownEvent(type="heartbeat"))
    assert harness.state.phase is TurnPhase.LOADING
    assert harness.view.assistant_messages() == []


@pytest.mark.asyncio
async def test_injected_noise_between_events(harness):
    classifier = EventClassifier()
    lines = [
        '{"type":"delta","payload":{"text":"A"}}',
        '<div class="sf-toolbar">',
        ".sf-toolbar { display: none; }",
        "<script>var x = 1;</script>",
        '{"type":"delta","payload":{"text":"B"}}',
        '{"type":"result","payload":{"answer":"AB"}}',
    ]
    for line in lines:
        event = classifier.classify(line)
        if event is not None:
            await harness.dispatcher.dispatch(event)

    assert classifier.accepted == 3
    assert harness.assistant_texts() == ["AB"]
    assert harness.state.outcome is TurnOutcome.RESULT
