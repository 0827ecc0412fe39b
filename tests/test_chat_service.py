import pytest

from chatstream.client.markdown import render_markdown
from chatstream.server.backends import ScriptedChatBackend
from chatstream.server.chat_service import (
    ChatService,
    clean_title,
    describe_backend_error,
    is_memory_proposal,
)
from chatstream.server.emitter import NDJSONEmitter
from chatstream.server.store import ConversationStore
from chatstream.shared.errors import (
    LlmAuthenticationError,
    LlmError,
    LlmServiceUnavailableError,
)
from chatstream.shared.models import ChatRequest

from conftest import FakeBackend, parse_ndjson


async def run_turn(service, request):
    emitter = NDJSONEmitter(padding_bytes=0)
    await service.run_turn(request, emitter)
    emitter.close()
    body = b"".join([chunk async for chunk in emitter.chunks()])
    return parse_ndjson(body.decode("utf-8"))


@pytest.mark.parametrize("error, expected", [
    (LlmAuthenticationError("bad key"), "🔑 Authentication error"),
    (LlmServiceUnavailableError("503"), "🔧 Service unavailable"),
    (LlmError("model refused"), "🤖 AI error: model refused"),
    (RuntimeError("Read timeout after 30s"), "⏱️ Timeout"),
])
def test_describe_backend_error(error, expected):
    assert describe_backend_error(error, debug=False).startswith(expected)


def test_debug_mode_shows_the_location():
    try:
        raise KeyError("missing")
    except KeyError as e:
        text = describe_backend_error(e, debug=True)
    assert text.startswith("❌ 'missing' (test_chat_service.py:")


@pytest.mark.parametrize("raw, expected", [
    ('"Title: Weekend trip"', "Weekend trip"),
    ("Titre: Voyage", "Voyage"),
    ("  Plain  ", "Plain"),
])
def test_clean_title(raw, expected):
    assert clean_title(raw) == expected


@pytest.mark.parametrize("tool, result, expected", [
    ("propose_to_remember", {"__action": "memory_proposal", "fact": "x"}, True),
    ("memory.propose_to_remember", {"__action": "memory_proposal", "fact": "x"}, True),
    ("propose_to_remember", {"fact": "x"}, False),
    ("search", {"__action": "memory_proposal"}, False),
    ("propose_to_remember", "not a dict", False),
])
def test_is_memory_proposal(tool, result, expected):
    assert is_memory_proposal(tool, result) is expected


@pytest.mark.asyncio
async def test_turn_persists_messages_and_names_the_conversation():
    store = ConversationStore()
    backend = FakeBackend(tokens=["Sure", "!"])
    service = ChatService(backend, store)

    events = await run_turn(service, ChatRequest(message="Plan my weekend"))

    conversation_id = events[-2]["payload"]["conversation_id"]
    assert events[-1] == {"type": "title", "payload": {"title": "Greeting chat"}}
    assert store.get_conversation(conversation_id).title == "Greeting chat"
    assert [m.content for m in store.get_messages(conversation_id)] == ["Plan my weekend", "Sure!"]


@pytest.mark.asyncio
async def test_backend_sees_history_and_facts():
    store = ConversationStore()
    backend = FakeBackend()
    service = ChatService(backend, store)

    first = await run_turn(service, ChatRequest(message="Hello"))
    conversation_id = first[-2]["payload"]["conversation_id"]
    store.remember("Likes tea", "preference", "user", None)

    await run_turn(service, ChatRequest(message="Again", conversation_id=conversation_id,
                                        options={"persona": "butler"}))
    message, options = backend.calls[-1]
    assert message == "Again"
    assert options["persona"] == "butler"
    assert [h["content"] for h in options["history"]] == ["Hello", "Hi there"]
    assert options["facts"][0]["fact"] == "Likes tea"
    assert "estimated_cost_reference" in options


@pytest.mark.asyncio
async def test_unknown_conversation_id_starts_a_new_one():
    store = ConversationStore()
    service = ChatService(FakeBackend(), store)
    events = await run_turn(service, ChatRequest(message="Hi", conversation_id="gone"))
    assert events[-2]["payload"]["conversation_id"] != "gone"


@pytest.mark.asyncio
async def test_scripted_backend_streams_and_proposes_memories():
    store = ConversationStore()
    service = ChatService(ScriptedChatBackend(token_delay_s=0), store)

    events = await run_turn(service, ChatRequest(message="please remember: I take the train"))
    types = [e["type"] for e in events]

    assert types[0] == "status"
    assert "tool_executed" in types
    assert types.index("tool_executed") < types.index("delta")
    assert types[-2:] == ["result", "title"]
    streamed = "".join(e["payload"]["text"] for e in events if e["type"] == "delta")
    assert streamed == events[-2]["payload"]["answer"]
    proposal = events[types.index("tool_executed")]["payload"]["proposal"]
    assert proposal["fact"] == "I take the train"


def test_markdown_links_become_action_buttons():
    html = render_markdown("See [docs](https://example.com/docs)")
    assert 'class="chat-btn-action"' in html
    assert 'target="_blank"' in html
    assert 'rel="noopener noreferrer"' in html


def test_markdown_escapes_raw_html():
    html = render_markdown("**bold** <script>alert(1)</script>")
    assert "<strong>bold</strong>" in html
    assert "<script>" not in html
    assert render_markdown("") == ""


@pytest.mark.asyncio
async def test_reset_forgets_the_current_conversation_only():
    store = ConversationStore()
    service = ChatService(FakeBackend(), store)
    events = await run_turn(service, ChatRequest(message="Hello"))
    conversation_id = events[-2]["payload"]["conversation_id"]
    assert store.current_conversation_id == conversation_id

    store.reset_session()

    assert store.current_conversation_id is None
    assert store.get_conversation(conversation_id) is not None
    assert [m.content for m in store.get_messages(conversation_id)] == ["Hello", "Hi there"]
