"""
MODULE OVERVIEW:
The client's render target: an in-memory transcript.

WHAT IS HAPPENING HERE:
The dispatcher never draws anything itself. It drives a `ChatView`, which
holds the message bubbles, the transient "thinking" indicator, the submit
affordance and the memory proposal slot. The terminal visualizer reads this
object to draw; tests read it to assert what a user would have seen.
`LocationState` plays the role of the browser address bar: it remembers
which conversation the client is currently looking at.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal
from uuid import uuid4

from chatstream.client.markdown import render_markdown

THINKING_LABEL = "Thinking"


@dataclass
class ChatMessage:
    role: Literal["user", "assistant"]
    text: str = ""
    html: str = ""
    kind: Literal["answer", "failure", "notice"] = "answer"
    debug_id: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex[:8])


@dataclass
class LocationState:
    conversation_id: str | None = None

    def reconcile(self, conversation_id: str) -> bool:
        """Points the client at `conversation_id`; True when it was not current."""
        is_new = self.conversation_id != conversation_id
        self.conversation_id = conversation_id
        return is_new


class ChatView:
    def __init__(self):
        self.messages: List[ChatMessage] = []
        self.loading_label: str | None = None
        self.submit_enabled = True
        self.greeting_visible = True
        self.memory_proposal: Dict[str, Any] | None = None
        self.memory_feedback: str | None = None

    @property
    def is_loading(self) -> bool:
        return self.loading_label is not None

    def add_message(self, text: str, role: str, kind: str = "answer", debug_id: str | None = None) -> ChatMessage:
        self.greeting_visible = False
        message = ChatMessage(role=role, kind=kind, debug_id=debug_id)
        self.set_markdown(message, text)
        self.messages.append(message)
        return message

    def set_markdown(self, message: ChatMessage, text: str) -> None:
        message.text = text
        message.html = render_markdown(text)

    def remove_message(self, message: ChatMessage) -> None:
        if message in self.messages:
            self.messages.remove(message)

    def set_loading(self, is_loading: bool) -> None:
        self.submit_enabled = not is_loading
        self.loading_label = THINKING_LABEL if is_loading else None

    def update_loading_status(self, label: str) -> None:
        # Only meaningful while the indicator is on screen.
        if self.loading_label is not None:
            self.loading_label = label

    def show_memory_proposal(self, proposal: Dict[str, Any]) -> None:
        self.memory_proposal = proposal
        self.memory_feedback = None

    def show_memory_feedback(self, text: str) -> None:
        self.memory_feedback = text

    def clear_memory_proposal(self) -> None:
        self.memory_proposal = None
        self.memory_feedback = None

    def clear(self) -> None:
        self.messages.clear()
        self.clear_memory_proposal()
        self.greeting_visible = True

    def assistant_messages(self) -> List[ChatMessage]:
        return [m for m in self.messages if m.role == "assistant"]
