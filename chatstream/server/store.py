"""
MODULE OVERVIEW:
The in-memory conversation registry behind the REST endpoints.

WHAT IS HAPPENING HERE:
Persistence is not what this project is about, so one object holds every
conversation, its messages, the facts the user agreed to remember, and the
conversation the current session points at, which `/reset` forgets. In a
real deployment this would be a database; the routes only ever talk to this
interface.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4
from loguru import logger

from chatstream.shared.models import ConversationSummary, MessageRecord


class ConversationStore:
    def __init__(self):
        self.conversations: Dict[str, ConversationSummary] = {}
        self.messages: Dict[str, List[MessageRecord]] = {}
        self.facts: List[Dict[str, Any]] = []
        self.current_conversation_id: str | None = None

    # ==========================
    # CONVERSATIONS
    # ==========================
    def create_conversation(self, title: str | None = None) -> ConversationSummary:
        now = datetime.now(timezone.utc)
        conversation = ConversationSummary(
            id=uuid4().hex[:12], title=title, created_at=now, updated_at=now
        )
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        logger.info(f"conversation_id={conversation.id} event=created")
        return conversation

    def get_conversation(self, conversation_id: str) -> ConversationSummary | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.status == "deleted":
            return None
        return conversation

    def list_conversations(self, limit: int = 50) -> List[ConversationSummary]:
        active = [c for c in self.conversations.values() if c.status == "active"]
        active.sort(key=lambda c: c.updated_at, reverse=True)
        return active[:limit]

    def update_title(self, conversation_id: str, title: str) -> None:
        conversation = self.conversations[conversation_id]
        conversation.title = title
        conversation.updated_at = datetime.now(timezone.utc)

    def delete_conversation(self, conversation_id: str) -> None:
        # Soft delete: the record stays, it just stops being listed or served.
        self.conversations[conversation_id].status = "deleted"
        if self.current_conversation_id == conversation_id:
            self.current_conversation_id = None
        logger.info(f"conversation_id={conversation_id} event=deleted")

    # ==========================
    # MESSAGES
    # ==========================
    def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        return list(self.messages.get(conversation_id, []))

    def save_message(self, conversation_id: str, role: str, content: str, tokens: int = 0) -> MessageRecord:
        record = MessageRecord(role=role, content=content, tokens=tokens)
        self.messages.setdefault(conversation_id, []).append(record)
        conversation = self.conversations[conversation_id]
        conversation.message_count = len(self.messages[conversation_id])
        conversation.updated_at = record.created_at
        return record

    # ==========================
    # MEMORY & SESSION
    # ==========================
    def remember(self, fact: str, category: str, scope: str, conversation_id: str | None) -> Dict[str, Any]:
        entry = {"fact": fact, "category": category, "scope": scope, "conversation_id": conversation_id}
        self.facts.append(entry)
        logger.info(f"conversation_id={conversation_id} event=fact_remembered scope={scope}")
        return entry

    def facts_for(self, conversation_id: str | None) -> List[Dict[str, Any]]:
        return [
            f for f in self.facts
            if f["scope"] == "user" or f["conversation_id"] == conversation_id
        ]

    def reset_session(self) -> None:
        self.current_conversation_id = None
        logger.info("event=session_reset")
