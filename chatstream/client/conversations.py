"""
MODULE OVERVIEW:
The conversation list: list, rename, delete, history, live updates.

WHAT IS HAPPENING HERE:
Rename and delete are optimistic: the local list changes first and rolls
back if the server refuses. The sidebar also listens on the UI bus so a
turn that creates a conversation, or receives its generated title, shows
up in the list without a reload.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List
import httpx
from loguru import logger

from chatstream.client.base_client import BaseApiClient
from chatstream.client.csrf import CsrfTokenProvider
from chatstream.client.view import LocationState
from chatstream.shared.config import settings
from chatstream.shared.errors import AuthenticationRequired, ChatStreamError
from chatstream.shared.events import CONVERSATION_CREATED, TITLE_UPDATED, UiEventBus
from chatstream.shared.models import ConversationSummary, MessageRecord, RenameRequest


class ConversationSidebar(BaseApiClient):
    def __init__(
        self,
        server_base_url: str = settings.BASE_URL,
        http: httpx.AsyncClient | None = None,
        csrf: CsrfTokenProvider | None = None,
        location: LocationState | None = None,
        bus: UiEventBus | None = None,
        limit: int = settings.CONVERSATION_LIST_LIMIT,
    ):
        super().__init__(server_base_url, http, csrf)
        self.location = location or LocationState()
        self.bus = bus or UiEventBus()
        self.limit = limit
        self.conversations: List[ConversationSummary] = []
        self.error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.conversations

    def find(self, conversation_id: str) -> ConversationSummary | None:
        for conv in self.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    async def load(self) -> List[ConversationSummary]:
        self.error = None
        try:
            data = await self.request_json("GET", "/conversations", params={"limit": self.limit})
        except AuthenticationRequired:
            self.conversations = []
            return self.conversations
        except (ChatStreamError, httpx.HTTPError) as e:
            logger.error(f"event=conversations_load_failed error={e!r}")
            self.error = "Could not load conversations"
            return self.conversations
        self.conversations = [ConversationSummary.model_validate(c) for c in data]
        return self.conversations

    async def messages(self, conversation_id: str) -> List[MessageRecord]:
        data = await self.request_json("GET", f"/conversations/{conversation_id}/messages")
        return [MessageRecord.model_validate(m) for m in data]

    async def rename(self, conversation_id: str, title: str) -> bool:
        conv = self.find(conversation_id)
        new_title = title.strip()
        if conv is None or not new_title or new_title == conv.title:
            return False

        previous = conv.title
        conv.title = new_title
        try:
            await self.request_json(
                "PATCH", f"/conversations/{conversation_id}/rename",
                mutating=True, json=RenameRequest(title=new_title).model_dump(),
            )
        except (ChatStreamError, httpx.HTTPError) as e:
            logger.error(f"conversation_id={conversation_id} event=rename_failed error={e!r}")
            conv.title = previous
            self.error = "Could not rename the conversation"
            return False
        return True

    async def delete(self, conversation_id: str) -> bool:
        conv = self.find(conversation_id)
        if conv is None:
            return False

        index = self.conversations.index(conv)
        self.conversations.remove(conv)
        try:
            await self.request_json("DELETE", f"/conversations/{conversation_id}", mutating=True)
        except (ChatStreamError, httpx.HTTPError) as e:
            logger.error(f"conversation_id={conversation_id} event=delete_failed error={e!r}")
            self.conversations.insert(index, conv)
            self.error = "Could not delete the conversation"
            return False

        if self.location.conversation_id == conversation_id:
            self.location.conversation_id = None
        return True

    # ==========================
    # UI BUS LISTENERS
    # ==========================
    async def on_conversation_created(self, detail: Dict[str, Any]) -> None:
        conversation_id = detail["conversation_id"]
        self.location.conversation_id = conversation_id
        if self.find(conversation_id) is not None:
            return
        now = datetime.now(timezone.utc)
        self.conversations.insert(0, ConversationSummary(
            id=conversation_id,
            title=detail.get("title"),
            created_at=now,
            updated_at=now,
            message_count=1,
        ))

    async def on_title_updated(self, detail: Dict[str, Any]) -> None:
        conv = self.find(detail["conversation_id"])
        if conv is not None:
            conv.title = detail["title"]

    @contextmanager
    def listening(self) -> Iterator["ConversationSidebar"]:
        with self.bus.subscription(CONVERSATION_CREATED, self.on_conversation_created), \
                self.bus.subscription(TITLE_UPDATED, self.on_title_updated):
            yield self
