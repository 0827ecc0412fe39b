"""
MODULE OVERVIEW:
The "remember this?" side panel fed by `tool_executed` events.

WHAT IS HAPPENING HERE:
When the assistant proposes to remember a fact, the user picks one of three
answers: no, yes for this conversation, yes forever. There is only ever one
proposal on screen: a new one replaces an unresolved one instead of stacking.
Every answer is its own CSRF-guarded call, and the panel goes away whatever
the network says (optimistic UI). An ignored proposal dismisses itself after
a bounded wait so stale prompts do not pile up across turns.
"""
import asyncio
from typing import Any, Dict, Literal
import httpx
from loguru import logger

from chatstream.client.base_client import BaseApiClient
from chatstream.client.view import ChatView
from chatstream.shared.config import settings
from chatstream.shared.errors import ChatStreamError

Scope = Literal["conversation", "user"]


def extract_fact(proposal: Dict[str, Any] | None) -> str | None:
    if not isinstance(proposal, dict):
        return None
    fact = proposal.get("fact")
    if fact is None and isinstance(proposal.get("data"), dict):
        fact = proposal["data"].get("fact")
    if isinstance(fact, bool) or not isinstance(fact, (str, int, float)):
        return None
    return str(fact)


class MemoryProposalPanel:
    def __init__(
        self,
        api: BaseApiClient,
        view: ChatView,
        ttl_s: float = settings.MEMORY_PROPOSAL_TTL_S,
        feedback_s: float = settings.MEMORY_FEEDBACK_S,
    ):
        self.api = api
        self.view = view
        self.ttl_s = ttl_s
        self.feedback_s = feedback_s
        self.proposal: Dict[str, Any] | None = None
        self.conversation_id: str | None = None
        self._timer: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self.proposal is not None

    def show(self, proposal: Dict[str, Any] | None, conversation_id: str | None = None) -> bool:
        fact = extract_fact(proposal)
        if fact is None:
            logger.warning(f"event=memory_proposal_invalid proposal={proposal!r}")
            return False

        if self.is_open:
            logger.debug("event=memory_proposal_replaced")
        self.dismiss()

        self.proposal = {**proposal, "fact": fact}
        self.conversation_id = conversation_id
        self.view.show_memory_proposal({
            "fact": fact.strip() or "—",
            "category": proposal.get("category") or "other",
        })
        self._schedule_dismiss(self.ttl_s)
        logger.info(f"conversation_id={conversation_id} event=memory_proposal_shown")
        return True

    def dismiss(self) -> None:
        self._cancel_timer()
        self.proposal = None
        self.conversation_id = None
        self.view.clear_memory_proposal()

    async def confirm(self, scope: Scope) -> bool:
        proposal = self.proposal
        if proposal is None:
            return False
        body = {
            "fact": proposal["fact"],
            "category": proposal.get("category") or "other",
            "scope": scope,
            "conversation_id": self.conversation_id,
        }
        try:
            await self.api.request_json("POST", "/memory/confirm", mutating=True, json=body)
        except (ChatStreamError, httpx.HTTPError) as e:
            logger.error(f"event=memory_confirm_failed scope={scope} error={e!r}")
            self.dismiss()
            return False

        self._cancel_timer()
        self.proposal = None
        self.view.show_memory_feedback(
            "✅ Remembered." if scope == "user" else "✅ Remembered for this conversation."
        )
        self._schedule_dismiss(self.feedback_s)
        return True

    async def reject(self) -> None:
        if self.proposal is None:
            return
        try:
            await self.api.request_json("POST", "/memory/reject", mutating=True)
        except (ChatStreamError, httpx.HTTPError) as e:
            logger.debug(f"event=memory_reject_failed error={e!r}")
        self.dismiss()

    def _schedule_dismiss(self, delay_s: float) -> None:
        self._timer = asyncio.get_running_loop().create_task(self._dismiss_after(delay_s))

    async def _dismiss_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        # Detach first so dismiss() does not cancel the task running it.
        self._timer = None
        if self.is_open:
            logger.info("event=memory_proposal_expired")
        self.dismiss()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
