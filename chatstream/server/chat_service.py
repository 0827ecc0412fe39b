"""
MODULE OVERVIEW:
One chat turn on the server, from request to the last NDJSON line.

WHAT IS HAPPENING HERE:
The backend talks through callbacks; we translate each callback into an
event on the emitter the moment it fires. After the answer is persisted we
send `result`, and for a brand new conversation we try to name it and send
`title`. Naming is best-effort: if it fails the turn has already succeeded.
Any failure before `result` becomes a single readable `error` event.
"""

import os
from typing import Any, Dict
from loguru import logger

from chatstream.server.backends import ChatBackend, CostEstimator
from chatstream.server.emitter import NDJSONEmitter
from chatstream.server.store import ConversationStore
from chatstream.shared.config import settings
from chatstream.shared.errors import (
    LlmAuthenticationError,
    LlmError,
    LlmQuotaError,
    LlmRateLimitError,
    LlmServiceUnavailableError,
)
from chatstream.shared.models import (
    MEMORY_PROPOSAL_ACTION,
    MEMORY_PROPOSAL_TOOL,
    ChatRequest,
    ConversationSummary,
)

MESSAGE_REQUIRED = "Message is required."


def describe_backend_error(error: Exception, debug: bool = settings.DEBUG) -> str:
    if isinstance(error, LlmAuthenticationError):
        return "🔑 Authentication error: the AI credentials are invalid or expired."
    if isinstance(error, LlmQuotaError):
        return "⚠️ Quota exceeded: the AI usage limit has been reached."
    if isinstance(error, LlmRateLimitError):
        return "⏳ Too many requests: please wait a moment before trying again."
    if isinstance(error, LlmServiceUnavailableError):
        return "🔧 Service unavailable: the AI service is temporarily unreachable."
    if isinstance(error, LlmError):
        return f"🤖 AI error: {error}"
    text = str(error)
    if "timeout" in text.lower():
        return "⏱️ Timeout: the AI took too long to answer."
    if debug:
        tb = error.__traceback__
        while tb is not None and tb.tb_next is not None:
            tb = tb.tb_next
        where = f"{os.path.basename(tb.tb_frame.f_code.co_filename)}:{tb.tb_lineno}" if tb else "?"
        return f"❌ {text} ({where})"
    return "❌ System error: an unexpected error occurred."


def clean_title(raw: str) -> str:
    title = raw.replace('"', "")
    for prefix in ("Title:", "Titre:"):
        title = title.replace(prefix, "")
    return title.strip()


def is_memory_proposal(tool_name: str, tool_result: Any) -> bool:
    return (
        tool_name.endswith(MEMORY_PROPOSAL_TOOL)
        and isinstance(tool_result, dict)
        and tool_result.get("__action") == MEMORY_PROPOSAL_ACTION
    )


class ChatService:
    def __init__(self, backend: ChatBackend, store: ConversationStore, estimator: CostEstimator | None = None,
                 debug: bool = settings.DEBUG):
        self.backend = backend
        self.store = store
        self.estimator = estimator
        self.debug = debug

    async def run_turn(self, request: ChatRequest, emitter: NDJSONEmitter) -> None:
        message = request.message
        if not message.strip():
            emitter.error(MESSAGE_REQUIRED)
            return

        conversation = None
        if request.conversation_id:
            conversation = self.store.get_conversation(request.conversation_id)
        try:
            if conversation is None:
                conversation = self.store.create_conversation()
            result = await self._ask(request, conversation, emitter)
        except Exception as e:
            logger.exception(f"conversation_id={getattr(conversation, 'id', None)} event=turn_failed error={e!r}")
            emitter.error(describe_backend_error(e, self.debug))
            return

        emitter.result(result)
        await self._generate_title(conversation, message, emitter)

    async def _ask(self, request: ChatRequest, conversation: ConversationSummary, emitter: NDJSONEmitter) -> Dict[str, Any]:
        self.store.current_conversation_id = conversation.id
        history = [{"role": m.role, "content": m.content} for m in self.store.get_messages(conversation.id)]

        options: Dict[str, Any] = request.options.model_dump()
        options.update({
            "debug": request.debug_enabled,
            "conversation_id": conversation.id,
            "history": history,
            "facts": self.store.facts_for(conversation.id),
        })
        if self.estimator is not None:
            estimate = self.estimator.estimate_cost(history + [{"role": "user", "content": request.message}])
            options["estimated_cost_reference"] = estimate.cost_reference

        async def on_status(status_message: str, step: str) -> None:
            emitter.status(status_message, step)

        async def on_token(text: str) -> None:
            emitter.delta(text)

        async def on_tool_executed(tool_name: str, tool_result: Any) -> None:
            if is_memory_proposal(tool_name, tool_result):
                emitter.tool_executed(MEMORY_PROPOSAL_TOOL, proposal=tool_result, conversation_id=conversation.id)
            else:
                logger.debug(f"conversation_id={conversation.id} event=tool_not_forwarded tool={tool_name}")

        result = await self.backend.ask(request.message, options, on_status, on_token, on_tool_executed)

        self.store.save_message(conversation.id, "user", request.message)
        answer = result.get("answer")
        if answer:
            usage = result.get("usage") or {}
            self.store.save_message(conversation.id, "model", answer, tokens=usage.get("completion_tokens", 0))

        return {**result, "conversation_id": conversation.id}

    async def _generate_title(self, conversation: ConversationSummary, message: str, emitter: NDJSONEmitter) -> None:
        # Only the first exchange (one user message + one answer) gets a title.
        if len(self.store.get_messages(conversation.id)) != 2:
            return
        try:
            prompt = f"Generate a very short title (max 6 words) without quotes for: '{message}'"
            title_result = await self.backend.ask(prompt, {"stateless": True, "debug": False})
            title = clean_title(title_result.get("answer") or "")
            if title:
                self.store.update_title(conversation.id, title)
                emitter.title(title)
        except Exception as e:
            logger.warning(f"conversation_id={conversation.id} event=title_generation_failed error={e!r}")
