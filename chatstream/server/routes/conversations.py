from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from chatstream.server.csrf import require_csrf
from chatstream.shared.config import settings
from chatstream.shared.models import ConversationSummary, MessageRecord, RenameRequest

router = APIRouter(prefix="/conversations")

def _get_or_404(request: Request, conversation_id: str) -> ConversationSummary:
    conversation = request.app.state.store.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation

@router.get("", response_model=List[ConversationSummary])
async def list_conversations(request: Request, limit: int = Query(settings.CONVERSATION_LIST_LIMIT, ge=1, le=500)):
    return request.app.state.store.list_conversations(limit)

@router.delete("/{conversation_id}", dependencies=[Depends(require_csrf)])
async def delete_conversation(request: Request, conversation_id: str):
    conversation = _get_or_404(request, conversation_id)
    request.app.state.store.delete_conversation(conversation.id)
    return {"success": True}

@router.patch("/{conversation_id}/rename", dependencies=[Depends(require_csrf)])
async def rename_conversation(request: Request, conversation_id: str, body: RenameRequest):
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    conversation = _get_or_404(request, conversation_id)
    request.app.state.store.update_title(conversation.id, title)
    return {"success": True, "title": title}

@router.get("/{conversation_id}/messages", response_model=List[MessageRecord])
async def conversation_messages(request: Request, conversation_id: str):
    conversation = _get_or_404(request, conversation_id)
    return request.app.state.store.get_messages(conversation.id)
