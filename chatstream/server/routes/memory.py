from fastapi import APIRouter, Depends, Request

from chatstream.server.csrf import require_csrf
from chatstream.shared.models import MemoryConfirmRequest

router = APIRouter(prefix="/memory", dependencies=[Depends(require_csrf)])

@router.post("/confirm")
async def confirm_memory(request: Request, body: MemoryConfirmRequest):
    entry = request.app.state.store.remember(body.fact, body.category, body.scope, body.conversation_id)
    return {"success": True, "memory": entry}

@router.post("/reject")
async def reject_memory():
    return {"success": True}
