"""
MODULE OVERVIEW:
POST /chat: the streamed conversation turn.

WHAT IS HAPPENING HERE:
Everything that can fail *before* streaming (CSRF, body validation) fails
as a normal HTTP error, so the client sees one transport failure. Once the
200 and the NDJSON headers are out, every failure travels as an `error`
event inside the stream instead.
"""
from fastapi import APIRouter, Depends, Request

from chatstream.server.csrf import require_csrf
from chatstream.server.emitter import NDJSONEmitter, ndjson_response
from chatstream.shared.models import ChatRequest
from chatstream.shared.route_utils import log_connection

router = APIRouter()

@router.post("/chat", dependencies=[Depends(require_csrf)])
async def chat(request: Request, body: ChatRequest):
    service = request.app.state.chat_service
    await log_connection("ndjson:connect", body.conversation_id or "new", {"debug": body.debug_enabled})

    async def produce(emitter: NDJSONEmitter) -> None:
        try:
            await service.run_turn(body, emitter)
        finally:
            await log_connection("ndjson:disconnect", body.conversation_id or "new",
                                 {"events": emitter.events_emitted, "terminal": emitter.terminal_type})

    return ndjson_response(produce, request.app.state.padding_bytes)
