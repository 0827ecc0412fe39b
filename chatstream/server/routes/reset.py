from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from chatstream.server.csrf import require_csrf
from chatstream.shared.models import ResetResponse

router = APIRouter()

@router.post("/reset", response_model=ResetResponse, dependencies=[Depends(require_csrf)])
async def reset(request: Request):
    """Clears the server-side session history of the current conversation."""
    try:
        await request.app.state.backend.reset()
        request.app.state.store.reset_session()
    except Exception as e:
        logger.error(f"event=reset_failed error={e!r}")
        return JSONResponse(ResetResponse(success=False, error=str(e)).model_dump(), status_code=500)
    return ResetResponse(success=True, message="Conversation reset.")
