from fastapi import APIRouter, Request

from chatstream.shared.models import CsrfTokenResponse

router = APIRouter()

@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(request: Request):
    return CsrfTokenResponse(token=request.app.state.csrf.get_token())
