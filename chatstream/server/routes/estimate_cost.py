from fastapi import APIRouter, Request

from chatstream.shared.models import CostEstimate, CostEstimateRequest

router = APIRouter()

@router.post("/estimate-cost", response_model=CostEstimate)
async def estimate_cost(request: Request, body: CostEstimateRequest):
    store = request.app.state.store
    contents = []
    if body.conversation_id:
        conversation = store.get_conversation(body.conversation_id)
        if conversation is not None:
            contents = [{"role": m.role, "content": m.content} for m in store.get_messages(conversation.id)]

    message = body.message.strip()
    if message:
        contents.append({"role": "user", "content": message})
    return request.app.state.estimator.estimate_cost(contents)
