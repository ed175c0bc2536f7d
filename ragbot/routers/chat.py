from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import PlainTextResponse, StreamingResponse

from ..deps import SessionUser, get_response_generator, get_session_user, get_usage_tracker
from ..schemas import ChatRequest, ErrorResponse
from ..services.generator import Complete, ResponseGenerator
from ..services.usage import CHAT_ENDPOINT, UsageTracker

router = APIRouter(
    tags=["chat"],
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


@router.post("/chat", response_class=PlainTextResponse)
async def chat(
    req: ChatRequest,
    background: BackgroundTasks,
    user: SessionUser = Depends(get_session_user),
    generator: ResponseGenerator = Depends(get_response_generator),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    background.add_task(usage.track, user.tenant_id, CHAT_ENDPOINT, user.user_id)

    result = await generator.respond(
        user.tenant_id,
        user.user_id,
        req.id,
        [m.model_dump() for m in req.messages],
    )
    headers = {"X-Conversation-Id": result.conversation_id, "X-Response-Mode": result.mode}
    if isinstance(result, Complete):
        return PlainTextResponse(result.text, headers=headers)
    return StreamingResponse(result.fragments, media_type="text/plain; charset=utf-8", headers=headers)
