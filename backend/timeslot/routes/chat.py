import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth import require_user_id
from ..db import get_session
from ..schemas import ChatRequest, ChatResponse
from ..services.assistant import handle_turn, parse_context
from ..services.llm import FreeformReplyError, freeform_reply

logger = logging.getLogger(__name__)

router = APIRouter()

FREEFORM_FAILURE_REPLY = "Hubo un problema al usar la IA 😓. Intentá de nuevo más tarde."


@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    db: Session = Depends(get_session),
    user_id: str = Depends(require_user_id),
):
    try:
        result = await handle_turn(
            db,
            user_id=user_id,
            message=payload.message,
            context=payload.context,
            freeform=freeform_reply,
        )
    except FreeformReplyError as exc:
        logger.error("chat_freeform_failed user_id=%s error=%s", user_id, exc)
        context = parse_context(payload.context)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "reply": FREEFORM_FAILURE_REPLY,
                "context": context.to_wire() if context else {},
                "readyToCreate": False,
            },
        )

    return ChatResponse(
        reply=result.reply,
        context=result.context.to_wire(),
        ready_to_create=result.ready_to_create,
    )
