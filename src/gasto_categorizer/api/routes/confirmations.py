from typing import Annotated

from fastapi import APIRouter, Depends

from gasto_categorizer.api.dependencies import get_assistant
from gasto_categorizer.api.schemas import ReplyRequest, ReplyResponse
from gasto_categorizer.manager import TransactionAssistant
from gasto_categorizer.models import PendingConfirmation

router = APIRouter(prefix="/confirmations")


@router.post("/{conversation_id}/reply", response_model=ReplyResponse)
async def reply_to_confirmation(
    conversation_id: str,
    req: ReplyRequest,
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> ReplyResponse:
    reply = await assistant.reply(conversation_id, req.text)
    return ReplyResponse.from_reply(reply)


@router.get("/pending", response_model=list[PendingConfirmation])
async def list_pending(
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
    conversation_id: str | None = None,
) -> list[PendingConfirmation]:
    return await assistant.store.list_pending(conversation_id)
