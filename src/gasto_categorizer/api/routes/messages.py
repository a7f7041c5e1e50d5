from typing import Annotated

from fastapi import APIRouter, Depends

from gasto_categorizer.api.dependencies import get_assistant
from gasto_categorizer.api.schemas import MessageRequest, ReplyResponse
from gasto_categorizer.manager import TransactionAssistant

router = APIRouter()


@router.post("/messages", response_model=ReplyResponse)
async def handle_message(
    req: MessageRequest,
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> ReplyResponse:
    reply = await assistant.handle_message(
        req.conversation_id, req.user_id, req.account_id, req.text
    )
    return ReplyResponse.from_reply(reply)
