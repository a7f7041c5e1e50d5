from typing import Annotated

from fastapi import APIRouter, Depends

from gasto_categorizer.api.dependencies import get_assistant
from gasto_categorizer.api.schemas import ReindexResponse
from gasto_categorizer.manager import TransactionAssistant

router = APIRouter(prefix="/categories")


@router.post("/{user_id}/{account_id}/reindex", response_model=ReindexResponse)
async def reindex_categories(
    user_id: str,
    account_id: str,
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> ReindexResponse:
    entries = await assistant.reindex(user_id, account_id)
    return ReindexResponse(user_id=user_id, account_id=account_id, entries=entries)
