from typing import Annotated, Any

from fastapi import APIRouter, Depends

from gasto_categorizer.api.dependencies import get_assistant
from gasto_categorizer.manager import TransactionAssistant

router = APIRouter()


@router.get("/health")
async def health(
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> dict[str, Any]:
    return assistant.health()
