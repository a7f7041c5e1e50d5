from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from gasto_categorizer.api.dependencies import get_assistant
from gasto_categorizer.api.schemas import DeliveryResponse
from gasto_categorizer.logger import get_logger
from gasto_categorizer.manager import TransactionAssistant
from gasto_categorizer.models import PendingConfirmation
from gasto_categorizer.services.delivery import DeliveryOutcome

logger = get_logger(__name__)

router = APIRouter(prefix="/deliveries")


@router.get("/pending", response_model=list[PendingConfirmation])
async def pending_deliveries(
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
    limit: int = 100,
) -> list[PendingConfirmation]:
    return await assistant.pending_deliveries(max(1, limit))


@router.get("/failed", response_model=list[PendingConfirmation])
async def failed_deliveries(
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> list[PendingConfirmation]:
    return await assistant.failed_deliveries()


@router.post("/{confirmation_id}/resend", response_model=DeliveryResponse)
async def resend_delivery(
    confirmation_id: str,
    assistant: Annotated[TransactionAssistant, Depends(get_assistant)],
) -> DeliveryResponse:
    logger.info("[DELIVERY] Manual resend requested for %s.", confirmation_id)
    result = await assistant.delivery.resend(confirmation_id)
    if result.outcome == DeliveryOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Confirmation {confirmation_id} not found")
    if result.outcome == DeliveryOutcome.BUSY:
        raise HTTPException(status_code=409, detail="Delivery already in progress")
    return DeliveryResponse(
        outcome=result.outcome.value,
        error=result.error,
        confirmation=result.confirmation,
    )
