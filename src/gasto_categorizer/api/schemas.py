from pydantic import BaseModel, Field

from gasto_categorizer.manager import AssistantReply
from gasto_categorizer.models import PendingConfirmation


class MessageRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class ReplyRequest(BaseModel):
    text: str = Field(min_length=1)


class ReplyResponse(BaseModel):
    kind: str
    message: str
    action: str | None = None
    confirmation: PendingConfirmation | None = None

    @classmethod
    def from_reply(cls, reply: AssistantReply) -> "ReplyResponse":
        return cls(
            kind=reply.kind.value,
            message=reply.message,
            action=reply.action,
            confirmation=reply.confirmation,
        )


class DeliveryResponse(BaseModel):
    outcome: str
    error: str | None = None
    confirmation: PendingConfirmation | None = None


class ReindexResponse(BaseModel):
    user_id: str
    account_id: str
    entries: int
