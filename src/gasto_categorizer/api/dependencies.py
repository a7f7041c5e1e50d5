from fastapi import HTTPException, Request

from gasto_categorizer.manager import TransactionAssistant
from gasto_categorizer.services.scheduler import JobScheduler


def get_assistant(request: Request) -> TransactionAssistant:
    assistant = getattr(request.app.state, "assistant", None)
    if not assistant:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return assistant


def get_scheduler(request: Request) -> JobScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if not scheduler:
        raise HTTPException(status_code=500, detail="Scheduler not initialized")
    return scheduler
