from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from gasto_categorizer.api.dependencies import get_scheduler
from gasto_categorizer.logger import get_logger
from gasto_categorizer.services.scheduler import JobScheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs")


@router.get("")
async def list_jobs(
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> list[str]:
    return scheduler.names


@router.post("/{name}/run")
async def run_job(
    name: str,
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> dict[str, Any]:
    if name not in scheduler.names:
        raise HTTPException(status_code=404, detail=f"Unknown job '{name}'")
    logger.info("[JOBS] Manual run of %s.", name)
    result = await scheduler.run(name)
    return {"job": name, "result": result}
