from fastapi import APIRouter, Request

from executors import ExecutionResult
from logging_config import get_logger
from schemas.rooms import ExecuteRequest

logger = get_logger(__name__)

execute_router = APIRouter(prefix="/api", tags=["execute"])


@execute_router.post("/execute", response_model=ExecutionResult)
async def execute(payload: ExecuteRequest, request: Request):
    logger.info(f"Execution request: language={payload.language}, {len(payload.source)} chars")
    result = await request.app.state.executors.execute(payload.source, payload.language)
    if not result.success:
        logger.info(f"{payload.language} execution reported failure")
    return result
