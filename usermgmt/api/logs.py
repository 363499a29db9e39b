"""Request log API router."""

from fastapi import APIRouter, Depends

from usermgmt.api.deps import get_log_service, list_query
from usermgmt.core.guard import Principal
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import LOGS
from usermgmt.core.security import RequirePermission
from usermgmt.schemas.schemas import LogCleanupRequest
from usermgmt.services.log_service import LogService, serialize_log

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("")
async def list_logs(
    query: NormalizedQuery = Depends(list_query(LOGS)),
    principal: Principal = Depends(RequirePermission("logs", "read")),
    logs: LogService = Depends(get_log_service),
):
    return logs.list_page(query)


@router.get("/stats")
async def log_stats(
    query: NormalizedQuery = Depends(list_query(LOGS)),
    principal: Principal = Depends(RequirePermission("logs", "read")),
    logs: LogService = Depends(get_log_service),
):
    """Aggregates over the entries matching the same filters ``GET /logs`` accepts."""
    return logs.stats(query.filters)


@router.get("/{log_id}")
async def get_log(
    log_id: int,
    principal: Principal = Depends(RequirePermission("logs", "read")),
    logs: LogService = Depends(get_log_service),
):
    return serialize_log(logs.get(log_id))


@router.post("/cleanup")
async def cleanup_logs(
    body: LogCleanupRequest,
    principal: Principal = Depends(RequirePermission("logs", "delete")),
    logs: LogService = Depends(get_log_service),
):
    return {"deleted": logs.cleanup(body.days)}
