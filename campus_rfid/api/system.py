"""
System Health API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from campus_rfid.database import get_db
from campus_rfid.services.system_service import SystemService
from campus_rfid.schemas.schemas import SystemHealthResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["System"])


@router.get(
    "/health",
    response_model=SystemHealthResponse,
    summary="System Health Check",
    description="""
    Checks:
    - **Database**: SELECT 1 (critical)
    - **Redis**: PING for the dashboard broadcast

    Returns overall status:
    - healthy: all components operational
    - degraded: Redis down, scans still processed
    - unhealthy: database down
    """
)
async def health_check(
    db: AsyncSession = Depends(get_db)
):
    """Get full system health status."""
    return await SystemService.get_full_health(db)


@router.get(
    "/health/simple",
    summary="Simple Health Check",
    description="Simple health check for load balancers. Returns 200 if the database answers."
)
async def simple_health(
    db: AsyncSession = Depends(get_db)
):
    result = await SystemService.get_simple_health(db)
    if result["status"] != "healthy":
        raise HTTPException(status_code=503, detail=result)
    return result
