"""
System Health Service.

Health Check Components:
==============================================================================
1. Database: connection test via SELECT 1 (critical)
2. Redis: PING/PONG test (dashboard broadcast, non-critical; skipped when
   BROADCAST_BACKEND is "memory")

Status Definitions:
==============================================================================
- healthy: all components working
- degraded: Redis down; scans are still processed, dashboards go quiet
- unhealthy: database down
"""
from typing import Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging
import asyncio
from redis.asyncio import Redis

from campus_rfid.config import settings

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


class SystemService:
    """Service for system health monitoring."""

    CHECK_TIMEOUT = 5.0

    @staticmethod
    async def check_database(db: AsyncSession) -> Dict[str, Any]:
        start = datetime.utcnow()
        try:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
            latency = (datetime.utcnow() - start).total_seconds() * 1000
            return {
                "status": "healthy",
                "latency_ms": round(latency, 2),
                "message": "Database connection successful"
            }
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return {"status": "unhealthy", "latency_ms": None, "message": str(e)}

    @staticmethod
    async def check_redis() -> Dict[str, Any]:
        if settings.BROADCAST_BACKEND.lower() == "memory":
            return {"status": "skipped", "latency_ms": None, "message": "In-memory broadcast backend"}

        start = datetime.utcnow()
        try:
            redis = Redis.from_url(
                settings.REDIS_URL,
                socket_connect_timeout=SystemService.CHECK_TIMEOUT,
                socket_timeout=SystemService.CHECK_TIMEOUT,
                decode_responses=True
            )
            await redis.ping()
            await redis.close()
            latency = (datetime.utcnow() - start).total_seconds() * 1000
            return {
                "status": "healthy",
                "latency_ms": round(latency, 2),
                "message": "Redis connection successful"
            }
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return {"status": "degraded", "latency_ms": None, "message": str(e)}

    @staticmethod
    async def get_full_health(db: AsyncSession) -> Dict[str, Any]:
        """Run all checks concurrently and fold them into one status."""
        start_time = datetime.utcnow()

        db_check, redis_check = await asyncio.gather(
            SystemService.check_database(db),
            SystemService.check_redis(),
            return_exceptions=True
        )

        def safe_result(result):
            if isinstance(result, Exception):
                return {"status": "unhealthy", "message": str(result)}
            return result

        components = {
            "database": safe_result(db_check),
            "redis": safe_result(redis_check),
        }

        statuses = [c.get("status") for c in components.values() if c.get("status") != "skipped"]
        if components["database"]["status"] != "healthy":
            overall_status = "unhealthy"
        elif all(s == "healthy" for s in statuses):
            overall_status = "healthy"
        else:
            overall_status = "degraded"

        total_time = (datetime.utcnow() - start_time).total_seconds() * 1000
        return {
            "status": overall_status,
            "timestamp": datetime.utcnow().isoformat(),
            "check_duration_ms": round(total_time, 2),
            "components": components,
            "version": {"api": VERSION, "environment": settings.APP_ENV}
        }

    @staticmethod
    async def get_simple_health(db: AsyncSession) -> Dict[str, Any]:
        """Database-only check for load balancers."""
        check = await SystemService.check_database(db)
        return {
            "status": check["status"],
            "timestamp": datetime.utcnow().isoformat()
        }
