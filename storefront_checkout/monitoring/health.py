"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Redis connectivity (only when a processed-payment cache is configured)
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront_checkout.database.connection import Database

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Redis connectivity check
    - Overall system health status
    """

    def __init__(self, database: Database, redis_client: Optional[aioredis.Redis] = None):
        self.database = database
        self.redis_client = redis_client

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.database.session() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        if self.redis_client is None:
            return {
                "status": "healthy",
                "service": "redis",
                "message": "Redis cache not configured",
            }

        try:
            await self.redis_client.ping()
        except (aioredis.RedisError, OSError) as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {e}")

        return {
            "status": "healthy",
            "service": "redis",
            "message": "Redis connection successful",
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("redis", self.check_redis)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {
                    "status": "unhealthy",
                    "service": name,
                    "error": str(e),
                }
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: every dependency must answer."""
        return await self.check_all()
