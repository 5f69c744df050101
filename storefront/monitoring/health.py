"""
Health checks.

Checks:
- Database connectivity
- Cache connectivity
"""
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.integrations.cache import Cache

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Cache connectivity check
    - Overall system health status
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache: Cache):
        self.session_factory = session_factory
        self.cache = cache

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(text("SELECT CURRENT_TIMESTAMP"))
                server_time = result.scalar()

            return {"status": "healthy", "server_time": str(server_time)}

        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_cache(self) -> Dict[str, Any]:
        """
        Check cache connectivity.

        Raises:
            HealthCheckError: If cache check fails
        """
        result = await self.cache.check_health()
        if result.get("status") != "healthy":
            raise HealthCheckError(f"Cache health check failed: {result.get('error', 'unknown')}")
        return result

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: ``{status, timestamp, services: {database, cache}}``
        """
        services: Dict[str, Any] = {}
        all_healthy = True

        try:
            services["database"] = await self.check_database()
        except HealthCheckError as e:
            services["database"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        try:
            services["cache"] = await self.check_cache()
        except HealthCheckError as e:
            services["cache"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": services,
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
