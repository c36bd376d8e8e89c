"""FastAPI dependencies."""

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from health_engine.config import settings
from health_engine.db.session import AsyncSessionLocal, get_db
from health_engine.services.command_center import CommandCenterService
from health_engine.worker.platform_metrics_job import PlatformMetricsJob, platform_metrics_job


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_session_factory() -> async_sessionmaker:
    """Session factory for services that open one session per section."""
    return AsyncSessionLocal


def get_platform_metrics_job() -> PlatformMetricsJob:
    return platform_metrics_job


def get_command_center_service() -> CommandCenterService:
    return CommandCenterService(get_session_factory())


async def require_admin_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-API-Key")
) -> None:
    """
    Dependency to require admin API key for protected endpoints.

    Raises:
        HTTPException: 422 if header missing, 503 if no key configured, 403 if invalid
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured"
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )
