"""
FastAPI dependencies for the alerts API
"""
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.core.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Service container built during application startup"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert services are not initialised",
        )
    return services


async def require_internal_token(
    x_internal_token: Optional[str] = Header(None),
    services: ServiceContainer = Depends(get_services),
):
    """Only trusted callers (ingestion, workers, other instances) may use the alerts API"""
    expected = services.settings.INTERNAL_API_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_API_TOKEN is not configured",
        )

    if not x_internal_token or not secrets.compare_digest(x_internal_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )
