"""
VulnScope Alerts - FastAPI Main Application
Vulnerability alert matching and notification delivery
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import time

from app.core.config import settings
from app.core.services import ServiceContainer, build_services
from app.services.alert_repository import AlertRepositoryError
from app.api.v1 import alerts

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application; tests pass a prebuilt service container"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info(f"🚀 {settings.APP_NAME} starting up...")
        container = services or build_services(settings)
        app.state.services = container

        await container.startup()
        email_status = container.email_service.get_config_status()
        logger.info(
            f"✅ Alert services ready (data access: {settings.ALERT_DATA_ACCESS}, "
            f"email primary: {email_status.primary_provider.value}, secondary: {email_status.secondary_provider.value})"
        )
        yield
        logger.info(f"🛑 {settings.APP_NAME} shutting down...")

        await container.shutdown()
        logger.info("✅ All connections closed")

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Vulnerability alert matching and multi-channel notification delivery",
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan
    )

    # Middleware Configuration

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # GZip Compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Request ID and Timing Middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add request processing time and request ID"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = str(id(request))
        return response

    # Exception Handlers
    @app.exception_handler(AlertRepositoryError)
    async def repository_error_handler(request: Request, exc: AlertRepositoryError):
        logger.error(f"Alert data access failed: {exc}")
        return JSONResponse(
            status_code=502,
            content={
                "error": "Bad Gateway",
                "message": "Alert data store is unavailable",
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc):
        logger.error(f"Internal server error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred"
            }
        )

    # Root Endpoint
    @app.get("/")
    async def root():
        """Root endpoint - API information"""
        return {
            "name": f"{settings.APP_NAME} API",
            "version": settings.APP_VERSION,
            "status": "operational",
            "docs": "/api/docs",
            "endpoints": {
                "process": f"{settings.API_V1_STR}/alerts/process",
                "rules": f"{settings.API_V1_STR}/alerts/rules",
                "email": f"{settings.API_V1_STR}/alerts/email/status"
            }
        }

    # Health Check
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        container = getattr(request.app.state, "services", None)
        email_configured = container.email_service.is_configured() if container else False
        return {
            "status": "healthy" if container else "starting",
            "timestamp": time.time(),
            "services": {
                "api": "operational",
                "data_access": settings.ALERT_DATA_ACCESS,
                "email": "configured" if email_configured else "disabled",
                "realtime": "connected" if container and container.publisher else "disabled"
            }
        }

    # Include routers
    app.include_router(alerts.router, prefix=settings.API_V1_STR)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
