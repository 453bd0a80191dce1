"""
FastAPI application entry point.

Run with:
    uvicorn panic_relay.app.main:app --port 3000

Or through the installed script (reads HOST / PORT from the environment):
    panic-relay
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from panic_relay.app.alerts.alert_service import AlertService
from panic_relay.app.alerts.notifier import build_notifier
from panic_relay.app.api.v1.emergencias import router as emergency_router
from panic_relay.app.core.config import settings
from panic_relay.app.core.errors import register_error_handlers
from panic_relay.app.core.health import HealthStatus, run_health_check
from panic_relay.app.core.logging_config import get_logger, setup_logging
from panic_relay.app.core.middleware import RequestLoggingMiddleware
from panic_relay.app.storage import build_store

setup_logging()
logger = get_logger(__name__)


def create_app(service: Optional[AlertService] = None) -> FastAPI:
    """
    Build the application.

    Without ``service`` the store and push clients are constructed at
    startup from settings; tests pass a ready-made service instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s] store=%s push=%s",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
            settings.STORE_BACKEND, settings.PUSH_PROVIDER,
        )
        firebase_app = None
        if service is not None:
            app.state.alert_service = service
        else:
            if settings.uses_firebase:
                from panic_relay.app.core.firebase import init_firebase
                firebase_app = init_firebase(settings)
            app.state.alert_service = AlertService(
                store=build_store(settings, firebase_app),
                notifier=build_notifier(settings.PUSH_PROVIDER, firebase_app),
            )
        yield
        if firebase_app is not None:
            from panic_relay.app.core.firebase import close_firebase
            close_firebase(firebase_app)
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Panic-button relay: forwards an emergency alert to the sender's "
            "registered contacts, stores a copy for each of them and pushes "
            "a notification to their devices."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
        allow_credentials=not settings.CORS_ALLOW_ALL,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)
    app.include_router(emergency_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health check: store reachability and push provider."""
        svc: AlertService = request.app.state.alert_service
        report = await run_health_check(svc.store, svc.notifier)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        svc: AlertService = request.app.state.alert_service
        report = await run_health_check(svc.store, svc.notifier)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "panic_relay.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_config=None,
    )


if __name__ == "__main__":
    run()
