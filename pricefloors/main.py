import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from pricefloors.core.config import settings
from pricefloors.core.logging import setup_logging
from pricefloors.core.middleware import RequestLoggingMiddleware

# Routers
from pricefloors.routers.health import router as health_router
from pricefloors.routers.floors import router as floors_router

# Floors bootstrap
from pricefloors.services.floors.config_loader import load_floors_config_from_file
from pricefloors.services.floors.floors_service import FloorsService

logger = logging.getLogger(__name__)


def create_app(floors: FloorsService = None, config_path: str = None) -> FastAPI:
    app = FastAPI(title="Price Floors Service")

    # -------------------------------------------------
    # CORS
    # -------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.middleware("http")
    async def inject_request_context(request: Request, call_next):
        if not hasattr(request.app.state, "floors"):
            raise RuntimeError("Floors service (app.state.floors) is not initialized")
        request.state.floors = request.app.state.floors
        return await call_next(request)

    # -------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------
    @app.on_event("startup")
    async def startup():
        setup_logging()

        # 1) Floors service (injected in tests)
        service = floors or FloorsService()
        app.state.floors = service

        # 2) Initial config; async so an endpoint fetch lands on the server loop
        path = config_path or settings.FLOORS_CONFIG_PATH
        config = load_floors_config_from_file(path)
        service.set_config(config)

        logger.info("[BOOT] Floors config loaded from %s (enabled=%s)", path, service.enabled)
        if config.endpoint.url:
            logger.info("[BOOT] Floors fetch scheduled: %s", config.endpoint.url)

    @app.on_event("shutdown")
    async def shutdown():
        app.state.floors.disable()
        logger.info("[BOOT] Floors service stopped")

    # -------------------------------------------------
    # Routers
    # -------------------------------------------------
    app.include_router(health_router, prefix="/api/v1/health", tags=["health"])
    app.include_router(floors_router, prefix="/api/v1/floors", tags=["floors"])

    return app


app = create_app()
