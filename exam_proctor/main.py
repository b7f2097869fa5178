import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware

from exam_proctor.config import settings
from exam_proctor.api.v1.endpoints import preflight, sessions
from exam_proctor.services.session_manager import session_manager
from exam_proctor.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open sessions are torn down (and the camera released) when the bridge stops"""
    logger.info(f"Starting {settings.APP_NAME} bridge...")
    yield
    logger.info(f"Shutting down {settings.APP_NAME} bridge...")
    await session_manager.shutdown()


def get_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register health endpoint
    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        return {"status": "ok"}

    # API v1 routers
    api_router = APIRouter(prefix=settings.API_V1_PREFIX)

    api_router.include_router(preflight.router, prefix="/preflight", tags=["preflight"])
    api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])

    app.include_router(api_router)

    return app


app = get_application()
