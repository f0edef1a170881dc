"""
FastAPI application
"""
import logging
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..core.config import settings
from ..services.resume_worker import ResumeWorker
from .deps import get_engine
from .routes import webhook_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app(start_worker: Optional[bool] = None) -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="WhatsApp chatbot flow execution engine",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(webhook_router)

    run_worker = settings.RESUME_WORKER_ENABLED if start_worker is None else start_worker

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": settings.APP_NAME,
            "version": __version__,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        worker = getattr(app.state, "resume_worker", None)
        return {
            "status": "ok",
            "storage": settings.STORAGE_BACKEND,
            "resume_worker": worker.get_stats() if worker else None
        }

    @app.on_event("startup")
    async def startup():
        """Startup event"""
        logger.info(f"Starting {settings.APP_NAME}...")

        if run_worker:
            engine = app.dependency_overrides.get(get_engine, get_engine)()
            app.state.resume_worker = ResumeWorker(engine)
            await app.state.resume_worker.start_scheduler()

    @app.on_event("shutdown")
    async def shutdown():
        """Shutdown event"""
        logger.info(f"Shutting down {settings.APP_NAME}...")

        worker = getattr(app.state, "resume_worker", None)
        if worker:
            await worker.stop_scheduler()

    return app


app = create_app()
