"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from labeltrack.config import settings
from labeltrack.database import Base, engine
from labeltrack.api.routes import router
# Import models to register them with SQLAlchemy Base
from labeltrack.models.domain import Label, LabelBatch  # noqa: F401
from labeltrack.models.audit import LabelEvent  # noqa: F401

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; release pooled connections on shutdown."""
    configure_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("Label service started")
    yield
    engine.dispose()
    logger.info("Label service stopped")


# Create FastAPI app
app = FastAPI(
    title="Label Tracker - Bottle Label Lifecycle",
    description="Tracks QR-coded bottle labels through generation, assignment, retirement and reprint.",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Labels"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Label Tracker"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
