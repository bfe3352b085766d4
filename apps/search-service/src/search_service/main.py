import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from basecore.db import get_engine
from basecore.logging import setup_logging
from basecore.settings import get_settings
from search_core.persistence.models import SearchBase
from search_service.router import search_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        SearchBase.metadata.create_all(bind=get_engine(get_settings().SEARCH_DATABASE_URL))
    except Exception as e:
        logger.error(f"Search database initialisation failed: {e}", exc_info=True)
    yield


def create_app(run_init_db: bool = True) -> FastAPI:
    setup_logging()
    settings = get_settings()

    app = FastAPI(
        title="Search Service",
        description="Auction search over the projected read model",
        version="1.0.0",
        lifespan=lifespan if run_init_db else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(search_router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Search Service", "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()
