import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from basecore.db import get_engine
from basecore.logging import setup_logging
from basecore.settings import get_settings
from auction_service.exceptions import AuctionNotFoundError, ForbiddenError, PersistenceError
from auction_service.models import AuctionBase
from auction_service.router import auctions_router

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Create auction tables if they do not exist."""
    AuctionBase.metadata.create_all(bind=get_engine())


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db()
    except Exception as e:
        # Keep serving /health while the database is unreachable
        logger.error(f"Database initialisation failed: {e}", exc_info=True)
    yield


def create_app(run_init_db: bool = True) -> FastAPI:
    setup_logging()
    settings = get_settings()

    app = FastAPI(
        title="Auction Service",
        description="Auction records and transactional event outbox",
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

    @app.exception_handler(AuctionNotFoundError)
    async def not_found_handler(request: Request, exc: AuctionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        logger.warning(
            "Rejected mutation by non-owner",
            extra={"auction_id": str(exc.auction_id), "actor": exc.actor},
        )
        return JSONResponse(status_code=403, content={"detail": "Forbidden"})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.include_router(auctions_router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Auction Service", "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()
