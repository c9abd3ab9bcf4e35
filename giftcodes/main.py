import logging
from typing import Optional

from fastapi import FastAPI, Request
from redis.asyncio import Redis

from . import __version__
from .admin import error_response
from .admin import router as admin_router
from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .errors import GiftCodeError, PersistenceError
from .inventory import InventoryService
from .store import InventoryStore

logger = logging.getLogger(__name__)


def build_inventory(settings: Settings) -> InventoryService:
    engine = make_engine(settings.database_url)
    init_db(engine)
    return InventoryService(
        InventoryStore(make_session_factory(engine)),
        keyring=settings.keyring,
        fingerprint_secret=settings.fingerprint_secret,
        default_ttl=settings.default_ttl,
    )


def create_app(settings: Optional[Settings] = None, redis: Optional[Redis] = None) -> FastAPI:
    """Run with `uvicorn --factory giftcodes.main:create_app`."""
    settings = settings or Settings.from_env()

    app = FastAPI(title="Gift Code Inventory", version=__version__)
    app.state.settings = settings
    app.state.inventory = build_inventory(settings)
    # Redis is only touched when a request carries an Idempotency-Key
    app.state.redis = redis or Redis.from_url(settings.redis_url, decode_responses=True)

    app.include_router(admin_router)

    @app.exception_handler(GiftCodeError)
    async def handle_gift_code_error(request: Request, exc: GiftCodeError):
        if isinstance(exc, PersistenceError):
            logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return error_response(exc)

    @app.get("/health")
    def health():
        return {"ok": True, "version": __version__}

    return app
