from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from contextlib import asynccontextmanager
from databases import Database
from typing import Optional
import logging

from config import Settings
from db_sqlalchemy import ensure_db_dir
from errors import StoreError
from handlers import (
    index_handler, create_paste_handler, get_paste_handler, get_raw_paste_handler,
    renew_paste_handler, explore_handler, api_explore_handler, health_handler,
)
from rate_limit import RateLimiter
from store import PasteStore

logger = logging.getLogger(__name__)


async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Storage failure while serving %s %s: %s", request.method, request.url.path, exc)
    return ORJSONResponse(status_code=503, content={"message": "Storage temporarily unavailable"})


def create_app(settings: Optional[Settings] = None, store: Optional[PasteStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if store is None:
        ensure_db_dir(settings.db_path)
        store = PasteStore(Database(settings.db_url))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # startup
        await store.database.connect()
        applied = await store.ensure_schema()
        logger.info("mayfile ready (%d schema migrations applied)", len(applied))
        yield
        # shutdown
        await store.database.disconnect()

    app = FastAPI(title="mayfile", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.rate_limiter = RateLimiter(settings.create_per_min, enabled=not settings.disable_rate_limit)

    app.add_exception_handler(StoreError, store_error_handler)

    # CORS - allow all origins in dev, configure in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.get("/")(index_handler)
    app.post("/paste")(create_paste_handler)
    app.get("/p/{token}")(get_paste_handler)
    app.post("/p/{token}/renew")(renew_paste_handler)
    app.get("/r/{token}")(get_raw_paste_handler)
    app.get("/explore")(explore_handler)
    app.get("/api/explore")(api_explore_handler)
    app.get("/health")(health_handler)
    return app


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
