import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import config
from .dependencies import AppContext, build_context
from .errors import DungeonServerError
from .middleware import add_cors_middleware, add_logging_middleware
from .routers import rooms_router, websocket_router
from .services import SettlementClient

log = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def default_context() -> AppContext:
    settlement = None
    if config.SERVER_PRIVATE_KEY:
        settlement = SettlementClient(config.SETTLEMENT_WS_URL, config.SERVER_PRIVATE_KEY)
    else:
        log.warning("SERVER_PRIVATE_KEY is not set; settlement is disabled")
    return build_context(settlement)


def create_app(context: AppContext | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or default_context()
        app.state.context = ctx
        if ctx.settlement is not None:
            try:
                await ctx.settlement.connect()
            except DungeonServerError as e:
                log.error(f"Settlement connection failed at startup: {e.message}")
        yield
        await ctx.game_loop.shutdown()
        await ctx.rooms.shutdown()
        if ctx.settlement is not None:
            await ctx.settlement.disconnect()
        log.info("shutting down")

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(add_cors_middleware)
    app.add_middleware(add_logging_middleware)

    app.include_router(rooms_router)
    app.include_router(websocket_router)
    return app


configure_logging()
app = create_app()
