from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import redis_backend
from constants import CORS_ORIGINS, LOG_FILE, LOG_FORMAT, LOG_LEVEL
from logging_config import get_logger, setup_logging
from relay import Relay
from routers.messages import messages_router
from routers.relay import relay_router
from routers.rooms import rooms_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE, log_format=LOG_FORMAT)
logger = get_logger(__name__)


def create_app(store=None) -> FastAPI:
    """Build the relay application around a message store (redis by default)."""
    store = store if store is not None else redis_backend
    relay = Relay(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.ping()
        logger.info("Relay ready to accept connections")
        yield
        logger.info(f"Relay shutting down with {relay.registry.connection_count()} live connections")

    app = FastAPI(title="Message Relay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.relay = relay

    app.include_router(relay_router)
    app.include_router(messages_router)
    app.include_router(rooms_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "connections": relay.registry.connection_count()}

    return app


app = create_app()

logger.info("FastAPI application initialized")
