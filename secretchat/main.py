# secretchat/main.py

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from secretchat.core.config import Settings, settings as default_settings
from secretchat.core.logging import setup_logging, get_logger
from secretchat.core.state import RelayState
from secretchat.api.routes import root, health, rooms
from secretchat.api import stream
from secretchat.api import websocket as websocket_module

# Configure logging first
setup_logging(default_settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay: RelayState = app.state.relay
    logger.info("🚀 Application starting - reap delay %ss", relay.settings.ROOM_REAP_DELAY_SECONDS)
    yield
    await relay.shutdown()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its own relay state."""
    settings = settings or default_settings

    app = FastAPI(title="Secret Chat Relay", lifespan=lifespan)
    app.state.relay = RelayState(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(rooms.router)

    # Push transports
    app.include_router(stream.router)
    app.include_router(websocket_module.router)

    return app


app = create_app()


def run() -> None:
    import uvicorn
    uvicorn.run("secretchat.main:app", host=default_settings.HOST, port=default_settings.PORT)


if __name__ == "__main__":
    run()
