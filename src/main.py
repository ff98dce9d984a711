"""Entry point for the Twilio <-> OpenAI Realtime call relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_relay_controller
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.settings import Settings, get_settings
from relay.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


def check_startup_configuration(settings: Settings) -> None:
    """Refuse to serve calls that could never reach the speech backend."""

    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not configured")


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_startup_configuration(get_settings())
    yield
    await get_relay_controller().shutdown()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Relay",
    description="Relays Twilio Media Streams phone audio to and from the OpenAI Realtime API.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")


def run() -> None:
    import uvicorn

    current = get_settings()
    uvicorn.run(app, host=current.host, port=current.port, log_level=current.log_level.lower())


if __name__ == "__main__":
    run()
