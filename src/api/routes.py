"""Operational endpoints: health and live call status."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from api.dependencies import get_relay_controller
from api.schemas import BackendInfo, HealthResponse, SessionStatus, StatusResponse
from config.settings import get_settings
from relay.controller import RelayController

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(controller: RelayController = Depends(get_relay_controller)) -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        active_sessions=len(controller.sessions),
        backend=BackendInfo(
            api_key_configured=bool(settings.openai_api_key),
            model=settings.openai_realtime_model,
            voice=settings.openai_voice,
            audio_profile=settings.audio_profile,
        ),
    )


@router.get("/status", response_model=StatusResponse)
async def status(controller: RelayController = Depends(get_relay_controller)) -> StatusResponse:
    rows = controller.snapshot()
    return StatusResponse(
        active_sessions=len(rows),
        sessions=[SessionStatus(**row) for row in rows],
    )
