"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BackendInfo(BaseModel):
    api_key_configured: bool
    model: str
    voice: str
    audio_profile: str


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
    active_sessions: int
    backend: BackendInfo


class SessionStatus(BaseModel):
    session_id: str
    stream_sid: str | None
    call_sid: str | None
    state: str
    backend_ready: bool
    started_at: datetime
    last_activity: datetime
    pending_chunks: int
    chunks_forwarded: int
    frames_sent: int
    dropped_inbound_chunks: int = Field(description="Caller chunks lost to the pre-readiness buffer bound.")


class StatusResponse(BaseModel):
    active_sessions: int
    sessions: list[SessionStatus]
