"""Per-call relay between Twilio Media Streams and the OpenAI Realtime API.

Twilio websocket -> RelayController -> CallSession -> RealtimeBackendClient,
and the same path in reverse for model audio.
"""
