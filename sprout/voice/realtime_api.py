"""Provider-side realtime voice sessions over plain HTTP.

``create_realtime_session`` asks the provider for an ephemeral session
carrying our instructions; ``forward_sdp_offer`` relays the browser's SDP
offer with the ephemeral key and returns the answer untouched.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sprout.config import settings
from sprout.results import RealtimeConnectionFailed, UpstreamError

logger = logging.getLogger(__name__)

TURN_DETECTION: dict[str, Any] = {
    "type": "server_vad",
    "threshold": 0.3,
    "prefix_padding_ms": 500,
    "silence_duration_ms": 800,
    "create_response": True,
    "interrupt_response": True,
}


def session_config(instructions: str) -> dict[str, Any]:
    """Request body for a new realtime session."""
    return {
        "model": settings.realtime_model,
        "voice": settings.voice_name,
        "instructions": instructions,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {"model": settings.transcription_model},
        "turn_detection": dict(TURN_DETECTION),
        "temperature": 0.7,
        "max_response_output_tokens": 1000,
    }


def _base_url() -> str:
    return settings.openai_base_url.rstrip("/")


async def create_realtime_session(instructions: str) -> dict[str, Any]:
    """Create a provider realtime session and return its JSON payload.

    Raises:
        UpstreamError: Transport failure or non-2xx response.
    """
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.external_timeout_seconds) as client:
            resp = await client.post(
                f"{_base_url()}/realtime/sessions",
                headers=headers,
                json=session_config(instructions),
            )
    except httpx.HTTPError as exc:
        logger.exception("Realtime session request failed")
        raise UpstreamError("Could not create a realtime session") from exc

    if resp.status_code not in (200, 201):
        logger.error("Realtime session returned %s: %s", resp.status_code, resp.text[:300])
        raise UpstreamError("Could not create a realtime session")
    return resp.json()


async def forward_sdp_offer(sdp: str, ephemeral_key: str) -> str:
    """POST the SDP offer and return the provider's SDP answer verbatim.

    Raises:
        RealtimeConnectionFailed: Transport failure or non-2xx response.
    """
    headers = {
        "Authorization": f"Bearer {ephemeral_key}",
        "Content-Type": "application/sdp",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.external_timeout_seconds) as client:
            resp = await client.post(
                f"{_base_url()}/realtime",
                params={"model": settings.realtime_model},
                headers=headers,
                content=sdp,
            )
    except httpx.HTTPError as exc:
        logger.exception("SDP offer forwarding failed")
        raise RealtimeConnectionFailed("Failed to establish realtime connection") from exc

    if resp.status_code not in (200, 201):
        logger.error("SDP offer rejected with %s: %s", resp.status_code, resp.text[:300])
        raise RealtimeConnectionFailed("Failed to establish realtime connection")
    return resp.text
