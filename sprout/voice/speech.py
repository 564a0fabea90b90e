"""Speech-to-text and text-to-speech via OpenAI audio endpoints.

Both are opaque one-shot calls.  Audio below ``settings.min_audio_bytes`` is
treated as silence, and synthesis failure returns None so the client can
fall back to on-device speech.
"""

from __future__ import annotations

import base64
import logging

from sprout.config import settings
from sprout.llm.openai_client import get_openai_client

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_CHARS = 3
MAX_SPEECH_CHARS = 4096


def is_silence(audio: bytes) -> bool:
    return len(audio) < settings.min_audio_bytes


async def transcribe(audio: bytes, filename: str = "audio.webm") -> str:
    """Return the transcript, or "" for silence / too-short speech.

    Provider failures propagate.
    """
    if is_silence(audio):
        logger.debug("Audio below %d bytes treated as silence", settings.min_audio_bytes)
        return ""
    result = await get_openai_client().audio.transcriptions.create(
        model=settings.transcription_model,
        file=(filename, audio),
        language="en",
    )
    text = (getattr(result, "text", "") or "").strip()
    return text if len(text) >= MIN_TRANSCRIPT_CHARS else ""


async def synthesize(text: str) -> str | None:
    """Speak *text*; returns base64 audio (mp3) or None on failure."""
    if not text.strip():
        return None
    try:
        response = await get_openai_client().audio.speech.create(
            model=settings.speech_model,
            voice=settings.voice_name,
            input=text[:MAX_SPEECH_CHARS],
            response_format="mp3",
        )
        audio = response.read()
    except Exception:
        logger.warning("Speech synthesis failed; client will use local TTS", exc_info=True)
        return None
    return base64.b64encode(audio).decode("ascii")
