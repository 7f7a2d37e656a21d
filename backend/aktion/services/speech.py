"""OpenAI speech synthesis client (returns MP3 bytes)"""

import logging

from aktion.services.providers import ProviderClient

logger = logging.getLogger(__name__)

# alloy, echo, fable, onyx, nova, shimmer
DEFAULT_VOICE = "alloy"
DEFAULT_MODEL = "tts-1"


class SpeechClient(ProviderClient):
    name = "OpenAI"

    async def synthesize(
        self, text: str, voice: str = DEFAULT_VOICE, model: str = DEFAULT_MODEL
    ) -> bytes:
        response = await self._send(
            "POST",
            "/audio/speech",
            json={
                "model": model,
                "input": text,
                "voice": voice,
                "response_format": "mp3",
            },
        )
        logger.info(f"Synthesized {len(response.content)} bytes of speech ({voice}, {model})")
        return response.content
