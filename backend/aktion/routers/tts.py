"""Text-to-speech (OpenAI), answered with raw MP3 bytes"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from aktion.deps import get_speech
from aktion.schemas import RequiredStr
from aktion.services.providers import ProviderHTTPError
from aktion.services.speech import DEFAULT_MODEL, DEFAULT_VOICE, SpeechClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tts"])


class SpeechRequest(BaseModel):
    text: RequiredStr
    voice: str = DEFAULT_VOICE
    # tts-1 or tts-1-hd
    model: str = DEFAULT_MODEL


@router.post("/tts")
async def text_to_speech(req: SpeechRequest, speech: SpeechClient = Depends(get_speech)):
    logger.info(f"TTS request: chars={len(req.text)}, voice={req.voice}, model={req.model}")

    try:
        audio = await speech.synthesize(req.text, voice=req.voice, model=req.model)
    except ProviderHTTPError as e:
        raise HTTPException(status_code=500, detail=f"OpenAI TTS error: {e.status}")

    return Response(content=audio, media_type="audio/mpeg")
