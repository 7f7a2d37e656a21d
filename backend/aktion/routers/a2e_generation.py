"""
A2E generation endpoints (paid)

Endpoints:
- POST   /api/a2e/text2video         -> prompt to video
- POST   /api/a2e/talking-photo      -> animate a still with an audio track
- POST   /api/a2e/talking-video      -> re-voice a clip with an audio track
- POST   /api/a2e/lipsync            -> talking photo from audio or text
- POST   /api/a2e/face-swap          -> put a face onto a video
- POST   /api/a2e/dubbing            -> translate the speech in a video
- POST   /api/a2e/faces/add          -> add a face to the swap library
- GET    /api/a2e/faces/list
- DELETE /api/a2e/faces/delete
- POST   /api/a2e/train-avatar       -> avatar from a video or an image
- POST   /api/a2e/continue-training  -> studio lip-sync model for an avatar

Long-running tasks are started and then polled until A2E reports a result;
the caller's credits stay reserved until then.
"""

import logging
from typing import Awaitable, Callable, Literal

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from aktion.deps import get_a2e, get_ledger, get_supabase
from aktion.schemas import CamelModel, RequiredStr
from aktion.services.a2e import DEFAULT_VOICE_ID, A2EClient
from aktion.services.credits import CREDIT_COSTS, CreditLedger
from aktion.services.providers import ProviderEnvelopeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/a2e", tags=["a2e"])


# =====================================================
# Request models
# =====================================================
class Text2VideoRequest(CamelModel):
    prompt: RequiredStr
    user_id: RequiredStr
    negative_prompt: str | None = None


class TalkingPhotoRequest(CamelModel):
    image_url: RequiredStr
    audio_url: RequiredStr
    user_id: RequiredStr
    name: str = "Talking Photo"
    duration: int = 3
    prompt: str | None = None
    negative_prompt: str | None = None


class TalkingVideoRequest(CamelModel):
    video_url: RequiredStr
    audio_url: RequiredStr
    user_id: RequiredStr
    duration: int = 5
    prompt: str | None = None


class LipsyncRequest(CamelModel):
    image_url: RequiredStr
    user_id: RequiredStr
    audio_url: str | None = None
    text: str | None = None


class FaceSwapRequest(CamelModel):
    face_url: RequiredStr
    video_url: RequiredStr
    user_id: RequiredStr
    name: str = "Face Swap"


class DubbingRequest(CamelModel):
    source_url: RequiredStr
    target_lang: RequiredStr
    user_id: RequiredStr
    source_lang: str = "auto"
    num_speakers: int = 1
    drop_background_audio: bool = False
    name: str = "Dubbing Task"


class FaceAddRequest(CamelModel):
    face_url: RequiredStr
    user_id: RequiredStr


class FaceRef(CamelModel):
    face_id: RequiredStr


class TrainAvatarRequest(CamelModel):
    name: RequiredStr
    gender: Literal["male", "female"]
    user_id: RequiredStr
    video_url: str | None = None
    image_url: str | None = None
    prompt: str | None = None
    negative_prompt: str | None = None
    background_color: str | None = None
    background_image: str | None = None


class ContinueTrainingRequest(CamelModel):
    avatar_id: RequiredStr
    user_id: RequiredStr


# =====================================================
# Polled tasks
# =====================================================
async def _run_paid_task(
    a2e: A2EClient,
    ledger: CreditLedger,
    *,
    user_id: str,
    cost: int,
    transaction_type: str,
    description: str,
    resource: str,
    start: Callable[[], Awaitable[str]],
) -> dict:
    """Start a task under a credit hold and wait for its result URL."""
    a2e.ensure_configured()

    with ledger.hold(user_id, cost, transaction_type, description):
        task_id = await start()
        logger.info(f"{resource} task started: id={task_id}, user={user_id}")
        result_url = await a2e.wait_for_task(resource, task_id)

    return {"output_url": result_url, "task_id": task_id, "status": "success"}


@router.post("/text2video")
async def text2video(
    req: Text2VideoRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Generate a video from a prompt and wait for the result."""
    logger.info(f"Text2Video request: user={req.user_id}, prompt={req.prompt[:100]!r}")
    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["TEXT_TO_VIDEO"],
        transaction_type="generation",
        description="Text to Video (A2E)",
        resource="userText2Video",
        start=lambda: a2e.start_text2video(req.prompt, req.negative_prompt),
    )


@router.post("/talking-photo")
async def talking_photo(
    req: TalkingPhotoRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["TALKING_PHOTO"],
        transaction_type="talking_photo",
        description="Talking photo (A2E)",
        resource="talkingPhoto",
        start=lambda: a2e.start_talking_photo(
            req.image_url,
            req.audio_url,
            name=req.name,
            duration=req.duration,
            prompt=req.prompt,
            negative_prompt=req.negative_prompt,
        ),
    )


@router.post("/talking-video")
async def talking_video(
    req: TalkingVideoRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["TALKING_VIDEO"],
        transaction_type="dialogue",
        description="Talking video generation (A2E)",
        resource="talkingVideo",
        start=lambda: a2e.start_talking_video(
            req.video_url, req.audio_url, req.duration, req.prompt
        ),
    )


@router.post("/lipsync")
async def lipsync(
    req: LipsyncRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Talking photo where the audio is either given or spoken from text first."""
    if not req.audio_url and not req.text:
        raise HTTPException(
            status_code=400, detail="Either audio URL or text for TTS is required"
        )

    async def start() -> str:
        audio_url = req.audio_url
        if not audio_url:
            speech = await a2e.send_tts({"text": req.text, "voice_id": DEFAULT_VOICE_ID})
            audio_url = speech.get("audio_url")
            if not audio_url:
                raise ProviderEnvelopeError(a2e.name, "No audio URL returned")
        return await a2e.start_talking_photo(req.image_url, audio_url, name="Lipsync")

    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["LIPSYNC"],
        transaction_type="lipsync",
        description="Lipsync generation (A2E)",
        resource="talkingPhoto",
        start=start,
    )


@router.post("/face-swap")
async def face_swap(
    req: FaceSwapRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["FACE_SWAP"],
        transaction_type="face_swap",
        description="Face swap (A2E)",
        resource="userFaceSwapTask",
        start=lambda: a2e.start_face_swap(req.face_url, req.video_url, req.name),
    )


@router.post("/dubbing")
async def dubbing(
    req: DubbingRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_paid_task(
        a2e,
        ledger,
        user_id=req.user_id,
        cost=CREDIT_COSTS["DUBBING"],
        transaction_type="dubbing",
        description=f"Dubbing ({req.source_lang} -> {req.target_lang})",
        resource="userDubbing",
        start=lambda: a2e.start_dubbing(
            req.source_url,
            req.target_lang,
            name=req.name,
            source_lang=req.source_lang,
            num_speakers=req.num_speakers,
            drop_background_audio=req.drop_background_audio,
        ),
    )


# =====================================================
# Face library
# =====================================================
@router.post("/faces/add")
async def add_face(
    req: FaceAddRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    cost = CREDIT_COSTS["FACE_ADD"]
    a2e.ensure_configured()

    with ledger.hold(req.user_id, cost, "generation", "Face image added (A2E)"):
        faces = await a2e.add_face(req.face_url)

    return {"success": True, "faces": faces, "cost": cost, "message": "Face added to library"}


@router.get("/faces/list")
async def list_faces(a2e: A2EClient = Depends(get_a2e)):
    faces = await a2e.list_faces()
    return {"faces": faces, "totalCount": len(faces)}


@router.delete("/faces/delete")
async def delete_face(req: FaceRef, a2e: A2EClient = Depends(get_a2e)):
    await a2e.delete_face(req.face_id)
    logger.info(f"Face deleted: {req.face_id}")
    return {"success": True, "message": "Face deleted successfully"}


# =====================================================
# Avatar training
# =====================================================
@router.post("/train-avatar")
async def train_avatar(
    req: TrainAvatarRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
    supabase: Client = Depends(get_supabase),
):
    """Start avatar training from a video or, when no video is given, an image.

    The charge is recorded on the character_references row so a failed
    training can be refunded by avatar-status.
    """
    if not req.video_url and not req.image_url:
        raise HTTPException(
            status_code=400, detail="Either videoUrl or imageUrl is required"
        )

    body = {"name": req.name, "gender": req.gender}
    if req.video_url:
        cost = CREDIT_COSTS["AVATAR_TRAINING_VIDEO"]
        body["video_url"] = req.video_url
        # Field names are spelled this way upstream
        if req.background_color:
            body["video_backgroud_color"] = req.background_color
        if req.background_image:
            body["video_backgroud_image"] = req.background_image
    else:
        cost = CREDIT_COSTS["AVATAR_TRAINING_IMAGE"]
        body["image_url"] = req.image_url
        body["model_version"] = "V2.1"
        if req.prompt:
            body["prompt"] = req.prompt
        if req.negative_prompt:
            body["negative_prompt"] = req.negative_prompt

    a2e.ensure_configured()
    with ledger.hold(req.user_id, cost, "generation", f"Avatar training - {req.name}"):
        avatar_id = await a2e.start_avatar_training(body)
        if not avatar_id:
            raise ProviderEnvelopeError(a2e.name, "No avatar id returned")

    supabase.table("character_references").insert(
        {
            "avatar_id": avatar_id,
            "user_id": req.user_id,
            "name": req.name,
            "image_url": req.image_url or "",
            "generation_type": "avatar",
            "avatar_status": "training",
            "credits_charged": cost,
            "is_public": False,
        }
    ).execute()

    logger.info(f"Avatar training started: avatar={avatar_id}, cost={cost}")
    return {
        "avatar_id": avatar_id,
        "status": "training",
        "cost": cost,
        "message": f"Avatar training started ({cost} credits)",
    }


@router.post("/continue-training")
async def continue_training(
    req: ContinueTrainingRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Train the personalised lip-sync model for an existing avatar."""
    cost = CREDIT_COSTS["AVATAR_CONTINUE_TRAINING"]
    a2e.ensure_configured()

    with ledger.hold(req.user_id, cost, "generation", "Studio avatar training"):
        await a2e.continue_avatar_training(req.avatar_id)

    return {
        "success": True,
        "avatar_id": req.avatar_id,
        "status": "training",
        "cost": cost,
        "message": "Studio avatar training started",
    }
