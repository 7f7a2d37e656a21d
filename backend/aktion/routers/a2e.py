"""
A2E avatar/video endpoints

Paid generations reserve credits before the upstream call and put them back
if A2E fails, see CreditLedger.hold.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from supabase import Client

from aktion.auth import AuthUser, get_current_user
from aktion.db import first_row
from aktion.deps import get_a2e, get_ledger, get_supabase
from aktion.schemas import CamelModel, RequiredStr
from aktion.services.a2e import DEFAULT_VOICE_ID, A2EClient
from aktion.services.credits import CREDIT_COSTS, CreditLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/a2e", tags=["a2e"])


# =====================================================
# Request models
# =====================================================
class AvatarRef(CamelModel):
    avatar_id: RequiredStr


class AvatarPrivacyRequest(CamelModel):
    avatar_id: RequiredStr
    is_public: bool | None = None


class BackgroundAddRequest(CamelModel):
    image_url: RequiredStr
    user_id: RequiredStr


class BackgroundRef(CamelModel):
    background_id: RequiredStr


class VoiceCloneRequest(CamelModel):
    audio_url: RequiredStr
    name: RequiredStr
    user_id: RequiredStr
    description: str | None = None
    # a2e, cartesia, minimax, elevenlabs
    model: str = "a2e"


class TTSRequest(BaseModel):
    text: RequiredStr
    voice_id: str | None = None
    user_voice_id: str | None = None
    country: str = "en"
    region: str = "US"
    speed: float = 1.0
    pitch: float = 0
    volume: float = 0


# =====================================================
# Avatars
# =====================================================
@router.get("/list-avatars")
async def list_avatars(
    type_: str = Query(default="", alias="type"), a2e: A2EClient = Depends(get_a2e)
):
    """User's custom avatars plus system defaults (type=custom for custom only)."""
    avatars = await a2e.list_characters(type_)
    logger.info(f"Found {len(avatars)} avatars")
    return {"avatars": avatars}


@router.get("/avatar-status")
async def avatar_status(
    avatar_id: str | None = None,
    a2e: A2EClient = Depends(get_a2e),
    supabase: Client = Depends(get_supabase),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Check training status and mirror terminal states into character_references.

    A training that failed gets its credits back, once: only the request that
    moves the row to "failed" issues the refund.
    """
    if not avatar_id:
        raise HTTPException(status_code=400, detail="avatar_id is required")

    data = await a2e.get_avatar(avatar_id)
    status = data.get("status") or "unknown"
    is_complete = status in ("completed", "done")
    is_failed = status in ("failed", "error")

    if is_complete:
        supabase.table("character_references").update({"avatar_status": "completed"}).eq(
            "avatar_id", avatar_id
        ).execute()
        logger.info(f"Avatar {avatar_id} status updated to completed")
    elif is_failed:
        changed = (
            supabase.table("character_references")
            .update({"avatar_status": "failed"})
            .eq("avatar_id", avatar_id)
            .neq("avatar_status", "failed")
            .execute()
        )
        logger.info(f"Avatar {avatar_id} status updated to failed")
        for row in changed.data or []:
            if row.get("user_id") and row.get("credits_charged"):
                ledger.refund(
                    row["user_id"], row["credits_charged"], "Refund - avatar training failed"
                )

    return {
        "avatar_id": avatar_id,
        "status": status,
        "is_complete": is_complete,
        "is_failed": is_failed,
        "raw_data": data,
    }


@router.post("/remove-avatar")
async def remove_avatar(req: AvatarRef, a2e: A2EClient = Depends(get_a2e)):
    await a2e.remove_avatar(req.avatar_id)
    logger.info(f"Avatar removed: {req.avatar_id}")
    return {"success": True, "message": "Avatar removed successfully"}


@router.post("/toggle-privacy")
async def toggle_privacy(
    req: AvatarPrivacyRequest,
    user: AuthUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
):
    """Only the owner may change an avatar's visibility."""
    is_public = bool(req.is_public)
    existing = first_row(
        supabase.table("character_references")
        .select("id, user_id, is_public")
        .eq("avatar_id", req.avatar_id)
        .limit(1)
        .execute()
    )

    if existing is None:
        # Not tracked yet: the caller becomes the owner
        supabase.table("character_references").insert(
            {
                "avatar_id": req.avatar_id,
                "user_id": user.id,
                "is_public": is_public,
                "name": "Unnamed Avatar",
                "image_url": "",
                "generation_type": "avatar",
            }
        ).execute()
        return {"success": True, "is_public": is_public, "message": "Avatar privacy updated"}

    if existing["user_id"] != user.id:
        raise HTTPException(
            status_code=403,
            detail="You can only change privacy settings for your own avatars",
        )

    supabase.table("character_references").update({"is_public": is_public}).eq(
        "avatar_id", req.avatar_id
    ).execute()

    logger.info(f"Avatar privacy updated: avatar={req.avatar_id}, public={is_public}")
    return {
        "success": True,
        "is_public": is_public,
        "message": "Avatar is now public" if is_public else "Avatar is now private",
    }


# =====================================================
# Backgrounds
# =====================================================
@router.post("/backgrounds/list")
async def list_backgrounds(a2e: A2EClient = Depends(get_a2e)):
    backgrounds = await a2e.list_backgrounds()
    return {
        "backgrounds": backgrounds,
        "custom": [bg for bg in backgrounds if bg.get("type") == "custom"],
        "default": [bg for bg in backgrounds if bg.get("type") == "default"],
    }


@router.post("/backgrounds/add")
async def add_background(
    req: BackgroundAddRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    cost = CREDIT_COSTS["BACKGROUND_ADD"]
    a2e.ensure_configured()

    with ledger.hold(req.user_id, cost, "generation", "Custom background (A2E)"):
        background = await a2e.add_background(req.image_url)

    logger.info(f"Background added: id={(background or {}).get('_id')}, cost={cost}")
    return {
        "success": True,
        "background": background,
        "cost": cost,
        "message": "Background added to your library",
    }


@router.post("/backgrounds/delete")
async def delete_background(req: BackgroundRef, a2e: A2EClient = Depends(get_a2e)):
    await a2e.delete_background(req.background_id)
    logger.info(f"Background deleted: {req.background_id}")
    return {"success": True, "message": "Background deleted successfully"}


# =====================================================
# Voices
# =====================================================
@router.get("/voices/list")
async def list_public_voices(
    country: str = "en",
    region: str = "US",
    voice_map_type: str = "en-US",
    a2e: A2EClient = Depends(get_a2e),
):
    """Public TTS voices, grouped by A2E into female/male trees."""
    groups = await a2e.list_voices(country, region, voice_map_type)

    def children(value: str) -> list:
        for group in groups:
            if group.get("value") == value:
                return group.get("children") or []
        return []

    female = children("female")
    male = children("male")
    return {
        "voices": groups,
        "female": female,
        "male": male,
        "totalCount": len(female) + len(male),
    }


@router.get("/voices/list-clones")
async def list_voice_clones(a2e: A2EClient = Depends(get_a2e)):
    """Trained voice clones; records still training are left out."""
    records = await a2e.list_voice_clones()
    clones = [r for r in records if r.get("current_status") == "completed"]
    return {"voiceClones": clones, "totalCount": len(clones)}


@router.post("/voices/clone")
async def clone_voice(
    req: VoiceCloneRequest,
    a2e: A2EClient = Depends(get_a2e),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Start voice clone training from an audio sample (usually about a minute)."""
    cost = CREDIT_COSTS["VOICE_CLONE"]
    a2e.ensure_configured()

    with ledger.hold(req.user_id, cost, "generation", f"Voice clone training - {req.name}"):
        data = await a2e.train_voice(req.name, req.audio_url, req.description, req.model)

    voice_id = data.get("_id") or data.get("speaker_id")
    logger.info(f"Voice training started: voice={voice_id}, model={req.model}")
    return {
        "voice_id": voice_id,
        "speaker_id": voice_id,
        "status": "training",
        "message": "Voice clone training started (usually completes in 1 minute)",
        "cost": cost,
    }


@router.post("/tts")
async def a2e_tts(req: TTSRequest, a2e: A2EClient = Depends(get_a2e)):
    """Speech from a public voice or a custom clone (speaker_id)."""
    body = {"text": req.text, "speed": req.speed, "pitch": req.pitch, "volume": req.volume}
    if req.user_voice_id:
        body.update(
            {"user_voice_id": req.user_voice_id, "country": req.country, "region": req.region}
        )
    else:
        body["voice_id"] = req.voice_id or DEFAULT_VOICE_ID

    data = await a2e.send_tts(body)
    audio_url = data.get("audio_url")
    if not audio_url:
        raise HTTPException(status_code=500, detail="No audio URL returned")

    return {
        "audio_url": audio_url,
        "task_id": data.get("_id"),
        "voice_used": "custom_clone" if req.user_voice_id else "public",
        "status": "success",
    }
