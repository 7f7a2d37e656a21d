"""Data-sharing opt-in (members who opt in get 10% off)"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from supabase import Client

from aktion.auth import AuthUser, get_current_user
from aktion.db import first_row
from aktion.deps import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


class DataSharingUpdate(BaseModel):
    opt_in: bool


@router.get("/data-sharing-status")
async def data_sharing_status(
    user: AuthUser = Depends(get_current_user), supabase: Client = Depends(get_supabase)
):
    row = first_row(
        supabase.table("users")
        .select("data_sharing_opt_in, data_sharing_opted_in_at")
        .eq("id", user.id)
        .limit(1)
        .execute()
    )
    row = row or {}
    return {
        "opted_in": bool(row.get("data_sharing_opt_in")),
        "opted_in_at": row.get("data_sharing_opted_in_at"),
    }


@router.post("/update-data-sharing")
async def update_data_sharing(
    req: DataSharingUpdate,
    user: AuthUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
):
    update_data = {"data_sharing_opt_in": req.opt_in}
    if req.opt_in:
        update_data["data_sharing_opted_in_at"] = datetime.now(timezone.utc).isoformat()

    row = first_row(
        supabase.table("users").update(update_data).eq("id", user.id).execute()
    )
    if row is None:
        raise HTTPException(status_code=500, detail="Failed to update status")

    logger.info(f"Data sharing updated: user={user.id}, opt_in={req.opt_in}")
    return {
        "success": True,
        "opted_in": row["data_sharing_opt_in"],
        "message": (
            "Data sharing enabled. You now have 10% off all memberships!"
            if req.opt_in
            else "Data sharing disabled. Your discount has been removed."
        ),
    }
