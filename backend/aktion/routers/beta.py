"""Beta waitlist signup"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError
from pydantic import Field
from supabase import Client

from aktion.deps import get_supabase
from aktion.schemas import CamelModel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["beta"])

UNIQUE_VIOLATION = "23505"

BETA_TIERS = {
    "starter": {"name": "Beta Starter", "credits": 500, "monthlyPrice": 29},
    "plus": {"name": "Beta Plus", "credits": 1400, "monthlyPrice": 40},
}
ANNUAL_DISCOUNT = 0.8


class BetaSignupRequest(CamelModel):
    email: str = ""
    experience: str | None = None
    interests: list[str] = Field(default_factory=list)
    discovery: str | None = None
    selected_tier: str | None = None
    wants_annual: bool = False
    wants_newsletter: bool = False


def tier_summary(selected_tier: str | None) -> dict:
    tier = dict(BETA_TIERS["plus" if selected_tier == "plus" else "starter"])
    tier["annualPrice"] = round(tier["monthlyPrice"] * 12 * ANNUAL_DISCOUNT)
    return tier


@router.post("/beta-signup")
async def beta_signup(req: BetaSignupRequest, supabase: Client = Depends(get_supabase)):
    if "@" not in req.email:
        raise HTTPException(status_code=400, detail="Invalid email address")

    try:
        supabase.table("beta_signups").insert(
            {
                "email": req.email,
                "experience": req.experience,
                "interests": req.interests,
                "discovery": req.discovery,
                "selected_tier": req.selected_tier or "starter",
                "wants_annual": req.wants_annual,
                "wants_newsletter": req.wants_newsletter,
                "status": "pending",
            }
        ).execute()
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            raise HTTPException(status_code=409, detail="Email already registered for beta")
        raise

    logger.info(f"Beta signup: tier={req.selected_tier or 'starter'}")
    return {
        "success": True,
        "message": "Successfully signed up for beta!",
        "tier": tier_summary(req.selected_tier),
    }
