"""Bearer token verification against Supabase auth"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException
from supabase import AuthError, Client

from aktion.deps import get_supabase

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str | None = None


async def get_current_user(
    authorization: str | None = Header(default=None),
    supabase: Client = Depends(get_supabase),
) -> AuthUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.removeprefix("Bearer ").strip()
    try:
        result = supabase.auth.get_user(token)
    except AuthError as e:
        logger.info(f"Rejected bearer token: {e}")
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = result.user if result else None
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return AuthUser(id=user.id, email=getattr(user, "email", None))
