"""Liveness check for the hosting platform"""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthcheck():
    return {"status": "ok", "service": "aktion-api"}
