"""RunComfy workflows: sketch previews and first/last frame sequences"""

import logging

from fastapi import APIRouter, Depends
from pydantic import Field

from aktion.config import Settings
from aktion.deps import get_ledger, get_runcomfy, get_settings
from aktion.schemas import CamelModel, RequiredStr
from aktion.services.credits import CREDIT_COSTS, CreditLedger
from aktion.services.runcomfy import RunComfyClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runcomfy", tags=["runcomfy"])


class PreviewRequest(CamelModel):
    image: RequiredStr
    user_id: RequiredStr
    creativity: float = Field(default=0.7, ge=0, le=1)
    character_refs: list = Field(default_factory=list)


@router.post("/preview")
async def generate_preview(
    req: PreviewRequest,
    settings: Settings = Depends(get_settings),
    runcomfy: RunComfyClient = Depends(get_runcomfy),
    ledger: CreditLedger = Depends(get_ledger),
):
    cost = CREDIT_COSTS["PREVIEW_GENERATION"]
    runcomfy.ensure_configured()

    with ledger.hold(req.user_id, cost, "preview", "Sketch preview generation"):
        result = await runcomfy.run_workflow(
            settings.dzine_workflow_id,
            {
                "image": req.image,
                "creativity": req.creativity,
                "character_references": req.character_refs,
            },
        )
        output_url = RunComfyClient.output_url(result)

    logger.info(f"Preview generated for user={req.user_id}")
    return {"output_url": output_url, "status": "success"}


class SequenceRequest(CamelModel):
    first_frame: RequiredStr
    last_frame: RequiredStr
    user_id: RequiredStr
    creativity: float = Field(default=0.5, ge=0, le=1)


@router.post("/sequence")
async def generate_sequence(
    req: SequenceRequest,
    settings: Settings = Depends(get_settings),
    runcomfy: RunComfyClient = Depends(get_runcomfy),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Video between two key frames (URLs or data URIs) via Wan2.2-Fun-Inp."""
    cost = CREDIT_COSTS["SEQUENCE_GENERATION"]
    runcomfy.ensure_configured()

    with ledger.hold(req.user_id, cost, "generation", "Sequence generation (Wan2.2-Fun-Inp)"):
        run_id = await runcomfy.start_run(
            f"{settings.runcomfy_user_id}/Wan2.2-Fun-Inp",
            settings.wan_fun_inp_deployment_id,
            {
                "first_frame_loader": {"image": req.first_frame},
                "last_frame_loader": {"image": req.last_frame},
            },
        )
        logger.info(f"Sequence run started: id={run_id}, user={req.user_id}")
        output_url = await runcomfy.wait_for_run(run_id, "Wan2.2 generation")

    return {"output_url": output_url, "status": "success"}
