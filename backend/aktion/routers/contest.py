"""
Contest API (submission tokens, submissions, votes)

Endpoints:
- GET    /api/contest/active                  -> current contest
- POST   /api/contest/purchase-token          -> payment intent for a submission token
- POST   /api/contest/confirm-token-payment   -> issue the token once the payment succeeded
- GET    /api/contest/token                   -> look up a token by id or code
- POST   /api/contest/submit-with-token       -> submit using a prepaid token
- GET    /api/contest/submit-with-token       -> user's usable tokens for a contest
- POST   /api/contest/submit                  -> pay-per-submission flow
- POST   /api/contest/confirm-payment         -> approve a paid submission
- GET    /api/contest/submissions             -> approved submissions by votes
- POST   /api/contest/vote / DELETE           -> cast / withdraw a vote
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from aktion.db import first_row
from aktion.deps import get_payments, get_supabase
from aktion.schemas import CamelModel, RequiredStr
from aktion.services.contest import (
    TOKEN_SUBMISSION_ALLOWANCE,
    TOKEN_VOTES,
    add_to_pot,
    count_user_rows,
    deadline_passed,
    get_contest,
    quote_price,
    unique_token_code,
)
from aktion.services.payments import StripeGateway, stripe_value

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contest", tags=["contest"])


# =====================================================
# Request models
# =====================================================
class TokenPurchaseRequest(CamelModel):
    contest_id: RequiredStr
    user_id: RequiredStr
    user_email: RequiredStr


class TokenPaymentConfirmRequest(CamelModel):
    payment_intent_id: RequiredStr


class SubmissionFields(CamelModel):
    contest_id: RequiredStr
    user_id: RequiredStr
    user_email: RequiredStr
    submission_name: RequiredStr
    video_url: RequiredStr
    user_name: str | None = None
    platform: str | None = None
    description: str | None = None
    duration: float | None = None

    def to_row(self) -> dict:
        return {
            "contest_id": self.contest_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "submission_name": self.submission_name,
            "video_url": self.video_url,
            "platform": self.platform or "other",
            "description": self.description,
            "duration": self.duration,
        }


class TokenSubmissionRequest(SubmissionFields):
    token_id: RequiredStr


class PaymentConfirmRequest(CamelModel):
    payment_intent_id: RequiredStr
    submission_id: RequiredStr


class VoteRequest(CamelModel):
    submission_id: RequiredStr
    user_id: RequiredStr
    vote_type: RequiredStr


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_contest(supabase: Client, contest_id: str, columns: str = "*") -> dict:
    contest = get_contest(supabase, contest_id, columns)
    if contest is None:
        raise HTTPException(status_code=404, detail="Contest not found")
    return contest


def _require_succeeded(payments: StripeGateway, payment_intent_id: str):
    intent = payments.retrieve_payment_intent(payment_intent_id)
    if intent["status"] != "succeeded":
        raise HTTPException(status_code=400, detail="Payment not completed")
    return intent


# =====================================================
# Current contest
# =====================================================
@router.get("/active")
async def get_active_contest(supabase: Client = Depends(get_supabase)):
    """Newest active contest, falling back to the newest contest of any status."""
    contest = first_row(
        supabase.table("contests")
        .select("*")
        .eq("status", "active")
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    if contest is None:
        contest = first_row(
            supabase.table("contests")
            .select("*")
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    if contest is None:
        raise HTTPException(status_code=404, detail="No contest found")

    return {"contest": contest}


# =====================================================
# Submission tokens
# =====================================================
@router.post("/purchase-token")
async def purchase_token(
    req: TokenPurchaseRequest,
    supabase: Client = Depends(get_supabase),
    payments: StripeGateway = Depends(get_payments),
):
    """Create the payment intent for the user's next submission token."""
    prior = count_user_rows(supabase, "submission_tokens", req.contest_id, req.user_id)
    contest = _require_contest(
        supabase, req.contest_id, "id, first_submission_price, additional_submission_price"
    )
    quote = quote_price(contest, prior)

    intent = payments.create_payment_intent(
        amount=quote.amount,
        metadata={
            "contestId": req.contest_id,
            "userId": req.user_id,
            "userEmail": req.user_email,
            "type": "submission_token",
            "isFirstPurchase": "true" if quote.is_first else "false",
        },
        receipt_email=req.user_email,
    )

    logger.info(
        f"Token purchase started: contest={req.contest_id}, user={req.user_id}, "
        f"amount={quote.amount}, first={quote.is_first}"
    )
    return {
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["id"],
        "amount": quote.amount,
        "isFirstPurchase": quote.is_first,
    }


@router.post("/confirm-token-payment")
async def confirm_token_payment(
    req: TokenPaymentConfirmRequest,
    supabase: Client = Depends(get_supabase),
    payments: StripeGateway = Depends(get_payments),
):
    """Issue the submission token for a succeeded payment (idempotent)."""
    intent = _require_succeeded(payments, req.payment_intent_id)

    metadata = stripe_value(intent, "metadata")
    contest_id = stripe_value(metadata, "contestId")
    user_id = stripe_value(metadata, "userId")
    if not contest_id or not user_id:
        raise HTTPException(status_code=400, detail="Invalid payment metadata")

    existing = first_row(
        supabase.table("submission_tokens")
        .select("*")
        .eq("payment_intent_id", req.payment_intent_id)
        .limit(1)
        .execute()
    )
    if existing is not None:
        return {"success": True, "token": existing}

    token_code = unique_token_code(supabase)
    if token_code is None:
        raise HTTPException(status_code=500, detail="Failed to generate unique token")

    result = (
        supabase.table("submission_tokens")
        .insert(
            {
                "user_id": user_id,
                "contest_id": contest_id,
                "token_code": token_code,
                "payment_intent_id": req.payment_intent_id,
                "amount_paid": intent["amount"],
                "submission_allowance": TOKEN_SUBMISSION_ALLOWANCE,
                "votes_remaining": TOKEN_VOTES,
                "is_first_purchase": stripe_value(metadata, "isFirstPurchase") == "true",
                "status": "active",
            }
        )
        .execute()
    )
    token = first_row(result)
    if token is None:
        raise HTTPException(status_code=500, detail="Failed to create token")

    logger.info(f"Token issued: code={token_code}, contest={contest_id}, user={user_id}")
    return {"success": True, "token": token}


@router.get("/token")
async def get_token(
    token_id: str | None = Query(default=None, alias="tokenId"),
    token_code: str | None = Query(default=None, alias="tokenCode"),
    user_id: str | None = Query(default=None, alias="userId"),
    supabase: Client = Depends(get_supabase),
):
    if not token_id and not token_code:
        raise HTTPException(status_code=400, detail="tokenId or tokenCode is required")

    query = supabase.table("submission_tokens").select("*")
    if token_id:
        query = query.eq("id", token_id)
    else:
        query = query.eq("token_code", token_code)
    if user_id:
        query = query.eq("user_id", user_id)

    token = first_row(query.limit(1).execute())
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found")

    return {"token": token}


# =====================================================
# Submissions
# =====================================================
@router.post("/submit-with-token")
async def submit_with_token(
    req: TokenSubmissionRequest, supabase: Client = Depends(get_supabase)
):
    """Submit an entry paid for by a previously purchased token."""
    contest = _require_contest(supabase, req.contest_id)
    if deadline_passed(contest):
        raise HTTPException(status_code=400, detail="Contest submission deadline has passed")

    token = first_row(
        supabase.table("submission_tokens")
        .select("*")
        .eq("id", req.token_id)
        .eq("user_id", req.user_id)
        .eq("contest_id", req.contest_id)
        .limit(1)
        .execute()
    )
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found or invalid")
    if token["status"] != "active":
        raise HTTPException(status_code=400, detail="Token is not active")
    if token["submission_allowance"] < 1:
        raise HTTPException(
            status_code=400, detail="Token has no submission allowance remaining"
        )

    # Filtered on the allowance we read so concurrent submissions cannot both spend it
    allowance = token["submission_allowance"] - 1
    votes = token.get("votes_remaining") or 0
    consumed = (
        supabase.table("submission_tokens")
        .update(
            {
                "submission_allowance": allowance,
                "used_for_submission_at": _now(),
                "status": "used" if allowance == 0 and votes == 0 else "active",
            }
        )
        .eq("id", req.token_id)
        .eq("submission_allowance", token["submission_allowance"])
        .execute()
    )
    if not consumed.data:
        raise HTTPException(status_code=409, detail="Token was used by another submission")

    # Auto-approved since the token is prepaid
    row = req.to_row()
    row.update(
        {
            "payment_intent_id": token.get("payment_intent_id"),
            "amount_paid": token.get("amount_paid"),
            "is_first_submission": token.get("is_first_purchase"),
            "status": "approved",
        }
    )
    submission = first_row(supabase.table("contest_submissions").insert(row).execute())
    if submission is None:
        raise HTTPException(status_code=500, detail="Failed to create submission")

    add_to_pot(supabase, contest["id"], token.get("amount_paid") or 0)

    logger.info(f"Token submission: contest={req.contest_id}, user={req.user_id}")
    return {"success": True, "submission": submission, "votesRemaining": votes}


@router.get("/submit-with-token")
async def list_usable_tokens(
    user_id: str | None = Query(default=None, alias="userId"),
    contest_id: str | None = Query(default=None, alias="contestId"),
    supabase: Client = Depends(get_supabase),
):
    if not user_id or not contest_id:
        raise HTTPException(status_code=400, detail="userId and contestId are required")

    result = (
        supabase.table("submission_tokens")
        .select("*")
        .eq("user_id", user_id)
        .eq("contest_id", contest_id)
        .eq("status", "active")
        .gt("submission_allowance", 0)
        .order("created_at", desc=True)
        .execute()
    )
    return {"tokens": result.data or []}


@router.post("/submit")
async def submit_paid(
    req: SubmissionFields,
    supabase: Client = Depends(get_supabase),
    payments: StripeGateway = Depends(get_payments),
):
    """Pay-per-submission: create the intent and a pending submission."""
    contest = _require_contest(supabase, req.contest_id)
    if deadline_passed(contest):
        raise HTTPException(status_code=400, detail="Contest submission deadline has passed")

    prior = count_user_rows(supabase, "contest_submissions", req.contest_id, req.user_id)
    quote = quote_price(contest, prior)

    intent = payments.create_payment_intent(
        amount=quote.amount,
        metadata={
            "contestId": req.contest_id,
            "userId": req.user_id,
            "userEmail": req.user_email,
            "submissionName": req.submission_name,
            "type": "contest_submission",
        },
        description=f"Contest submission: {req.submission_name}",
    )

    row = req.to_row()
    row.update(
        {
            "payment_intent_id": intent["id"],
            "amount_paid": quote.amount,
            "is_first_submission": quote.is_first,
            "status": "pending_payment",
        }
    )
    submission = first_row(supabase.table("contest_submissions").insert(row).execute())
    if submission is None:
        raise HTTPException(status_code=500, detail="Failed to create submission")

    return {
        "clientSecret": intent["client_secret"],
        "submissionId": submission["id"],
        "amount": quote.amount,
        "isFirstSubmission": quote.is_first,
    }


@router.post("/confirm-payment")
async def confirm_submission_payment(
    req: PaymentConfirmRequest,
    supabase: Client = Depends(get_supabase),
    payments: StripeGateway = Depends(get_payments),
):
    """Approve a paid submission; the pot only grows on the first approval."""
    _require_succeeded(payments, req.payment_intent_id)

    submission = first_row(
        supabase.table("contest_submissions")
        .update({"status": "approved", "updated_at": _now()})
        .eq("id", req.submission_id)
        .eq("payment_intent_id", req.payment_intent_id)
        .neq("status", "approved")
        .execute()
    )
    if submission is None:
        already = first_row(
            supabase.table("contest_submissions")
            .select("*")
            .eq("id", req.submission_id)
            .eq("payment_intent_id", req.payment_intent_id)
            .limit(1)
            .execute()
        )
        if already is None:
            raise HTTPException(status_code=404, detail="Submission not found")
        return {"success": True, "submission": already}

    add_to_pot(supabase, submission["contest_id"], submission.get("amount_paid") or 0)
    return {"success": True, "submission": submission}


@router.get("/submissions")
async def list_submissions(
    contest_id: str | None = Query(default=None, alias="contestId"),
    supabase: Client = Depends(get_supabase),
):
    if not contest_id:
        raise HTTPException(status_code=400, detail="Contest ID required")

    contest = _require_contest(supabase, contest_id)
    result = (
        supabase.table("contest_submissions")
        .select("*")
        .eq("contest_id", contest_id)
        .eq("status", "approved")
        .order("community_votes", desc=True)
        .execute()
    )
    return {"contest": contest, "submissions": result.data or []}


# =====================================================
# Votes
# =====================================================
def _vote_column(vote_type: str) -> str:
    return "staff_votes" if vote_type == "staff" else "community_votes"


def _bump_votes(supabase: Client, submission_id: str, column: str, delta: int) -> None:
    submission = first_row(
        supabase.table("contest_submissions")
        .select(column)
        .eq("id", submission_id)
        .limit(1)
        .execute()
    )
    if submission is None:
        return
    votes = max(0, (submission.get(column) or 0) + delta)
    supabase.table("contest_submissions").update({column: votes}).eq(
        "id", submission_id
    ).execute()


@router.post("/vote")
async def cast_vote(req: VoteRequest, supabase: Client = Depends(get_supabase)):
    existing = first_row(
        supabase.table("contest_votes")
        .select("id")
        .eq("submission_id", req.submission_id)
        .eq("user_id", req.user_id)
        .eq("vote_type", req.vote_type)
        .limit(1)
        .execute()
    )
    if existing is not None:
        raise HTTPException(
            status_code=400, detail="You have already voted for this submission"
        )

    supabase.table("contest_votes").insert(
        {
            "submission_id": req.submission_id,
            "user_id": req.user_id,
            "vote_type": req.vote_type,
        }
    ).execute()
    _bump_votes(supabase, req.submission_id, _vote_column(req.vote_type), 1)

    return {"success": True}


@router.delete("/vote")
async def remove_vote(
    submission_id: str | None = Query(default=None, alias="submissionId"),
    user_id: str | None = Query(default=None, alias="userId"),
    vote_type: str | None = Query(default=None, alias="voteType"),
    supabase: Client = Depends(get_supabase),
):
    if not submission_id or not user_id or not vote_type:
        raise HTTPException(status_code=400, detail="Missing required fields")

    supabase.table("contest_votes").delete().eq("submission_id", submission_id).eq(
        "user_id", user_id
    ).eq("vote_type", vote_type).execute()
    _bump_votes(supabase, submission_id, _vote_column(vote_type), -1)

    return {"success": True}
