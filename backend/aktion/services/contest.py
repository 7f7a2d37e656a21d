"""
Contest token helpers

A submission token is a paid right to one contest submission plus a fixed
number of votes. The first token a user buys for a contest is charged
first_submission_price, every later one additional_submission_price.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from aktion.db import first_row

logger = logging.getLogger(__name__)

TOKEN_CODE_PREFIX = "AKT"
TOKEN_CODE_ATTEMPTS = 5
TOKEN_SUBMISSION_ALLOWANCE = 1
TOKEN_VOTES = 3
POT_SWAP_ATTEMPTS = 5


@dataclass
class PriceQuote:
    amount: int
    is_first: bool


def generate_token_code() -> str:
    """Token codes look like AKT-0123456789ABCDEF."""
    return f"{TOKEN_CODE_PREFIX}-{secrets.token_hex(8).upper()}"


def quote_price(contest: dict, prior_count: int) -> PriceQuote:
    """Price the next purchase given how many the user already has."""
    is_first = prior_count == 0
    amount = (
        contest["first_submission_price"]
        if is_first
        else contest["additional_submission_price"]
    )
    return PriceQuote(amount=amount, is_first=is_first)


def get_contest(supabase, contest_id: str, columns: str = "*") -> dict | None:
    return first_row(
        supabase.table("contests").select(columns).eq("id", contest_id).limit(1).execute()
    )


def count_user_rows(supabase, table: str, contest_id: str, user_id: str) -> int:
    result = (
        supabase.table(table)
        .select("id")
        .eq("contest_id", contest_id)
        .eq("user_id", user_id)
        .execute()
    )
    return len(result.data or [])


def deadline_passed(contest: dict, now: datetime | None = None) -> bool:
    deadline = contest.get("submission_deadline")
    if not deadline:
        return False
    if isinstance(deadline, str):
        deadline = datetime.fromisoformat(deadline.replace("Z", "+00:00"))
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) > deadline


def unique_token_code(supabase) -> str | None:
    """Generate a token code not yet present in submission_tokens."""
    for _ in range(TOKEN_CODE_ATTEMPTS):
        code = generate_token_code()
        existing = first_row(
            supabase.table("submission_tokens")
            .select("id")
            .eq("token_code", code)
            .limit(1)
            .execute()
        )
        if existing is None:
            return code
        logger.warning(f"Token code collision: {code}")
    return None


def add_to_pot(supabase, contest_id: str, amount: int) -> bool:
    """Increment total_pot, retrying when a concurrent payment moved it first.

    Each update is filtered on the pot value it read, so two increments can
    never both apply against the same starting value.
    """
    for _ in range(POT_SWAP_ATTEMPTS):
        contest = get_contest(supabase, contest_id, "id, total_pot")
        if contest is None:
            logger.warning(f"No contest row for pot increment: {contest_id}")
            return False

        current = contest.get("total_pot")
        query = supabase.table("contests").update({"total_pot": (current or 0) + amount})
        query = query.eq("id", contest_id)
        if current is None:
            query = query.is_("total_pot", "null")
        else:
            query = query.eq("total_pot", current)

        if query.execute().data:
            return True

    logger.error(f"Pot increment conflicted {POT_SWAP_ATTEMPTS} times: contest={contest_id}")
    return False
