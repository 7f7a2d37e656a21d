"""
Credit ledger

Balances live in profiles.credits and every debit is mirrored into the
append-only credit_transactions table. A balance is only ever changed with a
single conditional UPDATE that matches the balance we read, so two requests
racing for the same credits cannot both succeed and the balance cannot go
negative.

Paid generations use hold(): credits are reserved before the provider is
called, the audit row is written once the provider succeeds, and the
reservation is put back if the provider fails.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass

from postgrest.exceptions import APIError

from aktion.db import first_row
from aktion.errors import AppError

logger = logging.getLogger(__name__)

# Attempts before giving up on a balance that keeps changing under us
MAX_SWAP_ATTEMPTS = 5

# Costs in credits per paid generation
CREDIT_COSTS = {
    "VOICE_CLONE": 10,
    "TEXT_TO_VIDEO": 80,
    "BACKGROUND_ADD": 5,
    "PREVIEW_GENERATION": 1,
    "TALKING_PHOTO": 5,
    "TALKING_VIDEO": 3,
    "LIPSYNC": 5,
    "FACE_SWAP": 10,
    "FACE_ADD": 3,
    "DUBBING": 15,
    "AVATAR_TRAINING_VIDEO": 10,
    "AVATAR_TRAINING_IMAGE": 30,
    "AVATAR_CONTINUE_TRAINING": 20,
    "SEQUENCE_GENERATION": 5,
}


class CreditError(AppError):
    status_code = 400


class ProfileNotFound(CreditError):
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__("User not found")
        self.user_id = user_id


class InsufficientCredits(CreditError):
    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Need {required} credits, have {available}."
        )
        self.required = required
        self.available = available


class CreditConflict(CreditError):
    status_code = 409

    def __init__(self):
        super().__init__("Credit balance is changing too quickly, please retry")


@dataclass
class Reservation:
    user_id: str
    amount: int
    balance_after: int


class CreditLedger:
    def __init__(self, supabase):
        self.supabase = supabase

    def get_balance(self, user_id: str) -> int:
        row = first_row(
            self.supabase.table("profiles")
            .select("credits")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if row is None:
            raise ProfileNotFound(user_id)
        return row.get("credits") or 0

    def _swap(self, user_id: str, expected: int, new_balance: int) -> bool:
        """Set the balance only if it still equals what we read."""
        result = (
            self.supabase.table("profiles")
            .update({"credits": new_balance})
            .eq("id", user_id)
            .eq("credits", expected)
            .execute()
        )
        return bool(result.data)

    def _adjust(self, user_id: str, delta: int) -> int:
        for _ in range(MAX_SWAP_ATTEMPTS):
            balance = self.get_balance(user_id)
            new_balance = balance + delta
            if new_balance < 0:
                raise InsufficientCredits(-delta, balance)
            if self._swap(user_id, balance, new_balance):
                return new_balance
            logger.warning(f"Credit balance for {user_id} changed concurrently, retrying")
        raise CreditConflict()

    def _log(self, user_id: str, amount: int, transaction_type: str, description: str) -> None:
        try:
            self.supabase.table("credit_transactions").insert(
                {
                    "user_id": user_id,
                    "amount": amount,
                    "transaction_type": transaction_type,
                    "description": description,
                }
            ).execute()
        except APIError as e:
            # The balance change already landed; the audit row is best effort
            logger.error(f"Failed to log credit transaction for {user_id}: {e}")

    # =====================================================
    # Public operations
    # =====================================================
    def reserve(self, user_id: str, amount: int) -> Reservation:
        balance_after = self._adjust(user_id, -amount)
        logger.info(f"Reserved {amount} credits: user={user_id}, balance={balance_after}")
        return Reservation(user_id=user_id, amount=amount, balance_after=balance_after)

    def finalize(self, reservation: Reservation, transaction_type: str, description: str) -> None:
        self._log(reservation.user_id, -reservation.amount, transaction_type, description)
        logger.info(
            f"Charged {reservation.amount} credits: user={reservation.user_id}, "
            f"reason={description}"
        )

    def release(self, reservation: Reservation) -> int:
        balance = self._adjust(reservation.user_id, reservation.amount)
        logger.info(
            f"Released {reservation.amount} credits: user={reservation.user_id}, "
            f"balance={balance}"
        )
        return balance

    def refund(self, user_id: str, amount: int, description: str) -> int:
        balance = self._adjust(user_id, amount)
        self._log(user_id, amount, "refund", description)
        logger.info(f"Refunded {amount} credits: user={user_id}, balance={balance}")
        return balance

    @contextmanager
    def hold(self, user_id: str, amount: int, transaction_type: str, description: str):
        """Reserve credits for the duration of the block.

        The charge is finalized when the block exits normally and released
        when it raises. A failed release is logged and the original error
        still propagates.
        """
        reservation = self.reserve(user_id, amount)
        try:
            yield reservation
        except BaseException:
            try:
                self.release(reservation)
            except Exception:
                logger.error(
                    f"Failed to release {reservation.amount} credits for "
                    f"{reservation.user_id}; balance needs manual correction",
                    exc_info=True,
                )
            raise
        self.finalize(reservation, transaction_type, description)
