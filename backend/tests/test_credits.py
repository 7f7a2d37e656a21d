import pytest
from postgrest.exceptions import APIError

from aktion.services.credits import (
    CreditConflict,
    CreditLedger,
    InsufficientCredits,
    ProfileNotFound,
)


@pytest.fixture
def ledger(fake_db):
    fake_db.seed("profiles", {"id": "user-1", "credits": 20})
    return CreditLedger(fake_db)


def balance(fake_db, user_id="user-1"):
    return next(r for r in fake_db.rows("profiles") if r["id"] == user_id)["credits"]


def test_hold_charges_once_on_success(ledger, fake_db):
    with ledger.hold("user-1", 10, "generation", "Voice clone training - Narrator"):
        pass

    assert balance(fake_db) == 10
    rows = fake_db.rows("credit_transactions")
    assert len(rows) == 1
    assert rows[0]["amount"] == -10
    assert rows[0]["transaction_type"] == "generation"


def test_hold_releases_when_block_raises(ledger, fake_db):
    with pytest.raises(RuntimeError):
        with ledger.hold("user-1", 10, "generation", "Text to Video (A2E)"):
            assert balance(fake_db) == 10
            raise RuntimeError("upstream down")

    assert balance(fake_db) == 20
    assert fake_db.rows("credit_transactions") == []


def test_failed_release_keeps_original_error(ledger, fake_db, monkeypatch, caplog):
    def conflicting_release(reservation):
        raise CreditConflict()

    monkeypatch.setattr(ledger, "release", conflicting_release)

    with pytest.raises(RuntimeError, match="upstream down"):
        with ledger.hold("user-1", 10, "generation", "Text to Video (A2E)"):
            raise RuntimeError("upstream down")

    assert "Failed to release 10 credits for user-1" in caplog.text
    assert fake_db.rows("credit_transactions") == []


def test_reserve_refuses_overdraw(fake_db):
    fake_db.seed("profiles", {"id": "user-1", "credits": 5})
    ledger = CreditLedger(fake_db)

    with pytest.raises(InsufficientCredits) as exc:
        ledger.reserve("user-1", 10)

    assert exc.value.status_code == 402
    assert exc.value.message == "Insufficient credits. Need 10 credits, have 5."
    assert balance(fake_db) == 5


def test_unknown_profile(fake_db):
    with pytest.raises(ProfileNotFound) as exc:
        CreditLedger(fake_db).reserve("ghost", 1)
    assert exc.value.status_code == 404


def test_concurrent_reservations_cannot_overdraw(fake_db, monkeypatch):
    """Two requests read the same balance; only one debit may land."""
    fake_db.seed("profiles", {"id": "user-1", "credits": 10})
    first, second = CreditLedger(fake_db), CreditLedger(fake_db)
    read_balance = first.get_balance
    winners = []

    def racing_read(user_id):
        seen = read_balance(user_id)
        if not winners:
            winners.append(second.reserve(user_id, 10))
        return seen

    monkeypatch.setattr(first, "get_balance", racing_read)

    with pytest.raises(InsufficientCredits):
        first.reserve("user-1", 10)

    assert winners[0].balance_after == 0
    assert balance(fake_db) == 0


def test_gives_up_when_balance_keeps_moving(ledger, fake_db, monkeypatch):
    monkeypatch.setattr(ledger, "_swap", lambda *args: False)

    with pytest.raises(CreditConflict) as exc:
        ledger.reserve("user-1", 1)

    assert exc.value.status_code == 409
    assert balance(fake_db) == 20


def test_audit_failure_keeps_the_charge(ledger, fake_db):
    fake_db.insert_errors["credit_transactions"] = APIError(
        {"message": "relation does not exist", "code": "42P01"}
    )

    with ledger.hold("user-1", 5, "generation", "Custom background (A2E)"):
        pass

    assert balance(fake_db) == 15


def test_refund_is_logged(ledger, fake_db):
    assert ledger.refund("user-1", 7, "Failed render") == 27

    rows = fake_db.rows("credit_transactions")
    assert [(r["amount"], r["transaction_type"]) for r in rows] == [(7, "refund")]
