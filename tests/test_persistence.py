import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

pytest.importorskip("sqlmodel")
from sqlmodel import SQLModel

from familyledger.exceptions import (
    AlreadyProcessedError,
    AlreadyReviewedError,
    ChoreTypeNotFoundError,
    FamilyNotFoundError,
    InsufficientPointsError,
    NotMemberError,
    ValidationError,
)
from familyledger.models import PointTransactionType, ReviewStatus, Role
from familyledger.persistence import SqlStore, bps_to_rate, create_sql_store, rate_to_bps
from familyledger.service import FamilyLedger


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_bank(tmp_path, clock=None) -> FamilyLedger:
    store = create_sql_store(f"sqlite:///{tmp_path / 'ledger.db'}")
    bank = FamilyLedger(store, clock=clock) if clock else FamilyLedger(store)
    bank.register_family("mom", "Smiths", family_id="fam", points_value="0.25")
    bank.add_member("fam", "dad", role=Role.ADMIN, display_name="Dad")
    bank.add_member("fam", "ava", display_name="Ava")
    return bank


def test_rate_conversion() -> None:
    assert rate_to_bps(Decimal("0.0300")) == 300
    assert bps_to_rate(325) == Decimal("0.0325")


def test_families_and_roles_round_trip(tmp_path) -> None:
    bank = make_bank(tmp_path)
    assert isinstance(bank.store, SqlStore)

    family = bank.store.get_family("fam")
    assert family is not None
    assert family.points_value == Decimal("0.25")
    assert [m.user_id for m in bank.store.list_members("fam")] == ["mom", "dad", "ava"]

    bank.change_role("mom", "fam", "ava", Role.ADMIN)
    assert bank.authority.role_of("ava", "fam") is Role.ADMIN
    with pytest.raises(KeyError):
        bank.store.add_member(bank.store.get_member("fam", "ava"))


def test_chore_and_redemption_workflow_on_sql(tmp_path) -> None:
    bank = make_bank(tmp_path)
    chore = bank.chores.create_chore_type("dad", "fam", "Dishes", 10)
    record = bank.chores.create_record("ava", "fam", chore.id, images=["before.png", "after.png"])

    stored = bank.store.get_chore_record(record.id)
    assert stored.images == ("before.png", "after.png")
    assert stored.status is ReviewStatus.PENDING

    reviewed = bank.chores.review_record(record.id, "dad", "approve", deduction=3, deduction_reason="Streaks")
    assert reviewed.final_points == 7
    with pytest.raises(AlreadyReviewedError):
        bank.chores.review_record(record.id, "dad", "reject")

    request = bank.ledger.submit_redemption_request("ava", "fam", 5, "Sticker")
    assert request.amount == Decimal("1.25")
    with pytest.raises(InsufficientPointsError):
        bank.ledger.submit_redemption_request("ava", "fam", 3)

    bank.ledger.review_redemption_request(request.id, "dad", "approve")
    summary = bank.ledger.get_summary("ava", "fam")
    assert (summary.total_earned, summary.total_redeemed, summary.available) == (7, 5, 2)
    assert summary.total_value == Decimal("0.50")
    assert bank.store.get_redemption_request(request.id).status is ReviewStatus.APPROVED


def test_failed_approval_rolls_back(tmp_path) -> None:
    bank = make_bank(tmp_path)
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 10)
    bank.ledger.redeem_direct("dad", "fam", "ava", 4)

    with pytest.raises(InsufficientPointsError):
        bank.ledger.review_redemption_request(request.id, "dad", "approve")

    assert bank.store.get_redemption_request(request.id).status is ReviewStatus.PENDING
    assert bank.ledger.available("ava", "fam") == 6


def test_savings_on_sql(tmp_path) -> None:
    clock = Clock(datetime(2024, 1, 1, 9, 0))
    bank = make_bank(tmp_path, clock)
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", "1000")

    clock.now = datetime(2024, 1, 11, 9, 0)
    entry = bank.savings.settle_interest(account.id, "ava")
    assert entry.amount == Decimal("0.82")

    stored = bank.store.get_savings_account(account.id)
    assert stored.balance == Decimal("1000.82")
    assert stored.total_interest == Decimal("0.82")
    assert stored.annual_rate == Decimal("0.0300")
    assert stored.last_interest_date == date(2024, 1, 11)
    assert bank.savings.verify_integrity(account.id).ok

    request = bank.savings.submit_request(account.id, "ava", "0.82", "withdraw")
    bank.savings.review_request(request.id, "dad", "approve")
    assert bank.store.get_savings_account(account.id).balance == Decimal("1000.00")
    assert [t.type.value for t in bank.savings.transactions(account.id, "ava")] == ["withdraw", "interest", "deposit"]


def test_concurrent_redemption_reviews_settle_once(tmp_path) -> None:
    bank = make_bank(tmp_path)
    bank.ledger.append("ava", "fam", 20, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 15)

    outcomes = []
    lock = threading.Lock()
    barrier = threading.Barrier(2)

    def review(reviewer: str) -> None:
        barrier.wait()
        try:
            bank.ledger.review_redemption_request(request.id, reviewer, "approve")
            result = "approved"
        except AlreadyProcessedError:
            result = "already"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=review, args=(name,)) for name in ("dad", "mom")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["already", "approved"]
    assert bank.ledger.available("ava", "fam") == 5
    assert len(bank.ledger.transactions("ava", "fam", type="redeem")) == 1


def test_timestamps_are_stored_naive(tmp_path) -> None:
    for table in SQLModel.metadata.sorted_tables:
        for column in table.columns:
            if column.name.endswith("_at"):
                assert column.type.timezone is False, f"{table.name}.{column.name}"

    clock = Clock(datetime(2024, 2, 29, 23, 59, 30))
    bank = make_bank(tmp_path, clock)
    entry = bank.ledger.append("ava", "fam", 3, PointTransactionType.EARN)

    stored = bank.ledger.transactions("ava", "fam")[0]
    assert stored.id == entry.id
    assert stored.created_at == datetime(2024, 2, 29, 23, 59, 30)
    assert stored.created_at.tzinfo is None
    assert bank.store.get_member("fam", "ava").joined_at == clock.now


def test_out_of_range_values_are_validation_errors_on_sql(tmp_path) -> None:
    bank = make_bank(tmp_path)
    account = bank.savings.get_or_create_account("ava", "fam")

    with pytest.raises(ValidationError):
        bank.ledger.append("ava", "fam", 10**19, PointTransactionType.EARN)
    with pytest.raises(ValidationError):
        bank.savings.deposit(account.id, "dad", "1e30")
    assert bank.ledger.available("ava", "fam") == 0


def test_presets_are_seeded_on_sql(tmp_path) -> None:
    bank = make_bank(tmp_path)
    custom = bank.chores.create_chore_type("dad", "fam", "Feed the cat", 4)

    types = bank.chores.chore_types("ava", "fam")
    assert len(types) == 9
    assert all(t.is_preset for t in types[:8])
    assert types[-1].id == custom.id and not types[-1].is_preset


def test_updates_to_missing_rows_raise_not_found(tmp_path) -> None:
    bank = make_bank(tmp_path)

    with pytest.raises(FamilyNotFoundError):
        bank.store.update_family("nope", name="Other")
    with pytest.raises(NotMemberError):
        bank.store.update_member_role("fam", "stranger", Role.ADMIN)
    with pytest.raises(ChoreTypeNotFoundError):
        bank.store.update_chore_type("missing", active=False)
