from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from familyledger.exceptions import (
    AdminRequiredError,
    AlreadyProcessedError,
    FamilyNotFoundError,
    InsufficientPointsError,
    NotMemberError,
    RedemptionRequestNotFoundError,
    ValidationError,
)
from familyledger.models import PointTransactionType, ReviewStatus, Role
from familyledger.service import FamilyLedger
from familyledger.store import InMemoryStore


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def make_family(clock=None) -> FamilyLedger:
    bank = FamilyLedger(clock=clock) if clock else FamilyLedger()
    bank.register_family("mom", "Smiths", family_id="fam", points_value="0.50")
    bank.add_member("fam", "dad", role=Role.ADMIN)
    bank.add_member("fam", "ava", display_name="Ava")
    bank.add_member("fam", "ben", display_name="Ben")
    return bank


def test_append_validates_points_and_family() -> None:
    bank = make_family()

    with pytest.raises(ValidationError):
        bank.ledger.append("ava", "fam", 0, PointTransactionType.EARN)
    with pytest.raises(ValidationError):
        bank.ledger.append("ava", "fam", -5, PointTransactionType.EARN)
    with pytest.raises(ValidationError):
        bank.ledger.append("ava", "fam", 5, "bonus")
    with pytest.raises(FamilyNotFoundError):
        bank.ledger.append("ava", "nope", 5, PointTransactionType.EARN)
    with pytest.raises(InsufficientPointsError):
        bank.ledger.append("ava", "fam", 1, PointTransactionType.REDEEM)


def test_summary_is_replayed_from_the_log() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 40, PointTransactionType.EARN, "Dishes")
    bank.ledger.append("ava", "fam", 15, PointTransactionType.REDEEM, "Toy")
    bank.ledger.append("ava", "fam", 99, PointTransactionType.ADJUST, "Correction note")
    bank.ledger.append("ben", "fam", 10, PointTransactionType.EARN)

    summary = bank.ledger.get_summary("ava", "fam")
    assert summary.total_earned == 40
    assert summary.total_redeemed == 15
    assert summary.available == 25
    assert summary.rank == 1
    assert summary.points_value == Decimal("0.50")
    assert summary.total_value == Decimal("12.50")
    assert summary.pending_request_points == 0

    with pytest.raises(NotMemberError):
        bank.ledger.get_summary("stranger", "fam")


def test_pending_requests_earmark_points() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 50, PointTransactionType.EARN)

    first = bank.ledger.submit_redemption_request("ava", "fam", 30, "Movie night")
    assert first.status is ReviewStatus.PENDING
    assert first.amount == Decimal("15.00")

    # 50 available, 30 already pending: only 20 can still be requested.
    with pytest.raises(InsufficientPointsError):
        bank.ledger.submit_redemption_request("ava", "fam", 25)

    second = bank.ledger.submit_redemption_request("ava", "fam", 20)
    summary = bank.ledger.get_summary("ava", "fam")
    assert summary.available == 50
    assert summary.pending_request_points == 50
    assert summary.requestable == 0
    assert second.points == 20


def test_submit_rejects_bad_input() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)

    with pytest.raises(ValidationError):
        bank.ledger.submit_redemption_request("ava", "fam", 0)
    with pytest.raises(NotMemberError):
        bank.ledger.submit_redemption_request("stranger", "fam", 5)


def test_approve_redemption_appends_redeem_entry() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 50, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 30)

    with pytest.raises(AdminRequiredError):
        bank.ledger.review_redemption_request(request.id, "ben", "approve")

    approved = bank.ledger.review_redemption_request(request.id, "dad", "approve")
    assert approved.status is ReviewStatus.APPROVED
    assert approved.reviewer_id == "dad"
    assert approved.reviewed_at is not None

    entries = bank.ledger.transactions("ava", "fam", type="redeem")
    assert len(entries) == 1
    assert entries[0].points == 30
    assert entries[0].description == "Points redemption - $15.00"
    assert bank.ledger.available("ava", "fam") == 20

    with pytest.raises(AlreadyProcessedError):
        bank.ledger.review_redemption_request(request.id, "dad", "approve")
    with pytest.raises(AlreadyProcessedError):
        bank.ledger.review_redemption_request(request.id, "mom", "reject", "Changed mind")
    assert bank.ledger.available("ava", "fam") == 20


def test_reject_requires_reason_and_has_no_ledger_effect() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 50, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 30)

    with pytest.raises(ValidationError):
        bank.ledger.review_redemption_request(request.id, "dad", "reject")
    with pytest.raises(ValidationError):
        bank.ledger.review_redemption_request(request.id, "dad", "reject", "   ")

    rejected = bank.ledger.review_redemption_request(request.id, "dad", "reject", "Save it for later")
    assert rejected.status is ReviewStatus.REJECTED
    assert rejected.reject_reason == "Save it for later"
    assert bank.ledger.available("ava", "fam") == 50
    assert bank.ledger.get_summary("ava", "fam").pending_request_points == 0
    assert bank.ledger.transactions("ava", "fam", type="redeem") == ()


def test_approval_rechecks_balance() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 50, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 40)
    bank.ledger.redeem_direct("dad", "fam", "ava", 30, "Ice cream")

    with pytest.raises(InsufficientPointsError):
        bank.ledger.review_redemption_request(request.id, "dad", "approve")

    still_pending = bank.ledger.redemption_requests("dad", "fam", status="pending")
    assert [item.id for item in still_pending] == [request.id]
    assert bank.ledger.available("ava", "fam") == 20


def test_review_unknown_request_and_action() -> None:
    bank = make_family()

    with pytest.raises(RedemptionRequestNotFoundError):
        bank.ledger.review_redemption_request("missing", "dad", "approve")

    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 5)
    with pytest.raises(ValidationError):
        bank.ledger.review_redemption_request(request.id, "dad", "maybe")


def test_redeem_direct_requires_admin_and_balance() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)

    with pytest.raises(AdminRequiredError):
        bank.ledger.redeem_direct("ben", "fam", "ava", 5)
    with pytest.raises(NotMemberError):
        bank.ledger.redeem_direct("dad", "fam", "stranger", 5)
    with pytest.raises(InsufficientPointsError):
        bank.ledger.redeem_direct("dad", "fam", "ava", 11)

    entry = bank.ledger.redeem_direct("dad", "fam", "ava", 10)
    assert entry.type is PointTransactionType.REDEEM
    assert entry.description == "Points settlement"
    assert bank.ledger.available("ava", "fam") == 0
    assert bank.audit_log.entries(action="redeem_direct")[0].target == "ava"


def test_request_listing_scoped_by_role() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)
    bank.ledger.append("ben", "fam", 10, PointTransactionType.EARN)
    ava_request = bank.ledger.submit_redemption_request("ava", "fam", 5)
    ben_request = bank.ledger.submit_redemption_request("ben", "fam", 5)

    assert [r.id for r in bank.ledger.redemption_requests("ava", "fam")] == [ava_request.id]
    assert [r.id for r in bank.ledger.redemption_requests("dad", "fam")] == [ben_request.id, ava_request.id]
    assert bank.ledger.pending_redemption_count("dad", "fam") == 2
    assert bank.ledger.pending_redemption_count("ava", "fam") == 0


def test_transactions_visibility_and_paging() -> None:
    bank = make_family()
    for points in (1, 2, 3, 4, 5):
        bank.ledger.append("ava", "fam", points, PointTransactionType.EARN)

    newest_first = bank.ledger.transactions("ava", "fam", limit=2)
    assert [entry.points for entry in newest_first] == [5, 4]
    assert [entry.points for entry in bank.ledger.transactions("ava", "fam", limit=2, offset=2)] == [3, 2]
    assert len(bank.ledger.transactions("dad", "fam", user_id="ava")) == 5

    with pytest.raises(AdminRequiredError):
        bank.ledger.transactions("ben", "fam", user_id="ava")
    with pytest.raises(ValidationError):
        bank.ledger.transactions("ava", "fam", limit=0)


def test_monthly_points_and_member_points() -> None:
    clock = Clock(datetime(2024, 5, 20, 12, 0))
    bank = make_family(clock)
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)
    clock.now = datetime(2024, 6, 3, 9, 0)
    bank.ledger.append("ava", "fam", 7, PointTransactionType.EARN)
    bank.ledger.append("ava", "fam", 4, PointTransactionType.REDEEM)
    clock.now = datetime(2024, 7, 1, 0, 0)
    bank.ledger.append("ava", "fam", 100, PointTransactionType.EARN)

    june = bank.ledger.monthly_points("ava", "fam", 2024, 6)
    assert (june.earned, june.redeemed, june.balance) == (7, 4, 13)

    with pytest.raises(ValidationError):
        bank.ledger.monthly_points("ava", "fam", 2024, 13)

    rows = bank.ledger.member_points("dad", "fam")
    assert rows[0].user_id == "ava"
    assert rows[0].available == 113
    assert {row.user_id for row in rows} == {"mom", "dad", "ava", "ben"}
    with pytest.raises(AdminRequiredError):
        bank.ledger.member_points("ava", "fam")


def test_points_value_changes_future_requests_only() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 20, PointTransactionType.EARN)
    before = bank.ledger.submit_redemption_request("ava", "fam", 10)

    bank.set_points_value("dad", "fam", "1.25")
    after = bank.ledger.submit_redemption_request("ava", "fam", 10)

    assert before.amount == Decimal("5.00")
    assert after.amount == Decimal("12.50")
    with pytest.raises(AdminRequiredError):
        bank.set_points_value("ava", "fam", 2)


def test_workflows_log_named_events() -> None:
    bank = make_family()
    bank.ledger.append("ava", "fam", 10, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 5)
    bank.ledger.review_redemption_request(request.id, "dad", "approve")

    events = [entry["event"] for entry in bank.logger.tail()]
    assert "redemption_requested" in events
    assert "redemption_approved" in events


def test_append_rejects_points_beyond_storage_range() -> None:
    bank = make_family()

    with pytest.raises(ValidationError):
        bank.ledger.append("ava", "fam", 10**19, PointTransactionType.EARN)
    with pytest.raises(ValidationError):
        bank.ledger.submit_redemption_request("ava", "fam", 10**19)
    assert bank.ledger.available("ava", "fam") == 0


def test_append_logs_only_once_committed() -> None:
    bank = make_family()

    with pytest.raises(RuntimeError):
        with bank.store.atomic():
            bank.ledger.append("ava", "fam", 5, PointTransactionType.EARN)
            assert not bank.logger.tail(event="points_appended")
            raise RuntimeError("abort")

    assert bank.ledger.available("ava", "fam") == 0
    assert not bank.logger.tail(event="points_appended")

    with bank.store.atomic():
        bank.ledger.append("ava", "fam", 5, PointTransactionType.EARN)
    logged = bank.logger.tail(event="points_appended")
    assert len(logged) == 1
    assert logged[0]["points"] == 5


class StaleRequestStore(InMemoryStore):
    """Reports redemption requests as pending, like a read taken before another reviewer committed."""

    def __init__(self) -> None:
        super().__init__()
        self.stale = False

    def get_redemption_request(self, request_id):
        request = super().get_redemption_request(request_id)
        if request is not None and self.stale:
            request.status = ReviewStatus.PENDING
        return request


def test_losing_reviewer_sees_already_processed() -> None:
    store = StaleRequestStore()
    bank = FamilyLedger(store)
    bank.register_family("mom", "Smiths", family_id="fam")
    bank.add_member("fam", "dad", role=Role.ADMIN)
    bank.add_member("fam", "ava")
    bank.ledger.append("ava", "fam", 20, PointTransactionType.EARN)
    request = bank.ledger.submit_redemption_request("ava", "fam", 15)
    bank.ledger.review_redemption_request(request.id, "dad", "approve")

    store.stale = True
    with pytest.raises(AlreadyProcessedError):
        bank.ledger.review_redemption_request(request.id, "mom", "approve")

    assert bank.ledger.available("ava", "fam") == 5
    assert len(bank.ledger.transactions("ava", "fam", type="redeem")) == 1
