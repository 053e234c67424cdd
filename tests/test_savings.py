from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from familyledger.exceptions import (
    AdminRequiredError,
    AlreadyProcessedError,
    AuthorizationError,
    ConcurrentUpdateError,
    CreatorRequiredError,
    InsufficientBalanceError,
    NoInterestToSettleError,
    SavingsAccountNotFoundError,
    SavingsRequestNotFoundError,
    ValidationError,
)
from familyledger.models import InterestProjection, ReviewStatus, Role, SavingsTransactionType
from familyledger.savings import project_interest
from familyledger.service import FamilyLedger
from familyledger.store import InMemoryStore


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def make_family(clock: Clock | None = None) -> FamilyLedger:
    bank = FamilyLedger(clock=clock) if clock else FamilyLedger()
    bank.register_family("mom", "Smiths", family_id="fam")
    bank.add_member("fam", "dad", role=Role.ADMIN)
    bank.add_member("fam", "ava")
    return bank


def test_project_interest_compounds_daily() -> None:
    projection = project_interest(Decimal("1000.00"), Decimal("0.03"), date(2024, 1, 1), date(2024, 1, 11))

    assert projection.days == 10
    assert projection.interest == Decimal("0.82")
    assert projection.new_balance == Decimal("1000.82")


def test_project_interest_without_accrual() -> None:
    same_day = project_interest(Decimal("1000.00"), Decimal("0.03"), date(2024, 1, 1), date(2024, 1, 1))
    assert (same_day.days, same_day.interest, same_day.new_balance) == (0, Decimal("0.00"), Decimal("1000.00"))

    future = project_interest(Decimal("1000.00"), Decimal("0.03"), date(2024, 1, 5), date(2024, 1, 1))
    assert future.interest == Decimal("0.00")

    empty = project_interest(Decimal("0.00"), Decimal("0.03"), date(2023, 1, 1), date(2024, 1, 1))
    assert empty.days == 0 and empty.interest == Decimal("0.00")


def test_account_is_created_once_with_defaults() -> None:
    bank = make_family()

    account = bank.savings.get_or_create_account("ava", "fam")
    again = bank.savings.get_or_create_account("ava", "fam")

    assert account.id == again.id
    assert account.balance == Decimal("0.00")
    assert account.annual_rate == Decimal("0.0300")
    assert account.last_interest_date == account.created_at.date()


def test_direct_deposit_and_withdraw() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")

    deposit = bank.savings.deposit(account.id, "dad", "25.50")
    assert deposit.type is SavingsTransactionType.DEPOSIT
    assert deposit.balance_after == Decimal("25.50")
    assert deposit.description == "Admin deposit"

    withdrawal = bank.savings.withdraw(account.id, "mom", 5, "Book fair")
    assert withdrawal.balance_after == Decimal("20.50")

    with pytest.raises(InsufficientBalanceError):
        bank.savings.withdraw(account.id, "dad", "20.51")
    with pytest.raises(AdminRequiredError):
        bank.savings.deposit(account.id, "ava", 10)
    with pytest.raises(ValidationError):
        bank.savings.deposit(account.id, "dad", 0)
    with pytest.raises(ValidationError):
        bank.savings.deposit(account.id, "dad", "abc")
    with pytest.raises(SavingsAccountNotFoundError):
        bank.savings.deposit("missing", "dad", 10)

    assert bank.savings.get_or_create_account("ava", "fam").balance == Decimal("20.50")
    assert bank.savings.verify_integrity(account.id).ok


def test_request_then_approve_deposit() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")

    request = bank.savings.submit_request(account.id, "ava", "12.00", "deposit")
    assert request.status is ReviewStatus.PENDING
    assert request.description == "Deposit request"
    assert bank.savings.get_or_create_account("ava", "fam").balance == Decimal("0.00")
    assert bank.savings.pending_count("dad", "fam") == 1
    assert bank.savings.account_detail("ava", "fam").pending_request_count == 1

    approved = bank.savings.review_request(request.id, "dad", "approve")
    assert approved.status is ReviewStatus.APPROVED
    assert bank.savings.get_or_create_account("ava", "fam").balance == Decimal("12.00")

    with pytest.raises(AlreadyProcessedError):
        bank.savings.review_request(request.id, "mom", "approve")
    assert bank.savings.get_or_create_account("ava", "fam").balance == Decimal("12.00")
    assert len(bank.savings.transactions(account.id, "ava")) == 1


def test_withdraw_request_rechecks_balance_on_approval() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", 30)

    with pytest.raises(InsufficientBalanceError):
        bank.savings.submit_request(account.id, "ava", 31, "withdraw")

    request = bank.savings.submit_request(account.id, "ava", 20, "withdraw")
    bank.savings.withdraw(account.id, "dad", 15)

    with pytest.raises(InsufficientBalanceError):
        bank.savings.review_request(request.id, "dad", "approve")

    pending = bank.savings.requests("dad", "fam", status="pending")
    assert [item.id for item in pending] == [request.id]
    assert bank.savings.get_or_create_account("ava", "fam").balance == Decimal("15.00")


def test_reject_savings_request() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")
    request = bank.savings.submit_request(account.id, "ava", 5, "deposit", "Birthday money")

    rejected = bank.savings.review_request(request.id, "dad", "reject")
    assert rejected.status is ReviewStatus.REJECTED
    assert rejected.reject_reason == "Request rejected"
    assert bank.savings.transactions(account.id, "ava") == ()

    with pytest.raises(SavingsRequestNotFoundError):
        bank.savings.review_request("missing", "dad", "approve")


def test_requests_are_submitted_by_the_holder() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")

    with pytest.raises(AuthorizationError):
        bank.savings.submit_request(account.id, "dad", 5, "deposit")
    with pytest.raises(ValidationError):
        bank.savings.submit_request(account.id, "ava", 5, "transfer")
    with pytest.raises(AuthorizationError):
        bank.savings.transactions(account.id, "stranger")


def test_settle_interest_commits_projection() -> None:
    clock = Clock(datetime(2024, 1, 1, 15, 0))
    bank = make_family(clock)
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", 1000)

    with pytest.raises(NoInterestToSettleError):
        bank.savings.settle_interest(account.id, "ava")

    clock.now = datetime(2024, 1, 11, 8, 0)
    first = bank.savings.pending_interest(account.id)
    second = bank.savings.pending_interest(account.id)
    assert first == second
    assert first.interest == Decimal("0.82")

    entry = bank.savings.settle_interest(account.id, "ava")
    assert entry.type is SavingsTransactionType.INTEREST
    assert entry.amount == Decimal("0.82")
    assert entry.balance_after == Decimal("1000.82")
    assert entry.description == "10 days interest"

    settled = bank.savings.get_or_create_account("ava", "fam")
    assert settled.balance == Decimal("1000.82")
    assert settled.total_interest == Decimal("0.82")
    assert settled.last_interest_date == date(2024, 1, 11)

    with pytest.raises(NoInterestToSettleError):
        bank.savings.settle_interest(account.id, "dad")
    assert bank.savings.verify_integrity(account.id).ok


def test_settled_account_projects_no_further_interest() -> None:
    clock = Clock(datetime(2024, 3, 1, 12, 0))
    bank = make_family(clock)
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", "250.00")
    clock.advance(days=45)

    entry = bank.savings.settle_interest(account.id, "dad")

    assert bank.savings.pending_interest(account.id) == InterestProjection(0, Decimal("0.00"), entry.balance_after)


def test_settle_interest_by_other_member_requires_admin() -> None:
    clock = Clock(datetime(2024, 1, 1, 15, 0))
    bank = make_family(clock)
    bank.add_member("fam", "ben")
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", 100)
    clock.advance(days=30)

    with pytest.raises(AdminRequiredError):
        bank.savings.settle_interest(account.id, "ben")


def test_update_rate_is_creator_only() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")

    with pytest.raises(CreatorRequiredError):
        bank.savings.update_rate(account.id, "dad", "0.05")
    with pytest.raises(ValidationError):
        bank.savings.update_rate(account.id, "mom", "1.5")
    with pytest.raises(ValidationError):
        bank.savings.update_rate(account.id, "mom", -0.01)

    updated = bank.savings.update_rate(account.id, "mom", "0.05")
    assert updated.annual_rate == Decimal("0.0500")
    assert bank.savings.account_detail("ava", "fam").daily_rate == Decimal("0.05") / Decimal(365)


def test_family_accounts_for_admins() -> None:
    bank = make_family()
    ava = bank.savings.get_or_create_account("ava", "fam")
    dad = bank.savings.get_or_create_account("dad", "fam")
    bank.savings.deposit(ava.id, "dad", 10)
    bank.savings.deposit(dad.id, "mom", 50)

    accounts = bank.savings.family_accounts("mom", "fam")
    assert [detail.account.user_id for detail in accounts] == ["dad", "ava"]
    assert accounts[0].is_admin
    with pytest.raises(AdminRequiredError):
        bank.savings.family_accounts("ava", "fam")


def test_integrity_check_flags_drift() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", 10)

    bank.store.update_savings_account(account.id, balance=Decimal("11.00"))
    report = bank.savings.verify_integrity(account.id)

    assert not report.ok
    assert report.replayed_balance == Decimal("10.00")
    assert report.stored_balance == Decimal("11.00")
    assert bank.logger.tail(event="savings_integrity_mismatch")


def test_out_of_range_amounts_are_rejected() -> None:
    bank = make_family()
    account = bank.savings.get_or_create_account("ava", "fam")

    with pytest.raises(ValidationError):
        bank.savings.deposit(account.id, "dad", "1e30")
    with pytest.raises(ValidationError):
        bank.savings.deposit(account.id, "dad", 10**20)
    with pytest.raises(ValidationError):
        bank.savings.submit_request(account.id, "ava", "-1e40", "deposit")
    assert bank.savings.transactions(account.id, "ava") == ()


class StaleBalanceStore(InMemoryStore):
    """Serves account reads that lag the stored balance by ``lag``."""

    def __init__(self) -> None:
        super().__init__()
        self.lag = Decimal("0.00")

    def get_savings_account(self, account_id):
        account = super().get_savings_account(account_id)
        if account is not None and self.lag:
            account.balance = account.balance - self.lag
        return account


def test_balance_changed_underneath_raises_concurrent_update() -> None:
    clock = Clock(datetime(2024, 1, 1, 9, 0))
    store = StaleBalanceStore()
    bank = FamilyLedger(store, clock=clock)
    bank.register_family("mom", "Smiths", family_id="fam")
    bank.add_member("fam", "dad", role=Role.ADMIN)
    bank.add_member("fam", "ava")
    account = bank.savings.get_or_create_account("ava", "fam")
    bank.savings.deposit(account.id, "dad", 100)
    clock.advance(days=30)

    store.lag = Decimal("5.00")
    with pytest.raises(ConcurrentUpdateError):
        bank.savings.deposit(account.id, "dad", 10)
    with pytest.raises(ConcurrentUpdateError):
        bank.savings.settle_interest(account.id, "dad")

    store.lag = Decimal("0.00")
    stored = bank.savings.get_or_create_account("ava", "fam")
    assert stored.balance == Decimal("100.00")
    assert stored.total_interest == Decimal("0.00")
    assert len(bank.savings.transactions(account.id, "ava")) == 1
