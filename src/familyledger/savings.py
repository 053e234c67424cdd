"""Interest-bearing savings accounts with direct and request-based mutations.

Two paths change a balance: an admin acting directly (``deposit`` and
``withdraw``) and a member request that an admin later approves. Both funnel
through :meth:`SavingsService._apply`, which updates the stored balance with a
compare-and-swap and appends the matching log entry inside one atomic unit.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Callable, Optional, Tuple

from .audit import AuditLog
from .config import DAYS_PER_YEAR, DEFAULT_ANNUAL_RATE, DEFAULT_PAGE_SIZE
from .exceptions import (
    AlreadyProcessedError,
    AuthorizationError,
    ConcurrentUpdateError,
    InsufficientBalanceError,
    NoInterestToSettleError,
    SavingsAccountNotFoundError,
    SavingsRequestNotFoundError,
)
from .ledger import coerce_action
from .models import (
    AccountDetail,
    IntegrityReport,
    InterestProjection,
    ReviewAction,
    ReviewStatus,
    SavingsAccount,
    SavingsRequest,
    SavingsRequestType,
    SavingsTransaction,
    SavingsTransactionType,
    coerce_enum,
    new_id,
    utcnow,
)
from .money import CENT, ZERO, AmountLike, format_currency, require_positive, to_decimal, to_rate
from .ops import StructuredLogger, surface_store_failures
from .roles import RoleAuthority
from .store import Store, paginate

DEFAULT_REJECT_REASON = "Request rejected"


def project_interest(
    balance: Decimal,
    annual_rate: Decimal,
    last_interest_date: date,
    today: date,
) -> InterestProjection:
    """Project daily-compounded interest accrued since ``last_interest_date``.

    Pure and reproducible: the computation runs under a fixed 28 digit
    decimal context, so the same inputs always give the same cents.
    """

    days = (today - last_interest_date).days
    if days <= 0 or balance <= 0:
        return InterestProjection(days=0, interest=ZERO, new_balance=to_decimal(balance))

    with localcontext() as ctx:
        ctx.prec = 28
        ctx.rounding = ROUND_HALF_UP
        growth = (Decimal(1) + Decimal(annual_rate) / Decimal(DAYS_PER_YEAR)) ** days
        raw = Decimal(balance) * growth
        interest = (raw - Decimal(balance)).quantize(CENT, rounding=ROUND_HALF_UP)
        new_balance = raw.quantize(CENT, rounding=ROUND_HALF_UP)
    return InterestProjection(days=days, interest=interest, new_balance=new_balance)


class SavingsService:
    """Savings accounts, their append-only log and the deposit/withdraw approval flow."""

    __slots__ = ("_store", "_authority", "_logger", "_audit", "_clock", "_default_rate")

    def __init__(
        self,
        store: Store,
        authority: RoleAuthority,
        *,
        logger: StructuredLogger,
        audit: AuditLog,
        clock: Callable[[], datetime] = utcnow,
        default_rate: AmountLike = DEFAULT_ANNUAL_RATE,
    ) -> None:
        self._store = store
        self._authority = authority
        self._logger = logger
        self._audit = audit
        self._clock = clock
        self._default_rate = to_rate(default_rate)

    def today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @surface_store_failures
    def get_or_create_account(self, user_id: str, family_id: str) -> SavingsAccount:
        self._authority.require_member(user_id, family_id)
        with self._store.atomic():
            account = self._store.find_savings_account(user_id, family_id)
            if account is not None:
                return account
            now = self._clock()
            account = self._store.add_savings_account(
                SavingsAccount(
                    id=new_id(),
                    user_id=user_id,
                    family_id=family_id,
                    annual_rate=self._default_rate,
                    last_interest_date=now.date(),
                    created_at=now,
                )
            )
        self._logger.log("savings_account_opened", family=family_id, user=user_id, account=account.id)
        return account

    @surface_store_failures
    def account_detail(self, user_id: str, family_id: str) -> AccountDetail:
        """The caller's own account with live interest and open request count."""

        account = self.get_or_create_account(user_id, family_id)
        pending = self._store.list_savings_requests(
            account_ids=[account.id], status=ReviewStatus.PENDING
        )
        return AccountDetail(
            account=account,
            pending=self._project(account),
            pending_request_count=len(pending),
            is_admin=self._authority.is_admin(user_id, family_id),
        )

    @surface_store_failures
    def family_accounts(self, admin_id: str, family_id: str) -> Tuple[AccountDetail, ...]:
        self._authority.require_admin(admin_id, family_id)
        accounts = sorted(self._store.list_savings_accounts(family_id), key=lambda a: a.balance, reverse=True)
        details = []
        for account in accounts:
            pending = self._store.list_savings_requests(account_ids=[account.id], status=ReviewStatus.PENDING)
            details.append(
                AccountDetail(
                    account=account,
                    pending=self._project(account),
                    pending_request_count=len(pending),
                    is_admin=self._authority.is_admin(account.user_id, family_id),
                )
            )
        return tuple(details)

    @surface_store_failures
    def pending_interest(self, account_id: str) -> InterestProjection:
        """Interest accrued so far; a query, never a mutation."""

        return self._project(self._account(account_id))

    # ------------------------------------------------------------------
    # Admin-direct mutations
    # ------------------------------------------------------------------
    @surface_store_failures
    def deposit(self, account_id: str, operator_id: str, amount: AmountLike, description: str = "") -> SavingsTransaction:
        amount = require_positive(to_decimal(amount))
        account = self._account(account_id)
        self._authority.require_admin(operator_id, account.family_id)
        transaction = self._apply(
            account_id,
            SavingsTransactionType.DEPOSIT,
            amount,
            description.strip() or "Admin deposit",
            operator_id,
        )
        self._audit.record(operator_id, "savings_deposit", account_id, family_id=account.family_id, details={"amount": str(amount)})
        self._logger.log("savings_deposited", family=account.family_id, account=account_id, amount=str(amount))
        return transaction

    @surface_store_failures
    def withdraw(self, account_id: str, operator_id: str, amount: AmountLike, description: str = "") -> SavingsTransaction:
        amount = require_positive(to_decimal(amount))
        account = self._account(account_id)
        self._authority.require_admin(operator_id, account.family_id)
        transaction = self._apply(
            account_id,
            SavingsTransactionType.WITHDRAW,
            amount,
            description.strip() or "Admin withdrawal",
            operator_id,
        )
        self._audit.record(operator_id, "savings_withdraw", account_id, family_id=account.family_id, details={"amount": str(amount)})
        self._logger.log("savings_withdrawn", family=account.family_id, account=account_id, amount=str(amount))
        return transaction

    # ------------------------------------------------------------------
    # Request-then-approve
    # ------------------------------------------------------------------
    @surface_store_failures
    def submit_request(
        self,
        account_id: str,
        user_id: str,
        amount: AmountLike,
        type: SavingsRequestType | str,
        description: str = "",
    ) -> SavingsRequest:
        """Queue a deposit or withdrawal for admin approval; no balance effect yet."""

        amount = require_positive(to_decimal(amount))
        request_type = coerce_enum(SavingsRequestType, type, "request type")
        account = self._account(account_id)
        self._authority.require_member(user_id, account.family_id)
        if account.user_id != user_id:
            raise AuthorizationError("Only the account holder can submit savings requests.")
        if request_type is SavingsRequestType.WITHDRAW and amount > account.balance:
            raise InsufficientBalanceError(
                f"Balance {format_currency(account.balance)} is less than {format_currency(amount)}."
            )
        default_description = "Deposit request" if request_type is SavingsRequestType.DEPOSIT else "Withdrawal request"
        request = self._store.add_savings_request(
            SavingsRequest(
                id=new_id(),
                account_id=account_id,
                user_id=user_id,
                type=request_type,
                amount=amount,
                description=description.strip() or default_description,
                created_at=self._clock(),
            )
        )
        self._audit.record(
            user_id,
            f"submit_savings_{request_type.value}",
            request.id,
            family_id=account.family_id,
            details={"amount": str(amount)},
        )
        self._logger.log("savings_requested", family=account.family_id, account=account_id, type=request_type.value)
        return request

    @surface_store_failures
    def review_request(
        self,
        request_id: str,
        reviewer_id: str,
        action: ReviewAction | str,
        reject_reason: str | None = None,
    ) -> SavingsRequest:
        """Approve or reject a pending request.

        Approval re-checks the balance for withdrawals because it may have
        moved since the request was submitted.
        """

        action = coerce_action(action)
        request = self._store.get_savings_request(request_id)
        if request is None:
            raise SavingsRequestNotFoundError(f"Savings request '{request_id}' does not exist.")
        account = self._account(request.account_id)
        self._authority.require_admin(reviewer_id, account.family_id)
        if request.status is not ReviewStatus.PENDING:
            raise AlreadyProcessedError()

        now = self._clock()
        if action is ReviewAction.REJECT:
            if not self._store.transition_savings_request(
                request_id,
                ReviewStatus.PENDING,
                status=ReviewStatus.REJECTED,
                reject_reason=(reject_reason or "").strip() or DEFAULT_REJECT_REASON,
                reviewer_id=reviewer_id,
                reviewed_at=now,
            ):
                raise AlreadyProcessedError()
            self._audit.record(reviewer_id, "reject_savings_request", request_id, family_id=account.family_id)
            self._logger.log("savings_request_reviewed", family=account.family_id, request=request_id, action=action.value)
            return self._reload(request_id)

        with self._store.atomic():
            if not self._store.transition_savings_request(
                request_id,
                ReviewStatus.PENDING,
                status=ReviewStatus.APPROVED,
                reviewer_id=reviewer_id,
                reviewed_at=now,
            ):
                raise AlreadyProcessedError()
            self._apply(
                request.account_id,
                request.type.transaction_type,
                request.amount,
                request.description,
                reviewer_id,
            )
        self._audit.record(
            reviewer_id,
            "approve_savings_request",
            request_id,
            family_id=account.family_id,
            details={"type": request.type.value, "amount": str(request.amount)},
        )
        self._logger.log("savings_request_reviewed", family=account.family_id, request=request_id, action=action.value)
        return self._reload(request_id)

    # ------------------------------------------------------------------
    # Interest & rate
    # ------------------------------------------------------------------
    @surface_store_failures
    def settle_interest(self, account_id: str, operator_id: str) -> SavingsTransaction:
        """Commit the pending interest projection to the balance."""

        account = self._account(account_id)
        if account.user_id != operator_id:
            self._authority.require_admin(operator_id, account.family_id)
        today = self.today()
        with self._store.atomic():
            account = self._account(account_id)
            projection = project_interest(account.balance, account.annual_rate, account.last_interest_date, today)
            if projection.interest <= 0:
                raise NoInterestToSettleError()
            if not self._store.update_savings_account(
                account_id,
                expected_balance=account.balance,
                balance=projection.new_balance,
                total_interest=account.total_interest + projection.interest,
                last_interest_date=today,
            ):
                raise ConcurrentUpdateError()
            transaction = self._store.append_savings_transaction(
                SavingsTransaction(
                    id=new_id(),
                    account_id=account_id,
                    type=SavingsTransactionType.INTEREST,
                    amount=projection.interest,
                    balance_after=projection.new_balance,
                    description=f"{projection.days} days interest",
                    operator_id=operator_id,
                    created_at=self._clock(),
                )
            )
        self._audit.record(
            operator_id,
            "settle_interest",
            account_id,
            family_id=account.family_id,
            details={"interest": str(projection.interest), "days": projection.days},
        )
        self._logger.log(
            "interest_settled",
            family=account.family_id,
            account=account_id,
            interest=str(projection.interest),
            days=projection.days,
        )
        return transaction

    @surface_store_failures
    def update_rate(self, account_id: str, operator_id: str, annual_rate: AmountLike) -> SavingsAccount:
        rate = to_rate(annual_rate)
        account = self._account(account_id)
        self._authority.require_creator(operator_id, account.family_id)
        self._store.update_savings_account(account_id, annual_rate=rate)
        self._audit.record(
            operator_id,
            "update_rate",
            account_id,
            family_id=account.family_id,
            details={"from": str(account.annual_rate), "to": str(rate)},
        )
        self._logger.log("savings_rate_updated", family=account.family_id, account=account_id, rate=str(rate))
        return self._account(account_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @surface_store_failures
    def requests(
        self,
        requester_id: str,
        family_id: str,
        *,
        status: ReviewStatus | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[SavingsRequest, ...]:
        """Admins see every request in the family, members only their own."""

        role = self._authority.require_member(requester_id, family_id)
        wanted = coerce_enum(ReviewStatus, status, "status") if status is not None else None
        account_ids = [account.id for account in self._store.list_savings_accounts(family_id)]
        requests = self._store.list_savings_requests(
            account_ids=account_ids,
            user_id=None if role.is_admin else requester_id,
            status=wanted,
        )
        return paginate(requests, limit=limit, offset=offset)

    @surface_store_failures
    def pending_count(self, user_id: str, family_id: str) -> int:
        if not self._authority.is_admin(user_id, family_id):
            return 0
        account_ids = [account.id for account in self._store.list_savings_accounts(family_id)]
        return len(self._store.list_savings_requests(account_ids=account_ids, status=ReviewStatus.PENDING))

    @surface_store_failures
    def transactions(
        self,
        account_id: str,
        requester_id: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[SavingsTransaction, ...]:
        account = self._account(account_id)
        if account.user_id != requester_id:
            self._authority.require_admin(requester_id, account.family_id)
        entries = list(reversed(self._store.list_savings_transactions(account_id)))
        return paginate(entries, limit=limit, offset=offset)

    @surface_store_failures
    def verify_integrity(self, account_id: str) -> IntegrityReport:
        """Replay the log and compare every ``balance_after`` with the running sum."""

        account = self._account(account_id)
        running = ZERO
        mismatched = []
        for transaction in self._store.list_savings_transactions(account_id):
            running += transaction.signed_amount
            if transaction.balance_after != running:
                mismatched.append(transaction.id)
        report = IntegrityReport(
            account_id=account_id,
            stored_balance=account.balance,
            replayed_balance=running,
            mismatched_transactions=tuple(mismatched),
        )
        if not report.ok:
            self._logger.log(
                "savings_integrity_mismatch",
                level="warning",
                account=account_id,
                stored=str(account.balance),
                replayed=str(running),
            )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _account(self, account_id: str) -> SavingsAccount:
        account = self._store.get_savings_account(account_id)
        if account is None:
            raise SavingsAccountNotFoundError(f"Savings account '{account_id}' does not exist.")
        return account

    def _project(self, account: SavingsAccount) -> InterestProjection:
        return project_interest(account.balance, account.annual_rate, account.last_interest_date, self.today())

    def _apply(
        self,
        account_id: str,
        type: SavingsTransactionType,
        amount: Decimal,
        description: str,
        operator_id: Optional[str],
    ) -> SavingsTransaction:
        with self._store.atomic():
            account = self._account(account_id)
            if type is SavingsTransactionType.WITHDRAW:
                if amount > account.balance:
                    raise InsufficientBalanceError(
                        f"Balance {format_currency(account.balance)} is less than {format_currency(amount)}."
                    )
                new_balance = account.balance - amount
            else:
                new_balance = account.balance + amount
            if not self._store.update_savings_account(
                account_id, expected_balance=account.balance, balance=new_balance
            ):
                raise ConcurrentUpdateError()
            return self._store.append_savings_transaction(
                SavingsTransaction(
                    id=new_id(),
                    account_id=account_id,
                    type=type,
                    amount=amount,
                    balance_after=new_balance,
                    description=description,
                    operator_id=operator_id,
                    created_at=self._clock(),
                )
            )

    def _reload(self, request_id: str) -> SavingsRequest:
        request = self._store.get_savings_request(request_id)
        if request is None:
            raise SavingsRequestNotFoundError(f"Savings request '{request_id}' does not exist.")
        return request


__all__ = ["DEFAULT_REJECT_REASON", "SavingsService", "project_interest"]
