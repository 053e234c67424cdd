"""Points economy: append-only ledger, balances and the redemption workflow.

The ledger log is the only source of truth. A member's available balance is
always recomputed as ``sum(earn) - sum(redeem)``; no balance is stored.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Tuple

from .audit import AuditLog
from .config import DEFAULT_PAGE_SIZE
from .exceptions import (
    AlreadyProcessedError,
    InsufficientPointsError,
    NotMemberError,
    RedemptionRequestNotFoundError,
    ValidationError,
)
from .models import (
    MemberPoints,
    MonthlyPoints,
    PointsSummary,
    PointTransaction,
    PointTransactionType,
    RankingEntry,
    RankingPeriod,
    RedemptionRequest,
    ReviewAction,
    ReviewStatus,
    coerce_enum,
    new_id,
    utcnow,
)
from .money import format_currency, require_points, to_decimal
from .ops import StructuredLogger, surface_store_failures
from .ranking import RankingEngine, require_family
from .roles import RoleAuthority
from .store import Store, paginate


def coerce_action(action: ReviewAction | str) -> ReviewAction:
    return coerce_enum(ReviewAction, action, "review action")


class TransactionLedger:
    """Record points transactions and settle redemptions against them."""

    __slots__ = ("_store", "_authority", "_ranking", "_logger", "_audit", "_clock")

    def __init__(
        self,
        store: Store,
        authority: RoleAuthority,
        ranking: RankingEngine,
        *,
        logger: StructuredLogger,
        audit: AuditLog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._authority = authority
        self._ranking = ranking
        self._logger = logger
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Log and balances
    # ------------------------------------------------------------------
    @surface_store_failures
    def append(
        self,
        user_id: str,
        family_id: str,
        points: int,
        type: PointTransactionType | str,
        description: str = "",
    ) -> PointTransaction:
        """Append one entry to the log; the only way any points balance changes."""

        require_points(points)
        entry_type = coerce_enum(PointTransactionType, type, "transaction type")
        require_family(self._store, family_id)
        with self._store.atomic():
            if entry_type is PointTransactionType.REDEEM:
                self._store.lock_member(family_id, user_id)
                self._ensure_available(user_id, family_id, points)
            transaction = self._store.append_point_transaction(
                PointTransaction(
                    id=new_id(),
                    user_id=user_id,
                    family_id=family_id,
                    points=points,
                    type=entry_type,
                    description=description,
                    created_at=self._clock(),
                )
            )
            self._store.after_commit(
                lambda: self._logger.log(
                    "points_appended",
                    family=family_id,
                    user=user_id,
                    type=entry_type.value,
                    points=points,
                )
            )
        return transaction

    def totals(self, user_id: str, family_id: str) -> Tuple[int, int]:
        """Return ``(total_earned, total_redeemed)`` replayed from the log."""

        earned = redeemed = 0
        for transaction in self._store.list_point_transactions(family_id, user_id=user_id):
            if transaction.type is PointTransactionType.EARN:
                earned += transaction.points
            elif transaction.type is PointTransactionType.REDEEM:
                redeemed += transaction.points
        return earned, redeemed

    def available(self, user_id: str, family_id: str) -> int:
        earned, redeemed = self.totals(user_id, family_id)
        return earned - redeemed

    def pending_request_points(self, user_id: str, family_id: str) -> int:
        return sum(
            request.points
            for request in self._store.list_redemption_requests(
                family_id, user_id=user_id, status=ReviewStatus.PENDING
            )
        )

    @surface_store_failures
    def get_summary(self, user_id: str, family_id: str) -> PointsSummary:
        self._authority.require_member(user_id, family_id)
        family = require_family(self._store, family_id)
        earned, redeemed = self.totals(user_id, family_id)
        available = earned - redeemed
        return PointsSummary(
            user_id=user_id,
            family_id=family_id,
            total_earned=earned,
            total_redeemed=redeemed,
            available=available,
            pending_request_points=self.pending_request_points(user_id, family_id),
            rank=self._ranking.rank_of(user_id, family_id),
            points_value=family.points_value,
            total_value=to_decimal(Decimal(available) * family.points_value),
        )

    @surface_store_failures
    def get_ranking(
        self,
        family_id: str,
        period: RankingPeriod | str = RankingPeriod.ALL,
        *,
        requester_id: str | None = None,
    ) -> Tuple[RankingEntry, ...]:
        if requester_id is not None:
            self._authority.require_member(requester_id, family_id)
        return self._ranking.ranking(family_id, period)

    @surface_store_failures
    def transactions(
        self,
        requester_id: str,
        family_id: str,
        *,
        user_id: str | None = None,
        type: PointTransactionType | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[PointTransaction, ...]:
        """Return a member's log newest first; other members' logs need admin."""

        target = user_id or requester_id
        if target == requester_id:
            self._authority.require_member(requester_id, family_id)
        else:
            self._authority.require_admin(requester_id, family_id)
        entry_type = coerce_enum(PointTransactionType, type, "transaction type") if type is not None else None
        entries = [
            transaction
            for transaction in reversed(self._store.list_point_transactions(family_id, user_id=target))
            if entry_type is None or transaction.type is entry_type
        ]
        return paginate(entries, limit=limit, offset=offset)

    @surface_store_failures
    def monthly_points(self, user_id: str, family_id: str, year: int, month: int) -> MonthlyPoints:
        """Points earned and redeemed in a calendar month and the balance at its end."""

        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12.")
        self._authority.require_member(user_id, family_id)
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)

        earned = redeemed = balance = 0
        for transaction in self._store.list_point_transactions(family_id, user_id=user_id, until=end):
            balance += transaction.signed_points
            if transaction.created_at < start:
                continue
            if transaction.type is PointTransactionType.EARN:
                earned += transaction.points
            elif transaction.type is PointTransactionType.REDEEM:
                redeemed += transaction.points
        return MonthlyPoints(year=year, month=month, earned=earned, redeemed=redeemed, balance=balance)

    @surface_store_failures
    def member_points(self, admin_id: str, family_id: str) -> Tuple[MemberPoints, ...]:
        self._authority.require_admin(admin_id, family_id)
        earned: Dict[str, int] = defaultdict(int)
        redeemed: Dict[str, int] = defaultdict(int)
        for transaction in self._store.list_point_transactions(family_id):
            if transaction.type is PointTransactionType.EARN:
                earned[transaction.user_id] += transaction.points
            elif transaction.type is PointTransactionType.REDEEM:
                redeemed[transaction.user_id] += transaction.points
        rows = [
            MemberPoints(
                user_id=member.user_id,
                display_name=member.display_name or member.user_id,
                role=member.role,
                total_earned=earned[member.user_id],
                total_redeemed=redeemed[member.user_id],
            )
            for member in self._store.list_members(family_id)
        ]
        return tuple(sorted(rows, key=lambda row: row.available, reverse=True))

    # ------------------------------------------------------------------
    # Redemption workflow
    # ------------------------------------------------------------------
    @surface_store_failures
    def submit_redemption_request(
        self,
        user_id: str,
        family_id: str,
        points: int,
        remark: str = "",
    ) -> RedemptionRequest:
        """Queue a redemption; points already earmarked by pending requests are not reusable."""

        require_points(points)
        self._authority.require_member(user_id, family_id)
        family = require_family(self._store, family_id)
        with self._store.atomic():
            self._store.lock_member(family_id, user_id)
            available = self.available(user_id, family_id)
            requestable = available - self.pending_request_points(user_id, family_id)
            if points > requestable:
                raise InsufficientPointsError(
                    f"Only {max(requestable, 0)} points can be requested; {points} were asked for."
                )
            request = self._store.add_redemption_request(
                RedemptionRequest(
                    id=new_id(),
                    user_id=user_id,
                    family_id=family_id,
                    points=points,
                    amount=Decimal(points) * family.points_value,
                    remark=remark.strip(),
                    created_at=self._clock(),
                )
            )
        self._audit.record(user_id, "submit_redemption", request.id, family_id=family_id, details={"points": points})
        self._logger.log("redemption_requested", family=family_id, user=user_id, points=points)
        return request

    @surface_store_failures
    def review_redemption_request(
        self,
        request_id: str,
        reviewer_id: str,
        action: ReviewAction | str,
        reject_reason: str | None = None,
    ) -> RedemptionRequest:
        action = coerce_action(action)
        request = self._store.get_redemption_request(request_id)
        if request is None:
            raise RedemptionRequestNotFoundError(f"Redemption request '{request_id}' does not exist.")
        self._authority.require_admin(reviewer_id, request.family_id)
        if request.status is not ReviewStatus.PENDING:
            raise AlreadyProcessedError(f"Redemption request '{request_id}' is already {request.status.value}.")

        now = self._clock()
        if action is ReviewAction.REJECT:
            reason = (reject_reason or "").strip()
            if not reason:
                raise ValidationError("A reject reason is required.")
            changes = dict(status=ReviewStatus.REJECTED, reject_reason=reason, reviewer_id=reviewer_id, reviewed_at=now)
            if not self._store.transition_redemption_request(request_id, ReviewStatus.PENDING, **changes):
                raise AlreadyProcessedError(f"Redemption request '{request_id}' was already processed.")
            self._audit.record(reviewer_id, "reject_redemption", request_id, family_id=request.family_id)
            self._logger.log("redemption_rejected", family=request.family_id, request=request_id)
            return self._reload(request_id)

        with self._store.atomic():
            self._store.lock_member(request.family_id, request.user_id)
            changes = dict(status=ReviewStatus.APPROVED, reviewer_id=reviewer_id, reviewed_at=now)
            if not self._store.transition_redemption_request(request_id, ReviewStatus.PENDING, **changes):
                raise AlreadyProcessedError(f"Redemption request '{request_id}' was already processed.")
            self._ensure_available(request.user_id, request.family_id, request.points)
            self._store.append_point_transaction(
                PointTransaction(
                    id=new_id(),
                    user_id=request.user_id,
                    family_id=request.family_id,
                    points=request.points,
                    type=PointTransactionType.REDEEM,
                    description=f"Points redemption - {format_currency(request.amount)}",
                    created_at=now,
                )
            )
        self._audit.record(
            reviewer_id,
            "approve_redemption",
            request_id,
            family_id=request.family_id,
            details={"points": request.points, "amount": str(request.amount)},
        )
        self._logger.log("redemption_approved", family=request.family_id, request=request_id, points=request.points)
        return self._reload(request_id)

    @surface_store_failures
    def redeem_direct(
        self,
        admin_id: str,
        family_id: str,
        member_id: str,
        points: int,
        remark: str = "",
    ) -> PointTransaction:
        """Admin-initiated settlement that bypasses the request workflow."""

        require_points(points)
        self._authority.require_admin(admin_id, family_id)
        if self._authority.role_of(member_id, family_id) is None:
            raise NotMemberError(f"User '{member_id}' is not a member of family '{family_id}'.")
        with self._store.atomic():
            self._store.lock_member(family_id, member_id)
            self._ensure_available(member_id, family_id, points)
            transaction = self._store.append_point_transaction(
                PointTransaction(
                    id=new_id(),
                    user_id=member_id,
                    family_id=family_id,
                    points=points,
                    type=PointTransactionType.REDEEM,
                    description=remark.strip() or "Points settlement",
                    created_at=self._clock(),
                )
            )
        self._audit.record(admin_id, "redeem_direct", member_id, family_id=family_id, details={"points": points})
        self._logger.log("points_redeemed", family=family_id, user=member_id, points=points, operator=admin_id)
        return transaction

    @surface_store_failures
    def redemption_requests(
        self,
        requester_id: str,
        family_id: str,
        *,
        status: ReviewStatus | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[RedemptionRequest, ...]:
        """Admins see every request in the family, members only their own."""

        role = self._authority.require_member(requester_id, family_id)
        wanted = coerce_enum(ReviewStatus, status, "status") if status is not None else None
        requests = self._store.list_redemption_requests(
            family_id,
            user_id=None if role.is_admin else requester_id,
            status=wanted,
        )
        return paginate(requests, limit=limit, offset=offset)

    @surface_store_failures
    def pending_redemption_count(self, user_id: str, family_id: str) -> int:
        if not self._authority.is_admin(user_id, family_id):
            return 0
        return len(self._store.list_redemption_requests(family_id, status=ReviewStatus.PENDING))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _ensure_available(self, user_id: str, family_id: str, points: int) -> None:
        available = self.available(user_id, family_id)
        if points > available:
            raise InsufficientPointsError(f"Only {available} points are available; {points} were asked for.")

    def _reload(self, request_id: str) -> RedemptionRequest:
        request = self._store.get_redemption_request(request_id)
        if request is None:
            raise RedemptionRequestNotFoundError(f"Redemption request '{request_id}' does not exist.")
        return request


__all__ = ["TransactionLedger", "coerce_action"]
