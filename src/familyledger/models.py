"""Domain models used by the familyledger package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Type, TypeVar
from uuid import uuid4

from .exceptions import ValidationError
from .money import ZERO, to_decimal


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


E = TypeVar("E", bound=Enum)


def coerce_enum(enum_type: Type[E], value: E | str, label: str) -> E:
    """Convert ``value`` to ``enum_type`` or raise :class:`ValidationError`."""

    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown {label}: {value!r}") from exc


class Role(str, Enum):
    """Family roles, totally ordered: creator > admin > member."""

    MEMBER = "member"
    ADMIN = "admin"
    CREATOR = "creator"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    @property
    def is_admin(self) -> bool:
        return self.level >= _ROLE_LEVELS[Role.ADMIN]

    @property
    def is_creator(self) -> bool:
        return self is Role.CREATOR

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level >= other.level


_ROLE_LEVELS = {Role.MEMBER: 1, Role.ADMIN: 2, Role.CREATOR: 3}


class ReviewStatus(str, Enum):
    """Lifecycle shared by chore records, redemption and savings requests."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ReviewStatus.PENDING

    def can_transition_to(self, target: "ReviewStatus") -> bool:
        return self is ReviewStatus.PENDING and target.is_terminal


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> ReviewStatus:
        if self is ReviewAction.APPROVE:
            return ReviewStatus.APPROVED
        return ReviewStatus.REJECTED


class PointTransactionType(str, Enum):
    """Types of points ledger entries. Points are stored as positive magnitudes."""

    EARN = "earn"
    REDEEM = "redeem"
    ADJUST = "adjust"


class SavingsTransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    INTEREST = "interest"


class SavingsRequestType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"

    @property
    def transaction_type(self) -> SavingsTransactionType:
        return SavingsTransactionType(self.value)


class RankingPeriod(str, Enum):
    ALL = "all"
    WEEK = "week"
    MONTH = "month"


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Family:
    """Family tenant and its settings (monetary value of a single point)."""

    family_id: str
    name: str
    points_value: Decimal = Decimal("0.50")
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.points_value = to_decimal(self.points_value)


@dataclass(slots=True)
class FamilyMember:
    family_id: str
    user_id: str
    role: Role = Role.MEMBER
    display_name: str = ""
    joined_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ChoreType:
    """Catalogue entry; soft deleted via ``active`` so history still resolves."""

    id: str
    family_id: str
    name: str
    points: int
    description: str = ""
    is_preset: bool = False
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ChoreRecord:
    """A submitted chore completion and its single review decision."""

    id: str
    user_id: str
    chore_type_id: str
    family_id: str
    chore_name: str
    original_points: int
    note: str = ""
    images: Tuple[str, ...] = ()
    status: ReviewStatus = ReviewStatus.PENDING
    deduction: int = 0
    deduction_reason: str = ""
    review_note: str = ""
    final_points: Optional[int] = None
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    completed_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.images = tuple(self.images)


@dataclass(slots=True)
class PointTransaction:
    """Immutable points ledger entry."""

    id: str
    user_id: str
    family_id: str
    points: int
    type: PointTransactionType
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)

    @property
    def signed_points(self) -> int:
        if self.type is PointTransactionType.EARN:
            return self.points
        if self.type is PointTransactionType.REDEEM:
            return -self.points
        return 0


@dataclass(slots=True)
class RedemptionRequest:
    id: str
    user_id: str
    family_id: str
    points: int
    amount: Decimal
    remark: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    reject_reason: str = ""
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)


@dataclass(slots=True)
class SavingsAccount:
    """Interest-bearing balance, one per (user, family)."""

    id: str
    user_id: str
    family_id: str
    balance: Decimal = ZERO
    total_interest: Decimal = ZERO
    annual_rate: Decimal = Decimal("0.0300")
    last_interest_date: date = field(default_factory=lambda: utcnow().date())
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.balance = to_decimal(self.balance)
        self.total_interest = to_decimal(self.total_interest)
        self.annual_rate = Decimal(self.annual_rate)


@dataclass(slots=True)
class SavingsTransaction:
    id: str
    account_id: str
    type: SavingsTransactionType
    amount: Decimal
    balance_after: Decimal
    description: str = ""
    operator_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)
        self.balance_after = to_decimal(self.balance_after)

    @property
    def signed_amount(self) -> Decimal:
        if self.type is SavingsTransactionType.WITHDRAW:
            return -self.amount
        return self.amount


@dataclass(slots=True)
class SavingsRequest:
    id: str
    account_id: str
    user_id: str
    type: SavingsRequestType
    amount: Decimal
    description: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    reject_reason: str = ""
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class PointsSummary:
    user_id: str
    family_id: str
    total_earned: int
    total_redeemed: int
    available: int
    pending_request_points: int
    rank: Optional[int]
    points_value: Decimal
    total_value: Decimal

    @property
    def requestable(self) -> int:
        """Points still free to be requested for redemption."""

        return max(0, self.available - self.pending_request_points)


@dataclass(slots=True)
class RankingEntry:
    """Leaderboard standing for one member."""

    rank: int
    user_id: str
    display_name: str
    total_points: int
    total_records: int
    total_value: Decimal


@dataclass(slots=True)
class MemberPoints:
    user_id: str
    display_name: str
    role: Role
    total_earned: int
    total_redeemed: int

    @property
    def available(self) -> int:
        return self.total_earned - self.total_redeemed


@dataclass(slots=True)
class MonthlyPoints:
    year: int
    month: int
    earned: int
    redeemed: int
    balance: int


@dataclass(slots=True)
class ChoreStatistics:
    """Approved chores completed today plus the member's lifetime chore points."""

    family_chores_today: int
    family_points_today: int
    my_chores_today: int
    my_points_today: int
    my_total_points: int


@dataclass(frozen=True, slots=True)
class InterestProjection:
    """Result of the daily-compounding interest projection."""

    days: int
    interest: Decimal
    new_balance: Decimal


@dataclass(slots=True)
class AccountDetail:
    account: SavingsAccount
    pending: InterestProjection
    pending_request_count: int
    is_admin: bool

    @property
    def daily_rate(self) -> Decimal:
        return self.account.annual_rate / Decimal(365)


@dataclass(slots=True)
class IntegrityReport:
    """Replay of a savings log compared with the stored balance."""

    account_id: str
    stored_balance: Decimal
    replayed_balance: Decimal
    mismatched_transactions: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.mismatched_transactions
