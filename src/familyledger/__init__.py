"""familyledger package: points, chore reviews and savings for a household."""

from .audit import AuditEvent, AuditLog
from .chores import ChoreReviewWorkflow
from .exceptions import (
    AdminRequiredError,
    AlreadyProcessedError,
    AlreadyReviewedError,
    AuthorizationError,
    ChoreRecordNotFoundError,
    ChoreTypeNotFoundError,
    ConcurrentUpdateError,
    CreatorImmutableError,
    CreatorRequiredError,
    DuplicateChoreTypeError,
    FamilyLedgerError,
    FamilyNotFoundError,
    InsufficientBalanceError,
    InsufficientPointsError,
    NoInterestToSettleError,
    NotFoundError,
    NotMemberError,
    RedemptionRequestNotFoundError,
    SavingsAccountNotFoundError,
    SavingsRequestNotFoundError,
    StateError,
    StoreError,
    ValidationError,
)
from .ledger import TransactionLedger
from .models import (
    AccountDetail,
    ChoreRecord,
    ChoreStatistics,
    ChoreType,
    Family,
    FamilyMember,
    IntegrityReport,
    InterestProjection,
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
    Role,
    SavingsAccount,
    SavingsRequest,
    SavingsRequestType,
    SavingsTransaction,
    SavingsTransactionType,
)
from .ops import StructuredLogger
from .ranking import RankingEngine
from .roles import RoleAuthority
from .savings import SavingsService, project_interest
from .service import FamilyLedger
from .store import InMemoryStore, Store

__all__ = [
    "AccountDetail",
    "AdminRequiredError",
    "AlreadyProcessedError",
    "AlreadyReviewedError",
    "AuditEvent",
    "AuditLog",
    "AuthorizationError",
    "ChoreRecord",
    "ChoreRecordNotFoundError",
    "ChoreReviewWorkflow",
    "ChoreStatistics",
    "ChoreType",
    "ChoreTypeNotFoundError",
    "ConcurrentUpdateError",
    "CreatorImmutableError",
    "CreatorRequiredError",
    "DuplicateChoreTypeError",
    "Family",
    "FamilyLedger",
    "FamilyLedgerError",
    "FamilyMember",
    "FamilyNotFoundError",
    "InMemoryStore",
    "InsufficientBalanceError",
    "InsufficientPointsError",
    "IntegrityReport",
    "InterestProjection",
    "MemberPoints",
    "MonthlyPoints",
    "NoInterestToSettleError",
    "NotFoundError",
    "NotMemberError",
    "PointTransaction",
    "PointTransactionType",
    "PointsSummary",
    "RankingEngine",
    "RankingEntry",
    "RankingPeriod",
    "RedemptionRequest",
    "RedemptionRequestNotFoundError",
    "ReviewAction",
    "ReviewStatus",
    "Role",
    "RoleAuthority",
    "SavingsAccount",
    "SavingsAccountNotFoundError",
    "SavingsRequest",
    "SavingsRequestNotFoundError",
    "SavingsRequestType",
    "SavingsService",
    "SavingsTransaction",
    "SavingsTransactionType",
    "StateError",
    "Store",
    "StoreError",
    "StructuredLogger",
    "TransactionLedger",
    "ValidationError",
    "project_interest",
]
