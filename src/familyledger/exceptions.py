"""Custom exception hierarchy for the familyledger package.

Every error carries a stable machine-checkable ``kind`` and numeric ``code``
alongside a human readable ``reason``.
"""

from __future__ import annotations


class FamilyLedgerError(Exception):
    """Base class for all familyledger specific errors."""

    kind = "error"
    code = 90001
    default_reason = "Unexpected ledger error."

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def as_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "reason": self.reason}


# Authorization -------------------------------------------------------------
class AuthorizationError(FamilyLedgerError):
    """Raised when the acting user lacks the role an operation needs."""

    kind = "authorization_error"
    code = 10006
    default_reason = "Permission denied."


class NotMemberError(AuthorizationError):
    kind = "not_member"
    code = 30006
    default_reason = "User is not a member of this family."


class AdminRequiredError(AuthorizationError):
    kind = "admin_required"
    code = 30007
    default_reason = "Admin role required."


class CreatorRequiredError(AuthorizationError):
    kind = "creator_required"
    code = 30008
    default_reason = "Creator role required."


class CreatorImmutableError(AuthorizationError):
    kind = "creator_immutable"
    code = 30009
    default_reason = "The family creator cannot be demoted or reassigned."


# Validation ----------------------------------------------------------------
class ValidationError(FamilyLedgerError, ValueError):
    """Raised when an argument fails validation."""

    kind = "validation_error"
    code = 90004
    default_reason = "Invalid argument."


# Lookups -------------------------------------------------------------------
class NotFoundError(FamilyLedgerError, LookupError):
    kind = "not_found"
    code = 90005
    default_reason = "Requested item does not exist."


class FamilyNotFoundError(NotFoundError):
    kind = "family_not_found"
    code = 30001
    default_reason = "Family does not exist."


class ChoreTypeNotFoundError(NotFoundError):
    kind = "chore_type_not_found"
    code = 40001
    default_reason = "Chore type does not exist."


class ChoreRecordNotFoundError(NotFoundError):
    kind = "chore_record_not_found"
    code = 40004
    default_reason = "Chore record does not exist."


class RedemptionRequestNotFoundError(NotFoundError):
    kind = "redemption_request_not_found"
    code = 50004
    default_reason = "Redemption request does not exist."


class SavingsAccountNotFoundError(NotFoundError):
    kind = "savings_account_not_found"
    code = 60001
    default_reason = "Savings account does not exist."


class SavingsRequestNotFoundError(NotFoundError):
    kind = "savings_request_not_found"
    code = 60005
    default_reason = "Savings request does not exist."


# State ---------------------------------------------------------------------
class StateError(FamilyLedgerError):
    """Raised when the current state forbids the requested transition."""

    kind = "state_error"
    code = 90008
    default_reason = "Operation not allowed in the current state."


class AlreadyReviewedError(StateError):
    kind = "already_reviewed"
    code = 40006
    default_reason = "This record has already been reviewed."


class AlreadyProcessedError(StateError):
    kind = "already_processed"
    code = 60006
    default_reason = "This request has already been processed."


class InsufficientPointsError(StateError):
    kind = "insufficient_points"
    code = 50001
    default_reason = "Not enough available points."


class InsufficientBalanceError(StateError):
    kind = "insufficient_balance"
    code = 60002
    default_reason = "Not enough savings balance."


class NoInterestToSettleError(StateError):
    kind = "no_interest"
    code = 60010
    default_reason = "No interest is available to settle."


class DuplicateChoreTypeError(StateError):
    kind = "chore_type_name_exists"
    code = 40002
    default_reason = "An active chore type with this name already exists."


class ConcurrentUpdateError(StateError):
    kind = "concurrent_update"
    code = 90009
    default_reason = "The item was modified concurrently; reload and try again."


# System --------------------------------------------------------------------
class StoreError(FamilyLedgerError):
    """Raised when the underlying store is unavailable or failed."""

    kind = "store_unavailable"
    code = 90002
    default_reason = "The ledger store is unavailable."
