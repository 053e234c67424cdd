"""Storage interface for the ledger and an in-memory implementation.

Workflows never touch ambient state: every read and write goes through a
:class:`Store`. Mutations that must succeed or fail together run inside
``with store.atomic():``; review guards use the ``transition_*`` compare and
swap methods, which only apply ``changes`` while the item is still in the
``expected`` status.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .exceptions import ChoreTypeNotFoundError, FamilyNotFoundError, NotMemberError, ValidationError
from .models import (
    ChoreRecord,
    ChoreType,
    Family,
    FamilyMember,
    PointTransaction,
    RedemptionRequest,
    ReviewStatus,
    Role,
    SavingsAccount,
    SavingsRequest,
    SavingsTransaction,
)

T = TypeVar("T")


def paginate(items: Sequence[T], *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> Tuple[T, ...]:
    """Return one page of ``items``; ``limit`` is capped at ``MAX_PAGE_SIZE``."""

    if limit <= 0:
        raise ValidationError("limit must be positive.")
    if offset < 0:
        raise ValidationError("offset must not be negative.")
    limit = min(limit, MAX_PAGE_SIZE)
    return tuple(items[offset : offset + limit])


class Store(ABC):
    """CRUD, append-only logs and atomic compare-and-swap for the ledger core."""

    @abstractmethod
    def atomic(self) -> Any:
        """Return a re-entrant context manager delimiting one atomic unit."""

    @abstractmethod
    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost atomic unit commits.

        Outside an atomic unit the callback runs immediately; when the unit
        rolls back it never runs.
        """

    # Families & membership ---------------------------------------------------
    @abstractmethod
    def add_family(self, family: Family) -> Family: ...

    @abstractmethod
    def get_family(self, family_id: str) -> Optional[Family]: ...

    @abstractmethod
    def update_family(self, family_id: str, **changes: Any) -> Family: ...

    @abstractmethod
    def add_member(self, member: FamilyMember) -> FamilyMember: ...

    @abstractmethod
    def get_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]: ...

    @abstractmethod
    def lock_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]:
        """Read a membership row, holding a write lock until the atomic unit ends."""

    @abstractmethod
    def list_members(self, family_id: str) -> Sequence[FamilyMember]:
        """Return members ordered by ``joined_at`` then ``user_id``."""

    @abstractmethod
    def update_member_role(self, family_id: str, user_id: str, role: Role) -> FamilyMember: ...

    # Chore types & records ---------------------------------------------------
    @abstractmethod
    def add_chore_type(self, chore_type: ChoreType) -> ChoreType: ...

    @abstractmethod
    def get_chore_type(self, chore_type_id: str) -> Optional[ChoreType]: ...

    @abstractmethod
    def update_chore_type(self, chore_type_id: str, **changes: Any) -> ChoreType: ...

    @abstractmethod
    def list_chore_types(self, family_id: str, *, include_inactive: bool = False) -> Sequence[ChoreType]: ...

    @abstractmethod
    def add_chore_record(self, record: ChoreRecord) -> ChoreRecord: ...

    @abstractmethod
    def get_chore_record(self, record_id: str) -> Optional[ChoreRecord]: ...

    @abstractmethod
    def list_chore_records(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[ChoreRecord]:
        """Return records newest first."""

    @abstractmethod
    def transition_chore_record(self, record_id: str, expected: ReviewStatus, **changes: Any) -> bool: ...

    # Points ledger -----------------------------------------------------------
    @abstractmethod
    def append_point_transaction(self, transaction: PointTransaction) -> PointTransaction: ...

    @abstractmethod
    def list_point_transactions(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> Sequence[PointTransaction]:
        """Return entries in insertion order, ``since`` inclusive, ``until`` exclusive."""

    # Redemption requests -----------------------------------------------------
    @abstractmethod
    def add_redemption_request(self, request: RedemptionRequest) -> RedemptionRequest: ...

    @abstractmethod
    def get_redemption_request(self, request_id: str) -> Optional[RedemptionRequest]: ...

    @abstractmethod
    def list_redemption_requests(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[RedemptionRequest]:
        """Return requests newest first."""

    @abstractmethod
    def transition_redemption_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool: ...

    # Savings -----------------------------------------------------------------
    @abstractmethod
    def add_savings_account(self, account: SavingsAccount) -> SavingsAccount: ...

    @abstractmethod
    def get_savings_account(self, account_id: str) -> Optional[SavingsAccount]: ...

    @abstractmethod
    def find_savings_account(self, user_id: str, family_id: str) -> Optional[SavingsAccount]: ...

    @abstractmethod
    def list_savings_accounts(self, family_id: str) -> Sequence[SavingsAccount]: ...

    @abstractmethod
    def update_savings_account(
        self,
        account_id: str,
        *,
        expected_balance: Decimal | None = None,
        **changes: Any,
    ) -> bool:
        """Apply ``changes``; when ``expected_balance`` is given only if it still matches."""

    @abstractmethod
    def append_savings_transaction(self, transaction: SavingsTransaction) -> SavingsTransaction: ...

    @abstractmethod
    def list_savings_transactions(self, account_id: str) -> Sequence[SavingsTransaction]:
        """Return the account log in insertion order."""

    @abstractmethod
    def add_savings_request(self, request: SavingsRequest) -> SavingsRequest: ...

    @abstractmethod
    def get_savings_request(self, request_id: str) -> Optional[SavingsRequest]: ...

    @abstractmethod
    def list_savings_requests(
        self,
        *,
        account_ids: Sequence[str],
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[SavingsRequest]:
        """Return requests for ``account_ids`` newest first."""

    @abstractmethod
    def transition_savings_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool: ...


class InMemoryStore(Store):
    """Process-local store used by tests and embedded callers.

    The outermost ``atomic()`` holds a re-entrant lock for its whole duration
    and restores a snapshot of every table if the block raises.
    """

    _TABLES = (
        "families",
        "members",
        "chore_types",
        "chore_records",
        "point_transactions",
        "redemption_requests",
        "savings_accounts",
        "savings_transactions",
        "savings_requests",
    )

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._on_commit: List[Callable[[], None]] = []
        self.families: Dict[str, Family] = {}
        self.members: Dict[Tuple[str, str], FamilyMember] = {}
        self.chore_types: Dict[str, ChoreType] = {}
        self.chore_records: Dict[str, ChoreRecord] = {}
        self.point_transactions: List[PointTransaction] = []
        self.redemption_requests: Dict[str, RedemptionRequest] = {}
        self.savings_accounts: Dict[str, SavingsAccount] = {}
        self.savings_transactions: List[SavingsTransaction] = []
        self.savings_requests: Dict[str, SavingsRequest] = {}

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            snapshot = None
            if self._depth == 0:
                snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._TABLES}
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    for name, table in snapshot.items():
                        setattr(self, name, table)
                    self._on_commit.clear()
                raise
            finally:
                self._depth -= 1
            if snapshot is not None:
                callbacks, self._on_commit = self._on_commit, []
                for callback in callbacks:
                    callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._depth == 0:
                callback()
            else:
                self._on_commit.append(callback)

    # Families & membership ---------------------------------------------------
    def add_family(self, family: Family) -> Family:
        with self._lock:
            if family.family_id in self.families:
                raise KeyError(f"Family '{family.family_id}' already exists.")
            self.families[family.family_id] = copy.copy(family)
            return copy.copy(family)

    def get_family(self, family_id: str) -> Optional[Family]:
        with self._lock:
            family = self.families.get(family_id)
            return copy.copy(family) if family else None

    def update_family(self, family_id: str, **changes: Any) -> Family:
        with self._lock:
            if family_id not in self.families:
                raise FamilyNotFoundError(f"Family '{family_id}' does not exist.")
            family = replace(self.families[family_id], **changes)
            self.families[family_id] = family
            return copy.copy(family)

    def add_member(self, member: FamilyMember) -> FamilyMember:
        with self._lock:
            key = (member.family_id, member.user_id)
            if key in self.members:
                raise KeyError(f"User '{member.user_id}' is already a member of '{member.family_id}'.")
            self.members[key] = copy.copy(member)
            return copy.copy(member)

    def get_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]:
        with self._lock:
            member = self.members.get((family_id, user_id))
            return copy.copy(member) if member else None

    def lock_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]:
        return self.get_member(family_id, user_id)

    def list_members(self, family_id: str) -> Sequence[FamilyMember]:
        with self._lock:
            members = [copy.copy(m) for m in self.members.values() if m.family_id == family_id]
        return tuple(sorted(members, key=lambda m: (m.joined_at, m.user_id)))

    def update_member_role(self, family_id: str, user_id: str, role: Role) -> FamilyMember:
        with self._lock:
            if (family_id, user_id) not in self.members:
                raise NotMemberError(f"User '{user_id}' is not a member of family '{family_id}'.")
            member = replace(self.members[(family_id, user_id)], role=role)
            self.members[(family_id, user_id)] = member
            return copy.copy(member)

    # Chore types & records ---------------------------------------------------
    def add_chore_type(self, chore_type: ChoreType) -> ChoreType:
        with self._lock:
            self.chore_types[chore_type.id] = copy.copy(chore_type)
            return copy.copy(chore_type)

    def get_chore_type(self, chore_type_id: str) -> Optional[ChoreType]:
        with self._lock:
            chore_type = self.chore_types.get(chore_type_id)
            return copy.copy(chore_type) if chore_type else None

    def update_chore_type(self, chore_type_id: str, **changes: Any) -> ChoreType:
        with self._lock:
            if chore_type_id not in self.chore_types:
                raise ChoreTypeNotFoundError(f"Chore type '{chore_type_id}' does not exist.")
            chore_type = replace(self.chore_types[chore_type_id], **changes)
            self.chore_types[chore_type_id] = chore_type
            return copy.copy(chore_type)

    def list_chore_types(self, family_id: str, *, include_inactive: bool = False) -> Sequence[ChoreType]:
        with self._lock:
            return tuple(
                copy.copy(t)
                for t in self.chore_types.values()
                if t.family_id == family_id and (include_inactive or t.active)
            )

    def add_chore_record(self, record: ChoreRecord) -> ChoreRecord:
        with self._lock:
            self.chore_records[record.id] = copy.copy(record)
            return copy.copy(record)

    def get_chore_record(self, record_id: str) -> Optional[ChoreRecord]:
        with self._lock:
            record = self.chore_records.get(record_id)
            return copy.copy(record) if record else None

    def list_chore_records(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[ChoreRecord]:
        with self._lock:
            records = [
                copy.copy(r)
                for r in self.chore_records.values()
                if r.family_id == family_id
                and (user_id is None or r.user_id == user_id)
                and (status is None or r.status is status)
            ]
        return tuple(reversed(records))

    def transition_chore_record(self, record_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        with self._lock:
            return self._transition(self.chore_records, record_id, expected, changes)

    # Points ledger -----------------------------------------------------------
    def append_point_transaction(self, transaction: PointTransaction) -> PointTransaction:
        with self._lock:
            self.point_transactions.append(copy.copy(transaction))
            return copy.copy(transaction)

    def list_point_transactions(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> Sequence[PointTransaction]:
        with self._lock:
            return tuple(
                copy.copy(t)
                for t in self.point_transactions
                if t.family_id == family_id
                and (user_id is None or t.user_id == user_id)
                and (since is None or t.created_at >= since)
                and (until is None or t.created_at < until)
            )

    # Redemption requests -----------------------------------------------------
    def add_redemption_request(self, request: RedemptionRequest) -> RedemptionRequest:
        with self._lock:
            self.redemption_requests[request.id] = copy.copy(request)
            return copy.copy(request)

    def get_redemption_request(self, request_id: str) -> Optional[RedemptionRequest]:
        with self._lock:
            request = self.redemption_requests.get(request_id)
            return copy.copy(request) if request else None

    def list_redemption_requests(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[RedemptionRequest]:
        with self._lock:
            requests = [
                copy.copy(r)
                for r in self.redemption_requests.values()
                if r.family_id == family_id
                and (user_id is None or r.user_id == user_id)
                and (status is None or r.status is status)
            ]
        return tuple(reversed(requests))

    def transition_redemption_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        with self._lock:
            return self._transition(self.redemption_requests, request_id, expected, changes)

    # Savings -----------------------------------------------------------------
    def add_savings_account(self, account: SavingsAccount) -> SavingsAccount:
        with self._lock:
            if self.find_savings_account(account.user_id, account.family_id) is not None:
                raise KeyError(f"Savings account for '{account.user_id}' already exists.")
            self.savings_accounts[account.id] = copy.copy(account)
            return copy.copy(account)

    def get_savings_account(self, account_id: str) -> Optional[SavingsAccount]:
        with self._lock:
            account = self.savings_accounts.get(account_id)
            return copy.copy(account) if account else None

    def find_savings_account(self, user_id: str, family_id: str) -> Optional[SavingsAccount]:
        with self._lock:
            for account in self.savings_accounts.values():
                if account.user_id == user_id and account.family_id == family_id:
                    return copy.copy(account)
        return None

    def list_savings_accounts(self, family_id: str) -> Sequence[SavingsAccount]:
        with self._lock:
            return tuple(copy.copy(a) for a in self.savings_accounts.values() if a.family_id == family_id)

    def update_savings_account(
        self,
        account_id: str,
        *,
        expected_balance: Decimal | None = None,
        **changes: Any,
    ) -> bool:
        with self._lock:
            account = self.savings_accounts.get(account_id)
            if account is None:
                return False
            if expected_balance is not None and account.balance != expected_balance:
                return False
            self.savings_accounts[account_id] = replace(account, **changes)
            return True

    def append_savings_transaction(self, transaction: SavingsTransaction) -> SavingsTransaction:
        with self._lock:
            self.savings_transactions.append(copy.copy(transaction))
            return copy.copy(transaction)

    def list_savings_transactions(self, account_id: str) -> Sequence[SavingsTransaction]:
        with self._lock:
            return tuple(copy.copy(t) for t in self.savings_transactions if t.account_id == account_id)

    def add_savings_request(self, request: SavingsRequest) -> SavingsRequest:
        with self._lock:
            self.savings_requests[request.id] = copy.copy(request)
            return copy.copy(request)

    def get_savings_request(self, request_id: str) -> Optional[SavingsRequest]:
        with self._lock:
            request = self.savings_requests.get(request_id)
            return copy.copy(request) if request else None

    def list_savings_requests(
        self,
        *,
        account_ids: Sequence[str],
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[SavingsRequest]:
        wanted = set(account_ids)
        with self._lock:
            requests = [
                copy.copy(r)
                for r in self.savings_requests.values()
                if r.account_id in wanted
                and (user_id is None or r.user_id == user_id)
                and (status is None or r.status is status)
            ]
        return tuple(reversed(requests))

    def transition_savings_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        with self._lock:
            return self._transition(self.savings_requests, request_id, expected, changes)

    @staticmethod
    def _transition(table: Dict[str, Any], item_id: str, expected: ReviewStatus, changes: Dict[str, Any]) -> bool:
        item = table.get(item_id)
        if item is None or item.status is not expected:
            return False
        table[item_id] = replace(item, **changes)
        return True


__all__ = ["InMemoryStore", "Store", "paginate"]
