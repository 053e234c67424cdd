"""SQLModel tables and the SQL-backed :class:`~familyledger.store.Store`."""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

from sqlalchemy import Date, DateTime, UniqueConstraint, event, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import DATABASE_URL
from .exceptions import ChoreTypeNotFoundError, FamilyNotFoundError, NotMemberError, StoreError
from .models import (
    ChoreRecord,
    ChoreType,
    Family,
    FamilyMember,
    PointTransaction,
    PointTransactionType,
    RedemptionRequest,
    ReviewStatus,
    Role,
    SavingsAccount,
    SavingsRequest,
    SavingsRequestType,
    SavingsTransaction,
    SavingsTransactionType,
    utcnow,
)
from .money import BASIS_POINT, from_cents, to_cents
from .store import Store

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
# Money is stored in integer cents and rates in basis points so that values
# survive every backend unchanged. ``seq`` preserves insertion order.


def _timestamp(**kwargs: Any) -> Any:
    """Timestamp column holding naive UTC values, as produced by ``utcnow``."""

    return Field(sa_type=DateTime(timezone=False), **kwargs)


class FamilyRow(SQLModel, table=True):
    __tablename__ = "families"

    family_id: str = Field(primary_key=True)
    name: str
    points_value_cents: int = 50
    created_at: datetime = _timestamp(default_factory=utcnow)


class MemberRow(SQLModel, table=True):
    __tablename__ = "family_members"
    __table_args__ = (UniqueConstraint("family_id", "user_id"),)

    seq: Optional[int] = Field(default=None, primary_key=True)
    family_id: str = Field(index=True)
    user_id: str = Field(index=True)
    role: str = Role.MEMBER.value
    display_name: str = ""
    joined_at: datetime = _timestamp(default_factory=utcnow)


class ChoreTypeRow(SQLModel, table=True):
    __tablename__ = "chore_types"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    family_id: str = Field(index=True)
    name: str
    points: int
    description: str = ""
    is_preset: bool = False
    active: bool = True
    created_at: datetime = _timestamp(default_factory=utcnow)


class ChoreRecordRow(SQLModel, table=True):
    __tablename__ = "chore_records"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    chore_type_id: str
    family_id: str = Field(index=True)
    chore_name: str
    original_points: int
    note: str = ""
    images: str = "[]"
    status: str = Field(default=ReviewStatus.PENDING.value, index=True)
    deduction: int = 0
    deduction_reason: str = ""
    review_note: str = ""
    final_points: Optional[int] = None
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = _timestamp(default=None)
    completed_at: datetime = _timestamp(default_factory=utcnow)


class PointTransactionRow(SQLModel, table=True):
    __tablename__ = "point_transactions"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    family_id: str = Field(index=True)
    points: int
    type: str
    description: str = ""
    created_at: datetime = _timestamp(default_factory=utcnow, index=True)


class RedemptionRequestRow(SQLModel, table=True):
    __tablename__ = "redemption_requests"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    family_id: str = Field(index=True)
    points: int
    amount_cents: int
    remark: str = ""
    status: str = Field(default=ReviewStatus.PENDING.value, index=True)
    reject_reason: str = ""
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(default_factory=utcnow)


class SavingsAccountRow(SQLModel, table=True):
    __tablename__ = "savings_accounts"
    __table_args__ = (UniqueConstraint("user_id", "family_id"),)

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    family_id: str = Field(index=True)
    balance_cents: int = 0
    total_interest_cents: int = 0
    rate_bps: int = 300
    last_interest_date: date = Field(sa_type=Date)
    created_at: datetime = _timestamp(default_factory=utcnow)


class SavingsTransactionRow(SQLModel, table=True):
    __tablename__ = "savings_transactions"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    account_id: str = Field(index=True)
    type: str
    amount_cents: int
    balance_after_cents: int
    description: str = ""
    operator_id: Optional[str] = None
    created_at: datetime = _timestamp(default_factory=utcnow)


class SavingsRequestRow(SQLModel, table=True):
    __tablename__ = "savings_requests"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    account_id: str = Field(index=True)
    user_id: str = Field(index=True)
    type: str
    amount_cents: int
    description: str = ""
    status: str = Field(default=ReviewStatus.PENDING.value, index=True)
    reject_reason: str = ""
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------
_CENT_FIELDS = {"points_value", "amount", "balance", "total_interest", "balance_after"}


def rate_to_bps(rate: Decimal) -> int:
    return int((Decimal(rate) / BASIS_POINT).to_integral_value())


def bps_to_rate(bps: int) -> Decimal:
    return (Decimal(bps) * BASIS_POINT).quantize(BASIS_POINT)


def _columns(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Translate dataclass field changes into column values."""

    values: Dict[str, Any] = {}
    for key, value in changes.items():
        if key in _CENT_FIELDS:
            values[f"{key}_cents"] = to_cents(value)
        elif key == "annual_rate":
            values["rate_bps"] = rate_to_bps(value)
        elif key == "images":
            values["images"] = json.dumps(list(value))
        elif isinstance(value, Enum):
            values[key] = value.value
        else:
            values[key] = value
    return values


def _family(row: FamilyRow) -> Family:
    return Family(
        family_id=row.family_id,
        name=row.name,
        points_value=from_cents(row.points_value_cents),
        created_at=row.created_at,
    )


def _member(row: MemberRow) -> FamilyMember:
    return FamilyMember(
        family_id=row.family_id,
        user_id=row.user_id,
        role=Role(row.role),
        display_name=row.display_name,
        joined_at=row.joined_at,
    )


def _chore_type(row: ChoreTypeRow) -> ChoreType:
    return ChoreType(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        points=row.points,
        description=row.description,
        is_preset=row.is_preset,
        active=row.active,
        created_at=row.created_at,
    )


def _chore_record(row: ChoreRecordRow) -> ChoreRecord:
    return ChoreRecord(
        id=row.id,
        user_id=row.user_id,
        chore_type_id=row.chore_type_id,
        family_id=row.family_id,
        chore_name=row.chore_name,
        original_points=row.original_points,
        note=row.note,
        images=tuple(json.loads(row.images or "[]")),
        status=ReviewStatus(row.status),
        deduction=row.deduction,
        deduction_reason=row.deduction_reason,
        review_note=row.review_note,
        final_points=row.final_points,
        reviewer_id=row.reviewer_id,
        reviewed_at=row.reviewed_at,
        completed_at=row.completed_at,
    )


def _point_transaction(row: PointTransactionRow) -> PointTransaction:
    return PointTransaction(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        points=row.points,
        type=PointTransactionType(row.type),
        description=row.description,
        created_at=row.created_at,
    )


def _redemption_request(row: RedemptionRequestRow) -> RedemptionRequest:
    return RedemptionRequest(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        points=row.points,
        amount=from_cents(row.amount_cents),
        remark=row.remark,
        status=ReviewStatus(row.status),
        reject_reason=row.reject_reason,
        reviewer_id=row.reviewer_id,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
    )


def _savings_account(row: SavingsAccountRow) -> SavingsAccount:
    return SavingsAccount(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        balance=from_cents(row.balance_cents),
        total_interest=from_cents(row.total_interest_cents),
        annual_rate=bps_to_rate(row.rate_bps),
        last_interest_date=row.last_interest_date,
        created_at=row.created_at,
    )


def _savings_transaction(row: SavingsTransactionRow) -> SavingsTransaction:
    return SavingsTransaction(
        id=row.id,
        account_id=row.account_id,
        type=SavingsTransactionType(row.type),
        amount=from_cents(row.amount_cents),
        balance_after=from_cents(row.balance_after_cents),
        description=row.description,
        operator_id=row.operator_id,
        created_at=row.created_at,
    )


def _savings_request(row: SavingsRequestRow) -> SavingsRequest:
    return SavingsRequest(
        id=row.id,
        account_id=row.account_id,
        user_id=row.user_id,
        type=SavingsRequestType(row.type),
        amount=from_cents(row.amount_cents),
        description=row.description,
        status=ReviewStatus(row.status),
        reject_reason=row.reject_reason,
        reviewer_id=row.reviewer_id,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
def _use_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock when it begins.

    pysqlite defers ``BEGIN`` until the first write, which lets two writers
    read the same state. Issuing ``BEGIN IMMEDIATE`` ourselves serialises them.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str = DATABASE_URL, *, echo: bool = False) -> Engine:
    sqlite = url.startswith("sqlite")
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30} if sqlite else {},
    )
    if sqlite:
        _use_immediate_transactions(engine)
    return engine


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SqlStore(Store):
    """Store backed by SQLModel tables.

    Each outermost ``atomic()`` owns one :class:`Session` and therefore one
    database transaction; nested scopes on the same thread reuse it. Outside
    an atomic scope every call runs in its own short transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._local = threading.local()

    # Sessions ----------------------------------------------------------------
    @contextmanager
    def atomic(self) -> Iterator[Session]:
        session: Optional[Session] = getattr(self._local, "session", None)
        if session is not None:
            self._local.depth += 1
            try:
                yield session
            finally:
                self._local.depth -= 1
            return

        session = Session(self.engine, expire_on_commit=False)
        self._local.session = session
        self._local.depth = 1
        self._local.on_commit = []
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"Database transaction failed: {exc.__class__.__name__}") from exc
        except BaseException:
            session.rollback()
            raise
        else:
            callbacks = self._local.on_commit
        finally:
            self._local.session = None
            self._local.depth = 0
            self._local.on_commit = []
            session.close()
        for callback in callbacks:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        if getattr(self._local, "session", None) is None:
            callback()
        else:
            self._local.on_commit.append(callback)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.atomic() as session:
                yield session
                session.flush()
        except SQLAlchemyError as exc:
            raise StoreError(f"Database operation failed: {exc.__class__.__name__}") from exc

    def _first(self, statement) -> Any:
        with self._session() as session:
            return session.exec(statement.execution_options(populate_existing=True)).first()

    def _all(self, statement) -> Sequence[Any]:
        with self._session() as session:
            return session.exec(statement.execution_options(populate_existing=True)).all()

    def _insert(self, row: SQLModel) -> None:
        with self._session() as session:
            session.add(row)

    def _update(self, model: type, *criteria: Any, **values: Any) -> int:
        with self._session() as session:
            result = session.connection().execute(update(model).where(*criteria).values(**values))
            return result.rowcount

    # Families & membership ---------------------------------------------------
    def add_family(self, family: Family) -> Family:
        with self._session():
            if self.get_family(family.family_id) is not None:
                raise KeyError(f"Family '{family.family_id}' already exists.")
            self._insert(
                FamilyRow(
                    family_id=family.family_id,
                    name=family.name,
                    points_value_cents=to_cents(family.points_value),
                    created_at=family.created_at,
                )
            )
        return family

    def get_family(self, family_id: str) -> Optional[Family]:
        row = self._first(select(FamilyRow).where(FamilyRow.family_id == family_id))
        return _family(row) if row else None

    def update_family(self, family_id: str, **changes: Any) -> Family:
        with self._session():
            self._update(FamilyRow, FamilyRow.family_id == family_id, **_columns(changes))
            family = self.get_family(family_id)
        if family is None:
            raise FamilyNotFoundError(f"Family '{family_id}' does not exist.")
        return family

    def add_member(self, member: FamilyMember) -> FamilyMember:
        with self._session():
            if self.get_member(member.family_id, member.user_id) is not None:
                raise KeyError(f"User '{member.user_id}' is already a member of '{member.family_id}'.")
            self._insert(
                MemberRow(
                    family_id=member.family_id,
                    user_id=member.user_id,
                    role=member.role.value,
                    display_name=member.display_name,
                    joined_at=member.joined_at,
                )
            )
        return member

    def get_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]:
        row = self._first(select(MemberRow).where(MemberRow.family_id == family_id, MemberRow.user_id == user_id))
        return _member(row) if row else None

    def lock_member(self, family_id: str, user_id: str) -> Optional[FamilyMember]:
        row = self._first(
            select(MemberRow)
            .where(MemberRow.family_id == family_id, MemberRow.user_id == user_id)
            .with_for_update()
        )
        return _member(row) if row else None

    def list_members(self, family_id: str) -> Sequence[FamilyMember]:
        rows = self._all(
            select(MemberRow).where(MemberRow.family_id == family_id).order_by(MemberRow.joined_at, MemberRow.user_id)
        )
        return tuple(_member(row) for row in rows)

    def update_member_role(self, family_id: str, user_id: str, role: Role) -> FamilyMember:
        with self._session():
            self._update(
                MemberRow,
                MemberRow.family_id == family_id,
                MemberRow.user_id == user_id,
                role=role.value,
            )
            member = self.get_member(family_id, user_id)
        if member is None:
            raise NotMemberError(f"User '{user_id}' is not a member of family '{family_id}'.")
        return member

    # Chore types & records ---------------------------------------------------
    def add_chore_type(self, chore_type: ChoreType) -> ChoreType:
        self._insert(
            ChoreTypeRow(
                id=chore_type.id,
                family_id=chore_type.family_id,
                name=chore_type.name,
                points=chore_type.points,
                description=chore_type.description,
                is_preset=chore_type.is_preset,
                active=chore_type.active,
                created_at=chore_type.created_at,
            )
        )
        return chore_type

    def get_chore_type(self, chore_type_id: str) -> Optional[ChoreType]:
        row = self._first(select(ChoreTypeRow).where(ChoreTypeRow.id == chore_type_id))
        return _chore_type(row) if row else None

    def update_chore_type(self, chore_type_id: str, **changes: Any) -> ChoreType:
        with self._session():
            self._update(ChoreTypeRow, ChoreTypeRow.id == chore_type_id, **_columns(changes))
            chore_type = self.get_chore_type(chore_type_id)
        if chore_type is None:
            raise ChoreTypeNotFoundError(f"Chore type '{chore_type_id}' does not exist.")
        return chore_type

    def list_chore_types(self, family_id: str, *, include_inactive: bool = False) -> Sequence[ChoreType]:
        statement = select(ChoreTypeRow).where(ChoreTypeRow.family_id == family_id)
        if not include_inactive:
            statement = statement.where(ChoreTypeRow.active == True)  # noqa: E712
        rows = self._all(statement.order_by(ChoreTypeRow.seq))
        return tuple(_chore_type(row) for row in rows)

    def add_chore_record(self, record: ChoreRecord) -> ChoreRecord:
        self._insert(
            ChoreRecordRow(
                id=record.id,
                user_id=record.user_id,
                chore_type_id=record.chore_type_id,
                family_id=record.family_id,
                chore_name=record.chore_name,
                original_points=record.original_points,
                note=record.note,
                images=json.dumps(list(record.images)),
                status=record.status.value,
                deduction=record.deduction,
                deduction_reason=record.deduction_reason,
                review_note=record.review_note,
                final_points=record.final_points,
                reviewer_id=record.reviewer_id,
                reviewed_at=record.reviewed_at,
                completed_at=record.completed_at,
            )
        )
        return record

    def get_chore_record(self, record_id: str) -> Optional[ChoreRecord]:
        row = self._first(select(ChoreRecordRow).where(ChoreRecordRow.id == record_id))
        return _chore_record(row) if row else None

    def list_chore_records(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[ChoreRecord]:
        statement = select(ChoreRecordRow).where(ChoreRecordRow.family_id == family_id)
        if user_id is not None:
            statement = statement.where(ChoreRecordRow.user_id == user_id)
        if status is not None:
            statement = statement.where(ChoreRecordRow.status == status.value)
        rows = self._all(statement.order_by(ChoreRecordRow.seq.desc()))
        return tuple(_chore_record(row) for row in rows)

    def transition_chore_record(self, record_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        return self._update(
            ChoreRecordRow,
            ChoreRecordRow.id == record_id,
            ChoreRecordRow.status == expected.value,
            **_columns(changes),
        ) == 1

    # Points ledger -----------------------------------------------------------
    def append_point_transaction(self, transaction: PointTransaction) -> PointTransaction:
        self._insert(
            PointTransactionRow(
                id=transaction.id,
                user_id=transaction.user_id,
                family_id=transaction.family_id,
                points=transaction.points,
                type=transaction.type.value,
                description=transaction.description,
                created_at=transaction.created_at,
            )
        )
        return transaction

    def list_point_transactions(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> Sequence[PointTransaction]:
        statement = select(PointTransactionRow).where(PointTransactionRow.family_id == family_id)
        if user_id is not None:
            statement = statement.where(PointTransactionRow.user_id == user_id)
        if since is not None:
            statement = statement.where(PointTransactionRow.created_at >= since)
        if until is not None:
            statement = statement.where(PointTransactionRow.created_at < until)
        rows = self._all(statement.order_by(PointTransactionRow.seq))
        return tuple(_point_transaction(row) for row in rows)

    # Redemption requests -----------------------------------------------------
    def add_redemption_request(self, request: RedemptionRequest) -> RedemptionRequest:
        self._insert(
            RedemptionRequestRow(
                id=request.id,
                user_id=request.user_id,
                family_id=request.family_id,
                points=request.points,
                amount_cents=to_cents(request.amount),
                remark=request.remark,
                status=request.status.value,
                reject_reason=request.reject_reason,
                reviewer_id=request.reviewer_id,
                reviewed_at=request.reviewed_at,
                created_at=request.created_at,
            )
        )
        return request

    def get_redemption_request(self, request_id: str) -> Optional[RedemptionRequest]:
        row = self._first(select(RedemptionRequestRow).where(RedemptionRequestRow.id == request_id))
        return _redemption_request(row) if row else None

    def list_redemption_requests(
        self,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[RedemptionRequest]:
        statement = select(RedemptionRequestRow).where(RedemptionRequestRow.family_id == family_id)
        if user_id is not None:
            statement = statement.where(RedemptionRequestRow.user_id == user_id)
        if status is not None:
            statement = statement.where(RedemptionRequestRow.status == status.value)
        rows = self._all(statement.order_by(RedemptionRequestRow.seq.desc()))
        return tuple(_redemption_request(row) for row in rows)

    def transition_redemption_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        return self._update(
            RedemptionRequestRow,
            RedemptionRequestRow.id == request_id,
            RedemptionRequestRow.status == expected.value,
            **_columns(changes),
        ) == 1

    # Savings -----------------------------------------------------------------
    def add_savings_account(self, account: SavingsAccount) -> SavingsAccount:
        with self._session():
            if self.find_savings_account(account.user_id, account.family_id) is not None:
                raise KeyError(f"Savings account for '{account.user_id}' already exists.")
            self._insert(
                SavingsAccountRow(
                    id=account.id,
                    user_id=account.user_id,
                    family_id=account.family_id,
                    balance_cents=to_cents(account.balance),
                    total_interest_cents=to_cents(account.total_interest),
                    rate_bps=rate_to_bps(account.annual_rate),
                    last_interest_date=account.last_interest_date,
                    created_at=account.created_at,
                )
            )
        return account

    def get_savings_account(self, account_id: str) -> Optional[SavingsAccount]:
        row = self._first(select(SavingsAccountRow).where(SavingsAccountRow.id == account_id))
        return _savings_account(row) if row else None

    def find_savings_account(self, user_id: str, family_id: str) -> Optional[SavingsAccount]:
        row = self._first(
            select(SavingsAccountRow).where(
                SavingsAccountRow.user_id == user_id,
                SavingsAccountRow.family_id == family_id,
            )
        )
        return _savings_account(row) if row else None

    def list_savings_accounts(self, family_id: str) -> Sequence[SavingsAccount]:
        rows = self._all(
            select(SavingsAccountRow).where(SavingsAccountRow.family_id == family_id).order_by(SavingsAccountRow.seq)
        )
        return tuple(_savings_account(row) for row in rows)

    def update_savings_account(
        self,
        account_id: str,
        *,
        expected_balance: Decimal | None = None,
        **changes: Any,
    ) -> bool:
        criteria = [SavingsAccountRow.id == account_id]
        if expected_balance is not None:
            criteria.append(SavingsAccountRow.balance_cents == to_cents(expected_balance))
        return self._update(SavingsAccountRow, *criteria, **_columns(changes)) == 1

    def append_savings_transaction(self, transaction: SavingsTransaction) -> SavingsTransaction:
        self._insert(
            SavingsTransactionRow(
                id=transaction.id,
                account_id=transaction.account_id,
                type=transaction.type.value,
                amount_cents=to_cents(transaction.amount),
                balance_after_cents=to_cents(transaction.balance_after),
                description=transaction.description,
                operator_id=transaction.operator_id,
                created_at=transaction.created_at,
            )
        )
        return transaction

    def list_savings_transactions(self, account_id: str) -> Sequence[SavingsTransaction]:
        rows = self._all(
            select(SavingsTransactionRow)
            .where(SavingsTransactionRow.account_id == account_id)
            .order_by(SavingsTransactionRow.seq)
        )
        return tuple(_savings_transaction(row) for row in rows)

    def add_savings_request(self, request: SavingsRequest) -> SavingsRequest:
        self._insert(
            SavingsRequestRow(
                id=request.id,
                account_id=request.account_id,
                user_id=request.user_id,
                type=request.type.value,
                amount_cents=to_cents(request.amount),
                description=request.description,
                status=request.status.value,
                reject_reason=request.reject_reason,
                reviewer_id=request.reviewer_id,
                reviewed_at=request.reviewed_at,
                created_at=request.created_at,
            )
        )
        return request

    def get_savings_request(self, request_id: str) -> Optional[SavingsRequest]:
        row = self._first(select(SavingsRequestRow).where(SavingsRequestRow.id == request_id))
        return _savings_request(row) if row else None

    def list_savings_requests(
        self,
        *,
        account_ids: Sequence[str],
        user_id: str | None = None,
        status: ReviewStatus | None = None,
    ) -> Sequence[SavingsRequest]:
        if not account_ids:
            return ()
        statement = select(SavingsRequestRow).where(SavingsRequestRow.account_id.in_(list(account_ids)))
        if user_id is not None:
            statement = statement.where(SavingsRequestRow.user_id == user_id)
        if status is not None:
            statement = statement.where(SavingsRequestRow.status == status.value)
        rows = self._all(statement.order_by(SavingsRequestRow.seq.desc()))
        return tuple(_savings_request(row) for row in rows)

    def transition_savings_request(self, request_id: str, expected: ReviewStatus, **changes: Any) -> bool:
        return self._update(
            SavingsRequestRow,
            SavingsRequestRow.id == request_id,
            SavingsRequestRow.status == expected.value,
            **_columns(changes),
        ) == 1


def create_sql_store(url: str = DATABASE_URL, *, echo: bool = False) -> SqlStore:
    """Create the engine and tables for ``url`` and return a store over them."""

    engine = create_db_engine(url, echo=echo)
    try:
        create_db_and_tables(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"Could not initialise database at {engine.url!r}.") from exc
    return SqlStore(engine)


__all__ = [
    "ChoreRecordRow",
    "ChoreTypeRow",
    "FamilyRow",
    "MemberRow",
    "PointTransactionRow",
    "RedemptionRequestRow",
    "SavingsAccountRow",
    "SavingsRequestRow",
    "SavingsTransactionRow",
    "SqlStore",
    "bps_to_rate",
    "create_db_and_tables",
    "create_db_engine",
    "create_sql_store",
    "rate_to_bps",
]
