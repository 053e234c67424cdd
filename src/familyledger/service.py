"""High level service wiring the ledger workflows around one store."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from . import config
from .audit import AuditLog
from .chores import ChoreReviewWorkflow
from .exceptions import FamilyNotFoundError, ValidationError
from .ledger import TransactionLedger
from .models import Family, FamilyMember, Role, coerce_enum, new_id, utcnow
from .money import AmountLike, to_decimal
from .ops import StructuredLogger, surface_store_failures
from .ranking import RankingEngine, require_family
from .roles import RoleAuthority
from .savings import SavingsService
from .store import InMemoryStore, Store


class FamilyLedger:
    """Manage families, their points economy, chores and savings accounts.

    Every workflow shares the same store, logger, audit log and clock so that
    tests can pin time and inspect what happened.
    """

    __slots__ = (
        "_store",
        "_logger",
        "_audit",
        "_clock",
        "_authority",
        "_ranking",
        "_ledger",
        "_chores",
        "_savings",
    )

    def __init__(
        self,
        store: Optional[Store] = None,
        *,
        logger: Optional[StructuredLogger] = None,
        audit: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
        default_rate: AmountLike = config.DEFAULT_ANNUAL_RATE,
    ) -> None:
        self._store = store if store is not None else InMemoryStore()
        self._logger = logger or StructuredLogger()
        self._audit = audit or AuditLog()
        self._clock = clock
        self._authority = RoleAuthority(self._store)
        self._ranking = RankingEngine(self._store, clock=clock)
        self._ledger = TransactionLedger(
            self._store,
            self._authority,
            self._ranking,
            logger=self._logger,
            audit=self._audit,
            clock=clock,
        )
        self._chores = ChoreReviewWorkflow(
            self._store,
            self._authority,
            self._ledger,
            logger=self._logger,
            audit=self._audit,
            clock=clock,
        )
        self._savings = SavingsService(
            self._store,
            self._authority,
            logger=self._logger,
            audit=self._audit,
            clock=clock,
            default_rate=default_rate,
        )

    @classmethod
    def from_config(cls, *, database_url: str | None = None) -> "FamilyLedger":
        """Build a ledger on the configured database with the configured log sink."""

        from .persistence import create_sql_store

        store = create_sql_store(database_url or config.DATABASE_URL)
        logger = StructuredLogger(path=config.LOG_PATH, level=config.LOG_LEVEL)
        return cls(store, logger=logger, default_rate=config.DEFAULT_ANNUAL_RATE)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------
    @property
    def store(self) -> Store:
        return self._store

    @property
    def authority(self) -> RoleAuthority:
        return self._authority

    @property
    def ranking(self) -> RankingEngine:
        return self._ranking

    @property
    def ledger(self) -> TransactionLedger:
        return self._ledger

    @property
    def chores(self) -> ChoreReviewWorkflow:
        return self._chores

    @property
    def savings(self) -> SavingsService:
        return self._savings

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit

    # ------------------------------------------------------------------
    # Families & membership
    # ------------------------------------------------------------------
    @surface_store_failures
    def register_family(
        self,
        creator_id: str,
        name: str,
        *,
        family_id: str | None = None,
        points_value: AmountLike = config.DEFAULT_POINTS_VALUE,
        display_name: str = "",
        seed_presets: bool = True,
    ) -> Family:
        """Create a family with ``creator_id`` as its single creator.

        The family starts with the preset chore catalogue unless
        ``seed_presets`` is false.
        """

        name = (name or "").strip()
        if not name:
            raise ValidationError("Family name must not be empty.")
        value = _points_value(points_value)
        if family_id is not None and self._store.get_family(family_id) is not None:
            raise ValidationError(f"Family '{family_id}' already exists.")
        now = self._clock()
        with self._store.atomic():
            family = self._store.add_family(
                Family(family_id=family_id or new_id(), name=name, points_value=value, created_at=now)
            )
            self._store.add_member(
                FamilyMember(
                    family_id=family.family_id,
                    user_id=creator_id,
                    role=Role.CREATOR,
                    display_name=display_name,
                    joined_at=now,
                )
            )
            if seed_presets:
                self._chores.seed_presets(family.family_id)
        self._audit.record(creator_id, "register_family", family.family_id, family_id=family.family_id)
        self._logger.log("family_registered", family=family.family_id, creator=creator_id)
        return family

    @surface_store_failures
    def add_member(
        self,
        family_id: str,
        user_id: str,
        *,
        role: Role | str = Role.MEMBER,
        display_name: str = "",
    ) -> FamilyMember:
        """Join ``user_id`` to a family; joining is an external flow, so no actor is checked."""

        role = coerce_enum(Role, role, "role")
        if role is Role.CREATOR:
            raise ValidationError("A family has exactly one creator.")
        require_family(self._store, family_id)
        if self._store.get_member(family_id, user_id) is not None:
            raise ValidationError(f"User '{user_id}' is already a member of family '{family_id}'.")
        member = self._store.add_member(
            FamilyMember(
                family_id=family_id,
                user_id=user_id,
                role=role,
                display_name=display_name,
                joined_at=self._clock(),
            )
        )
        self._logger.log("member_joined", family=family_id, user=user_id, role=role.value)
        return member

    @surface_store_failures
    def set_points_value(self, admin_id: str, family_id: str, points_value: AmountLike) -> Family:
        self._authority.require_admin(admin_id, family_id)
        value = _points_value(points_value)
        family = self._store.update_family(family_id, points_value=value)
        self._audit.record(admin_id, "set_points_value", family_id, family_id=family_id, details={"value": str(value)})
        self._logger.log("points_value_updated", family=family_id, value=str(value))
        return family

    @surface_store_failures
    def change_role(self, operator_id: str, family_id: str, member_id: str, role: Role | str) -> FamilyMember:
        role = coerce_enum(Role, role, "role")
        if self._store.get_family(family_id) is None:
            raise FamilyNotFoundError(f"Family '{family_id}' does not exist.")
        previous = self._authority.check_role_change(operator_id, family_id, member_id, role)
        member = self._store.update_member_role(family_id, member_id, role)
        self._audit.record(
            operator_id,
            "change_role",
            member_id,
            family_id=family_id,
            details={"from": previous.role.value, "to": role.value},
        )
        self._logger.log("role_changed", family=family_id, user=member_id, role=role.value)
        return member


def _points_value(value: AmountLike) -> Decimal:
    amount = to_decimal(value)
    if amount < 0:
        raise ValidationError("Points value must not be negative.")
    return amount


__all__ = ["FamilyLedger"]
