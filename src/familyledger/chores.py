"""Chore catalogue and the submit/review workflow that feeds the points ledger."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Optional, Tuple

from .audit import AuditLog
from .config import DEFAULT_PAGE_SIZE
from .exceptions import (
    AlreadyReviewedError,
    ChoreRecordNotFoundError,
    ChoreTypeNotFoundError,
    DuplicateChoreTypeError,
    ValidationError,
)
from .ledger import TransactionLedger, coerce_action
from .models import (
    ChoreRecord,
    ChoreStatistics,
    ChoreType,
    PointTransactionType,
    ReviewAction,
    ReviewStatus,
    coerce_enum,
    new_id,
    utcnow,
)
from .money import require_points
from .ops import StructuredLogger, surface_store_failures
from .roles import RoleAuthority
from .store import Store, paginate

DEFAULT_DEDUCTION_REASON = "Quality issue"

# Catalogue every new family starts with: (name, points).
PRESET_CHORE_TYPES: Tuple[Tuple[str, int], ...] = (
    ("Wash the dishes", 5),
    ("Sweep the floor", 5),
    ("Mop the floor", 8),
    ("Cook a meal", 15),
    ("Do the laundry", 10),
    ("Tidy the bedroom", 10),
    ("Take out the trash", 3),
    ("Wipe the table", 3),
)


def earn_description(chore_name: str, deduction: int = 0, reason: str = "") -> str:
    """Describe the ``earn`` entry written when a chore is credited."""

    description = f"Completed chore: {chore_name}"
    if deduction > 0:
        description += f" (-{deduction}: {reason or DEFAULT_DEDUCTION_REASON})"
    return description


class ChoreReviewWorkflow:
    """Turn chore completions into points, immediately or after an admin review."""

    __slots__ = ("_store", "_authority", "_ledger", "_logger", "_audit", "_clock")

    def __init__(
        self,
        store: Store,
        authority: RoleAuthority,
        ledger: TransactionLedger,
        *,
        logger: StructuredLogger,
        audit: AuditLog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._authority = authority
        self._ledger = ledger
        self._logger = logger
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------
    @surface_store_failures
    def create_chore_type(
        self,
        admin_id: str,
        family_id: str,
        name: str,
        points: int,
        description: str = "",
    ) -> ChoreType:
        self._authority.require_admin(admin_id, family_id)
        name = _clean_name(name)
        require_points(points)
        with self._store.atomic():
            self._ensure_unique_name(family_id, name)
            chore_type = self._store.add_chore_type(
                ChoreType(
                    id=new_id(),
                    family_id=family_id,
                    name=name,
                    points=points,
                    description=description.strip(),
                    created_at=self._clock(),
                )
            )
        self._audit.record(admin_id, "create_chore_type", chore_type.id, family_id=family_id, details={"name": name})
        self._logger.log("chore_type_created", family=family_id, name=name, points=points)
        return chore_type

    @surface_store_failures
    def update_chore_type(
        self,
        admin_id: str,
        chore_type_id: str,
        *,
        name: str | None = None,
        points: int | None = None,
        description: str | None = None,
        active: bool | None = None,
    ) -> ChoreType:
        """Edit a catalogue entry; records already submitted keep their points."""

        chore_type = self._store.get_chore_type(chore_type_id)
        if chore_type is None:
            raise ChoreTypeNotFoundError(f"Chore type '{chore_type_id}' does not exist.")
        self._authority.require_admin(admin_id, chore_type.family_id)

        changes = {}
        if name is not None:
            changes["name"] = _clean_name(name)
        if points is not None:
            changes["points"] = require_points(points)
        if description is not None:
            changes["description"] = description.strip()
        if active is not None:
            changes["active"] = bool(active)
        if not changes:
            return chore_type

        with self._store.atomic():
            becomes_active = changes.get("active", chore_type.active)
            new_name = changes.get("name", chore_type.name)
            if becomes_active and (new_name != chore_type.name or not chore_type.active):
                self._ensure_unique_name(chore_type.family_id, new_name, exclude=chore_type_id)
            updated = self._store.update_chore_type(chore_type_id, **changes)
        self._audit.record(admin_id, "update_chore_type", chore_type_id, family_id=chore_type.family_id)
        self._logger.log("chore_type_updated", family=chore_type.family_id, chore_type=chore_type_id)
        return updated

    @surface_store_failures
    def delete_chore_type(self, admin_id: str, chore_type_id: str) -> ChoreType:
        """Soft delete: the type disappears from the catalogue but history keeps resolving."""

        chore_type = self._store.get_chore_type(chore_type_id)
        if chore_type is None or not chore_type.active:
            raise ChoreTypeNotFoundError(f"Chore type '{chore_type_id}' does not exist.")
        self._authority.require_admin(admin_id, chore_type.family_id)
        updated = self._store.update_chore_type(chore_type_id, active=False)
        self._audit.record(admin_id, "delete_chore_type", chore_type_id, family_id=chore_type.family_id)
        self._logger.log("chore_type_deleted", family=chore_type.family_id, chore_type=chore_type_id)
        return updated

    @surface_store_failures
    def chore_types(self, user_id: str, family_id: str, *, include_inactive: bool = False) -> Tuple[ChoreType, ...]:
        self._authority.require_member(user_id, family_id)
        types = self._store.list_chore_types(family_id, include_inactive=include_inactive)
        return tuple(sorted(types, key=lambda item: (not item.is_preset, item.created_at)))

    @surface_store_failures
    def seed_presets(self, family_id: str) -> Tuple[ChoreType, ...]:
        """Add the preset catalogue to a newly registered family."""

        now = self._clock()
        with self._store.atomic():
            seeded = tuple(
                self._store.add_chore_type(
                    ChoreType(
                        id=new_id(),
                        family_id=family_id,
                        name=name,
                        points=points,
                        is_preset=True,
                        created_at=now,
                    )
                )
                for name, points in PRESET_CHORE_TYPES
            )
        return seeded

    # ------------------------------------------------------------------
    # Submit & review
    # ------------------------------------------------------------------
    @surface_store_failures
    def create_record(
        self,
        user_id: str,
        family_id: str,
        chore_type_id: str,
        note: str = "",
        images: Iterable[str] = (),
    ) -> ChoreRecord:
        """Record a completed chore.

        Admins and the creator are trusted: their records are approved on
        submission and credited in the same atomic unit. Everyone else waits
        for a review.
        """

        role = self._authority.require_member(user_id, family_id)
        chore_type = self._store.get_chore_type(chore_type_id)
        if chore_type is None or chore_type.family_id != family_id or not chore_type.active:
            raise ChoreTypeNotFoundError(f"Chore type '{chore_type_id}' does not exist.")

        now = self._clock()
        record = ChoreRecord(
            id=new_id(),
            user_id=user_id,
            chore_type_id=chore_type.id,
            family_id=family_id,
            chore_name=chore_type.name,
            original_points=chore_type.points,
            note=note.strip(),
            images=tuple(images),
            completed_at=now,
        )
        if not role.is_admin:
            record = self._store.add_chore_record(record)
            self._logger.log("chore_submitted", family=family_id, user=user_id, record=record.id)
            return record

        record.status = ReviewStatus.APPROVED
        record.final_points = chore_type.points
        record.reviewer_id = user_id
        record.reviewed_at = now
        with self._store.atomic():
            record = self._store.add_chore_record(record)
            self._ledger.append(
                user_id,
                family_id,
                chore_type.points,
                PointTransactionType.EARN,
                earn_description(chore_type.name),
            )
        self._audit.record(user_id, "complete_chore", record.id, family_id=family_id, details={"points": chore_type.points})
        self._logger.log("chore_auto_approved", family=family_id, user=user_id, points=chore_type.points)
        return record

    @surface_store_failures
    def review_record(
        self,
        record_id: str,
        reviewer_id: str,
        action: ReviewAction | str,
        deduction: int = 0,
        deduction_reason: str | None = None,
        review_note: str | None = None,
    ) -> ChoreRecord:
        """Approve (optionally with a deduction) or reject a pending record.

        The deduction is clamped to the record's original points. A rejected
        record earns nothing; an approval with a full deduction is approved
        with zero points and also writes no ledger entry.
        """

        action = coerce_action(action)
        if isinstance(deduction, bool) or not isinstance(deduction, int) or deduction < 0:
            raise ValidationError("Deduction must be a whole number of zero or more.")
        record = self._store.get_chore_record(record_id)
        if record is None:
            raise ChoreRecordNotFoundError(f"Chore record '{record_id}' does not exist.")
        self._authority.require_admin(reviewer_id, record.family_id)
        if record.status is not ReviewStatus.PENDING:
            raise AlreadyReviewedError()

        now = self._clock()
        note = (review_note or "").strip()
        if action is ReviewAction.REJECT:
            if not self._store.transition_chore_record(
                record_id,
                ReviewStatus.PENDING,
                status=ReviewStatus.REJECTED,
                final_points=0,
                review_note=note,
                reviewer_id=reviewer_id,
                reviewed_at=now,
            ):
                raise AlreadyReviewedError()
            self._audit.record(reviewer_id, "reject_chore", record_id, family_id=record.family_id)
            self._logger.log("chore_reviewed", family=record.family_id, record=record_id, action=action.value)
            return self._reload(record_id)

        applied = min(deduction, record.original_points)
        final_points = record.original_points - applied
        reason = (deduction_reason or "").strip() if applied else ""
        with self._store.atomic():
            if not self._store.transition_chore_record(
                record_id,
                ReviewStatus.PENDING,
                status=ReviewStatus.APPROVED,
                deduction=applied,
                deduction_reason=reason,
                final_points=final_points,
                review_note=note,
                reviewer_id=reviewer_id,
                reviewed_at=now,
            ):
                raise AlreadyReviewedError()
            if final_points > 0:
                self._ledger.append(
                    record.user_id,
                    record.family_id,
                    final_points,
                    PointTransactionType.EARN,
                    earn_description(record.chore_name, applied, reason),
                )
        self._audit.record(
            reviewer_id,
            "approve_chore",
            record_id,
            family_id=record.family_id,
            details={"deduction": applied, "final_points": final_points},
        )
        self._logger.log(
            "chore_reviewed",
            family=record.family_id,
            record=record_id,
            action=action.value,
            final_points=final_points,
        )
        return self._reload(record_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @surface_store_failures
    def records(
        self,
        requester_id: str,
        family_id: str,
        *,
        user_id: str | None = None,
        status: ReviewStatus | str | None = None,
        on: date | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[ChoreRecord, ...]:
        """Return records newest first, optionally for one member, status or day."""

        self._authority.require_member(requester_id, family_id)
        wanted = coerce_enum(ReviewStatus, status, "status") if status is not None else None
        records = self._store.list_chore_records(family_id, user_id=user_id, status=wanted)
        if on is not None:
            start = datetime.combine(on, time.min)
            end = start + timedelta(days=1)
            records = [record for record in records if start <= record.completed_at < end]
        return paginate(records, limit=limit, offset=offset)

    @surface_store_failures
    def pending_records(self, admin_id: str, family_id: str) -> Tuple[ChoreRecord, ...]:
        """Pending records oldest first, the order a reviewer works through them."""

        self._authority.require_admin(admin_id, family_id)
        return tuple(reversed(self._store.list_chore_records(family_id, status=ReviewStatus.PENDING)))

    @surface_store_failures
    def pending_count(self, user_id: str, family_id: str) -> int:
        if not self._authority.is_admin(user_id, family_id):
            return 0
        return len(self._store.list_chore_records(family_id, status=ReviewStatus.PENDING))

    @surface_store_failures
    def statistics(self, user_id: str, family_id: str) -> ChoreStatistics:
        """Approved chores completed today, family-wide and for ``user_id``.

        ``my_total_points`` sums the member's approved ``final_points`` over
        all time.
        """

        self._authority.require_member(user_id, family_id)
        today = self._clock().date()
        family_chores = family_points = my_chores = my_points = my_total = 0
        for record in self._store.list_chore_records(family_id, status=ReviewStatus.APPROVED):
            points = record.final_points or 0
            mine = record.user_id == user_id
            if mine:
                my_total += points
            if record.completed_at.date() != today:
                continue
            family_chores += 1
            family_points += points
            if mine:
                my_chores += 1
                my_points += points
        return ChoreStatistics(
            family_chores_today=family_chores,
            family_points_today=family_points,
            my_chores_today=my_chores,
            my_points_today=my_points,
            my_total_points=my_total,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _ensure_unique_name(self, family_id: str, name: str, *, exclude: Optional[str] = None) -> None:
        for chore_type in self._store.list_chore_types(family_id):
            if chore_type.id != exclude and chore_type.name == name:
                raise DuplicateChoreTypeError(f"An active chore type named '{name}' already exists.")

    def _reload(self, record_id: str) -> ChoreRecord:
        record = self._store.get_chore_record(record_id)
        if record is None:
            raise ChoreRecordNotFoundError(f"Chore record '{record_id}' does not exist.")
        return record


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Chore type name must not be empty.")
    return name


__all__ = ["ChoreReviewWorkflow", "DEFAULT_DEDUCTION_REASON", "PRESET_CHORE_TYPES", "earn_description"]
