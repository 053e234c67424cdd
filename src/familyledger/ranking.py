"""Leaderboard projection over the points ledger."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from .exceptions import FamilyNotFoundError
from .models import Family, RankingEntry, RankingPeriod, coerce_enum, utcnow
from .money import to_decimal
from .store import Store


def require_family(store: Store, family_id: str) -> Family:
    family = store.get_family(family_id)
    if family is None:
        raise FamilyNotFoundError(f"Family '{family_id}' does not exist.")
    return family


def window_start(period: RankingPeriod, now: datetime) -> Optional[datetime]:
    """Return the inclusive start of the ranking window for ``period``.

    ``week`` covers the seven days before today (from midnight), ``month``
    starts on the first day of the current calendar month.
    """

    if period is RankingPeriod.ALL:
        return None
    midnight = datetime.combine(now.date(), time.min)
    if period is RankingPeriod.WEEK:
        return midnight - timedelta(days=7)
    return midnight.replace(day=1)


class RankingEngine:
    """Read-only leaderboard computed from the ledger on every call."""

    __slots__ = ("_store", "_clock")

    def __init__(self, store: Store, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def ranking(
        self,
        family_id: str,
        period: RankingPeriod | str = RankingPeriod.ALL,
    ) -> Tuple[RankingEntry, ...]:
        period = coerce_enum(RankingPeriod, period, "ranking period")
        family = require_family(self._store, family_id)
        since = window_start(period, self._clock())

        totals: Dict[str, int] = defaultdict(int)
        counts: Dict[str, int] = defaultdict(int)
        for transaction in self._store.list_point_transactions(family_id, since=since):
            totals[transaction.user_id] += transaction.signed_points
            counts[transaction.user_id] += 1

        # list_members is ordered by join date, so the stable sort breaks ties
        # in favour of the earliest member.
        members = sorted(
            self._store.list_members(family_id),
            key=lambda member: totals[member.user_id],
            reverse=True,
        )
        return tuple(
            RankingEntry(
                rank=index,
                user_id=member.user_id,
                display_name=member.display_name or member.user_id,
                total_points=totals[member.user_id],
                total_records=counts[member.user_id],
                total_value=_value(totals[member.user_id], family.points_value),
            )
            for index, member in enumerate(members, start=1)
        )

    def rank_of(
        self,
        user_id: str,
        family_id: str,
        period: RankingPeriod | str = RankingPeriod.ALL,
    ) -> Optional[int]:
        for entry in self.ranking(family_id, period):
            if entry.user_id == user_id:
                return entry.rank
        return None


def _value(points: int, points_value: Decimal) -> Decimal:
    return to_decimal(Decimal(points) * points_value)


__all__ = ["RankingEngine", "require_family", "window_start"]
