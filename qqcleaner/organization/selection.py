"""
Selection of catalog entries by group and time range.

Selections are pure reads of the index: cheap to repeat and always returned
in the same order so an operator reviewing them sees a stable list.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import AbstractSet, List, Optional, Sequence, Union

from ..models import CatalogEntry, GroupStats
from ..scanning.index import ChatMediaIndex

_MIN_TS = datetime.min.replace(tzinfo=UTC)
_MAX_TS = datetime.max.replace(tzinfo=UTC)


class _AllGroups:
    def __repr__(self):
        return "ALL_GROUPS"


# Matches every entry, including those whose group has no GroupInfo.
ALL_GROUPS = _AllGroups()

GroupSelection = Union[AbstractSet[str], _AllGroups]


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


@dataclass(frozen=True)
class TimeRange:
    """Closed interval [start, end] over sent_at."""
    start: datetime = _MIN_TS
    end: datetime = _MAX_TS
    label: str = ""

    def __post_init__(self):
        object.__setattr__(self, "start", _aware(self.start))
        object.__setattr__(self, "end", _aware(self.end))
        if self.start > self.end:
            raise ValueError(f"Time range start {self.start} is after end {self.end}")

    @classmethod
    def all(cls) -> "TimeRange":
        return cls(label="all time")

    @classmethod
    def between(cls, start: datetime, end: datetime) -> "TimeRange":
        return cls(start=start, end=end, label=f"{start:%Y-%m-%d} .. {end:%Y-%m-%d}")

    @classmethod
    def older_than(cls, days: int, now: Optional[datetime] = None) -> "TimeRange":
        """Everything sent strictly before now - days (keeps the most recent `days`)."""
        if days < 0:
            raise ValueError("days must not be negative")
        now = _aware(now or datetime.now(UTC))
        cutoff = now - timedelta(days=days)
        return cls(end=cutoff - timedelta(microseconds=1), label=f"older than {days} days")

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end

    def describe(self) -> str:
        return self.label or f"{self.start.isoformat()} .. {self.end.isoformat()}"


def _sort_key(entry: CatalogEntry):
    return (entry.group_id, entry.sent_at, entry.reference_id)


def select(index: ChatMediaIndex,
           groups: GroupSelection,
           time_range: TimeRange) -> List[CatalogEntry]:
    """
    Returns the entries whose group is in `groups` and whose sent_at lies in
    `time_range`, ordered by group_id then sent_at. Does not touch status.
    """
    if groups is ALL_GROUPS:
        matched = [e for e in index if time_range.contains(e.sent_at)]
    else:
        wanted = frozenset(groups)
        if not wanted:
            return []
        matched = [e for e in index if e.group_id in wanted and time_range.contains(e.sent_at)]

    matched.sort(key=_sort_key)
    return matched


@dataclass
class GroupFilter:
    """
    Narrows the group list before selection.
    activity: "all", "active" (latest file within activity_days) or
    "inactive" (no file within activity_days).
    """
    hide_empty: bool = True
    min_size: int = 0
    min_file_count: int = 0
    activity: str = "all"
    activity_days: int = 30

    def __post_init__(self):
        if self.activity not in ("all", "active", "inactive"):
            raise ValueError(f"Unknown activity filter: {self.activity}")


def filter_groups(stats: Sequence[GroupStats],
                  group_filter: GroupFilter,
                  now: Optional[datetime] = None) -> List[GroupStats]:
    now = _aware(now or datetime.now(UTC))
    cutoff = now - timedelta(days=group_filter.activity_days)

    kept = []
    for st in stats:
        if group_filter.hide_empty and st.present_count == 0:
            continue
        if st.total_size < group_filter.min_size:
            continue
        if st.file_count < group_filter.min_file_count:
            continue

        latest = st.latest_sent_at or _MIN_TS
        if group_filter.activity == "active" and latest < cutoff:
            continue
        if group_filter.activity == "inactive" and latest >= cutoff:
            continue

        kept.append(st)
    return kept
