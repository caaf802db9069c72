import pytest
from datetime import datetime, timedelta, UTC
from pathlib import Path

from qqcleaner.models import CatalogEntry, EntryStatus, GroupInfo, GroupKind, GroupStats
from qqcleaner.organization.selection import (
    ALL_GROUPS, GroupFilter, TimeRange, filter_groups, select,
)
from qqcleaner.scanning.index import ChatMediaIndex


def _entry(ref, group, sent, status=EntryStatus.PRESENT):
    return CatalogEntry(
        reference_id=ref,
        group_id=group,
        display_name=group,
        sent_at=sent,
        absolute_path=Path(f"/pic/{ref}.jpg"),
        status=status,
    )


@pytest.fixture
def three_entries():
    # Inserted out of order on purpose
    entries = [
        _entry("a2", "A", datetime(2024, 3, 1, tzinfo=UTC)),
        _entry("b1", "B", datetime(2024, 2, 1, tzinfo=UTC)),
        _entry("a1", "A", datetime(2024, 1, 1, tzinfo=UTC)),
    ]
    groups = {"A": GroupInfo("A", "Group A"), "B": GroupInfo("B", "Group B")}
    return ChatMediaIndex(entries, groups)


def test_select_one_group_all_time(three_entries):
    result = select(three_entries, {"A"}, TimeRange.all())
    assert [e.reference_id for e in result] == ["a1", "a2"]


def test_select_all_groups_orders_by_group_then_time(three_entries):
    result = select(three_entries, ALL_GROUPS, TimeRange.all())
    assert [e.reference_id for e in result] == ["a1", "a2", "b1"]


def test_select_is_stable_across_calls(three_entries):
    first = select(three_entries, ALL_GROUPS, TimeRange.all())
    second = select(three_entries, ALL_GROUPS, TimeRange.all())
    assert [e.reference_id for e in first] == [e.reference_id for e in second]


def test_empty_group_set_yields_empty(three_entries):
    assert select(three_entries, set(), TimeRange.all()) == []


def test_range_is_inclusive(three_entries):
    rng = TimeRange.between(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC))
    result = select(three_entries, ALL_GROUPS, rng)
    assert [e.reference_id for e in result] == ["a1", "b1"]


def test_result_is_subset_and_matches_filters(three_entries):
    rng = TimeRange.between(datetime(2024, 1, 15, tzinfo=UTC), datetime(2024, 12, 31, tzinfo=UTC))
    result = select(three_entries, {"A", "B"}, rng)

    all_ids = {e.reference_id for e in three_entries}
    for e in result:
        assert e.reference_id in all_ids
        assert e.group_id in {"A", "B"}
        assert rng.contains(e.sent_at)
    assert [e.reference_id for e in result] == ["a2", "b1"]


def test_all_groups_includes_entries_without_group_info(three_entries):
    index = ChatMediaIndex(
        list(three_entries) + [_entry("x1", "orphan", datetime(2024, 1, 5, tzinfo=UTC))],
        three_entries.groups,
    )
    result = select(index, ALL_GROUPS, TimeRange.all())
    assert "x1" in [e.reference_id for e in result]


def test_select_does_not_touch_status(three_entries):
    missing = _entry("m1", "A", datetime(2024, 1, 2, tzinfo=UTC), status=EntryStatus.MISSING)
    index = ChatMediaIndex(list(three_entries) + [missing], three_entries.groups)

    result = select(index, {"A"}, TimeRange.all())

    assert missing in result
    assert [e.status for e in index] == [EntryStatus.PRESENT] * 3 + [EntryStatus.MISSING]


def test_same_timestamp_ordered_by_reference():
    sent = datetime(2024, 1, 1, tzinfo=UTC)
    index = ChatMediaIndex([_entry("r2", "A", sent), _entry("r1", "A", sent)], {})
    assert [e.reference_id for e in select(index, ALL_GROUPS, TimeRange.all())] == ["r1", "r2"]


def test_time_range_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        TimeRange.between(datetime(2024, 2, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC))


def test_naive_bounds_are_treated_as_utc():
    rng = TimeRange.between(datetime(2024, 1, 1), datetime(2024, 1, 31))
    assert rng.contains(datetime(2024, 1, 15, tzinfo=UTC))


def test_older_than():
    now = datetime(2024, 6, 30, tzinfo=UTC)
    rng = TimeRange.older_than(30, now=now)

    assert rng.contains(datetime(2024, 5, 1, tzinfo=UTC))
    assert rng.contains(now - timedelta(days=30, seconds=1))
    assert not rng.contains(now - timedelta(days=30))
    assert not rng.contains(now)
    assert rng.describe() == "older than 30 days"


def _stats(group_id, size, files, present, latest):
    return GroupStats(
        group_id=group_id,
        display_name=group_id,
        kind=GroupKind.GROUP,
        file_count=files,
        present_count=present,
        total_size=size,
        latest_sent_at=latest,
    )


def test_filter_groups():
    now = datetime(2024, 6, 30, tzinfo=UTC)
    stats = [
        _stats("big_recent", 5_000_000, 10, 10, now - timedelta(days=1)),
        _stats("small_old", 1_000, 2, 2, now - timedelta(days=90)),
        _stats("empty", 0, 3, 0, now - timedelta(days=5)),
    ]

    assert [s.group_id for s in filter_groups(stats, GroupFilter(), now)] == ["big_recent", "small_old"]
    assert [s.group_id for s in filter_groups(stats, GroupFilter(hide_empty=False), now)] == [
        "big_recent", "small_old", "empty",
    ]
    assert [s.group_id for s in filter_groups(stats, GroupFilter(min_size=1_000_000), now)] == ["big_recent"]
    assert [s.group_id for s in filter_groups(stats, GroupFilter(min_file_count=5), now)] == ["big_recent"]
    assert [s.group_id for s in filter_groups(stats, GroupFilter(activity="inactive"), now)] == ["small_old"]
    assert [s.group_id for s in filter_groups(stats, GroupFilter(activity="active"), now)] == ["big_recent"]


def test_group_filter_rejects_unknown_activity():
    with pytest.raises(ValueError):
        GroupFilter(activity="sometimes")
