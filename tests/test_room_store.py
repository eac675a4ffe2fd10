import asyncio

import pytest

from constants import DEFAULT_TEMPLATES
from room_store import MembershipTracker, RoomStore
from tests.conftest import GRACE


def test_get_or_create_seeds_default_template(store):
    room = store.get_or_create("r1")
    assert room.buffer == DEFAULT_TEMPLATES["javascript"]
    assert room.language == "javascript"
    assert room.member_count == 0
    assert store.get_or_create("r1") is room
    assert len(store) == 1


def test_unknown_default_language_rejected():
    with pytest.raises(ValueError):
        RoomStore(default_language="cobol")


def test_join_is_idempotent(store):
    store.join("r1", "a")
    first_activity = store.get("r1").last_activity
    store.join("r1", "a")
    assert store.member_count("r1") == 1
    assert store.get("r1").last_activity >= first_activity


def test_membership_tracker():
    tracker = MembershipTracker()
    assert tracker.add("a") is True
    assert tracker.add("a") is False
    assert "a" in tracker
    assert tracker.remove("a") is True
    assert tracker.remove("a") is False
    assert len(tracker) == 0


async def test_member_count_follows_join_and_leave(store):
    store.join("r1", "a")
    store.join("r1", "b")
    store.join("r1", "c")
    assert store.member_count("r1") == 3
    store.leave("r1", "b")
    assert store.member_count("r1") == 2
    store.leave("r1", "b")
    assert store.member_count("r1") == 2
    assert store.members("r1") == frozenset({"a", "c"})


def test_leave_unknown_room_returns_none(store):
    assert store.leave("missing", "a") is None
    assert "missing" not in store


def test_update_buffer_last_writer_wins(store):
    store.join("r1", "a")
    store.update_buffer("r1", "x = 1", "python")
    store.update_buffer("r1", "x = 2")
    snapshot = store.snapshot("r1")
    assert snapshot.buffer == "x = 2"
    assert snapshot.language == "python"
    assert snapshot.member_count == 1


def test_update_buffer_unknown_room(store):
    assert store.update_buffer("missing", "code") is None
    assert "missing" not in store


def test_snapshot_and_member_count_of_absent_room(store):
    assert store.snapshot("missing") is None
    assert store.member_count("missing") == 0
    assert store.members("missing") == frozenset()


async def test_find_room_of(store):
    store.join("r1", "a")
    store.join("r2", "b")
    assert store.find_room_of("a") == "r1"
    assert store.find_room_of("b") == "r2"
    assert store.find_room_of("c") is None
    store.leave("r1", "a")
    assert store.find_room_of("a") is None


def test_list_rooms(store):
    store.join("r1", "a")
    store.get_or_create("r2")
    summaries = {summary.room_id: summary for summary in store.list_rooms()}
    assert set(summaries) == {"r1", "r2"}
    assert summaries["r1"].member_count == 1
    assert summaries["r2"].member_count == 0


async def test_rejoin_within_grace_keeps_state(store):
    store.join("r1", "a")
    store.update_buffer("r1", "print(1)", "python")
    store.leave("r1", "a")
    assert store.reaper.is_pending("r1")

    store.join("r1", "b")
    assert not store.reaper.is_pending("r1")
    await asyncio.sleep(GRACE * 3)

    snapshot = store.snapshot("r1")
    assert snapshot.buffer == "print(1)"
    assert snapshot.language == "python"


async def test_empty_room_reaped_after_grace(store):
    store.join("r1", "a")
    store.update_buffer("r1", "print(1)", "python")
    store.leave("r1", "a")
    await asyncio.sleep(GRACE * 3)

    assert "r1" not in store
    room = store.get_or_create("r1")
    assert room.buffer == DEFAULT_TEMPLATES["javascript"]
    assert room.language == "javascript"


async def test_repeated_empty_cycles_keep_single_timer(store):
    for _ in range(5):
        store.join("r1", "a")
        store.leave("r1", "a")
    assert len(store.reaper) == 1

    await asyncio.sleep(GRACE * 3)
    assert "r1" not in store
    assert len(store.reaper) == 0


async def test_reap_skipped_when_member_present(store):
    store.join("r1", "a")
    store.leave("r1", "a")
    # Member added behind the reaper's back; the fire-time check must still spare the room.
    store.get("r1").members.add("b")
    await asyncio.sleep(GRACE * 3)
    assert "r1" in store


async def test_close_cancels_pending_reaps(store):
    store.join("r1", "a")
    store.leave("r1", "a")
    store.close()
    await asyncio.sleep(GRACE * 3)
    assert "r1" in store


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_leave_without_running_loop_defers_reap():
    clock = ManualClock()
    store = RoomStore(grace_period=10, clock=clock)
    store.join("r1", "a")
    store.update_buffer("r1", "print(1)", "python")

    assert store.leave("r1", "a") is not None
    assert store.reaper.is_pending("r1")

    clock.now = 9
    assert store.snapshot("r1").buffer == "print(1)"

    clock.now = 11
    assert store.get("r1") is None
    assert store.get_or_create("r1").buffer == DEFAULT_TEMPLATES["javascript"]


def test_rejoin_without_running_loop_cancels_reap():
    clock = ManualClock()
    store = RoomStore(grace_period=10, clock=clock)
    store.join("r1", "a")
    store.update_buffer("r1", "x = 1", "python")
    store.leave("r1", "a")

    clock.now = 5
    store.join("r1", "b")
    clock.now = 50
    assert store.snapshot("r1").buffer == "x = 1"
    assert not store.reaper.is_pending("r1")


def test_leave_by_non_member_does_not_postpone_reap():
    clock = ManualClock()
    store = RoomStore(grace_period=10, clock=clock)
    store.join("r1", "a")
    store.leave("r1", "a")

    clock.now = 8
    assert store.leave("r1", "stranger") is not None
    clock.now = 11
    assert store.get("r1") is None
