"""Tests for the snapshot merge engine."""

import copy
import logging

import pytest

from speakez.models import Snapshot
from speakez.sync.merge import (
    merge_history,
    merge_personal_records,
    merge_snapshots,
    remote_is_newer,
    union_by_id,
)


def make_snapshot(**kwargs) -> Snapshot:
    defaults = {
        "user": {"name": "Alice", "xp": 120},
        "settings": {"restDuration": 30, "soundEnabled": True},
        "history": [],
        "personal_records": {},
        "custom_workouts": [],
        "updated_at": "2024-01-01T00:00:00.000Z",
    }
    defaults.update(kwargs)
    return Snapshot(**defaults)


def session(sid: str, completed_at: str) -> dict:
    return {"id": sid, "workoutId": "warmup", "completedAt": completed_at}


@pytest.fixture
def device_a() -> Snapshot:
    return make_snapshot(
        user={"name": "Alice", "xp": 300},
        history=[
            session("a2", "2024-03-02T10:00:00.000Z"),
            session("a1", "2024-03-01T10:00:00.000Z"),
        ],
        personal_records={
            "pushups": {"reps": 10, "clarity": 4},
            "breathing": {"holdSeconds": 0},
        },
        custom_workouts=[{"id": "w1", "name": "Morning"}],
        updated_at="2024-03-02T10:00:00.000Z",
    )


@pytest.fixture
def device_b() -> Snapshot:
    return make_snapshot(
        user={"name": "Alicia", "xp": 280},
        history=[
            session("b1", "2024-03-03T09:00:00.000Z"),
            session("a1", "2024-03-01T10:00:00.000Z"),
        ],
        personal_records={
            "pushups": {"reps": 15},
            "tongue-twisters": {"speed": 3.5, "best": "peter piper"},
        },
        custom_workouts=[{"id": "w2", "name": "Evening"}],
        updated_at="2024-03-01T08:00:00.000Z",
    )


class TestScenarios:
    """Reference scenarios for each field rule."""

    def test_profile_newer_remote_wins(self):
        local = make_snapshot(user={"name": "Alice"}, updated_at="2024-01-01T00:00:00Z")
        remote = make_snapshot(user={"name": "Alicia"}, updated_at="2024-01-02T00:00:00Z")

        merged = merge_snapshots(local, remote)

        assert merged.user["name"] == "Alicia"

    def test_personal_record_takes_max(self):
        local = make_snapshot(personal_records={"pushups": {"reps": 10}})
        remote = make_snapshot(personal_records={"pushups": {"reps": 15}})

        merged = merge_snapshots(local, remote)

        assert merged.personal_records == {"pushups": {"reps": 15}}

    def test_history_union_contains_both(self):
        local = make_snapshot(history=[{"id": "a"}])
        remote = make_snapshot(history=[{"id": "b"}])

        merged = merge_snapshots(local, remote)

        ids = [s["id"] for s in merged.history]
        assert sorted(ids) == ["a", "b"]

    def test_custom_workout_collision_local_wins(self):
        local = make_snapshot(custom_workouts=[{"id": "w1", "name": "X"}])
        remote = make_snapshot(custom_workouts=[{"id": "w1", "name": "Y"}])

        merged = merge_snapshots(local, remote)

        assert merged.custom_workouts == [{"id": "w1", "name": "X"}]


class TestLastWriteWins:
    """Tests for whole-object profile/settings resolution."""

    def test_tie_keeps_local(self):
        local = make_snapshot(user={"name": "Local"})
        remote = make_snapshot(user={"name": "Remote"})

        assert merge_snapshots(local, remote).user == {"name": "Local"}

    def test_empty_remote_stamp_keeps_local(self):
        local = make_snapshot(user={"name": "Local"})
        remote = make_snapshot(user={"name": "Remote"}, updated_at="")

        assert merge_snapshots(local, remote).user == {"name": "Local"}

    def test_older_remote_keeps_local(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b)

        assert merged.user == device_a.user
        assert merged.settings == device_a.settings

    def test_winner_taken_whole_not_field_by_field(self):
        local = make_snapshot(
            user={"name": "Alice", "streak": 9},
            updated_at="2024-01-01T00:00:00.000Z",
        )
        remote = make_snapshot(
            user={"name": "Alicia"},
            updated_at="2024-01-02T00:00:00.000Z",
        )

        merged = merge_snapshots(local, remote)

        assert merged.user == {"name": "Alicia"}

    def test_settings_follow_profile_winner(self):
        local = make_snapshot(settings={"soundEnabled": True})
        remote = make_snapshot(
            settings={"soundEnabled": False},
            updated_at="2024-06-01T00:00:00.000Z",
        )

        assert merge_snapshots(local, remote).settings == {"soundEnabled": False}

    def test_mixed_formats_compare_chronologically(self):
        # SQLite datetime('now') style against JS toISOString style
        assert remote_is_newer("2024-01-01T23:00:00.000Z", "2024-01-02 01:00:00")
        assert not remote_is_newer("2024-01-02T01:00:00.000Z", "2024-01-01 23:00:00")

    def test_offset_timestamps_normalized_to_utc(self):
        # 09:00+02:00 is 07:00Z, which is earlier than 08:00Z
        assert not remote_is_newer("2024-01-01T08:00:00Z", "2024-01-01T09:00:00+02:00")

    def test_unparseable_remote_stamp_keeps_local(self):
        local = make_snapshot(user={"name": "Local"})
        remote = make_snapshot(user={"name": "Remote"}, updated_at="yesterday")

        assert merge_snapshots(local, remote).user == {"name": "Local"}

    def test_merged_updated_at_is_latest(self, device_a, device_b):
        merged = merge_snapshots(device_b, device_a)

        assert merged.updated_at == "2024-03-02T10:00:00.000Z"

    def test_merged_updated_at_is_winner_stamp(self):
        local = make_snapshot(updated_at="2024-01-02 01:00:00")
        remote = make_snapshot(updated_at="2024-01-01T23:00:00.000Z")

        assert merge_snapshots(local, remote).updated_at == "2024-01-02 01:00:00"
        assert merge_snapshots(remote, local).updated_at == "2024-01-02 01:00:00"

    def test_invalid_winning_stamp_is_dropped(self):
        local = make_snapshot(updated_at="yesterday")
        remote = make_snapshot(updated_at="")

        assert merge_snapshots(local, remote).updated_at == ""


class TestPersonalRecords:
    """Tests for leaf-by-leaf personal record merging."""

    def test_zero_is_present_not_absent(self):
        merged = merge_personal_records({"plank": {"seconds": 0}}, {"plank": {}})

        assert merged == {"plank": {"seconds": 0}}

    def test_remote_only_zero_taken(self):
        merged = merge_personal_records({"plank": {}}, {"plank": {"seconds": 0}})

        assert merged == {"plank": {"seconds": 0}}

    def test_remote_only_exercise_added(self):
        merged = merge_personal_records({}, {"squats": {"reps": 20}})

        assert merged == {"squats": {"reps": 20}}

    def test_non_numeric_conflict_keeps_local(self):
        merged = merge_personal_records(
            {"twister": {"best": "sally"}}, {"twister": {"best": "peter"}}
        )

        assert merged["twister"]["best"] == "sally"

    def test_numeric_against_non_numeric_keeps_local(self):
        merged = merge_personal_records({"hum": {"pitch": "low"}}, {"hum": {"pitch": 220}})

        assert merged["hum"]["pitch"] == "low"

    def test_booleans_are_not_numbers(self):
        merged = merge_personal_records({"x": {"done": False}}, {"x": {"done": True}})

        assert merged["x"]["done"] is False

    def test_monotonic_for_numeric_leaves(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b).personal_records

        for side in (device_a, device_b):
            for exercise, metrics in side.personal_records.items():
                for metric, value in metrics.items():
                    if isinstance(value, (int, float)):
                        assert merged[exercise][metric] >= value

    def test_inputs_not_mutated(self, device_a, device_b):
        before_a = copy.deepcopy(device_a)
        before_b = copy.deepcopy(device_b)

        merged = merge_snapshots(device_a, device_b)
        merged.personal_records["pushups"]["reps"] = 999

        assert device_a == before_a
        assert device_b == before_b


class TestIdUnion:
    """Tests for id-keyed union merges."""

    def test_both_sides_unique_ids_survive(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b)

        ids = {w["id"] for w in merged.custom_workouts}
        assert ids == {"w1", "w2"}

    def test_custom_workout_id_set_commutative(self, device_a, device_b):
        ab = {w["id"] for w in merge_snapshots(device_a, device_b).custom_workouts}
        ba = {w["id"] for w in merge_snapshots(device_b, device_a).custom_workouts}

        assert ab == ba

    def test_record_without_id_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            merged = union_by_id([{"name": "no id"}], [{"id": "w1"}, {"id": ""}])

        assert merged == [{"id": "w1"}]
        assert "without an id" in caplog.text

    def test_history_without_id_dropped(self):
        merged = merge_history([{"completedAt": "2024-01-01T00:00:00.000Z"}], [{"id": "s1"}])

        assert merged == [{"id": "s1"}]

    def test_history_never_overwritten(self):
        local = [{"id": "s1", "xpEarned": 50}]
        remote = [{"id": "s1", "xpEarned": 75}]

        assert merge_history(local, remote) == [{"id": "s1", "xpEarned": 50}]

    def test_history_sorted_newest_first(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b)

        assert [s["id"] for s in merged.history] == ["b1", "a2", "a1"]

    def test_history_falls_back_to_date_field(self):
        merged = merge_history(
            [{"id": "old", "date": "2023-01-01T00:00:00.000Z"}],
            [{"id": "new", "completedAt": "2024-01-01T00:00:00.000Z"}],
        )

        assert [s["id"] for s in merged] == ["new", "old"]


class TestMergeProperties:
    """Algebraic properties the sync protocol relies on."""

    def test_idempotent(self, device_a):
        assert merge_snapshots(device_a, device_a) == device_a

    def test_idempotent_keeps_stamp_as_written(self):
        snapshot = make_snapshot(user={"name": "Alice"}, updated_at="2024-01-01T00:00:00Z")

        assert merge_snapshots(snapshot, snapshot) == snapshot

    def test_idempotent_after_merge(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b)

        assert merge_snapshots(merged, merged) == merged
        assert merge_snapshots(merged, device_b) == merged

    def test_history_commutative(self, device_a, device_b):
        assert (
            merge_snapshots(device_a, device_b).history
            == merge_snapshots(device_b, device_a).history
        )

    def test_no_history_loss(self, device_a, device_b):
        merged = merge_snapshots(device_a, device_b)

        ids = [s["id"] for s in merged.history]
        assert len(merged.history) >= max(len(device_a.history), len(device_b.history))
        assert len(ids) == len(set(ids))
        for side in (device_a, device_b):
            assert {s["id"] for s in side.history} <= set(ids)
