"""Deterministic merge of two snapshots.

Pure functions with no side effects besides logging. The same policy runs
on both ends: the client merges pulled state into local state, and the
server merges pushed state into its own.

Field rules:
- user/settings: whole-object last-write-wins on the snapshot ``updated_at``.
- personal_records: leaf-by-leaf, numeric leaves take the max.
- custom_workouts: union by id, local wins on collision.
- history: union by id, append-only, newest completion first.
"""

import copy
import logging
import math
from typing import Any

from ..models import Snapshot, record_id
from ..timestamps import normalize_timestamp

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and not math.isnan(value)


def remote_is_newer(local_updated_at: Any, remote_updated_at: Any) -> bool:
    """Whether the remote side wins a last-write-wins comparison.

    Ties and an empty remote stamp keep local.
    """
    remote_ts = normalize_timestamp(remote_updated_at)
    if not remote_ts:
        return False
    return remote_ts > normalize_timestamp(local_updated_at)


def merge_personal_records(
    local: dict[str, Any], remote: dict[str, Any]
) -> dict[str, Any]:
    """Merge personal records per exercise, per metric.

    Args:
        local: Local ``{exercise: {metric: value}}`` mapping.
        remote: Remote mapping of the same shape.

    Returns:
        New mapping. Numeric leaves present on both sides take the max;
        a leaf present on one side only is taken as is (``0`` included);
        any other conflict keeps the local value.
    """
    merged = copy.deepcopy(local)

    for exercise, remote_metrics in remote.items():
        if exercise not in merged:
            merged[exercise] = copy.deepcopy(remote_metrics)
            continue

        local_metrics = merged[exercise]
        if not isinstance(local_metrics, dict) or not isinstance(remote_metrics, dict):
            continue

        for metric, remote_value in remote_metrics.items():
            if metric not in local_metrics:
                local_metrics[metric] = copy.deepcopy(remote_value)
                continue

            local_value = local_metrics[metric]
            if _is_number(local_value) and _is_number(remote_value):
                local_metrics[metric] = max(local_value, remote_value)

    return merged


def _keyed(records: list[Any], field_name: str, side: str) -> list[tuple[Any, Any]]:
    keyed = []
    for record in records:
        rid = record_id(record)
        if rid is None:
            logger.warning(
                f"Dropping {side} {field_name} record without an id: {record!r}"
            )
            continue
        keyed.append((rid, record))
    return keyed


def union_by_id(
    local: list[Any], remote: list[Any], field_name: str = "customWorkouts"
) -> list[dict[str, Any]]:
    """Union two id-keyed collections, local winning on collision.

    Remote entries are inserted first, then local entries overwrite or
    insert. Records without an id are dropped.
    """
    merged: dict[Any, Any] = {}
    for rid, record in _keyed(remote, field_name, "remote"):
        merged[rid] = record
    for rid, record in _keyed(local, field_name, "local"):
        merged[rid] = record
    return [copy.deepcopy(record) for record in merged.values()]


def _completion_key(session: dict[str, Any]) -> tuple[str, str]:
    completed = session.get("completedAt")
    if completed in (None, ""):
        completed = session.get("date")
    return normalize_timestamp(completed), str(session["id"])


def merge_history(local: list[Any], remote: list[Any]) -> list[dict[str, Any]]:
    """Append-only union of completed sessions.

    Every id from either side appears exactly once; an id already seen is
    never overwritten. The result is sorted by completion time, newest
    first, with the id as tie-breaker so the order does not depend on
    argument order.
    """
    merged: dict[Any, Any] = {}
    for rid, session in _keyed(local, "history", "local") + _keyed(remote, "history", "remote"):
        if rid not in merged:
            merged[rid] = session

    sessions = [copy.deepcopy(session) for session in merged.values()]
    sessions.sort(key=_completion_key, reverse=True)
    return sessions


def merge_snapshots(local: Snapshot, remote: Snapshot) -> Snapshot:
    """Reconcile two snapshots into one.

    Args:
        local: State on this side of the exchange.
        remote: State received from the other side.

    Returns:
        A new Snapshot; neither input is modified. Its ``updated_at`` is
        the winning side's stamp as written, or "" if that stamp is invalid.
    """
    local_ts = normalize_timestamp(local.updated_at)
    remote_ts = normalize_timestamp(remote.updated_at)
    if remote_is_newer(local_ts, remote_ts):
        winner, winner_ts = remote, remote_ts
    else:
        winner, winner_ts = local, local_ts

    return Snapshot(
        user=copy.deepcopy(winner.user),
        settings=copy.deepcopy(winner.settings),
        history=merge_history(local.history, remote.history),
        personal_records=merge_personal_records(
            local.personal_records, remote.personal_records
        ),
        custom_workouts=union_by_id(local.custom_workouts, remote.custom_workouts),
        updated_at=winner.updated_at if winner_ts else "",
    )
