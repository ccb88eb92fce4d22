"""Snapshot of the app state that is persisted locally and synced."""

import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from .errors import MalformedSnapshotError
from .timestamps import utc_now

logger = logging.getLogger(__name__)

# Namespace for ids derived from the content of legacy records
LEGACY_ID_NAMESPACE = uuid.UUID("6f1d5a0e-3c4b-4e8e-9a51-2b7d0c9e4f10")


def default_user() -> dict[str, Any]:
    return {
        "name": "",
        "xp": 0,
        "level": 1,
        "streak": 0,
        "lastPracticeDate": None,
        "weeklyGoal": 3,  # sessions per week
        "createdAt": utc_now(),
    }


def default_settings() -> dict[str, Any]:
    return {
        "restDuration": 30,  # seconds between exercises
        "soundEnabled": True,
        "notifications": False,
    }


def new_record_id() -> str:
    """Globally unique id for a history session or custom workout."""
    return str(uuid.uuid4())


def legacy_record_id(record: dict[str, Any]) -> str:
    """Deterministic id for a record persisted before ids were assigned.

    Derived from the record content so the same record gets the same id
    on every load.
    """
    content = json.dumps(record, sort_keys=True, default=str)
    return str(uuid.uuid5(LEGACY_ID_NAMESPACE, content))


def record_id(record: Any) -> str | int | None:
    """Return a record's id, or None if it has no usable one."""
    if not isinstance(record, dict):
        return None
    value = record.get("id")
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value:
        return value
    if isinstance(value, int):
        return value
    return None


def _expect(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise MalformedSnapshotError(
            f"{key} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _lenient(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    try:
        return _expect(data, key, kind, default)
    except MalformedSnapshotError as e:
        logger.warning(f"Replacing malformed field with its default: {e}")
        return default


@dataclass
class Snapshot:
    """Complete local application state at a point in time.

    Field names are snake_case here; the persisted and wire forms use the
    camelCase keys of the web client (``personalRecords``, ``updatedAt``).
    """

    user: dict[str, Any] = field(default_factory=default_user)
    settings: dict[str, Any] = field(default_factory=default_settings)
    history: list[dict[str, Any]] = field(default_factory=list)
    personal_records: dict[str, Any] = field(default_factory=dict)
    custom_workouts: list[dict[str, Any]] = field(default_factory=list)
    updated_at: str = ""

    def copy(self) -> "Snapshot":
        """Deep copy, so callers can mutate without touching shared state."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Persisted form of the snapshot."""
        return {
            "user": self.user,
            "settings": self.settings,
            "history": self.history,
            "personalRecords": self.personal_records,
            "customWorkouts": self.custom_workouts,
            "updatedAt": self.updated_at,
        }

    def to_payload(self) -> dict[str, Any]:
        """Body of a push request. The profile travels as ``profile``."""
        return {
            "profile": self.user,
            "settings": self.settings,
            "history": self.history,
            "personalRecords": self.personal_records,
            "customWorkouts": self.custom_workouts,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any, strict: bool = True) -> "Snapshot":
        """Build from the persisted form, filling in schema defaults.

        Args:
            data: Persisted snapshot.
            strict: If False, a field of the wrong type is replaced by its
                default (with a warning) instead of failing the whole load.

        Raises:
            MalformedSnapshotError: If the data is not shaped like a snapshot.
        """
        if not isinstance(data, dict):
            raise MalformedSnapshotError(
                f"snapshot must be an object, got {type(data).__name__}"
            )

        get = _expect if strict else _lenient
        user = {**default_user(), **get(data, "user", dict, {})}
        settings = {**default_settings(), **get(data, "settings", dict, {})}

        return cls(
            user=user,
            settings=settings,
            history=list(get(data, "history", list, [])),
            personal_records=dict(get(data, "personalRecords", dict, {})),
            custom_workouts=list(get(data, "customWorkouts", list, [])),
            updated_at=get(data, "updatedAt", str, ""),
        )

    @classmethod
    def from_remote(cls, data: Any) -> "Snapshot":
        """Build from a pull response (or the ``merged`` part of a push ack).

        Missing fields stay empty rather than taking local defaults, so an
        empty server account never overrides local values.

        Raises:
            MalformedSnapshotError: If the response is not shaped like a snapshot.
        """
        if not isinstance(data, dict):
            raise MalformedSnapshotError(
                f"remote snapshot must be an object, got {type(data).__name__}"
            )

        return cls(
            user=dict(_expect(data, "profile", dict, {})),
            settings=dict(_expect(data, "settings", dict, {})),
            history=list(_expect(data, "history", list, [])),
            personal_records=dict(_expect(data, "personalRecords", dict, {})),
            custom_workouts=list(_expect(data, "customWorkouts", list, [])),
            updated_at=_expect(data, "updatedAt", str, ""),
        )
