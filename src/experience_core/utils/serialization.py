"""JSON helpers for payloads and snapshots."""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any


def _default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    """Serialize to compact JSON, rendering datetimes as ISO 8601."""
    return json.dumps(value, default=_default, ensure_ascii=False, sort_keys=True)


def jsonable(value: Any) -> Any:
    """Return a copy of ``value`` containing only JSON-native types."""
    if value is None:
        return None
    return json.loads(dumps(value))
