from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ..model.values import is_cell_value, to_python


def to_jsonable(value: Any) -> Any:
    """
    Convert records, cell values and common non-JSON types to serializable forms.
    """
    if is_cell_value(value):
        return to_jsonable(to_python(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


def dumps_pretty(value: Any) -> str:
    """Tab-indented JSON, the layout landing zone pipelines diff against."""
    return json.dumps(to_jsonable(value), indent="\t", ensure_ascii=False)
