from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Tuple, Union


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class IntValue:
    value: int


@dataclass(frozen=True)
class FloatValue:
    value: float


@dataclass(frozen=True)
class BoolValue:
    value: bool


@dataclass(frozen=True)
class ArrayValue:
    items: Tuple["CellValue", ...] = ()


@dataclass(frozen=True)
class ObjectValue:
    value: Dict[str, Any] = field(default_factory=dict, hash=False)


# Every parameter default, allowed value and override is one of these variants.
CellValue = Union[StringValue, IntValue, FloatValue, BoolValue, ArrayValue, ObjectValue]

CELL_VALUE_TYPES = (StringValue, IntValue, FloatValue, BoolValue, ArrayValue, ObjectValue)


def is_cell_value(obj: object) -> bool:
    return isinstance(obj, CELL_VALUE_TYPES)


def array_of(items: Iterable[Any]) -> ArrayValue:
    return ArrayValue(tuple(from_python(item) for item in items))


def from_python(obj: Any) -> CellValue:
    """
    Wrap a plain Python value (as produced by JSON/YAML loaders or the Azure SDK)
    into the matching CellValue variant.
    """
    if is_cell_value(obj):
        return obj
    if obj is None:
        return StringValue("")
    # bool must be checked before int
    if isinstance(obj, bool):
        return BoolValue(obj)
    if isinstance(obj, int):
        return IntValue(obj)
    if isinstance(obj, float):
        return FloatValue(obj)
    if isinstance(obj, str):
        return StringValue(obj)
    if isinstance(obj, (list, tuple)):
        return array_of(obj)
    if isinstance(obj, dict):
        return ObjectValue({str(k): v for k, v in obj.items()})
    return StringValue(str(obj))


def to_python(value: CellValue) -> Any:
    if isinstance(value, (StringValue, IntValue, FloatValue, BoolValue)):
        return value.value
    if isinstance(value, ArrayValue):
        return [to_python(item) for item in value.items]
    if isinstance(value, ObjectValue):
        return dict(value.value)
    raise TypeError(f"not a cell value: {value!r}")


def _format_float(number: float) -> str:
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _render_array_element(value: CellValue) -> str:
    text = render_value(value)
    if isinstance(value, StringValue) and "," in text:
        quote = "'" if '"' in text else '"'
        return f"{quote}{text}{quote}"
    return text


def render_value(value: CellValue) -> str:
    """
    Render one value as spreadsheet cell text.
    Arrays use the <a,b> literal, objects compact JSON with sorted keys.
    """
    if isinstance(value, StringValue):
        return value.value
    if isinstance(value, BoolValue):
        return "true" if value.value else "false"
    if isinstance(value, IntValue):
        return str(value.value)
    if isinstance(value, FloatValue):
        return _format_float(value.value)
    if isinstance(value, ArrayValue):
        return "<" + ",".join(_render_array_element(item) for item in value.items) + ">"
    if isinstance(value, ObjectValue):
        return json.dumps(value.value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    raise TypeError(f"not a cell value: {value!r}")


def is_empty_value(value: CellValue | None) -> bool:
    if value is None:
        return True
    if isinstance(value, StringValue):
        return value.value == ""
    return False
