from __future__ import annotations

import json
import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..model.values import (
    ArrayValue,
    BoolValue,
    CellValue,
    FloatValue,
    IntValue,
    ObjectValue,
    StringValue,
    array_of,
)
from ..util.errors import CellFormatError, ParameterTypeError

# Whole-cell sentinels of group columns.
NOT_APPLIED = "n/a"
ENABLED = "YES"
# Sentinels inside "name: value" lines.
NO_DEFAULT = "<>"

# Plain ASCII base-10; int() alone would also take "1_000" and non-ASCII digits.
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

TYPE_STRING = "string"
TYPE_INTEGER = "integer"
TYPE_FLOAT = "float"
TYPE_BOOLEAN = "boolean"
TYPE_ARRAY = "array"
TYPE_OBJECT = "object"
TYPE_DATETIME = "datetime"
SUPPORTED_TYPES = (TYPE_STRING, TYPE_INTEGER, TYPE_FLOAT, TYPE_BOOLEAN, TYPE_ARRAY, TYPE_OBJECT, TYPE_DATETIME)

_QUOTE_MARKS = ('"', "'")
_WHOLE_CELL_PREFIXES = ("{", "[", "<") + _QUOTE_MARKS


def is_not_applied(text: Optional[str]) -> bool:
    return (text or "").strip() == NOT_APPLIED


def is_enabled(text: Optional[str]) -> bool:
    return (text or "").strip().upper() == ENABLED


def format_placeholder(declared_type: str) -> str:
    """Placeholder shown instead of allowed values when a parameter has none."""
    return f"<{declared_type}>"


def encode_cell(pairs: Iterable[Tuple[str, str]]) -> str:
    return "\n".join(f"{name}: {value}" for name, value in pairs)


def _split_line(line: str, known_keys: Optional[List[str]]) -> Tuple[str, str]:
    if known_keys:
        for key in known_keys:
            if line.startswith(key + ":"):
                return key, line[len(key) + 1 :].strip()
    idx = line.rfind(":")
    if idx == -1:
        return "", line
    return line[:idx].strip(), line[idx + 1 :].strip()


def decode_cell(text: Optional[str], known_keys: Optional[Iterable[str]] = None) -> Dict[str, str]:
    """
    Decode a multi-value cell ("name: value" per line) into a name -> raw value map.

    Each line is split on its last colon. With known_keys, lines starting with
    "<key>:" split right after the longest such key instead, so values that
    contain colons (URLs, JSON objects) survive. A line without colon is stored
    under the empty key.
    """
    keys = sorted(set(known_keys), key=len, reverse=True) if known_keys else None
    result: Dict[str, str] = {}
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        key, value = _split_line(line, keys)
        result[key] = value
    return result


def decode_single(text: Optional[str]) -> str:
    """
    Return the one value a cell conveys when it can only hold a single value.
    """
    stripped = (text or "").strip()
    if stripped.startswith(_WHOLE_CELL_PREFIXES):
        return stripped
    for value in decode_cell(stripped).values():
        return value
    return ""


def _lenient_int(text: str) -> int:
    stripped = text.strip()
    if not _INTEGER_RE.fullmatch(stripped):
        return 0
    return int(stripped, 10)


def _lenient_float(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return 0.0


def _unquote(token: str) -> str:
    token = token.strip()
    while len(token) > 1 and token[0] == token[-1] and token[0] in _QUOTE_MARKS:
        token = token[1:-1]
    return token


def _split_elements(text: str) -> List[str]:
    elements: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    for char in text:
        if quote is not None:
            if char == quote:
                quote = None
            current.append(char)
            continue
        if char in _QUOTE_MARKS:
            quote = char
            current.append(char)
        elif char == ",":
            elements.append("".join(current))
            current = []
        else:
            current.append(char)
    elements.append("".join(current))
    return [_unquote(e) for e in elements]


def _infer_element_type(token: str) -> str:
    if not token:
        raise CellFormatError("empty array element value")
    if _INTEGER_RE.fullmatch(token):
        return TYPE_INTEGER
    if token.lower() in ("true", "false"):
        return TYPE_BOOLEAN
    return TYPE_STRING


def parse_array_literal(text: str) -> ArrayValue:
    """
    Parse the <e1,e2,...> array literal. Elements may be quoted with single or
    double quotes. The type inferred from the first element (integer, boolean or
    string) is applied to every element.
    """
    stripped = text.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
        try:
            loaded = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise CellFormatError(f"invalid JSON array {stripped!r}: {e}") from e
        return array_of(loaded)
    if stripped.startswith("<") and stripped.endswith(">"):
        inner = stripped[1:-1].strip()
        tokens = _split_elements(inner) if inner else []
    elif stripped:
        tokens = [_unquote(stripped)]
    else:
        tokens = []
    if not tokens:
        return ArrayValue(())
    element_type = _infer_element_type(tokens[0])
    return ArrayValue(tuple(parse_typed(token, element_type) for token in tokens))


def parse_typed(raw: str, declared_type: str) -> CellValue:
    """
    Convert raw cell text according to a declared parameter type.

    Numeric casts are lenient: malformed text yields 0 instead of an error.
    """
    kind = (declared_type or "").strip().lower()
    if kind == TYPE_INTEGER:
        return IntValue(_lenient_int(raw))
    if kind == TYPE_FLOAT:
        return FloatValue(_lenient_float(raw))
    if kind == TYPE_BOOLEAN:
        return BoolValue(raw.strip().lower() == "true")
    if kind == TYPE_ARRAY:
        return parse_array_literal(raw)
    if kind == TYPE_OBJECT:
        stripped = raw.strip()
        if not stripped:
            return ObjectValue({})
        try:
            loaded = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise CellFormatError(f"invalid JSON object {stripped!r}: {e}") from e
        if not isinstance(loaded, dict):
            raise CellFormatError(f"expected a JSON object, got {stripped!r}")
        return ObjectValue(loaded)
    if kind in (TYPE_STRING, TYPE_DATETIME):
        return StringValue(raw)
    raise ParameterTypeError(declared_type)
