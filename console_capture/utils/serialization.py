"""
console_capture/utils/serialization.py

Safe conversion of captured values into JSON-encodable data.

Each composite value goes through three tiers, each tried only if the
previous one raises:
    1. direct json encoding
    2. re-encoding with a seen-set, replacing revisited containers with "[Circular]"
    3. str(value)
and finally the "[Unserializable]" sentinel.
"""

import json
import math
from typing import Any

# largest integer a JS number (IEEE-754 double) represents exactly
MAX_SAFE_INTEGER = 2**53 - 1

FUNCTION_SENTINEL = "[Function]"
SYMBOL_SENTINEL = "[Symbol]"
UNDEFINED_SENTINEL = "[Undefined]"
CIRCULAR_SENTINEL = "[Circular]"
UNSERIALIZABLE_SENTINEL = "[Unserializable]"


class _Undefined:
    """Marker for a value that is absent, as opposed to None (JSON null)."""

    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

# singletons with identity but no value
_SYMBOL_LIKE = (Ellipsis, NotImplemented)

_NOT_SCALAR = object()


def _serialize_scalar(value: Any) -> Any:
    """
    Map a non-container value to its JSON-safe form.
    Returns _NOT_SCALAR for dicts, lists, tuples, sets and arbitrary objects.
    """
    if value is UNDEFINED:
        return UNDEFINED_SENTINEL
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, float):
        # NaN and the infinities have no JSON form; JSON.stringify writes null
        return value if math.isfinite(value) else None
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            return f"[BigInt: {value}]"
        return value
    if any(value is symbol for symbol in _SYMBOL_LIKE):
        return SYMBOL_SENTINEL
    if callable(value):
        return FUNCTION_SENTINEL
    return _NOT_SCALAR


def _encode_with_seen(value: Any, seen: set[int]) -> Any:
    """
    Rebuild value as plain JSON data. Any container visited before is replaced
    with the circular sentinel; unknown leaf objects become their string form.
    """
    scalar = _serialize_scalar(value)
    if scalar is not _NOT_SCALAR:
        return scalar

    if isinstance(value, (dict, list, tuple, set, frozenset)):
        if id(value) in seen:
            return CIRCULAR_SENTINEL
        seen.add(id(value))

        if isinstance(value, dict):
            encoded: dict[str, Any] = {}
            for key, item in value.items():
                encoded_key = key if isinstance(key, str) else str(key)
                encoded[encoded_key] = _encode_with_seen(item, seen)
            return encoded
        return [_encode_with_seen(item, seen) for item in value]

    return str(value)


def safe_serialize(value: Any) -> Any:
    """
    Convert an arbitrary value into something json.dumps accepts. Never raises.
    Args:
        value: Any captured value.
    Returns:
        The value itself when it is already JSON-safe, otherwise a converted copy or a sentinel string.
    """
    scalar = _serialize_scalar(value)
    if scalar is not _NOT_SCALAR:
        return scalar

    try:
        json.dumps(value, allow_nan=False)
        return value
    except Exception:
        pass

    try:
        encoded = _encode_with_seen(value, seen=set())
        json.dumps(encoded, allow_nan=False)
        return encoded
    except Exception:
        pass

    try:
        return str(value)
    except Exception:
        return UNSERIALIZABLE_SENTINEL


def serialize_remote_object(remote_object: dict[str, Any]) -> Any:
    """
    Reduce a CDP Runtime.RemoteObject to its most useful JSON-safe form.
    Order of preference: value, unserializableValue (NaN, Infinity, bigint literals),
    description, then the whole remote object.
    """
    if "value" in remote_object:
        return safe_serialize(remote_object["value"])
    if remote_object.get("unserializableValue"):
        return remote_object["unserializableValue"]
    if remote_object.get("description"):
        return remote_object["description"]
    return safe_serialize(remote_object)


def well_formed_text(text: str) -> str:
    """
    Replace lone UTF-16 surrogates (as decoded from "\\ud800"-style JSON escapes)
    with U+FFFD so the text can be encoded as UTF-8. Paired surrogates are joined.
    """
    try:
        text.encode("utf-8")
        return text
    except UnicodeEncodeError:
        return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")


def to_ndjson_line(record: dict[str, Any]) -> str:
    """
    Encode one record as a compact, strictly valid JSON line (newline included).
    Out-of-range floats and circular references are passed through safe_serialize first.
    Raises:
        TypeError: If the record holds a value of a type json does not support.
    """
    try:
        line = json.dumps(record, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except ValueError:
        line = json.dumps(safe_serialize(record), ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    return well_formed_text(line) + "\n"
