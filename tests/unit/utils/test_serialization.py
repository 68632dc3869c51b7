"""
tests/unit/utils/test_serialization.py

Tests for safe_serialize, serialize_remote_object and NDJSON line encoding.
"""

import json

import pytest

from console_capture.utils.serialization import (
    UNDEFINED,
    safe_serialize,
    serialize_remote_object,
    to_ndjson_line,
    well_formed_text,
)


class TestSafeSerializeSentinels:
    """
    Tests for values JSON has no representation for.
    """

    def test_function(self) -> None:
        """Callables become the function sentinel."""
        assert safe_serialize(lambda: 1) == "[Function]"
        assert safe_serialize(print) == "[Function]"

    def test_symbol_like(self) -> None:
        """Identity-only singletons become the symbol sentinel."""
        assert safe_serialize(Ellipsis) == "[Symbol]"
        assert safe_serialize(NotImplemented) == "[Symbol]"

    def test_undefined(self) -> None:
        """The UNDEFINED marker is distinct from None."""
        assert safe_serialize(UNDEFINED) == "[Undefined]"
        assert safe_serialize(None) is None

    def test_bigint(self) -> None:
        """Integers beyond the JS safe range keep their decimal digits."""
        big = 2**64 + 1
        assert safe_serialize(big) == f"[BigInt: {big}]"
        assert safe_serialize(-big) == f"[BigInt: {-big}]"

    def test_safe_integer_unchanged(self) -> None:
        """Integers in the safe range are returned as-is."""
        assert safe_serialize(2**53 - 1) == 2**53 - 1


class TestSafeSerializePrimitives:
    """
    Tests for values returned unchanged.
    """

    def test_primitives(self) -> None:
        for value in ["text", 0, -3, 1.5, True, False, None]:
            assert safe_serialize(value) == value

    def test_plain_composite_returned_unchanged(self) -> None:
        """A JSON-encodable dict is returned as the same object."""
        value = {"a": [1, 2, {"b": "c"}]}
        assert safe_serialize(value) is value


class TestSafeSerializeNonFinite:
    """
    Tests for floats without a JSON form.
    """

    def test_scalars_become_null(self) -> None:
        for value in [float("nan"), float("inf"), float("-inf")]:
            assert safe_serialize(value) is None

    def test_nested_become_null(self) -> None:
        value = {"x": float("nan"), "items": [1.5, float("-inf")]}
        result = safe_serialize(value)
        assert result == {"x": None, "items": [1.5, None]}
        assert json.loads(json.dumps(result, allow_nan=False)) == result


class TestSafeSerializeComposites:
    """
    Tests for the fallback tiers.
    """

    def test_cyclic_dict(self) -> None:
        """A self-referencing dict is re-encoded with the circular sentinel."""
        value: dict = {"name": "loop"}
        value["self"] = value
        result = safe_serialize(value)
        assert result == {"name": "loop", "self": "[Circular]"}
        json.dumps(result)

    def test_cyclic_list(self) -> None:
        value: list = [1]
        value.append(value)
        assert safe_serialize(value) == [1, "[Circular]"]

    def test_nested_function_and_undefined(self) -> None:
        """Unencodable leaves inside containers are mapped individually."""
        result = safe_serialize({"fn": len, "missing": UNDEFINED, "n": 1})
        assert result == {"fn": "[Function]", "missing": "[Undefined]", "n": 1}

    def test_set_and_non_string_keys(self) -> None:
        result = safe_serialize({1: {3}, ("a", "b"): "x"})
        assert result == {"1": [3], "('a', 'b')": "x"}
        json.dumps(result)

    def test_arbitrary_object_becomes_string(self) -> None:
        class Thing:
            def __str__(self) -> str:
                return "thing"

        assert safe_serialize({"thing": Thing()}) == {"thing": "thing"}

    def test_unserializable(self) -> None:
        """When even str() fails the unserializable sentinel is returned."""
        class Broken:
            def __str__(self) -> str:
                raise RuntimeError("no")

            def __repr__(self) -> str:
                raise RuntimeError("no")

        assert safe_serialize(Broken()) == "[Unserializable]"

    def test_output_always_json_encodable(self) -> None:
        """Every tier produces something json.dumps accepts."""
        cyclic: dict = {}
        cyclic["me"] = cyclic
        values = [cyclic, len, Ellipsis, UNDEFINED, 2**70, {"s": {1, 2}}, [object()], b"bytes", {"n": float("nan")}]
        for value in values:
            json.dumps(safe_serialize(value), allow_nan=False)


class TestSerializeRemoteObject:
    """
    Tests for reducing CDP RemoteObjects.
    """

    def test_value_preferred(self) -> None:
        assert serialize_remote_object({"type": "string", "value": "hi", "description": "x"}) == "hi"

    def test_null_value(self) -> None:
        """A present null value is kept as None."""
        assert serialize_remote_object({"type": "object", "subtype": "null", "value": None}) is None

    def test_unserializable_value(self) -> None:
        assert serialize_remote_object({"type": "number", "unserializableValue": "NaN"}) == "NaN"

    def test_description(self) -> None:
        remote = {"type": "function", "description": "function foo() {}"}
        assert serialize_remote_object(remote) == "function foo() {}"

    def test_whole_object_fallback(self) -> None:
        remote = {"type": "undefined"}
        assert serialize_remote_object(remote) == {"type": "undefined"}


class TestNdjsonLine:
    """
    Tests for the line encoding shared by the log writer and stdout output.
    """

    def test_compact_single_line(self) -> None:
        line = to_ndjson_line({"a": 1, "b": "é"})
        assert line == '{"a":1,"b":"é"}\n'

    def test_non_finite_floats_encoded_as_null(self) -> None:
        line = to_ndjson_line({"args": [{"n": float("inf")}]})
        assert json.loads(line, parse_constant=lambda name: pytest.fail(f"bare {name} in output")) == {"args": [{"n": None}]}

    def test_lone_surrogate_replaced(self) -> None:
        record = json.loads('{"value": "bad \\ud800 str"}')
        line = to_ndjson_line(record)
        line.encode("utf-8")
        assert json.loads(line) == {"value": "bad \ufffd str"}

    def test_well_formed_text_joins_surrogate_pairs(self) -> None:
        assert well_formed_text("\ud83d\ude00") == "\U0001F600"
        assert well_formed_text("plain") == "plain"
