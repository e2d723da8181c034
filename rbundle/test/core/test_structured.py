from __future__ import annotations

from rbundle.core.structured import (
    as_obj_list,
    as_str_dict,
    get_float,
    get_int,
    get_str,
    type_name,
)


def test_as_str_dict_rejects_non_string_keys() -> None:
    assert as_str_dict({"a": 1}) == {"a": 1}
    assert as_str_dict({1: "a"}) is None
    assert as_str_dict([1]) is None


def test_as_obj_list() -> None:
    assert as_obj_list([1, "a"]) == [1, "a"]
    assert as_obj_list({"a": 1}) is None


def test_get_str_strips_and_drops_empty() -> None:
    table: dict[str, object] = {"a": "  x ", "b": "   ", "c": 3}
    assert get_str(table, "a") == "x"
    assert get_str(table, "b") is None
    assert get_str(table, "c") is None
    assert get_str(table, "missing") is None


def test_get_int_rejects_bool() -> None:
    table: dict[str, object] = {"n": 3, "flag": True, "f": 1.5}
    assert get_int(table, "n") == 3
    assert get_int(table, "flag") is None
    assert get_int(table, "f") is None


def test_get_float_accepts_int() -> None:
    assert get_float({"n": 2}, "n") == 2.0
    assert get_float({"n": False}, "n") is None


def test_type_name_uses_json_vocabulary() -> None:
    assert type_name(None) == "null"
    assert type_name(True) == "boolean"
    assert type_name(1) == "number"
    assert type_name(1.5) == "number"
    assert type_name("s") == "string"
    assert type_name([]) == "array"
    assert type_name({}) == "object"
