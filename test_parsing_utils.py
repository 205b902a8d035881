"""Tests for parsing_utils module"""

from pytest import raises

from parsing_utils import format_handle, parse_handle, parse_handle_index


def test_parse_handle_output():
    """parse_handle should parse output handles"""
    kind, index = parse_handle("output-0")
    assert kind == "output"
    assert index == 0


def test_parse_handle_input_multi_digit():
    """parse_handle should handle multi-digit indices"""
    kind, index = parse_handle("input-12")
    assert kind == "input"
    assert index == 12


def test_parse_handle_with_spaces():
    """parse_handle should handle extra whitespace"""
    assert parse_handle(" output - 3 ") == ("output", 3)


def test_parse_handle_no_separator():
    """parse_handle should raise error without hyphen"""
    with raises(ValueError, match="Invalid handle"):
        parse_handle("output0")


def test_parse_handle_invalid_index():
    """parse_handle should raise error for non-numeric index"""
    with raises(ValueError, match="Invalid port index"):
        parse_handle("input-abc")


def test_parse_handle_negative_index():
    """parse_handle should reject negative indices"""
    # rsplit on the last hyphen leaves "input-" as the kind
    with raises(ValueError):
        parse_handle("input--1")


def test_parse_handle_unknown_kind():
    """parse_handle should reject kinds other than input and output"""
    with raises(ValueError, match="Invalid handle kind"):
        parse_handle("source-1")


def test_parse_handle_not_a_string():
    """parse_handle should reject non-string handles"""
    with raises(ValueError, match="Expected a string"):
        parse_handle(None)


def test_parse_handle_index_kind_mismatch():
    """parse_handle_index should reject a handle of the wrong kind"""
    assert parse_handle_index("input-2", "input") == 2
    with raises(ValueError, match="Expected an output handle"):
        parse_handle_index("input-2", "output")


def test_format_handle_round_trip():
    """format_handle should produce strings parse_handle accepts"""
    assert parse_handle(format_handle("output", 4)) == ("output", 4)
