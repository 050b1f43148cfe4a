"""
Tests for keyword sanitization.
"""

import pytest

from crm_search.search.sanitizer import keyword_phrase, sanitize_keyword, sanitize_keywords


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("motor", "motor"),
        ("R&D", "R D"),
        ("50% off", "50 off"),
        ("what?", "what"),
        ("wild*card~", "wild card"),
        ("  lots   of\tspace ", "lots of space"),
        ("{brace}", "brace"),
        ("back\\slash", "back slash"),
    ],
)
def test_sanitize_keyword(raw, expected):
    """Reserved characters become spaces and spacing is normalized."""
    assert sanitize_keyword(raw) == expected


def test_sanitize_keywords_drops_empty():
    """Keywords made only of operators disappear."""
    assert sanitize_keywords(["&&", "motor", " ? ", "", "pump"]) == ["motor", "pump"]


def test_sanitize_keywords_preserves_order():
    assert sanitize_keywords(["b", "a", "c"]) == ["b", "a", "c"]


@pytest.mark.parametrize(
    "keywords",
    [
        ["R&D*", "  x  "],
        ["~~", "a%b?c"],
        ["{motor}", "back\\\\slash"],
    ],
)
def test_sanitize_keywords_idempotent(keywords):
    once = sanitize_keywords(keywords)
    assert sanitize_keywords(once) == once


def test_keyword_phrase():
    """The phrase is the space-joined sanitized keywords."""
    assert keyword_phrase(["billing", "R&D", "*"]) == "billing R D"
    assert keyword_phrase([]) == ""
