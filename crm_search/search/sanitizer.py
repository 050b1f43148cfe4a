"""
Keyword sanitization for SOSL discovery queries.

SOSL reserves several characters as operators; user text that contains them
either breaks the ``FIND {...}`` clause or silently changes its meaning.
"""

import re
from typing import Iterable, List

# & % * ? ~ are SOSL operators; braces and backslash would break FIND {...}
RESERVED_CHARACTERS = re.compile(r"[&%*?~{}\\]")
WHITESPACE = re.compile(r"\s+")


def sanitize_keyword(keyword: str) -> str:
    """Return ``keyword`` with reserved characters replaced and spacing normalized."""
    return WHITESPACE.sub(" ", RESERVED_CHARACTERS.sub(" ", keyword)).strip()


def sanitize_keywords(keywords: Iterable[str]) -> List[str]:
    """
    Sanitize a sequence of raw keywords, preserving order.

    Keywords that are empty after sanitization are dropped. The function is
    total and idempotent.

    Args:
        keywords: Raw keyword strings from the search intent

    Returns:
        Sanitized, non-empty keywords
    """
    sanitized = (sanitize_keyword(keyword) for keyword in keywords)
    return [keyword for keyword in sanitized if keyword]


def keyword_phrase(keywords: Iterable[str]) -> str:
    """Join sanitized keywords into a single discovery phrase."""
    return " ".join(sanitize_keywords(keywords))
