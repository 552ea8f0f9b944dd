# smartlists/utils/name_utils.py

"""Name comparison utilities used when sorting results.

Shared by the ordering stage (sort keys) and the similarity scorer.
"""

from __future__ import annotations

import re

__all__ = ["natural_sort_key", "strip_leading_article"]

_LEADING_NUMBER_RE = re.compile(r"^\s*(\d+)")
_ARTICLE_RE = re.compile(r"^the\s+", re.IGNORECASE)


def strip_leading_article(name: str) -> str:
    """Removes a leading "The " so "The Matrix" sorts under M."""
    return _ARTICLE_RE.sub("", name, count=1)


def natural_sort_key(name: str) -> tuple[int, float, str]:
    """Builds a case-insensitive key where leading numbers compare numerically.

    "2 Fast" sorts before "10 Things", and both sort before names without
    a leading number.

    Args:
        name: The display name.

    Returns:
        A tuple usable for ordering.
    """
    folded = name.casefold()
    match = _LEADING_NUMBER_RE.match(folded)
    if match:
        return (0, float(match.group(1)), folded[match.end():].strip())
    return (1, 0.0, folded)
