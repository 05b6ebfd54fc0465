"""Key Normalization and Similarity Utilities.

This module normalizes manufacturer names, part numbers and item names
for matching. The normalization process:
1. Casefolds
2. Removes whitespace and punctuation (letters in any script are kept)

Examples:
    "6ES7 512-1DK01-0AB0" → "6es75121dk010ab0"
    "SIEMENS"             → "siemens"
    " Festo  AG "         → "festoag"
"""

import re
from typing import Optional

from rapidfuzz import fuzz


_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)


def normalize_key(value: Optional[str]) -> str:
    """Normalize a field for equality and similarity comparisons.

    Examples:
        >>> normalize_key("6ES7214-1AG40")
        '6es72141ag40'
        >>> normalize_key(None)
        ''
    """
    if not value:
        return ""
    return _NON_WORD.sub("", value.casefold())


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized edit similarity (0..1) of two raw field values.

    Either side empty after normalization scores 0.
    """
    s = normalize_key(a)
    t = normalize_key(b)
    if not s or not t:
        return 0.0
    return fuzz.ratio(s, t) / 100.0
