"""Part number direction utilities.

Bidirectional-text extraction from right-to-left documents can reorder the
letter and digit groups of a part number ("2240.KD.00" comes out as
".00KD2240."). This module offers:

1. reverse_part_number: operator-triggered repair, its own inverse
2. detect_potential_rtl_issue: heuristics that flag suspicious part numbers

Nothing here corrects a part number automatically; heuristic correction
damaged part numbers that were already right.

Examples:
    >>> reverse_part_number("2240.KD.00")
    '.00KD2240.'
    >>> reverse_part_number(".00KD2240.")
    '2240.KD.00'
    >>> reverse_part_number("SI 25VSBM")
    'VSBM25 SI'
"""

import re
from typing import List, Optional


_ASCII_LETTER = re.compile(r"[A-Za-z]")
_RUNS = re.compile(r"[A-Za-z]+|[^A-Za-z]+")
_WHITESPACE_SPLIT = re.compile(r"(\s+)")

# Color words that usually end a cable or wire part number
COLOR_SUFFIXES = [
    "BLACK", "BLUE", "RED", "WHITE", "YELLOW", "GREEN", "ORANGE", "BROWN",
    "GRAY", "GREY",
    "BK", "BL", "RD", "WH", "YE", "GN", "OR", "BR", "GY",
]


def _split_runs(word: str) -> List[str]:
    """Split into maximal all-letter / all-non-letter runs."""
    return _RUNS.findall(word)


def reverse_part_number(part_number: str) -> str:
    """Reverse the order of letter and non-letter runs in a part number.

    Whitespace-separated words are reversed in order first (separators are
    kept as they are), then the runs inside each word are reversed. Characters
    within a run keep their order. A string with no ASCII letters carries no
    direction information and is returned unchanged.

    Applying the function twice returns the original string.
    """
    if not part_number or not _ASCII_LETTER.search(part_number):
        return part_number

    tokens = _WHITESPACE_SPLIT.split(part_number)
    tokens.reverse()

    fixed = []
    for token in tokens:
        if not token or token.isspace():
            fixed.append(token)
            continue
        runs = _split_runs(token)
        runs.reverse()
        fixed.append("".join(runs))

    return "".join(fixed)


def detect_potential_rtl_issue(part_number: Optional[str]) -> Optional[str]:
    """Return a reason string when a part number looks direction-damaged.

    Returns None for short or unremarkable part numbers. Only flags; the
    operator decides whether to apply reverse_part_number.
    """
    if not part_number or len(part_number) < 3:
        return None

    pn_original = part_number.strip()
    pn = pn_original.upper()

    # Color word at start, usually at end
    for color in COLOR_SUFFIXES:
        if pn.startswith(color) and len(pn) > len(color):
            if pn[len(color)].isdigit():
                return f'Color "{color}" at start - usually appears at end'

    # Short code before a digits-then-letters model ("SI 25VSBM")
    parts = pn_original.split()
    if len(parts) == 2:
        first, second = parts
        if len(first) <= 3 and len(second) > len(first):
            if re.fullmatch(r"\d+[A-Za-z]+", second):
                return f'Short code "{first}" before model "{second}" - likely reversed'

    if re.match(r"\d/\d", pn_original):
        return "Starts with fraction - usually comes after model number"

    fraction_then_number = re.fullmatch(r"[\d/\s-]+\s+(\d{3,})", pn_original)
    if fraction_then_number:
        return f'Model "{fraction_then_number.group(1)}" at end - should likely be at start'

    if re.fullmatch(r"\d{2,4}[A-Za-z]{2,5}", pn_original):
        return "Numbers before letters - might be reversed"

    letters_first = re.fullmatch(r"([A-Za-z]{1,4})(\d[\d.]+)", pn_original)
    if letters_first:
        return (
            f'Starts with "{letters_first.group(1)}" - letter group may have moved '
            "from end due to RTL rendering"
        )

    return None
