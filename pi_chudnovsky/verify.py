"""
Comparison of computed digits against a reference prefix.

Fetching the reference (network, file, ...) is the caller's business; these
helpers only compare strings. Both sides are compared as bare digit strings:
whitespace and the decimal point are dropped, so "3.1415" and "31415" agree.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


def _strip_whitespace(s: str) -> str:
    return "".join(s.split())


def normalize_digits(s: str) -> str:
    """Digits only: no whitespace, first decimal point removed."""
    return _strip_whitespace(s).replace(".", "", 1)


def first_mismatch(digits: str, reference: str) -> Optional[int]:
    """
    Index (into the normalized digit strings) of the first differing digit
    over the common prefix, or None if the shorter string is a prefix of the
    longer one.
    """
    a, b = normalize_digits(digits), normalize_digits(reference)
    for i, (x, y) in enumerate(zip(a, b)):
        if x != y:
            return i
    return None


def verify_prefix(digits: str, reference: str) -> bool:
    """True when both are non-empty and agree over their common length."""
    if not normalize_digits(digits) or not normalize_digits(reference):
        return False
    return first_mismatch(digits, reference) is None


def load_reference(path: Union[str, Path]) -> str:
    """Read a reference digit string from a text file, whitespace removed."""
    return _strip_whitespace(Path(path).read_text(encoding="utf-8"))
