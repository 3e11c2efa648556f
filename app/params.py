"""
Query-string helpers shared by the route modules.
"""

from __future__ import annotations

from typing import Iterable, Optional


def split_delimited(value: Optional[str], sep: str = ",") -> list[str]:
    """Split a delimited query value, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(sep) if part.strip()]


def flatten_repeated(values: Optional[Iterable[str]], sep: str = ",") -> list[str]:
    """Accept both ``?tags=a&tags=b`` and ``?tags=a,b``."""
    result: list[str] = []
    for value in values or []:
        result.extend(split_delimited(value, sep))
    return result
