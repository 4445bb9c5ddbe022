"""Name normalization and the fuzzy matching policy used by deduplication."""

from __future__ import annotations

import re
from typing import Callable

NameMatcher = Callable[[str, str], bool]

# Largest Levenshtein distance still treated as the same name.
MAX_EDIT_DISTANCE = 1
# Compacted names shorter than this must match exactly.
MIN_FUZZY_LENGTH = 8
# Containment needs at least this many tokens on the shorter side.
MIN_CONTAINED_TOKENS = 2

_BRACKETS = re.compile(r"[\[\(\{]([^\]\)\}]*)[\]\)\}]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_DIGITS = re.compile(r"\d+")


def normalize_name(name: str | None) -> str:
    """Lower-case, unwrap bracketed qualifiers and collapse punctuation to single spaces."""

    if not name:
        return ""
    text = _BRACKETS.sub(r" \1 ", name.lower())
    return _NON_ALNUM.sub(" ", text).strip()


def edit_distance(left: str, right: str, limit: int | None = None) -> int:
    """Levenshtein distance; stops early once every path exceeds ``limit``."""

    if left == right:
        return 0
    if len(left) < len(right):
        left, right = right, left
    if limit is not None and len(left) - len(right) > limit:
        return limit + 1
    previous = list(range(len(right) + 1))
    for i, lchar in enumerate(left, start=1):
        current = [i]
        for j, rchar in enumerate(right, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (lchar != rchar),
                )
            )
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


def _contains_run(haystack: list[str], needle: list[str]) -> bool:
    width = len(needle)
    return any(haystack[i : i + width] == needle for i in range(len(haystack) - width + 1))


def names_match(left: str, right: str) -> bool:
    """Default matcher over already-normalized names.

    Names match when they are equal, equal once spaces are removed, when the
    shorter token run appears verbatim inside the longer one, or when their
    compact forms are within :data:`MAX_EDIT_DISTANCE`.  The numeric tokens
    must agree in every case except plain equality, so ``gpt 4`` never
    collapses into ``gpt 4 1``.
    """

    if not left or not right:
        return False
    if left == right:
        return True
    if _DIGITS.findall(left) != _DIGITS.findall(right):
        return False
    compact_left, compact_right = left.replace(" ", ""), right.replace(" ", "")
    if compact_left == compact_right:
        return True
    left_tokens, right_tokens = left.split(), right.split()
    shorter, longer = sorted((left_tokens, right_tokens), key=len)
    if len(shorter) >= MIN_CONTAINED_TOKENS and _contains_run(longer, shorter):
        return True
    if min(len(compact_left), len(compact_right)) < MIN_FUZZY_LENGTH:
        return False
    return edit_distance(compact_left, compact_right, MAX_EDIT_DISTANCE) <= MAX_EDIT_DISTANCE


def providers_compatible(left: str | None, right: str | None) -> bool:
    """Equal, one side unknown, or one name containing the other."""

    a, b = normalize_name(left), normalize_name(right)
    if not a or not b:
        return True
    return a == b or a in b or b in a


__all__ = [
    "MAX_EDIT_DISTANCE",
    "MIN_CONTAINED_TOKENS",
    "MIN_FUZZY_LENGTH",
    "NameMatcher",
    "edit_distance",
    "names_match",
    "normalize_name",
    "providers_compatible",
]
