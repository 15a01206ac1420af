from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from matchmaker.core.errors import InvalidInputError

_MARKUP_CHARS = re.compile(r"[<>]")


@dataclass(frozen=True)
class InterestRules:
    max_interests: int = 32
    max_interest_length: int = 64


def normalize_interest(raw: str, *, max_length: int = 64) -> str:
    """
    Lower-case, trim, drop markup characters and cap the length.
    Returns "" for entries that carry nothing once cleaned.
    """
    s = _MARKUP_CHARS.sub("", str(raw)).strip().lower()
    return s[:max_length].strip()


def normalize_interests(raw: Iterable[str] | None, rules: InterestRules | None = None) -> frozenset[str]:
    """
    Normalized, deduplicated interest set. Empty entries are dropped.

    Raises InvalidInputError when `raw` is not a collection of strings or holds
    more distinct interests than the rules allow.
    """
    rules = rules or InterestRules()
    if raw is None:
        return frozenset()
    if isinstance(raw, str | bytes):
        raise InvalidInputError("interests must be a collection of strings, not a single string")

    out: set[str] = set()
    for item in raw:
        if not isinstance(item, str):
            raise InvalidInputError(f"interest must be a string, got {type(item).__name__}")
        s = normalize_interest(item, max_length=rules.max_interest_length)
        if s:
            out.add(s)

    if len(out) > rules.max_interests:
        raise InvalidInputError(
            f"too many interests: {len(out)} (max {rules.max_interests})"
        )
    return frozenset(out)


def score(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    """
    Jaccard similarity |a & b| / |a | b| in [0, 1].

    Empty on either side scores 0. Inputs are expected to be normalized
    already (the registry does this on insert).
    """
    if not a or not b:
        return 0.0
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def session_interests(a: frozenset[str], b: frozenset[str], *, mode: str = "intersection") -> tuple[str, ...]:
    """Interests carried on a ChatSession: shared ground by default, or everything."""
    mode = (mode or "intersection").strip().lower()
    if mode == "intersection":
        return tuple(sorted(a & b))
    if mode == "union":
        return tuple(sorted(a | b))
    raise ValueError(f"Unsupported session interests mode={mode!r}")
