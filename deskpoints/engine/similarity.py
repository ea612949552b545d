"""
deskpoints.engine.similarity — Subject similarity for duplicate detection
==========================================================================

Normalized Levenshtein similarity.  Both inputs are lower-cased and
stripped; the score is ``(len(longer) - distance) / len(longer)`` so two
empty strings are identical (1.0) and disjoint strings approach 0.0.

Pure calculation, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

__all__ = ["levenshtein", "similarity", "find_similar"]


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    # Two-row DP over the shorter string
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,        # deletion
                current[j - 1] + 1,     # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return a similarity ratio in ``[0, 1]`` for two subject lines."""
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    longer, shorter = (s1, s2) if len(s1) >= len(s2) else (s2, s1)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein(longer, shorter)) / len(longer)


def find_similar(
    subject: str,
    candidates: Iterable[tuple[int, str]],
    threshold: float = 0.80,
) -> tuple[int, str, float] | None:
    """Return the first ``(ticket_id, subject, score)`` at or above *threshold*."""
    for ticket_id, other in candidates:
        score = similarity(subject, other)
        if score >= threshold:
            return ticket_id, other, score
    return None
