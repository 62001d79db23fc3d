"""
app/services/scoring.py — Lead relevance scoring rules.

Keyword zero-order score and pass threshold, plus the mapping from the
AI rank (S/A/B/C) to the stored priority (A/B/C).
"""

import logging

logger = logging.getLogger(__name__)

MUST_WEIGHT = 4
SHOULD_WEIGHT = 2
NOT_WEIGHT = 10

VALID_RANKS = ("S", "A", "B", "C")

_PRIORITY_BY_RANK = {"S": "A", "A": "A", "B": "B", "C": "C"}


def zero_order_score(must_count: int, should_count: int, not_count: int, meta: float = 0) -> float:
    """must*4 + should*2 - not*10 + meta"""
    return must_count * MUST_WEIGHT + should_count * SHOULD_WEIGHT - not_count * NOT_WEIGHT + meta


def passes_zero_order(must_count: int, should_count: int, score: float) -> bool:
    """
    Determine if a row survives keyword triage.

    Two independent routes to a pass:
      1. at least one must keyword and score >= 8
      2. at least three should keywords and score >= 7

    The thresholds are asymmetric: 8 for the must route, 7 for the should route.
    """
    must_route = must_count >= 1 and score >= 8
    should_route = should_count >= 3 and score >= 7

    if must_route or should_route:
        logger.debug(
            "Row passed — must=%d should=%d score=%s.", must_count, should_count, score,
        )
        return True
    return False


def rank_to_priority(rank: str) -> str:
    """
    Map an AI rank to a storage priority: S,A → A; B → B; C → C.

    Raises:
        ValueError: If rank is not one of S/A/B/C.
    """
    try:
        return _PRIORITY_BY_RANK[rank]
    except KeyError:
        raise ValueError(f"Unknown rank: {rank!r}") from None
