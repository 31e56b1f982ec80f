from __future__ import annotations

from dataclasses import dataclass

from .enums import MatchType

__all__ = [
    "MatchCandidate",
]


@dataclass(frozen=True)
class MatchCandidate:
    """Orphan matcher output for one orphan loan."""
    customer_id: str
    customer_name: str
    match_type: MatchType
    confidence: float  # [0, 1]
    reason: str
