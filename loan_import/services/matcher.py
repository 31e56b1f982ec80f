from __future__ import annotations

from collections.abc import Iterable

from ..models.entities import CustomerRecord
from ..models.enums import MatchType
from ..models.match_candidate import MatchCandidate
from .normalizer import normalize_nrc

"""Orphan matcher: find the likely owner of a loan stored without a customer.

Three ordered passes, first hit wins:

1. exact id      borrower id == customer id            confidence 1.0
2. national id   normalized NRC numbers equal           confidence 0.95
3. fuzzy name    best similarity >= threshold           confidence = score

Pure functions only; callers load the customer list.
"""

__all__ = [
    "DEFAULT_FUZZY_THRESHOLD",
    "find_matching_customer",
    "levenshtein_distance",
    "similarity",
]

DEFAULT_FUZZY_THRESHOLD = 0.9
NATIONAL_ID_CONFIDENCE = 0.95
CONTAINMENT_SCORE = 0.95


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance, single-row dynamic programming."""
    if len(a) < len(b):
        a, b = b, a
    costs = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        previous_diagonal = costs[0]
        costs[0] = i
        for j, cb in enumerate(b, start=1):
            current = costs[j]
            costs[j] = min(
                costs[j] + 1,
                costs[j - 1] + 1,
                previous_diagonal + (0 if ca == cb else 1),
            )
            previous_diagonal = current
    return costs[len(b)]


def _canonical_name(name: str | None) -> str:
    return " ".join(str(name or "").lower().split())


def similarity(a: str | None, b: str | None) -> float:
    """Name similarity in [0, 1] (case and whitespace insensitive).

    Examples:
        >>> similarity("Masheda Beleshi", "MASHEDA  beleshi")
        1.0
        >>> similarity("John Banda", "Banda")
        0.95
        >>> similarity("", "x")
        0.0
    """
    s1, s2 = _canonical_name(a), _canonical_name(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE
    longer = max(len(s1), len(s2))
    return (longer - levenshtein_distance(s1, s2)) / longer


def _nrc_key(nrc: str | None) -> str | None:
    if not nrc:
        return None
    return normalize_nrc(nrc) or str(nrc).strip().upper() or None


def find_matching_customer(
    borrower_id: str | None,
    borrower_name: str | None,
    national_id: str | None,
    customers: Iterable[CustomerRecord],
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> MatchCandidate | None:
    """Match one orphan loan against the customer set.

    Args:
        borrower_id: id recorded on the loan, if any
        borrower_name: borrower name recorded on the loan
        national_id: NRC recorded on the loan, if any
        customers: candidate customers in store order (ties keep the first seen)
        fuzzy_threshold: minimum similarity for the fuzzy pass

    Returns:
        MatchCandidate or None when no pass succeeds.
    """
    pool = list(customers)

    if borrower_id:
        for customer in pool:
            if customer.id == borrower_id:
                return MatchCandidate(
                    customer_id=customer.id,
                    customer_name=customer.full_name,
                    match_type=MatchType.EXACT,
                    confidence=1.0,
                    reason=f"Exact ID match: {borrower_id}",
                )

    wanted_nrc = _nrc_key(national_id)
    if wanted_nrc:
        for customer in pool:
            if customer.id and _nrc_key(customer.nrc) == wanted_nrc:
                return MatchCandidate(
                    customer_id=customer.id,
                    customer_name=customer.full_name,
                    match_type=MatchType.NATIONAL_ID,
                    confidence=NATIONAL_ID_CONFIDENCE,
                    reason=f"National ID match: {wanted_nrc}",
                )

    name = (borrower_name or "").strip()
    if not name:
        return None

    best: MatchCandidate | None = None
    best_score = 0.0
    for customer in pool:
        if not customer.id or not customer.full_name.strip():
            continue
        score = similarity(name, customer.full_name)
        # strict > keeps the first-seen candidate on ties
        if score > best_score and score >= fuzzy_threshold:
            best_score = score
            best = MatchCandidate(
                customer_id=customer.id,
                customer_name=customer.full_name,
                match_type=MatchType.FUZZY,
                confidence=score,
                reason=f'Fuzzy name match: "{name}" ~ "{customer.full_name}" ({score * 100:.0f}%)',
            )
    return best
