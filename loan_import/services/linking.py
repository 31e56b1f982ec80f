from __future__ import annotations

import logging
from dataclasses import dataclass

from ..db.repositories import CustomerStore, customer_lock_keys
from ..models.import_row import ImportRow

"""Batch linking: resolving the owning customer of a loan row.

Customers created earlier in the same batch are remembered by phone and NRC in
a CustomerKeyMap so later loan rows can attach to them without another store
round trip. Resolution order for a loan row:

1. the row's pre-resolved customer_id (action=link, reconciliation)
2. the row's borrower id column when it names an existing customer
3. a customer created earlier in this batch with the same phone / NRC
4. a stored customer with the same phone / NRC

When nothing resolves the executor may create the customer from the row (if
the import type permits) or persist the loan as an orphan.
"""

__all__ = [
    "CustomerKeyMap",
    "Resolution",
    "resolve_loan_customer",
]

logger = logging.getLogger(__name__)


class CustomerKeyMap:
    """phone / NRC -> customer id for customers created in the current batch."""

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}

    def register(self, phone: str | None, nrc: str | None, customer_id: str) -> None:
        for key in customer_lock_keys(phone, nrc):
            self._ids.setdefault(key, customer_id)

    def lookup(self, phone: str | None, nrc: str | None) -> str | None:
        for key in customer_lock_keys(phone, nrc):
            if key in self._ids:
                return self._ids[key]
        return None

    def __len__(self) -> int:
        return len(set(self._ids.values()))


@dataclass(frozen=True)
class Resolution:
    customer_id: str | None
    source: str  # "row" | "borrower_id" | "batch" | "store" | "none"

    @property
    def resolved(self) -> bool:
        return self.customer_id is not None


def resolve_loan_customer(row: ImportRow, key_map: CustomerKeyMap, customers: CustomerStore) -> Resolution:
    """Find the owning customer of a loan row without creating anything."""
    if row.customer_id:
        return Resolution(row.customer_id, "row")
    data = row.data
    if data.borrower_id and customers.get(data.borrower_id) is not None:
        return Resolution(data.borrower_id, "borrower_id")
    batch_hit = key_map.lookup(data.phone, data.nrc)
    if batch_hit:
        return Resolution(batch_hit, "batch")
    found = customers.find_duplicate(data.phone, data.nrc)
    if found is not None:
        field_name, customer = found
        logger.debug("row %d: loan linked to stored customer %s by %s", row.row_index, customer.id, field_name)
        return Resolution(customer.id, "store")
    return Resolution(None, "none")
