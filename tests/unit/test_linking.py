from __future__ import annotations

from loan_import.models.import_row import ImportPayload, ImportRow
from loan_import.services.linking import CustomerKeyMap, resolve_loan_customer


def test_key_map_registers_phone_and_nrc():
    key_map = CustomerKeyMap()
    key_map.register("+260976543210", "234567/11/1", "c1")
    assert key_map.lookup("+260976543210", None) == "c1"
    assert key_map.lookup(None, "234567/11/1") == "c1"
    assert key_map.lookup("+260900000000", None) is None
    assert len(key_map) == 1


def test_key_map_keeps_first_registration():
    key_map = CustomerKeyMap()
    key_map.register("+260976543210", None, "c1")
    key_map.register("+260976543210", None, "c2")
    assert key_map.lookup("+260976543210", None) == "c1"


def test_phone_and_nrc_keys_do_not_collide():
    key_map = CustomerKeyMap()
    key_map.register(None, "12345678", "c1")
    assert key_map.lookup("12345678", None) is None


def test_resolution_order(customers, existing_customer):
    key_map = CustomerKeyMap()
    key_map.register("+260976543210", None, "batch-1")

    preset = ImportRow(0, ImportPayload(phone="+260976543210"), customer_id="given")
    assert resolve_loan_customer(preset, key_map, customers).source == "row"

    by_id = ImportRow(1, ImportPayload(borrower_id=existing_customer.id, phone="+260976543210"))
    resolution = resolve_loan_customer(by_id, key_map, customers)
    assert (resolution.customer_id, resolution.source) == (existing_customer.id, "borrower_id")

    by_batch = ImportRow(2, ImportPayload(borrower_id="unknown", phone="+260976543210"))
    assert resolve_loan_customer(by_batch, key_map, customers).customer_id == "batch-1"

    by_store = ImportRow(3, ImportPayload(nrc="123456/10/1"))
    resolution = resolve_loan_customer(by_store, key_map, customers)
    assert (resolution.customer_id, resolution.source) == (existing_customer.id, "store")

    nothing = ImportRow(4, ImportPayload(full_name="Peter Mwale"))
    resolution = resolve_loan_customer(nothing, key_map, customers)
    assert resolution.resolved is False
    assert resolution.source == "none"
