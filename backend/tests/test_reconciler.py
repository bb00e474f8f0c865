"""Tests for the per-mode reconciliation decisions."""

import pytest

from inventory_import.services.import_models import CandidateRecord, ReconciliationMode
from inventory_import.services.reconciler import (
    SKU_REQUIRED_MESSAGE,
    DecisionAction,
    reconcile,
)


def record(**fields):
    return CandidateRecord(row_number=2, fields=fields)


def test_create_always_inserts_without_lookup(store):
    store.seed(sku="W1", name="Widget")

    decision = reconcile(record(sku="W1", name="Widget"), ReconciliationMode.CREATE, store)

    assert decision.action is DecisionAction.INSERT
    assert store.calls == []


def test_update_by_sku_requires_sku(store):
    decision = reconcile(record(name="Widget"), ReconciliationMode.UPDATE_BY_SKU, store)

    assert decision.action is DecisionAction.ERROR
    assert decision.message == SKU_REQUIRED_MESSAGE
    assert store.calls == []


def test_update_by_sku_missing_item_is_an_error(store):
    decision = reconcile(record(sku="W1"), ReconciliationMode.UPDATE_BY_SKU, store)

    assert decision.action is DecisionAction.ERROR
    assert decision.message == 'SKU "W1" not found for update'


def test_update_by_sku_ignores_name_matches(store):
    store.seed(sku="OTHER", name="Widget")

    decision = reconcile(record(sku="W1", name="Widget"), ReconciliationMode.UPDATE_BY_SKU, store)

    assert decision.action is DecisionAction.ERROR


def test_update_by_sku_updates_match(store):
    item_id = store.seed(sku="W1", name="Widget")

    decision = reconcile(record(sku="W1"), ReconciliationMode.UPDATE_BY_SKU, store)

    assert decision.action is DecisionAction.UPDATE
    assert decision.item_id == item_id


def test_upsert_prefers_sku_over_name(store):
    store.seed(sku="X", name="Widget")
    by_sku = store.seed(sku="W1", name="Something else")

    decision = reconcile(record(sku="W1", name="Widget"), ReconciliationMode.UPSERT, store)

    assert decision.action is DecisionAction.UPDATE
    assert decision.item_id == by_sku


def test_upsert_falls_back_to_name(store):
    by_name = store.seed(sku=None, name="Gadget")

    decision = reconcile(record(name="Gadget"), ReconciliationMode.UPSERT, store)

    assert decision.item_id == by_name


def test_upsert_inserts_when_nothing_matches(store):
    store.seed(sku="W1", name="Widget")

    decision = reconcile(record(sku="G1", name="Gadget"), ReconciliationMode.UPSERT, store)

    assert decision.action is DecisionAction.INSERT
    assert len(store.calls) == 1


def test_lookup_failures_propagate(store):
    def broken_lookup(sku=None, name=None):
        raise RuntimeError("connection reset")

    store.lookup = broken_lookup

    with pytest.raises(RuntimeError):
        reconcile(record(sku="W1"), ReconciliationMode.UPSERT, store)


def test_unknown_mode_is_rejected(store):
    with pytest.raises(ValueError):
        reconcile(record(sku="W1"), "merge", store)
