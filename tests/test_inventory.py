from datetime import datetime, timedelta, timezone

import pytest

from giftcodes.db import Base
from giftcodes.errors import (
    DuplicateCode,
    InvalidDenomination,
    InvalidFormat,
    InvalidMetadata,
    InvalidTransition,
    NotFound,
    NotFoundOrUnchanged,
    PersistenceError,
)
from giftcodes.models import CodeStatus
from tests.helpers import make_code, past, seed


# ---------- add_code ----------

def test_add_code_stores_encrypted_available_record(inventory, keyring):
    expires_at = datetime.now(timezone.utc) + timedelta(days=10)

    record = inventory.add_code("AMAZON-GIFT-CODE-ABC123", 2500, expires_at, {"source": "bulk-purchase"})

    assert record.id > 0
    assert record.status == CodeStatus.AVAILABLE
    assert record.plaintext_code == "AMAZON-GIFT-CODE-ABC123"
    assert record.code_masked == "AMAZON-GIFT-CODE-****23"
    assert record.encryption_key_ref == keyring.active_ref
    assert "ABC123" not in record.encrypted_payload
    assert record.metadata == {"source": "bulk-purchase"}
    assert abs((record.expires_at - expires_at).total_seconds()) < 1

    stored = inventory.get_code(record.id)
    assert stored.plaintext_code is None
    assert stored.encrypted_payload == record.encrypted_payload
    assert stored.created_at.tzinfo is not None


def test_add_code_default_expiry(inventory):
    record = inventory.add_code(make_code(1), 500)
    assert record.expires_at - record.created_at == timedelta(days=365)


def test_add_code_ids_are_unique_and_increasing(inventory):
    a, b = seed(inventory, [500, 500])
    assert b.id > a.id


@pytest.mark.parametrize("code", ["INVALID-CODE", "AMAZON-GIFT-CODE-abc123", "", None])
def test_add_code_rejects_bad_format(inventory, code):
    with pytest.raises(InvalidFormat):
        inventory.add_code(code, 2500)
    assert inventory.get_stats().total == 0


@pytest.mark.parametrize("denomination", [0, -1, 10.5, "2500", True])
def test_add_code_rejects_bad_denomination(inventory, denomination):
    with pytest.raises(InvalidDenomination):
        inventory.add_code(make_code(1), denomination)


@pytest.mark.parametrize("metadata", [{"bought": datetime.now(timezone.utc)}, {"ids": {1, 2}}, ["source", "admin"]])
def test_add_code_rejects_metadata_that_is_not_json(inventory, metadata):
    with pytest.raises(InvalidMetadata):
        inventory.add_code(make_code(1), 2500, metadata=metadata)
    assert inventory.get_stats().total == 0


def test_add_code_rejects_duplicates(inventory):
    inventory.add_code(make_code(1), 2500)

    with pytest.raises(DuplicateCode):
        inventory.add_code(make_code(1), 1000)
    assert inventory.get_stats().total == 1


def test_duplicate_racing_past_lookup_hits_unique_constraint(inventory, store, monkeypatch):
    inventory.add_code(make_code(1), 2500)
    real_exists = store.exists_fingerprint
    calls = []

    def stale_lookup(fp):
        calls.append(fp)
        # first lookup misses, as if the other insert had not committed yet
        return False if len(calls) == 1 else real_exists(fp)

    monkeypatch.setattr(store, "exists_fingerprint", stale_lookup)

    with pytest.raises(DuplicateCode):
        inventory.add_code(make_code(1), 2500)
    assert len(calls) == 2


def test_store_failure_is_wrapped(inventory, store, session_factory, monkeypatch):
    db = session_factory()
    try:
        Base.metadata.drop_all(bind=db.get_bind())
    finally:
        db.close()
    monkeypatch.setattr(store, "exists_fingerprint", lambda fp: False)

    with pytest.raises(PersistenceError) as exc:
        inventory.add_code(make_code(1), 2500)
    assert exc.value.operation == "add gift code"
    assert "Failed to add gift code" in str(exc.value)
    assert "no such table" in str(exc.value)


# ---------- add_codes ----------

def test_add_codes_collects_per_code_errors(inventory):
    inventory.add_code(make_code(2), 1000)

    result = inventory.add_codes([make_code(1), make_code(2), "BAD", make_code(3)], 1000)

    assert [r.plaintext_code for r in result.added] == [make_code(1), make_code(3)]
    assert [e.reason_code for e in result.errors] == ["DUPLICATE_CODE", "INVALID_FORMAT"]
    assert result.errors[0].code_masked == "AMAZON-GIFT-CODE-****02"
    assert result.errors[1].code_masked is None


# ---------- reads ----------

def test_get_code_missing(inventory):
    with pytest.raises(NotFound):
        inventory.get_code(404)


def test_list_codes_newest_first_and_by_status(inventory):
    codes = seed(inventory, [500, 1000, 2500])
    inventory.allocate(2500)

    assert [r.id for r in inventory.list_codes()] == [c.id for c in reversed(codes)]
    assert [r.id for r in inventory.list_codes(CodeStatus.ALLOCATED)] == [codes[2].id]
    assert len(inventory.list_codes(limit=2)) == 2


# ---------- set_status ----------

def test_set_status_is_unconditional(inventory):
    (code,) = seed(inventory, [500])

    assert inventory.set_status(code.id, "REDEEMED") is True
    assert inventory.set_status(code.id, CodeStatus.AVAILABLE) is True
    assert inventory.get_code(code.id).status == CodeStatus.AVAILABLE


def test_set_status_unknown_id(inventory):
    with pytest.raises(NotFoundOrUnchanged):
        inventory.set_status(999, CodeStatus.ALLOCATED)


def test_set_status_unknown_value(inventory):
    (code,) = seed(inventory, [500])
    with pytest.raises(InvalidTransition):
        inventory.set_status(code.id, "CANCELLED")


# ---------- sweep ----------

def test_sweep_expires_stale_available_and_allocated_only(inventory):
    stale_available = inventory.add_code(make_code(1), 500, expires_at=past())
    stale_allocated = inventory.add_code(make_code(2), 500, expires_at=past())
    stale_redeemed = inventory.add_code(make_code(3), 500, expires_at=past())
    (fresh,) = seed(inventory, [500], start=4)
    inventory.set_status(stale_allocated.id, CodeStatus.ALLOCATED)
    inventory.set_status(stale_redeemed.id, CodeStatus.REDEEMED)

    assert inventory.sweep_expired() == 2

    assert inventory.get_code(stale_available.id).status == CodeStatus.EXPIRED
    assert inventory.get_code(stale_allocated.id).status == CodeStatus.EXPIRED
    assert inventory.get_code(stale_redeemed.id).status == CodeStatus.REDEEMED
    assert inventory.get_code(fresh.id).status == CodeStatus.AVAILABLE


def test_sweep_is_idempotent(inventory):
    inventory.add_code(make_code(1), 500, expires_at=past())

    assert inventory.sweep_expired() == 1
    assert inventory.sweep_expired() == 0


def test_sweep_on_empty_inventory(inventory):
    assert inventory.sweep_expired() == 0


# ---------- stats ----------

def test_stats_for_mixed_fixture(inventory):
    available = seed(inventory, [2500, 1000, 500])
    allocated, redeemed = seed(inventory, [2500, 1000], start=10)
    inventory.add_code(make_code(20), 500, expires_at=past())

    inventory.set_status(allocated.id, CodeStatus.ALLOCATED)
    inventory.set_status(redeemed.id, CodeStatus.ALLOCATED)
    inventory.redeem(redeemed.id, "order-1")
    inventory.sweep_expired()

    stats = inventory.get_stats()

    assert len(available) == stats.available == 3
    assert stats.total == 6
    assert stats.allocated == 1
    assert stats.redeemed == 1
    assert stats.expired == 1
    assert stats.total_value == 8000
    assert stats.available_value == 4000
    assert stats.denominations == {2500: 2, 1000: 2, 500: 2}
    assert stats.available_denominations == {2500: 1, 1000: 1, 500: 1}


def test_stats_for_empty_inventory(inventory):
    stats = inventory.get_stats()

    assert stats.total == 0
    assert stats.total_value == 0
    assert stats.available_value == 0
    assert stats.denominations == {}
