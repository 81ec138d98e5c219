from dataclasses import replace

import pytest

from credind.core.errors import StoreError
from credind.core.models import AddressRecord, Approval
from credind.storage.entity_store import DuckDBEntityStore
from credind.storage.schema import ADDRESS_RECORDS, APPROVALS, get_table

OWNER = "0x" + "aa" * 20
OPERATOR = "0x" + "bb" * 20


def _approval(approved: bool, block: int) -> Approval:
    return Approval(
        chain_id=1,
        owner=OWNER,
        operator=OPERATOR,
        approved=approved,
        set_block=block,
        set_timestamp=1_000 + block,
        set_tx_hash="0x01",
    )


def test_upsert_inserts_then_updates(store):
    key = (1, OWNER, OPERATOR)
    store.upsert(APPROVALS, key, _approval(True, 1), lambda r: r)
    updated = store.upsert(APPROVALS, key, _approval(False, 2), lambda r: replace(r, approved=False, set_block=2))

    assert updated.approved is False
    assert store.count(APPROVALS) == 1
    assert store.find(APPROVALS, key) == updated


def test_insert_ignore(store):
    assert store.insert_ignore(APPROVALS, _approval(True, 1)) is True
    assert store.insert_ignore(APPROVALS, _approval(False, 2)) is False
    assert store.find(APPROVALS, (1, OWNER, OPERATOR)).approved is True


def test_update_missing_returns_none(store):
    assert store.update(APPROVALS, (1, OWNER, OPERATOR), lambda r: r) is None
    assert store.count(APPROVALS) == 0


def test_update_cannot_change_key(store):
    store.insert_ignore(APPROVALS, _approval(True, 1))
    with pytest.raises(ValueError):
        store.update(APPROVALS, (1, OWNER, OPERATOR), lambda r: replace(r, operator=OWNER))
    assert store.find(APPROVALS, (1, OWNER, OPERATOR)) is not None


def test_insert_must_match_key(store):
    with pytest.raises(ValueError):
        store.upsert(APPROVALS, (2, OWNER, OPERATOR), _approval(True, 1), lambda r: r)


def test_scan_with_predicate(store):
    store.insert_ignore(APPROVALS, _approval(True, 1))
    store.insert_ignore(APPROVALS, replace(_approval(False, 1), operator=OWNER))
    assert len(store.scan(APPROVALS)) == 2
    assert [r.operator for r in store.scan(APPROVALS, lambda r: not r.approved)] == [OWNER]


def test_uint256_round_trip(store):
    coin_type = 2**255 + 7
    row = AddressRecord(
        chain_id=1,
        resolver_address=OWNER,
        coin_type=coin_type,
        address="0x1234",
        set_block=1,
        set_timestamp=1,
        set_tx_hash="0x01",
        last_update_block=1,
        last_update_timestamp=1,
        last_update_tx_hash="0x01",
    )
    store.insert_ignore(ADDRESS_RECORDS, row)
    assert store.find(ADDRESS_RECORDS, (1, OWNER, coin_type)).coin_type == coin_type


def test_unknown_table():
    with pytest.raises(ValueError):
        get_table("nope")


def test_persists_to_file(tmp_path):
    path = tmp_path / "db" / "credind.duckdb"
    s = DuckDBEntityStore(path)
    s.insert_ignore(APPROVALS, _approval(True, 1))
    s.close()

    ro = DuckDBEntityStore(path, read_only=True)
    try:
        assert ro.count(APPROVALS) == 1
    finally:
        ro.close()


def test_missing_read_only_file_raises_store_error(tmp_path):
    with pytest.raises(StoreError):
        DuckDBEntityStore(tmp_path / "missing.duckdb", read_only=True)
