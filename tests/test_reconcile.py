from dataclasses import asdict

import pytest

from conftest import (
    CHAIN_ID,
    FACTORY,
    OWNER_A,
    OWNER_C,
    REGISTRAR,
    REGISTRY,
    RESOLVER_B,
    STRANGER,
    FakeReader,
    event,
    labelhash_of,
)
from credind.core.keys import text_hash
from credind.core.use_cases.reconcile import ReconciliationEngine
from credind.storage.entity_store import DuckDBEntityStore
from credind.storage.schema import (
    ADDRESS_RECORDS,
    ADMISSIONS,
    APPROVALS,
    CONTRACT_METADATA,
    CREDENTIAL_TRANSFERS,
    CREDENTIALS,
    RENEWALS,
    RESOLVER_TRANSFERS,
    RESOLVERS,
    TABLES,
    TEXT_RECORDS,
)

H1 = labelhash_of("alice")
H2 = labelhash_of("bob")
RESOLVER_D = "0x" + "dd" * 20
OPERATOR = "0x" + "0f" * 20


def dump(store) -> dict[str, list]:
    return {name: sorted((asdict(r) for r in store.scan(name)), key=repr) for name in TABLES}


def claim(labelhash=H1, owner=OWNER_A, **p):
    payload = {"owner": owner, **p.pop("payload", {})}
    return event("label-claimed", (CHAIN_ID, labelhash), payload, **p)


def clone(address=RESOLVER_B, owner=OWNER_A, **p):
    return event("clone-deployed", (CHAIN_ID, address), {"owner": owner}, contract=FACTORY, **p)


def point(labelhash, address, **p):
    return event("resolver-changed", (CHAIN_ID, labelhash), {"resolver_address": address}, **p)


def text(address, key, value, **p):
    return event(
        "text-changed",
        (CHAIN_ID, address, key),
        {"value": value, "key_hash": text_hash(key)},
        contract=address,
        **p,
    )


@pytest.fixture
def engine(chain, store, reader) -> ReconciliationEngine:
    reader.set_label("alice")
    reader.set_label("bob")
    return ReconciliationEngine(chain, store, reader)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_label_claim_without_resolver(engine, store):
    assert await engine.apply(claim())

    cred = store.find(CREDENTIALS, (CHAIN_ID, H1))
    assert cred.owner == OWNER_A
    assert cred.resolver_address is None
    assert cred.expiration == 0
    assert cred.is_expired is False
    assert cred.chain_name == "sepolia"


@pytest.mark.asyncio
async def test_clone_then_pointer_sets_backlink(engine, store):
    await engine.apply(claim(block=90))
    await engine.apply(clone(block=100))

    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B))
    assert resolver.labelhash is None
    assert resolver.admitted_by == "factory"

    await engine.apply(point(H1, RESOLVER_B, block=101))

    assert store.find(CREDENTIALS, (CHAIN_ID, H1)).resolver_address == RESOLVER_B
    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B))
    assert resolver.labelhash == H1
    assert resolver.label == "alice"


@pytest.mark.asyncio
async def test_redelivered_text_change_is_a_no_op(engine, store):
    await engine.apply(clone(block=50))
    await engine.apply(text(RESOLVER_B, "avatar", "v1", block=100, log_index=2))
    before = dump(store)
    await engine.apply(text(RESOLVER_B, "avatar", "v1", block=100, log_index=2))

    assert dump(store) == before
    (row,) = store.scan(TEXT_RECORDS)
    assert row.value == "v1"


@pytest.mark.asyncio
async def test_expiry_follows_event_time(engine, store):
    await engine.apply(claim(payload={"expiration": 1_700_000_000}, timestamp=1_600_000_000))
    assert store.find(CREDENTIALS, (CHAIN_ID, H1)).is_expired is False

    await engine.apply(event("review-updated", (CHAIN_ID, H1), {"review": "ok"}, block=101, timestamp=1_700_000_001))
    assert store.find(CREDENTIALS, (CHAIN_ID, H1)).is_expired is True

    await engine.apply(
        event("expiration-extended", (CHAIN_ID, H1), {"expiration": 1_800_000_000}, block=102, timestamp=1_700_000_002)
    )
    cred = store.find(CREDENTIALS, (CHAIN_ID, H1))
    assert cred.expiration == 1_800_000_000
    assert cred.is_expired is False


@pytest.mark.asyncio
async def test_approval_toggle_keeps_one_row(engine, store):
    key = (CHAIN_ID, OWNER_A, OPERATOR)
    await engine.apply(event("approval-for-all", key, {"approved": True}, block=100))
    await engine.apply(event("approval-for-all", key, {"approved": False}, block=101))

    (row,) = store.scan(APPROVALS)
    assert row.approved is False
    assert row.set_block == 101


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def full_history() -> list:
    return [
        claim(payload={"label": "alice", "full_name": "alice.ecs.eth", "expiration": 1_800_000_000}, block=10),
        event("credential-transferred", (CHAIN_ID, H1), {"owner": OWNER_C}, block=11),
        clone(block=12),
        point(H1, RESOLVER_B, block=13),
        event("review-updated", (CHAIN_ID, H1), {"review": "great"}, block=14),
        event("expiration-extended", (CHAIN_ID, H1), {"expiration": 1_900_000_000}, block=15),
        event("expiration-set", (CHAIN_ID, H1), {"expiration": 1_950_000_000}, block=15, log_index=1),
        event("approval-for-all", (CHAIN_ID, OWNER_C, OPERATOR), {"approved": True}, block=16),
        event(
            "name-registered",
            (CHAIN_ID, H1),
            {"label_topic": H1, "owner": OWNER_C, "cost": 10**16, "expires": 1_800_000_000},
            contract=REGISTRAR,
            block=17,
        ),
        event(
            "name-renewed",
            (CHAIN_ID, H1, 18, 0),
            {"label_topic": H1, "labelhash": H1, "label": "alice", "cost": 5, "new_expiration": 2_000_000_000},
            contract=REGISTRAR,
            block=18,
        ),
        event("eth-address-changed", (CHAIN_ID, RESOLVER_B), {"eth_address": OWNER_C}, contract=RESOLVER_B, block=19),
        event(
            "address-changed",
            (CHAIN_ID, RESOLVER_B),
            {"coin_type": 0, "address": "0x0014abcd"},
            contract=RESOLVER_B,
            block=20,
        ),
        event("content-hash-changed", (CHAIN_ID, RESOLVER_B), {"contenthash": "0xe301"}, contract=RESOLVER_B, block=21),
        text(RESOLVER_B, "url", "https://alice.xyz", block=22),
        event(
            "contract-metadata-updated",
            (CHAIN_ID, RESOLVER_B, "logo"),
            {"value": "0x68656c6c6f"},
            contract=RESOLVER_B,
            block=23,
        ),
        event(
            "resolver-ownership-transferred",
            (CHAIN_ID, RESOLVER_B),
            {"previous_owner": OWNER_A, "new_owner": OWNER_C},
            contract=RESOLVER_B,
            block=24,
        ),
    ]


@pytest.mark.asyncio
async def test_every_event_is_idempotent(chain, engine, store):
    for ev in full_history():
        await engine.apply(ev)

    twice = DuckDBEntityStore()
    reader = FakeReader()
    reader.set_label("alice")
    other = ReconciliationEngine(chain, twice, reader)
    try:
        for ev in full_history():
            await other.apply(ev)
            await other.apply(ev)
        assert dump(twice) == dump(store)
    finally:
        twice.close()

    assert store.count(CREDENTIAL_TRANSFERS) == 1
    assert store.count(RENEWALS) == 1
    assert store.count(RESOLVER_TRANSFERS) == 1


@pytest.mark.asyncio
async def test_full_history_state(engine, store):
    for ev in full_history():
        assert await engine.apply(ev)

    cred = store.find(CREDENTIALS, (CHAIN_ID, H1))
    assert cred.owner == OWNER_C
    assert cred.review == "great"
    assert cred.expiration == 1_950_000_000
    assert cred.registration_cost == 10**16
    assert cred.resolver_address == RESOLVER_B

    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B))
    assert resolver.owner == OWNER_C
    assert resolver.eth_address == OWNER_C
    assert resolver.contenthash == "0xe301"
    assert resolver.labelhash == H1

    coins = {r.coin_type: r.address for r in store.scan(ADDRESS_RECORDS)}
    assert coins == {60: OWNER_C, 0: "0x0014abcd"}
    assert store.find(CONTRACT_METADATA, (CHAIN_ID, RESOLVER_B, "logo")).value == "0x68656c6c6f"


@pytest.mark.asyncio
async def test_partial_update_preserves_other_fields(engine, store):
    await engine.apply(claim(payload={"label": "alice", "expiration": 1_800_000_000, "resolver_address": RESOLVER_B}))
    before = store.find(CREDENTIALS, (CHAIN_ID, H1))

    await engine.apply(event("review-updated", (CHAIN_ID, H1), {"review": "fine"}, block=200, timestamp=1_700_000_100))
    after = store.find(CREDENTIALS, (CHAIN_ID, H1))

    changed = {k for k, v in asdict(after).items() if asdict(before)[k] != v}
    assert changed == {"review", "last_update_block", "last_update_timestamp", "last_update_tx_hash"}


@pytest.mark.asyncio
async def test_unrelated_keys_commute(chain, engine, store):
    a = [claim(H1, block=10), event("credential-transferred", (CHAIN_ID, H1), {"owner": OWNER_C}, block=12)]
    b = [claim(H2, block=11), event("review-updated", (CHAIN_ID, H2), {"review": "r"}, block=13)]

    for ev in [*a, *b]:
        await engine.apply(ev)

    other_store = DuckDBEntityStore()
    other = ReconciliationEngine(chain, other_store, FakeReader())
    try:
        for ev in [*b, *a]:
            await other.apply(ev)
        assert dump(other_store) == dump(store)
    finally:
        other_store.close()


@pytest.mark.asyncio
async def test_unadmitted_resolver_events_are_discarded(engine, store):
    assert await engine.apply(text(STRANGER, "avatar", "spam")) is False
    assert await engine.apply(
        event("eth-address-changed", (CHAIN_ID, STRANGER), {"eth_address": OWNER_A}, contract=STRANGER)
    ) is False
    assert all(store.count(name) == 0 for name in TABLES)


@pytest.mark.asyncio
async def test_mixed_case_admission_lookup(engine, store):
    await engine.apply(clone())
    assert engine.admission.is_admitted(CHAIN_ID, RESOLVER_B.upper().replace("0X", "0x"))


@pytest.mark.asyncio
async def test_wrong_chain_is_rejected(engine):
    ev = event("label-claimed", (1, H1), {"owner": OWNER_A})
    with pytest.raises(ValueError):
        await engine.apply(ev)


# ---------------------------------------------------------------------------
# Missing entities and hash-only keys
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_for_unknown_credential_creates_nothing(engine, store):
    assert await engine.apply(event("review-updated", (CHAIN_ID, H2), {"review": "x"})) is False
    assert store.count(CREDENTIALS) == 0


@pytest.mark.asyncio
async def test_unresolved_registration_is_skipped(engine, store):
    ghost = labelhash_of("ghost")
    ev = event(
        "name-registered",
        (CHAIN_ID, ghost),
        {"label_topic": ghost, "owner": OWNER_A, "cost": 1, "expires": 2},
        contract=REGISTRAR,
        key_resolved=False,
    )
    assert await engine.apply(ev) is False
    assert store.count(CREDENTIALS) == 0


@pytest.mark.asyncio
async def test_unmatched_renewal_is_kept_unattributed(engine, store):
    ghost = labelhash_of("ghost")
    ev = event(
        "name-renewed",
        (CHAIN_ID, ghost, 100, 0),
        {"label_topic": ghost, "cost": 1, "new_expiration": 2},
        contract=REGISTRAR,
        key_resolved=False,
    )
    assert await engine.apply(ev)
    (row,) = store.scan(RENEWALS)
    assert row.labelhash is None
    assert row.label_resolved is False


# ---------------------------------------------------------------------------
# Resolver admission through the registry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_registry_pointer_admits_custom_resolver(engine, store, reader):
    await engine.apply(claim(block=10))
    await engine.apply(point(H1, RESOLVER_D, block=11))

    assert store.find(RESOLVERS, (CHAIN_ID, RESOLVER_D)) is None
    entry = store.find(ADMISSIONS, (CHAIN_ID, RESOLVER_D))
    assert (entry.source, entry.labelhash) == ("registry", H1)

    assert await engine.apply(text(RESOLVER_D, "url", "https://d", block=12))

    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_D))
    assert resolver.admitted_by == "registry"
    assert resolver.owner == OWNER_A  # owner() unreadable, falls back to the credential owner
    assert resolver.labelhash == H1
    assert resolver.deployed_block == 12


@pytest.mark.asyncio
async def test_registry_admitted_resolver_owner_from_read(engine, store, reader):
    reader.set(RESOLVER_D, "owner()", (), OWNER_C)
    await engine.apply(claim(block=10))
    await engine.apply(point(H1, RESOLVER_D, block=11))
    await engine.apply(
        event("content-hash-changed", (CHAIN_ID, RESOLVER_D), {"contenthash": "0x01"}, contract=RESOLVER_D, block=12)
    )

    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_D))
    assert resolver.owner == OWNER_C
    assert resolver.contenthash == "0x01"


@pytest.mark.asyncio
async def test_malformed_owner_read_falls_back(engine, store, reader):
    reader.set(RESOLVER_D, "owner()", (), "0x01")
    await engine.apply(claim(block=10))
    await engine.apply(point(H1, RESOLVER_D, block=11))

    assert await engine.apply(text(RESOLVER_D, "url", "https://d", block=12))

    assert store.find(RESOLVERS, (CHAIN_ID, RESOLVER_D)).owner == OWNER_A
    assert store.find(TEXT_RECORDS, (CHAIN_ID, RESOLVER_D, "url")).value == "https://d"


@pytest.mark.asyncio
async def test_clone_after_pointer_adopts_credential(engine, store):
    await engine.apply(claim(payload={"label": "alice"}, block=10))
    await engine.apply(point(H1, RESOLVER_B, block=11))
    await engine.apply(clone(block=12))

    resolver = store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B))
    assert resolver.admitted_by == "factory"
    assert resolver.labelhash == H1
    assert resolver.label == "alice"


@pytest.mark.asyncio
async def test_pointer_move_clears_old_backlink(engine, store):
    await engine.apply(claim(block=10))
    await engine.apply(clone(RESOLVER_B, block=11))
    await engine.apply(clone(RESOLVER_D, block=12))
    await engine.apply(point(H1, RESOLVER_B, block=13))
    await engine.apply(point(H1, RESOLVER_D, block=14))

    assert store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B)).labelhash is None
    assert store.find(RESOLVERS, (CHAIN_ID, RESOLVER_D)).labelhash == H1
    assert store.find(CREDENTIALS, (CHAIN_ID, H1)).resolver_address == RESOLVER_D


@pytest.mark.asyncio
async def test_eth_address_via_coin_type_60(engine, store):
    await engine.apply(clone())
    await engine.apply(
        event(
            "address-changed",
            (CHAIN_ID, RESOLVER_B),
            {"coin_type": 60, "address": OWNER_C},
            contract=RESOLVER_B,
            block=101,
        )
    )
    assert store.find(RESOLVERS, (CHAIN_ID, RESOLVER_B)).eth_address == OWNER_C
    assert store.find(ADDRESS_RECORDS, (CHAIN_ID, RESOLVER_B, 60)).address == OWNER_C


@pytest.mark.asyncio
async def test_credential_transfer_history(engine, store):
    await engine.apply(claim(block=10))
    await engine.apply(event("credential-transferred", (CHAIN_ID, H1), {"owner": OWNER_C}, block=11))
    await engine.apply(event("credential-transferred", (CHAIN_ID, H1), {"owner": OWNER_A}, block=12))

    assert store.count(CREDENTIAL_TRANSFERS) == 2
    assert store.find(CREDENTIALS, (CHAIN_ID, H1)).owner == OWNER_A


@pytest.mark.asyncio
async def test_registry_contract_events_are_not_gated(engine, store):
    # registry/registrar events never consult the admission ledger
    assert await engine.apply(claim(H2))
    assert store.find(CREDENTIALS, (CHAIN_ID, H2)).label is None
    assert REGISTRY not in {r.address for r in store.scan(RESOLVERS)}
