import pytest
from fastapi.testclient import TestClient

from conftest import CHAIN_ID, OWNER_A, OWNER_C, RESOLVER_B, labelhash_of
from credind.api.app import create_app
from credind.api.queries import try_decode_hex
from credind.core.config import ApiConfig
from credind.core.keys import text_hash
from credind.core.models import (
    ChainCheckpoint,
    ContractMetadataEntry,
    Credential,
    CredentialTransfer,
    Renewal,
    Resolver,
    TextRecord,
)
from credind.storage.schema import (
    CHECKPOINTS,
    CONTRACT_METADATA,
    CREDENTIAL_TRANSFERS,
    CREDENTIALS,
    RENEWALS,
    RESOLVERS,
    TEXT_RECORDS,
)

API_KEY = "test-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}
H1 = labelhash_of("alice")
H2 = labelhash_of("bob")


def credential(labelhash, label, *, owner=OWNER_A, registered=100, expiration=0, resolver=None) -> Credential:
    return Credential(
        chain_id=CHAIN_ID,
        labelhash=labelhash,
        chain_name="sepolia",
        label=label,
        full_name=f"{label}.ecs.eth",
        owner=owner,
        resolver_address=resolver,
        resolver_updated_at=1_000 if resolver else None,
        review="solid",
        expiration=expiration,
        is_expired=False,
        registration_cost=10**16,
        registered_block=registered,
        registered_timestamp=1_700_000_000 + registered,
        registered_tx_hash="0x01",
        last_update_block=registered,
        last_update_timestamp=1_700_000_000 + registered,
        last_update_tx_hash="0x01",
    )


def resolver(address=RESOLVER_B, owner=OWNER_A) -> Resolver:
    return Resolver(
        chain_id=CHAIN_ID,
        address=address,
        chain_name="sepolia",
        owner=owner,
        labelhash=H1,
        label="alice",
        eth_address=OWNER_A,
        contenthash=None,
        admitted_by="factory",
        deployed_block=50,
        deployed_timestamp=1_700_000_050,
        deployed_tx_hash="0x02",
        last_update_block=50,
        last_update_timestamp=1_700_000_050,
        last_update_tx_hash="0x02",
    )


@pytest.fixture
def populated(store):
    store.insert_ignore(CREDENTIALS, credential(H1, "alice", registered=100, expiration=1_750_000_000, resolver=RESOLVER_B))
    store.insert_ignore(CREDENTIALS, credential(H2, "bob", owner=OWNER_C, registered=200))
    store.insert_ignore(RESOLVERS, resolver())
    store.insert_ignore(
        TEXT_RECORDS,
        TextRecord(
            chain_id=CHAIN_ID, resolver_address=RESOLVER_B, key="url", value="https://alice.xyz",
            key_hash=text_hash("url"), key_resolved=True,
            set_block=60, set_timestamp=1_700_000_060, set_tx_hash="0x03",
            last_update_block=60, last_update_timestamp=1_700_000_060, last_update_tx_hash="0x03",
        ),
    )
    store.insert_ignore(
        CONTRACT_METADATA,
        ContractMetadataEntry(
            chain_id=CHAIN_ID, contract_address=RESOLVER_B, key="logo", value="0x68656c6c6f",
            set_block=61, set_timestamp=1_700_000_061, set_tx_hash="0x04",
            last_update_block=61, last_update_timestamp=1_700_000_061, last_update_tx_hash="0x04",
        ),
    )
    for block in (110, 120):
        store.insert_ignore(
            CREDENTIAL_TRANSFERS,
            CredentialTransfer(
                chain_id=CHAIN_ID, labelhash=H1, block_number=block, log_index=0,
                new_owner=OWNER_C, timestamp=1_700_000_000 + block, tx_hash="0x05",
            ),
        )
    store.insert_ignore(
        RENEWALS,
        Renewal(
            chain_id=CHAIN_ID, label_topic=H1, block_number=130, log_index=0, labelhash=H1, label="alice",
            label_resolved=True, cost=5, new_expiration=1_760_000_000, timestamp=1_700_000_130, tx_hash="0x06",
        ),
    )
    return store


@pytest.fixture
def client(populated):
    return TestClient(create_app(populated, ApiConfig(api_key=API_KEY)))


# ---------------------------------------------------------------------------
# Public routes and auth
# ---------------------------------------------------------------------------


def test_root_and_health_are_public(client):
    assert client.get("/").json()["endpoints"]["health"] == "/api/health"
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["stats"] == {"credentials": 2, "resolvers": 1}


def test_missing_bearer(client):
    r = client.get("/api/credentials")
    assert r.status_code == 401
    assert r.json()["detail"] == "Missing or invalid Authorization header"


def test_wrong_key(client):
    r = client.get("/api/credentials", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid API key"


def test_unconfigured_key_rejects(populated):
    c = TestClient(create_app(populated, ApiConfig(api_key=None)))
    assert c.get("/api/stats", headers=AUTH).status_code == 500


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def test_list_credentials_newest_first(client):
    body = client.get("/api/credentials", headers=AUTH).json()
    assert [c["label"] for c in body["credentials"]] == ["bob", "alice"]
    assert body["pagination"] == {"limit": 50, "offset": 0, "total": 2}
    alice = body["credentials"][1]
    assert alice["expiration"] == "1750000000"
    assert alice["registeredAt"] == {"block": "100", "timestamp": "1700000100", "txHash": "0x01"}


def test_limit_is_capped_and_offset_applies(client):
    body = client.get("/api/credentials?limit=500&offset=1", headers=AUTH).json()
    assert body["pagination"]["limit"] == 100
    assert [c["label"] for c in body["credentials"]] == ["alice"]


def test_negative_offset_rejected(client):
    assert client.get("/api/credentials?offset=-1", headers=AUTH).status_code == 422


def test_expired_follows_last_checkpoint(client, populated):
    populated.upsert(
        CHECKPOINTS, (CHAIN_ID,), ChainCheckpoint(CHAIN_ID, 999, 1_800_000_000), lambda r: r,
    )
    expired = client.get("/api/credentials?expired=true", headers=AUTH).json()
    assert [c["label"] for c in expired["credentials"]] == ["alice"]
    assert expired["credentials"][0]["isExpired"] is True

    active = client.get(f"/api/credentials?expired=false&chainId={CHAIN_ID}", headers=AUTH).json()
    assert [c["label"] for c in active["credentials"]] == ["bob"]


def test_by_label_is_case_insensitive(client):
    body = client.get("/api/credentials/by-label/ALICE", headers=AUTH).json()
    assert body["labelhash"] == H1


def test_by_label_not_found(client):
    r = client.get("/api/credentials/by-label/nobody", headers=AUTH)
    assert r.status_code == 404
    assert r.json() == {"error": "Credential not found"}


def test_by_owner(client):
    body = client.get(f"/api/credentials/by-owner/{OWNER_C.upper().replace('0X', '0x')}", headers=AUTH).json()
    assert body["owner"] == OWNER_C
    assert [c["label"] for c in body["credentials"]] == ["bob"]
    assert "review" not in body["credentials"][0]


def test_credential_detail_history(client):
    body = client.get(f"/api/credentials/{CHAIN_ID}/{H1.upper().replace('0X', '0x')}", headers=AUTH).json()
    assert body["registrationCost"] == str(10**16)
    assert [t["block"] for t in body["transferHistory"]] == ["120", "110"]
    assert body["renewalHistory"] == [
        {"cost": "5", "newExpiration": "1760000000", "block": "130", "timestamp": "1700000130", "txHash": "0x06"}
    ]


def test_credential_detail_not_found(client):
    assert client.get(f"/api/credentials/{CHAIN_ID}/0x{'00' * 32}", headers=AUTH).status_code == 404


def test_invalid_hash_is_bad_request(client):
    assert client.get(f"/api/credentials/{CHAIN_ID}/not-hex", headers=AUTH).status_code == 400


def test_credential_metadata_is_public(client):
    body = client.get(f"/api/credentials/{CHAIN_ID}/{H1}/metadata").json()
    assert body["fullName"] == "alice.ecs.eth"
    assert body["resolverAddress"] == RESOLVER_B
    assert body["logo"] == "hello"
    assert body["expirationDate"].startswith("2025-")


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def test_list_resolvers_filters_owner(client):
    assert client.get(f"/api/resolvers?owner={OWNER_A}", headers=AUTH).json()["pagination"]["total"] == 1
    assert client.get(f"/api/resolvers?owner={OWNER_C}", headers=AUTH).json()["resolvers"] == []


def test_resolver_detail(client):
    body = client.get(f"/api/resolvers/{CHAIN_ID}/{RESOLVER_B}", headers=AUTH).json()
    assert body["textRecords"] == {"url": "https://alice.xyz"}
    assert body["contractMetadata"] == {"logo": {"value": "0x68656c6c6f", "decoded": "hello"}}
    assert body["deployedAt"]["block"] == "50"


def test_resolver_detail_not_found(client):
    r = client.get(f"/api/resolvers/{CHAIN_ID}/0x{'01' * 20}", headers=AUTH)
    assert r.status_code == 404
    assert r.json() == {"error": "Resolver not found"}


def test_resolver_info_public(client):
    body = client.get(f"/api/resolvers/{CHAIN_ID}/{RESOLVER_B}/info").json()
    assert body == {"label": "alice", "resolverUpdated": "1000", "review": "solid"}


def test_resolver_info_unknown_address_degrades(client):
    body = client.get(f"/api/resolvers/{CHAIN_ID}/0x{'01' * 20}/info").json()
    assert body == {"label": "", "resolverUpdated": "0", "review": ""}


def test_resolver_text_and_metadata(client):
    text = client.get(f"/api/resolvers/{CHAIN_ID}/{RESOLVER_B}/text", headers=AUTH).json()
    assert text["total"] == 1
    assert text["textRecords"][0]["setAt"] == {"block": "60", "timestamp": "1700000060", "txHash": "0x03"}

    meta = client.get(f"/api/resolvers/{CHAIN_ID}/{RESOLVER_B}/metadata", headers=AUTH).json()
    assert meta["metadata"][0]["decoded"] == "hello"


def test_stats(client):
    body = client.get("/api/stats", headers=AUTH).json()
    assert body["credentials"]["total"] == 2
    assert body["credentials"]["uniqueOwners"] == 2
    assert body["credentials"]["byChain"] == {"sepolia": 2}
    assert body["resolvers"]["byChain"] == {"sepolia": 1}
    assert body["metadata"] == {"totalContractMetadataEntries": 1, "totalTextRecords": 1}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0x68656c6c6f", "hello"),
        ("0x68656c6c6f0000", "hello"),
        ("0xff00fe01", "0xff00fe01"),
        ("0x0000", ""),
        ("plain", "plain"),
        ("0xzz", "0xzz"),
    ],
)
def test_try_decode_hex(raw, expected):
    assert try_decode_hex(raw) == expected
