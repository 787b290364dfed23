import asyncio

import pytest
from fastapi.testclient import TestClient

from pab_bridge.main import create_app

from tests.fakes import AGENT, POLYGON, RECIPIENT, STRANGER, USER, XRPL_BINDING

ADMIN_KEY = "test-admin-key"
ADMIN = {"X-Admin-Key": ADMIN_KEY}


async def _seed_claim(coordinator, gateway, stall_blocks: int = 20) -> None:
    await coordinator.register_agent(AGENT, XRPL_BINDING, 1_000)
    await coordinator.bridge_tokens(USER, 100, POLYGON, recipient=RECIPIENT)
    await coordinator.claim_bridge(AGENT, USER)
    gateway.mine(stall_blocks)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime, start_watcher=False, admin_api_key=ADMIN_KEY))


@pytest.fixture
def claimed(runtime, gateway):
    asyncio.run(_seed_claim(runtime.coordinator, gateway))
    return runtime


@pytest.fixture
def force_requested(claimed):
    asyncio.run(claimed.coordinator.force_receive(USER))
    return claimed


def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["health"] == "/healthz"


def test_health_without_runtime():
    client = TestClient(create_app(None, start_watcher=False))

    resp = client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"


def test_bridge_routes_need_runtime():
    client = TestClient(create_app(None, start_watcher=False))

    resp = client.get("/bridge/chains")

    assert resp.status_code == 503


def test_health_reports_providers(client):
    data = client.get("/healthz").json()

    assert data["providers"]["gateway"]["status"] == "healthy"
    assert data["providers"]["xrpl"]["status"] == "healthy"
    # Watcher loops are not running in tests
    assert data["status"] == "degraded"
    assert data["watcher"]["running"] is False


def test_list_chains(client):
    chains = client.get("/bridge/chains").json()["chains"]

    assert [c["chainId"] for c in chains] == [POLYGON, 0]
    assert chains[1]["name"] == "XRPL"


def test_request_view(claimed, client):
    data = client.get(f"/bridge/requests/{USER}").json()

    assert data["status"] == "claimed"
    assert data["request"]["agentAddress"] == AGENT
    assert data["request"]["recipient"] == RECIPIENT
    assert [h["operation"] for h in data["history"]] == ["bridgeTokens", "claimBridge"]


def test_empty_request_view(client):
    data = client.get(f"/bridge/requests/{USER}").json()

    assert data["status"] == "empty"
    assert data["request"] is None


def test_agent_view(claimed, client):
    agent = client.get(f"/bridge/agents/{AGENT}").json()["agent"]

    assert agent["depositAmount"] == 1_000
    assert agent["lockedAmount"] == 100


def test_unknown_agent(client):
    resp = client.get(f"/bridge/agents/{STRANGER}")

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "NOT_REGISTERED"


def test_malformed_address(client):
    resp = client.get("/bridge/agents/0x1234")

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_ADDRESS"


def test_stalled(claimed, client):
    data = client.get("/bridge/stalled").json()

    assert data["users"] == [USER]
    assert data["stallTimeoutBlocks"] == 10


def test_facts_filtered_by_kind(claimed, client):
    data = client.get("/bridge/facts", params={"kind": "submission_final"}).json()

    assert data["count"] == 3
    assert {f["kind"] for f in data["facts"]} == {"submission_final"}


def test_submissions(claimed, client):
    submissions = client.get("/bridge/submissions").json()["submissions"]

    assert [s["operation"] for s in submissions] == ["register", "bridgeTokens", "claimBridge"]
    assert all(s["status"] == "final" for s in submissions)


def test_resolve_requires_admin_key(force_requested, client):
    resp = client.post("/bridge/force-receive/resolve", json={"user": USER, "approve": True})

    assert resp.status_code == 401
    assert force_requested.ledger.status(USER).value == "force_requested"


def test_resolve_rejects_wrong_admin_key(force_requested, client):
    resp = client.post(
        "/bridge/force-receive/resolve",
        json={"user": USER, "approve": True},
        headers={"X-Admin-Key": "guess"},
    )

    assert resp.status_code == 401


def test_owner_endpoints_disabled_without_key(force_requested):
    client = TestClient(create_app(force_requested, start_watcher=False))

    resp = client.post(
        "/bridge/force-receive/resolve",
        json={"user": USER, "approve": True},
        headers={"X-Admin-Key": ""},
    )

    assert resp.status_code == 503
    assert client.post("/bridge/submissions/missing/resubmit").status_code == 503


def test_resolve_approve(force_requested, client):
    resp = client.post(
        "/bridge/force-receive/resolve",
        json={"user": USER, "approve": True},
        headers=ADMIN,
    )

    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "force_approved"


def test_resolve_ignores_caller_in_body(force_requested, client):
    # The ruling is always made as the configured owner
    resp = client.post(
        "/bridge/force-receive/resolve",
        json={"caller": STRANGER, "user": USER, "approve": True},
        headers=ADMIN,
    )

    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "force_approved"


def test_resolve_without_request(claimed, client):
    resp = client.post(
        "/bridge/force-receive/resolve",
        json={"user": USER, "approve": False},
        headers=ADMIN,
    )

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_TRANSITION"


def test_resubmit_requires_admin_key(client):
    assert client.post("/bridge/submissions/missing/resubmit").status_code == 401


def test_resubmit_unknown(client):
    resp = client.post("/bridge/submissions/missing/resubmit", headers=ADMIN)

    assert resp.status_code == 404


def test_sync_user(claimed, client, gateway):
    del gateway.slots[USER]

    resp = client.post(f"/bridge/sync/{USER}", headers=ADMIN)

    assert resp.status_code == 200
    assert resp.json()["status"] == "empty"
    assert claimed.agents.get(AGENT).locked_amount == 0


def test_estimate_gas(client):
    resp = client.get(
        "/bridge/estimate-gas",
        params={"user": USER, "amount": 100, "destinationChainId": POLYGON},
    )

    assert resp.status_code == 200
    assert resp.json()["gas"] == 90_000


def test_estimate_gas_unsupported_chain(client):
    resp = client.get(
        "/bridge/estimate-gas",
        params={"user": USER, "amount": 100, "destinationChainId": 999},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "UNSUPPORTED_CHAIN"
