import pytest

from conftest import ADMIN_ID, BSC_ADDRESS, TRON_ADDRESS, TX_HASH, always_lose, as_user, balance_of, create_account, fund


def _deposit(client, account_id, amount_cents=5_000, **overrides):
    payload = {"amountCents": amount_cents, "network": "TRC-20", "externalReference": TX_HASH, **overrides}
    return client.post("/funds/deposit", json=payload, headers=as_user(account_id))


def _withdraw(client, account_id, amount_cents, address=TRON_ADDRESS, network="TRC-20"):
    payload = {"amountCents": amount_cents, "network": network, "externalReference": address}
    return client.post("/funds/withdrawal", json=payload, headers=as_user(account_id))


def test_deposit_approval_credits_balance(client):
    create_account(client, "player-1")
    created = _deposit(client, "player-1", 5_000)
    assert created.status_code == 201, created.text
    request = created.json()
    assert request["status"] == "pending"
    assert request["feeCents"] == 0
    assert balance_of(client, "player-1") == 0

    approved = client.post(f"/admin/funds/{request['id']}/approve", headers=as_user(ADMIN_ID))
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "approved"
    assert approved.json()["reviewedBy"] == ADMIN_ID
    assert balance_of(client, "player-1") == 5_000


def test_rejected_request_leaves_balance_unchanged(client):
    create_account(client, "player-1")
    fund(client, "player-1", 3_000)
    request = _deposit(client, "player-1", 7_000).json()

    rejected = client.post(f"/admin/funds/{request['id']}/reject", headers=as_user(ADMIN_ID))
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert balance_of(client, "player-1") == 3_000


@pytest.mark.parametrize("action", ["approve", "reject"])
def test_reviewed_deposit_cannot_transition_again(client, action):
    create_account(client, "player-1")
    request = _deposit(client, "player-1", 5_000).json()
    first = client.post(f"/admin/funds/{request['id']}/{action}", headers=as_user(ADMIN_ID))
    assert first.status_code == 200
    before = balance_of(client, "player-1")

    again = client.post(f"/admin/funds/{request['id']}/approve", headers=as_user(ADMIN_ID))
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"
    assert balance_of(client, "player-1") == before


def test_withdrawal_completion_debits_balance(client):
    create_account(client, "player-1")
    fund(client, "player-1", 10_000)
    created = _withdraw(client, "player-1", 5_000)
    assert created.status_code == 201, created.text
    assert created.json()["feeCents"] == 200

    completed = client.post(f"/admin/funds/{created.json()['id']}/complete", headers=as_user(ADMIN_ID))
    assert completed.status_code == 200, completed.text
    assert completed.json()["status"] == "completed"
    assert balance_of(client, "player-1") == 5_000


def test_withdrawal_rechecks_balance_at_completion(client, hub):
    create_account(client, "player-1")
    fund(client, "player-1", 10_000)
    request = _withdraw(client, "player-1", 5_000).json()

    hub.services.engine.random_factory = always_lose
    for _ in range(7):
        resp = client.post("/games/lottery/settle", json={"betCents": 1_000}, headers=as_user("player-1"))
        assert resp.status_code == 200
    assert balance_of(client, "player-1") == 3_000

    completed = client.post(f"/admin/funds/{request['id']}/complete", headers=as_user(ADMIN_ID))
    assert completed.status_code == 409
    assert completed.json()["code"] == "insufficient_funds"
    assert balance_of(client, "player-1") == 3_000
    listed = client.get("/funds", params={"kind": "withdrawal"}, headers=as_user("player-1")).json()
    assert listed[0]["status"] == "pending"


def test_withdrawal_above_balance_is_refused_up_front(client):
    create_account(client, "player-1")
    fund(client, "player-1", 2_500)
    resp = _withdraw(client, "player-1", 3_000, address=BSC_ADDRESS, network="BEP-20")
    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient_funds"


def test_wrong_kind_transition_is_rejected(client):
    create_account(client, "player-1")
    request = _deposit(client, "player-1", 5_000).json()
    resp = client.post(f"/admin/funds/{request['id']}/complete", headers=as_user(ADMIN_ID))
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_transition"


@pytest.mark.parametrize(
    "overrides",
    [
        {"amountCents": 500},
        {"amountCents": 100_000_001},
        {"network": "ERC-20"},
        {"currency": "BTC"},
        {"externalReference": "short"},
    ],
)
def test_deposit_validation(client, overrides):
    create_account(client, "player-1")
    payload = {"amountCents": 5_000, "network": "TRC-20", "externalReference": TX_HASH, **overrides}
    resp = client.post("/funds/deposit", json=payload, headers=as_user("player-1"))
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_failed"


def test_withdrawal_address_must_match_network(client):
    create_account(client, "player-1")
    fund(client, "player-1", 10_000)
    resp = _withdraw(client, "player-1", 5_000, address=BSC_ADDRESS, network="TRC-20")
    assert resp.status_code == 422
    too_small = _withdraw(client, "player-1", 1_000)
    assert too_small.status_code == 422


def test_review_requires_admin(client):
    create_account(client, "player-1")
    request = _deposit(client, "player-1", 5_000).json()
    resp = client.post(f"/admin/funds/{request['id']}/approve", headers=as_user("player-1"))
    assert resp.status_code == 403
    assert balance_of(client, "player-1") == 0

    missing = client.post("/admin/funds/does-not-exist/approve", headers=as_user(ADMIN_ID))
    assert missing.status_code == 404


def test_listing_is_scoped_for_players(client):
    create_account(client, "player-1")
    create_account(client, "player-2")
    _deposit(client, "player-1", 5_000)
    _deposit(client, "player-2", 6_000)

    own = client.get("/funds", params={"accountId": "player-2"}, headers=as_user("player-1")).json()
    assert [r["accountId"] for r in own] == ["player-1"]

    everything = client.get("/funds", params={"status": "pending"}, headers=as_user(ADMIN_ID)).json()
    assert len(everything) == 2

    bad_status = client.get("/funds", params={"status": "lost"}, headers=as_user(ADMIN_ID))
    assert bad_status.status_code == 422


def test_funds_workflow_directly(hub, session):
    workflow = hub.services.funds
    with hub.database.transaction(session):
        hub.services.ledger.create_account(session, "player-1", account_id="player-1")
    request = workflow.create_request(session, "player-1", "deposit", 2_000, "USDT", "BEP-20", TX_HASH)
    workflow.approve_deposit(session, ADMIN_ID, request.id)

    assert hub.services.ledger.get_balance(session, "player-1") == 2_000
    events = session.query(hub.models.ChangeEvent).order_by(hub.models.ChangeEvent.id).all()
    assert [e.event_type for e in events] == [
        "funds_request.status_changed",
        "funds_request.status_changed",
        "account.balance_changed",
    ]
    assert events[-1].payload["deltaCents"] == 2_000
