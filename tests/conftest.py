import sys
from importlib import reload
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ADMIN_ID = "admin-1"
TX_HASH = "ab" * 32
TRON_ADDRESS = "T" + "A" * 33
BSC_ADDRESS = "0x" + "a" * 40


class ScriptedRandom:
    """Random source that always draws ``value`` and picks one end of every range."""

    def __init__(self, value: float, high: bool = False):
        self.value = value
        self.high = high

    def random(self) -> float:
        return self.value

    def uniform(self, a: float, b: float) -> float:
        return b if self.high else a


def always_lose(seed):
    return ScriptedRandom(0.999)


def always_win_max(seed):
    return ScriptedRandom(0.0, high=True)


@pytest.fixture(scope="function")
def hub(tmp_path_factory, monkeypatch):
    """
    Reload the service against a disposable SQLite DB with no webhook subscriber.
    """
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    monkeypatch.setenv("DB_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("BEARER_TOKEN", "testtoken")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_IDS", f'["{ADMIN_ID}"]')
    monkeypatch.setenv("TIMESTAMP_SKEW_SECONDS", "5")
    monkeypatch.delenv("CHANGE_WEBHOOK_URL", raising=False)

    import settlement_hub.config as config
    import settlement_hub.database as database
    import settlement_hub.models.models as models
    import settlement_hub.security as security
    import settlement_hub.helpers as helpers
    import settlement_hub.notifications as notifications
    import settlement_hub.contracts.contracts as contracts
    import settlement_hub.ledger as ledger
    import settlement_hub.games as games
    import settlement_hub.roles as roles
    import settlement_hub.settlement as settlement
    import settlement_hub.funds as funds
    import settlement_hub.referrals as referrals
    import settlement_hub.reconciliation as reconciliation
    import settlement_hub.services as services
    import settlement_hub.db as db
    import settlement_hub.schemas.app_schemas as app_schemas
    import settlement_hub.commands.reconcile as reconcile
    import settlement_hub.main as main

    for module in (
        config,
        database,
        models,
        security,
        helpers,
        notifications,
        contracts,
        ledger,
        games,
        roles,
        settlement,
        funds,
        referrals,
        reconciliation,
        services,
        db,
        app_schemas,
        reconcile,
        main,
    ):
        reload(module)

    main.app.dependency_overrides[main.require_bearer_token] = lambda: None
    models.Base.metadata.drop_all(bind=database.engine)
    models.Base.metadata.create_all(bind=database.engine)
    main._bootstrap_admins(main.app.state.services)

    yield SimpleNamespace(
        main=main,
        config=config,
        database=database,
        models=models,
        notifications=notifications,
        helpers=helpers,
        games=games,
        security=security,
        reconcile=reconcile,
        services=main.app.state.services,
    )

    main.app.dependency_overrides.clear()
    database.engine.dispose()


@pytest.fixture
def client(hub):
    with TestClient(hub.main.app) as client:
        yield client


@pytest.fixture
def session(hub):
    db = hub.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def as_user(user_id: str, **extra) -> dict:
    return {"X-User-Id": user_id, **extra}


def create_account(client, account_id: str, username: str | None = None, referral_code: str | None = None) -> dict:
    payload = {"username": username or account_id, "accountId": account_id}
    if referral_code:
        payload["referralCode"] = referral_code
    resp = client.post("/accounts", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def fund(client, account_id: str, amount_cents: int) -> dict:
    """Deposit through the review workflow so the ledger history reconciles."""
    resp = client.post(
        "/funds/deposit",
        json={"amountCents": amount_cents, "network": "TRC-20", "externalReference": TX_HASH},
        headers=as_user(account_id),
    )
    assert resp.status_code == 201, resp.text
    approved = client.post(f"/admin/funds/{resp.json()['id']}/approve", headers=as_user(ADMIN_ID))
    assert approved.status_code == 200, approved.text
    return approved.json()


def balance_of(client, account_id: str) -> int:
    resp = client.get(f"/accounts/{account_id}", headers=as_user(account_id))
    assert resp.status_code == 200, resp.text
    return resp.json()["balanceCents"]
