import pytest

from conftest import ADMIN_ID, as_user, create_account
from settlement_hub.errors import Forbidden, ValidationFailed


def test_admin_grants_and_revokes_roles(client):
    granted = client.post("/admin/roles", json={"userId": "mod-1", "role": "moderator"}, headers=as_user(ADMIN_ID))
    assert granted.status_code == 201, granted.text
    assert granted.json()["grantedBy"] == ADMIN_ID

    duplicate = client.post("/admin/roles", json={"userId": "mod-1", "role": "moderator"}, headers=as_user(ADMIN_ID))
    assert duplicate.status_code == 409

    listed = client.get("/admin/roles", params={"userId": "mod-1"}, headers=as_user(ADMIN_ID)).json()
    assert [r["role"] for r in listed] == ["moderator"]

    revoked = client.delete("/admin/roles/mod-1/moderator", headers=as_user(ADMIN_ID))
    assert revoked.status_code == 204
    again = client.delete("/admin/roles/mod-1/moderator", headers=as_user(ADMIN_ID))
    assert again.status_code == 404


def test_roles_are_additive(client):
    for role in ("moderator", "admin"):
        resp = client.post("/admin/roles", json={"userId": "staff-1", "role": role}, headers=as_user(ADMIN_ID))
        assert resp.status_code == 201
    listed = client.get("/admin/roles", params={"userId": "staff-1"}, headers=as_user(ADMIN_ID)).json()
    assert sorted(r["role"] for r in listed) == ["admin", "moderator"]
    assert client.get("/admin/roles", headers=as_user("staff-1")).status_code == 200


def test_non_admin_cannot_manage_roles(client):
    resp = client.post("/admin/roles", json={"userId": "player-1", "role": "admin"}, headers=as_user("player-1"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"
    assert client.get("/admin/roles", headers=as_user("player-1")).status_code == 403


def test_moderator_is_not_admin(client):
    client.post("/admin/roles", json={"userId": "mod-1", "role": "moderator"}, headers=as_user(ADMIN_ID))
    create_account(client, "player-1")
    assert client.get("/accounts/player-1", headers=as_user("mod-1")).status_code == 403
    assert client.get("/admin/reconciliation", headers=as_user("mod-1")).status_code == 403


def test_unknown_role_is_rejected(client):
    resp = client.post("/admin/roles", json={"userId": "player-1", "role": "superuser"}, headers=as_user(ADMIN_ID))
    assert resp.status_code == 422


def test_guard_directly(hub, session):
    guard = hub.services.guard
    assert guard.has_role(session, ADMIN_ID, "admin")
    assert not guard.has_role(session, None, "admin")
    guard.require_self_or_role(session, "player-1", "player-1")
    with pytest.raises(Forbidden):
        guard.require_self_or_role(session, "player-2", "player-1")
    with pytest.raises(ValidationFailed):
        guard.has_role(session, ADMIN_ID, "root")
    with hub.database.transaction(session):
        assert guard.bootstrap_admins(session, [ADMIN_ID, "admin-2"]) == 1
    assert guard.has_role(session, "admin-2", "admin")
