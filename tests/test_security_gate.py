"""Tests for the two-stage security gate."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from dyncrud.core.config import settings
from dyncrud.core.exceptions import AccessDeniedError, AuthenticationError, GateStateError
from dyncrud.core.gate import GateContext, GateState
from dyncrud.core.security import (
    ANONYMOUS,
    Identity,
    RequireRole,
    create_access_token,
    hash_password,
    require_dispatch_identity,
    role_allows,
    verify_access_token,
    verify_password,
)


def _fake_request(identity, gate):
    return SimpleNamespace(state=SimpleNamespace(identity=identity, gate=gate), url=SimpleNamespace(path="/x"))


# ---- state machine ----

def test_gate_happy_path():
    gate = GateContext()
    gate.authenticate()
    gate.dispatch()

    assert gate.state == GateState.DISPATCHED
    assert gate.history == [GateState.UNAUTHENTICATED, GateState.AUTHENTICATED, GateState.DISPATCHED]
    assert gate.is_terminal


@pytest.mark.parametrize("steps", [
    ["dispatch"],
    ["authenticate", "authenticate"],
    ["authenticate", "dispatch", "reject"],
    ["reject", "authenticate"],
    ["authenticate", "reject", "dispatch"],
])
def test_gate_illegal_transitions(steps):
    gate = GateContext()
    *legal, illegal = steps
    for step in legal:
        getattr(gate, step)(*(["why"] if step == "reject" else []))

    with pytest.raises(GateStateError):
        getattr(gate, illegal)(*(["why"] if illegal == "reject" else []))


def test_gate_rejects_from_either_stage():
    early = GateContext()
    early.reject("missing credential")
    late = GateContext()
    late.authenticate()
    late.reject("insufficient role")

    assert early.state == late.state == GateState.REJECTED
    assert early.reason == "missing credential"


# ---- tokens ----

def test_verify_access_token():
    token = create_access_token({"sub": "7", "email": "ops@example.com", "role": "admin"})

    identity = verify_access_token(token)

    assert identity.subject == "7"
    assert identity.actor == "ops@example.com"
    assert identity.authenticated and not identity.anonymous
    assert identity.level == 80


@pytest.mark.parametrize("token", [
    "not-a-jwt",
    create_access_token({"sub": "7"}, expires_delta=timedelta(seconds=-5)),
    create_access_token({"role": "admin"}),
])
def test_invalid_tokens_are_rejected(token):
    with pytest.raises(AuthenticationError):
        verify_access_token(token)


# ---- stage B ----

def test_stage_b_rejects_anonymous_identity():
    gate = GateContext()

    with pytest.raises(AccessDeniedError) as exc_info:
        require_dispatch_identity(_fake_request(ANONYMOUS, gate))

    assert exc_info.value.status_code == 401
    assert gate.state == GateState.REJECTED


def test_stage_b_rejects_unauthenticated_identity_flag():
    gate = GateContext()
    forged = Identity(subject="7", role="super_admin", authenticated=False)

    with pytest.raises(AccessDeniedError):
        require_dispatch_identity(_fake_request(forged, gate))
    assert gate.state == GateState.REJECTED


def test_stage_b_enforces_required_role():
    gate = GateContext()
    gate.authenticate()
    member = Identity(subject="7", role="member", authenticated=True)

    with pytest.raises(AccessDeniedError) as exc_info:
        require_dispatch_identity(_fake_request(member, gate))

    assert exc_info.value.status_code == 403
    assert gate.state == GateState.REJECTED


def test_stage_b_dispatches_admin():
    gate = GateContext()
    gate.authenticate()
    admin = Identity(subject="7", role="admin", authenticated=True, email="ops@example.com")

    assert require_dispatch_identity(_fake_request(admin, gate)) is admin
    assert gate.state == GateState.DISPATCHED


# ---- over HTTP ----

def test_stage_a_rejects_missing_credential_before_catalog(client, statements, audit_records):
    response = client.post("/api/crud/tables/widgets/rows", json={"name": "bolt", "qty": 1})

    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_FAILED"
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert statements == []
    assert audit_records() == []


def test_stage_a_rejects_invalid_token_even_on_public_paths(client):
    response = client.get("/api/health", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401


def test_public_paths_allow_anonymous(client):
    assert client.get("/api/health").status_code == 200
    explore = client.get("/api/crud/explore")
    assert explore.status_code == 200
    assert "widgets" not in explore.text
    assert "LIST" in explore.json()["operations"]


def test_stage_b_rejects_anonymous_on_public_gateway(client, statements, audit_records):
    response = client.post("/api/crud/explore", json={"operation": "list", "table": "widgets"})

    assert response.status_code == 401
    assert response.json()["code"] == "ACCESS_DENIED"
    assert statements == []
    assert audit_records() == []


def test_stage_b_rejects_insufficient_role(client, auth_headers, audit_records):
    response = client.get("/api/crud/tables/widgets/rows", headers=auth_headers("member"))

    assert response.status_code == 403
    assert audit_records() == []


def test_gateway_dispatches_authenticated_admin(client, auth_headers, audit_records):
    response = client.post(
        "/api/crud/explore",
        json={"operation": "create", "table": "widgets", "payload": {"name": "bolt", "qty": 1}},
        headers=auth_headers("admin"),
    )

    assert response.status_code == 201
    assert response.json()["row"]["name"] == "bolt"
    assert [(r.operation, r.status, r.actor) for r in audit_records()] == [
        ("CREATE", "SUCCESS", "admin@example.com"),
    ]


def test_unknown_required_role_is_never_satisfied(monkeypatch):
    monkeypatch.setattr(settings, "CRUD_REQUIRED_ROLE", "admn")
    gate = GateContext()
    gate.authenticate()
    root = Identity(subject="7", role="super_admin", authenticated=True)

    assert not role_allows("super_admin", "admn")
    with pytest.raises(AccessDeniedError):
        require_dispatch_identity(_fake_request(root, gate))


def test_require_role_rejects_unknown_names():
    with pytest.raises(ValueError):
        RequireRole("admn")


def test_over_long_password_never_verifies():
    hashed = hash_password("x" * 72)

    assert verify_password("x" * 72, hashed)
    assert not verify_password("x" * 100, hashed)
