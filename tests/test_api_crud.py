"""HTTP tests for the dynamic CRUD endpoints."""

import pytest


@pytest.fixture()
def admin(auth_headers):
    return auth_headers("admin")


def _create(client, admin, name, qty, **extra):
    response = client.post("/api/crud/tables/widgets/rows", json={"name": name, "qty": qty, **extra}, headers=admin)
    assert response.status_code == 201, response.text
    return response.json()["row"]


def test_catalog_endpoints(client, admin):
    tables = client.get("/api/crud/tables", headers=admin)
    described = client.get("/api/crud/tables/WIDGETS", headers=admin)

    assert tables.json() == {"tables": ["widgets"]}
    assert described.status_code == 200
    body = described.json()
    assert body["name"] == "widgets" and body["primary_key"] == "id"
    assert [c["name"] for c in body["columns"]] == ["id", "name", "qty", "note"]


def test_describe_unknown_table_does_not_echo_name(client, admin):
    response = client.get("/api/crud/tables/secrets", headers=admin)

    assert response.status_code == 404
    assert response.json() == {"code": "TABLE_NOT_AVAILABLE", "message": "Table not available", "fields": []}


def test_row_lifecycle(client, admin, audit_records):
    row = _create(client, admin, "bolt", 5)
    key = row["id"]

    read = client.get(f"/api/crud/tables/widgets/rows/{key}", headers=admin)
    assert read.status_code == 200
    assert read.json()["row"] == {"id": key, "name": "bolt", "qty": 5, "note": None}

    patched = client.patch(f"/api/crud/tables/widgets/rows/{key}", json={"note": "zinc"}, headers=admin)
    assert patched.status_code == 200
    assert patched.json()["row"] == {"id": key, "name": "bolt", "qty": 5, "note": "zinc"}

    deleted = client.delete(f"/api/crud/tables/widgets/rows/{key}", headers=admin)
    assert deleted.json() == {"table": "widgets", "affected": 1}

    gone = client.get(f"/api/crud/tables/widgets/rows/{key}", headers=admin)
    assert gone.status_code == 404
    assert gone.json()["code"] == "ROW_NOT_FOUND"

    assert [(r.operation, r.status) for r in audit_records()] == [
        ("CREATE", "SUCCESS"),
        ("READ", "SUCCESS"),
        ("UPDATE", "SUCCESS"),
        ("DELETE", "SUCCESS"),
        ("READ", "FAILURE"),
    ]
    assert all(r.request_id for r in audit_records())


def test_list_with_where_sort_and_window(client, admin):
    for name, qty in (("a", 1), ("b", 3), ("c", 5), ("d", 7)):
        _create(client, admin, name, qty)

    response = client.get(
        "/api/crud/tables/widgets/rows",
        params=[("where", "qty:ge:3"), ("where", "name:ne:d"), ("sort", "qty"), ("direction", "desc"), ("limit", "1")],
        headers=admin,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["count"] == 1
    assert [r["name"] for r in body["rows"]] == ["c"]


def test_where_shorthand_means_equality(client, admin):
    _create(client, admin, "bolt", 1)
    _create(client, admin, "nut", 1)

    response = client.get("/api/crud/tables/widgets/rows", params={"where": "name:nut"}, headers=admin)

    assert [r["name"] for r in response.json()["rows"]] == ["nut"]


def test_unknown_table_on_rows_is_404_and_audited(client, admin, statements, audit_records):
    response = client.post("/api/crud/tables/secrets/rows", json={"name": "x"}, headers=admin)

    assert response.status_code == 404
    assert response.json()["message"] == "Table not available"
    assert statements == []
    assert [(r.table_name, r.status) for r in audit_records()] == [("secrets", "DENIED")]


def test_validation_errors_are_structured(client, admin):
    response = client.post(
        "/api/crud/tables/widgets/rows",
        json={"name": "bolt", "qty": "lots", "admin_flag": True},
        headers=admin,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "VALIDATION_FAILED"
    assert sorted((f["field"], f["code"]) for f in body["fields"]) == [
        ("admin_flag", "UNKNOWN_COLUMN"),
        ("qty", "TYPE_MISMATCH"),
    ]


def test_bad_filter_clause_is_a_validation_error(client, admin):
    response = client.get("/api/crud/tables/widgets/rows", params={"where": "qty"}, headers=admin)

    assert response.status_code == 422
    assert response.json()["fields"][0]["code"] == "UNSUPPORTED_OPERATOR"


def test_unique_conflict_is_409(client, admin):
    _create(client, admin, "bolt", 1)

    response = client.post("/api/crud/tables/widgets/rows", json={"name": "bolt", "qty": 2}, headers=admin)

    assert response.status_code == 409
    assert response.json() == {"code": "CONSTRAINT_VIOLATION", "message": "duplicate key", "fields": []}


def test_catalog_reload_requires_admin(client, auth_headers):
    assert client.post("/api/crud/catalog/reload", headers=auth_headers("member")).status_code == 403

    response = client.post("/api/crud/catalog/reload", headers=auth_headers("admin"))
    assert response.status_code == 200
    assert response.json()["tables"] == 1


def test_admin_audit_view(client, admin):
    _create(client, admin, "bolt", 1)
    client.get("/api/crud/tables/secrets/rows", headers=admin)

    response = client.get("/api/admin/audit/crud", params={"status": "denied"}, headers=admin)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["records"][0]["table_name"] == "secrets"
    assert body["records"][0]["error_code"] == "TABLE_NOT_AVAILABLE"


def test_response_carries_request_id(client, admin):
    response = client.get("/api/crud/tables", headers=admin)

    assert response.headers["X-Request-Id"]


def test_where_shorthand_keeps_colons_in_the_value(client, admin):
    _create(client, admin, "bolt", 1, note="a:b")
    _create(client, admin, "nut", 1, note="a")

    response = client.get("/api/crud/tables/widgets/rows", params={"where": "note:a:b"}, headers=admin)

    assert [r["name"] for r in response.json()["rows"]] == ["bolt"]


def test_gateway_create_rejects_an_addressed_key(client, admin, audit_records):
    response = client.post(
        "/api/crud/explore",
        json={"operation": "create", "table": "widgets", "key": 5, "payload": {"name": "bolt", "qty": 1}},
        headers=admin,
    )

    assert response.status_code == 422
    assert [(f["field"], f["code"]) for f in response.json()["fields"]] == [("id", "KEY_NOT_ALLOWED")]
    assert [(r.operation, r.status) for r in audit_records()] == [("CREATE", "DENIED")]
