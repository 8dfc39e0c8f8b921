"""Tests for parameterized statement construction."""

from datetime import date

import pytest

from dyncrud.core.exceptions import ValidationError
from dyncrud.executor.types import CrudRequest, Filter, Operation, Page, Sort
from dyncrud.services.catalog_service import ColumnSpec, build_descriptor
from dyncrud.services.statement_builder import CoercionError, StatementBuilder, coerce_value


@pytest.fixture()
def widgets():
    return build_descriptor("widgets", "id", [
        ColumnSpec("id", "integer", nullable=False, generated=True),
        ColumnSpec("name", "string", nullable=False, max_length=10),
        ColumnSpec("qty", "integer", nullable=False),
        ColumnSpec("active", "boolean"),
        ColumnSpec("shipped_on", "date"),
    ])


@pytest.fixture()
def builder():
    return StatementBuilder(default_page_size=20, max_page_size=100)


def _request(operation, **kwargs):
    return CrudRequest(table_name="widgets", operation=operation, actor="ops@example.com", **kwargs)


def _codes(exc_info):
    return sorted(exc_info.value.codes)


def test_values_are_bound_never_inlined(widgets, builder):
    hostile = "x'; DROP"
    stmt = builder.build(_request(Operation.CREATE, payload={"name": hostile, "qty": 1}), widgets)

    assert hostile not in stmt.sql
    assert stmt.sql.startswith("INSERT INTO widgets (name, qty)")
    assert stmt.params == {"name": hostile, "qty": 1}


def test_payload_names_are_resolved_to_canonical_columns(widgets, builder):
    stmt = builder.build(_request(Operation.CREATE, payload={"NAME": "bolt", "Qty": "5"}), widgets)

    assert stmt.values == {"name": "bolt", "qty": 5}


def test_unknown_payload_column_is_rejected(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.CREATE, payload={"name": "bolt", "qty": 1, "admin_flag": True}), widgets)

    assert _codes(exc_info) == ["UNKNOWN_COLUMN"]
    assert exc_info.value.errors[0].field == "admin_flag"


def test_create_requires_non_nullable_columns(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.CREATE, payload={"name": "bolt"}), widgets)

    assert _codes(exc_info) == ["MISSING_REQUIRED"]
    assert exc_info.value.errors[0].field == "qty"


def test_all_field_problems_are_reported_together(widgets, builder):
    payload = {"name": "far-too-long-name", "qty": "many", "active": None, "shipped_on": "soon"}
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.CREATE, payload=payload), widgets)

    assert _codes(exc_info) == ["TOO_LONG", "TYPE_MISMATCH", "TYPE_MISMATCH"]


def test_null_for_non_nullable_column(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.CREATE, payload={"name": None, "qty": 1}), widgets)

    assert _codes(exc_info) == ["NULL_NOT_ALLOWED"]


def test_update_needs_key_and_a_change(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.UPDATE, payload={"qty": 2}), widgets)
    assert _codes(exc_info) == ["MISSING_PRIMARY_KEY"]

    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.UPDATE, key="7", payload={"id": 7}), widgets)
    assert _codes(exc_info) == ["NOTHING_TO_UPDATE"]

    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.UPDATE, key=7, payload={"id": 8, "qty": 1}), widgets)
    assert _codes(exc_info) == ["KEY_MISMATCH"]


def test_update_never_sets_the_key_column(widgets, builder):
    stmt = builder.build(_request(Operation.UPDATE, key="7", payload={"id": 7, "qty": 3}), widgets)

    assert stmt.key_value == 7
    assert stmt.values == {"qty": 3}
    assert stmt.sql.startswith("UPDATE widgets SET qty=:qty WHERE widgets.id = :id_1")


def test_read_and_delete_need_only_the_key(widgets, builder):
    read = builder.build(_request(Operation.READ, key="42"), widgets)
    delete = builder.build(_request(Operation.DELETE, key=42), widgets)

    assert read.key_value == 42 and delete.key_value == 42
    assert delete.sql == "DELETE FROM widgets WHERE widgets.id = :id_1"

    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.DELETE, key="forty-two"), widgets)
    assert _codes(exc_info) == ["TYPE_MISMATCH"]


def test_list_filters_sort_and_tie_breaker(widgets, builder):
    stmt = builder.build(_request(
        Operation.LIST,
        filters=[Filter("qty", "ge", "3"), Filter("name", "like", "bo%")],
        sort=Sort("QTY", "desc"),
        page=Page(offset=40, limit=20),
    ), widgets)

    assert "ORDER BY widgets.qty DESC, widgets.id ASC" in stmt.sql
    assert "widgets.qty >= :qty_1" in stmt.sql
    assert "widgets.name LIKE :name_1" in stmt.sql
    assert stmt.params["qty_1"] == 3
    assert (stmt.offset, stmt.limit) == (40, 20)
    assert "count" in str(stmt.count_statement.compile()).lower()


def test_list_defaults_to_primary_key_order_and_default_page(widgets, builder):
    stmt = builder.build(_request(Operation.LIST), widgets)

    assert "ORDER BY widgets.id ASC" in stmt.sql
    assert stmt.limit == 20


def test_list_rejects_unknown_sort_and_filter_columns(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(
            Operation.LIST,
            filters=[Filter("secret", "eq", 1)],
            sort=Sort("password", "asc"),
        ), widgets)

    assert _codes(exc_info) == ["UNKNOWN_COLUMN", "UNKNOWN_COLUMN"]


def test_list_rejects_bad_operators_and_directions(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(
            Operation.LIST,
            filters=[Filter("qty", "regex", ".*"), Filter("qty", "like", "1%")],
            sort=Sort("qty", "sideways"),
        ), widgets)

    assert _codes(exc_info) == ["INVALID_SORT", "UNSUPPORTED_OPERATOR", "UNSUPPORTED_OPERATOR"]


def test_page_window_is_bounded(widgets, builder):
    with pytest.raises(ValidationError) as exc_info:
        builder.build(_request(Operation.LIST, page=Page(offset=-1, limit=1000)), widgets)

    assert _codes(exc_info) == ["INVALID_PAGE", "INVALID_PAGE"]


def test_equality_with_null_uses_is_null(widgets, builder):
    stmt = builder.build(_request(Operation.LIST, filters=[Filter("shipped_on", "eq", None)]), widgets)

    assert "widgets.shipped_on IS NULL" in stmt.sql


@pytest.mark.parametrize("kind,raw,expected", [
    ("integer", "12", 12),
    ("integer", 3.0, 3),
    ("boolean", "yes", True),
    ("boolean", 0, False),
    ("date", "2024-02-29", date(2024, 2, 29)),
    ("float", "1.5", 1.5),
])
def test_coerce_value_accepts_string_forms(kind, raw, expected):
    assert coerce_value(ColumnSpec("c", kind), raw) == expected


@pytest.mark.parametrize("kind,raw", [
    ("integer", True),
    ("integer", "1.5"),
    ("boolean", "maybe"),
    ("string", 12),
    ("datetime", "yesterday"),
])
def test_coerce_value_rejects_mismatches(kind, raw):
    with pytest.raises(CoercionError) as exc_info:
        coerce_value(ColumnSpec("c", kind), raw)
    assert exc_info.value.code == "TYPE_MISMATCH"
