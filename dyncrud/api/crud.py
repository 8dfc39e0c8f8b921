"""Dynamic CRUD API router — generic table operations through the executor."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from dyncrud.core.security import Identity, require_admin, require_dispatch_identity
from dyncrud.executor.crud_executor import CrudExecutor
from dyncrud.executor.types import (
    CrudRequest, CrudResult, Filter, FilterOperator, Operation, Page, Sort,
)
from dyncrud.schemas.schemas import CrudEnvelope
from dyncrud.services.cache_service import cache_service
from dyncrud.services.catalog_service import TableCatalog

router = APIRouter(prefix="/crud", tags=["crud"])


def get_executor(request: Request) -> CrudExecutor:
    return request.app.state.executor


def get_catalog(request: Request) -> TableCatalog:
    return request.app.state.catalog


def parse_where(clauses: List[str]) -> List[Filter]:
    """Parse ``column:operator:value``, or ``column:value`` for equality.

    The middle part counts as an operator only when it names one, so
    ``note:a:b`` filters ``note = 'a:b'``.
    """
    operators = {op.value for op in FilterOperator}
    filters = []
    for clause in clauses:
        column, sep, rest = clause.partition(":")
        if not sep:
            # Left for the builder to reject as an unknown column or operator
            filters.append(Filter(clause, "", None))
            continue
        operator, sep, value = rest.partition(":")
        if sep and operator.lower() in operators:
            filters.append(Filter(column, operator, value))
        else:
            filters.append(Filter(column, FilterOperator.EQ.value, rest))
    return filters


def _crud_request(
    request: Request,
    identity: Identity,
    table: str,
    operation: Operation,
    **kwargs: Any,
) -> CrudRequest:
    return CrudRequest(
        table_name=table,
        operation=operation,
        actor=identity.actor,
        request_id=getattr(request.state, "request_id", None),
        client_ip=request.client.host if request.client else None,
        **kwargs,
    )


def render_result(result: CrudResult, crud_request: CrudRequest) -> JSONResponse:
    """Turn an executor result into the HTTP response."""
    if result.error is not None:
        return JSONResponse(status_code=result.http_status, content=result.error.to_dict())

    if result.operation == Operation.LIST:
        body: Dict[str, Any] = {
            "table": result.table_name,
            "rows": result.rows,
            "total": result.total,
            "offset": crud_request.page.offset,
            "count": len(result.rows),
        }
    elif result.operation == Operation.DELETE:
        body = {"table": result.table_name, "affected": result.affected}
    else:
        body = {"table": result.table_name, "row": result.row}
    return JSONResponse(status_code=result.http_status, content=jsonable_encoder(body))


# ---- Catalog ----

@router.get("/tables")
def list_tables(
    identity: Identity = Depends(require_dispatch_identity),
    catalog: TableCatalog = Depends(get_catalog),
):
    """Names of the tables registered in the catalog."""
    return {"tables": catalog.table_names()}


@router.get("/tables/{table}")
def describe_table(
    table: str,
    identity: Identity = Depends(require_dispatch_identity),
    catalog: TableCatalog = Depends(get_catalog),
):
    """Describe one catalog table (columns, types, primary key)."""
    return catalog.describe(table).to_dict()


@router.post("/catalog/reload")
def reload_catalog(
    identity: Identity = Depends(require_admin),
    catalog: TableCatalog = Depends(get_catalog),
):
    """Re-read the trusted catalog source (admin only)."""
    count = catalog.reload()
    cache_service.publish_json("dyncrud:catalog", {"event": "reloaded", "tables": count, "by": identity.actor})
    return {"message": "Catalog reloaded", "tables": count}


# ---- Rows ----

@router.get("/tables/{table}/rows")
def list_rows(
    table: str,
    request: Request,
    where: List[str] = Query([]),
    sort: Optional[str] = Query(None),
    direction: str = Query("asc"),
    offset: int = Query(0),
    limit: Optional[int] = Query(None),
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    """LIST rows with ``where=col:op:value`` filters, one sort column, and an offset window."""
    crud_request = _crud_request(
        request, identity, table, Operation.LIST,
        filters=parse_where(where),
        sort=Sort(sort, direction) if sort else None,
        page=Page(offset=offset, limit=limit),
    )
    return render_result(executor.execute(crud_request), crud_request)


@router.get("/tables/{table}/rows/{key}")
def read_row(
    table: str,
    key: str,
    request: Request,
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    crud_request = _crud_request(request, identity, table, Operation.READ, key=key)
    return render_result(executor.execute(crud_request), crud_request)


@router.post("/tables/{table}/rows")
def create_row(
    table: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    crud_request = _crud_request(request, identity, table, Operation.CREATE, payload=payload)
    return render_result(executor.execute(crud_request), crud_request)


@router.patch("/tables/{table}/rows/{key}")
def update_row(
    table: str,
    key: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    """Patch the given columns of one row; other columns are left unchanged."""
    crud_request = _crud_request(request, identity, table, Operation.UPDATE, key=key, payload=payload)
    return render_result(executor.execute(crud_request), crud_request)


@router.delete("/tables/{table}/rows/{key}")
def delete_row(
    table: str,
    key: str,
    request: Request,
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    crud_request = _crud_request(request, identity, table, Operation.DELETE, key=key)
    return render_result(executor.execute(crud_request), crud_request)


# ---- Exploration gateway ----

@router.get("/explore")
def explore():
    """Describe the gateway. Public; never lists catalog contents."""
    return {
        "operations": [op.value for op in Operation],
        "filter_operators": [op.value for op in FilterOperator],
        "envelope": {
            "operation": "LIST | READ | CREATE | UPDATE | DELETE",
            "table": "string",
            "key": "primary key value (READ, UPDATE, DELETE)",
            "payload": "object of column -> value (CREATE, UPDATE)",
            "filters": [{"column": "string", "operator": "eq", "value": "any"}],
            "sort": {"column": "string", "direction": "asc | desc"},
            "offset": 0,
            "limit": "integer",
        },
        "authentication": "Bearer token required for POST",
    }


@router.post("/explore")
def explore_dispatch(
    envelope: CrudEnvelope,
    request: Request,
    identity: Identity = Depends(require_dispatch_identity),
    executor: CrudExecutor = Depends(get_executor),
):
    """Dispatch one operation envelope to the executor."""
    crud_request = _crud_request(
        request, identity, envelope.table, Operation(envelope.operation.upper()),
        key=envelope.key,
        payload=envelope.payload,
        filters=[Filter(f.column, f.operator, f.value) for f in envelope.filters],
        sort=Sort(envelope.sort.column, envelope.sort.direction) if envelope.sort else None,
        page=Page(offset=envelope.offset, limit=envelope.limit),
    )
    return render_result(executor.execute(crud_request), crud_request)
