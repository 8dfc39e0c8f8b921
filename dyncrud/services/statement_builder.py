"""Statement builder — turns a validated CRUD request into a parameterized statement.

Identifiers come only from the table descriptor (already vetted by the
catalog); every scalar the caller supplies is bound as a parameter. Statements
are SQLAlchemy Core constructs over the descriptor's ``Table`` so quoting is
done by the dialect.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.sql import Executable

from dyncrud.core.config import settings
from dyncrud.core.exceptions import FieldError, ValidationError
from dyncrud.executor.types import CrudRequest, FilterOperator, Operation, SortDirection
from dyncrud.services.catalog_service import ColumnSpec, TableDescriptor

_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}
_RANGE_OPERATORS = {FilterOperator.GT, FilterOperator.GE, FilterOperator.LT, FilterOperator.LE}


class CoercionError(Exception):
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message


@dataclass
class ParameterizedStatement:
    """A statement ready for execution plus what the executor needs around it."""

    operation: Operation
    descriptor: TableDescriptor
    statement: Executable
    count_statement: Optional[Executable] = None
    key_value: Any = None
    values: Dict[str, Any] = field(default_factory=dict)
    offset: int = 0
    limit: Optional[int] = None

    @property
    def sql(self) -> str:
        """Statement text with placeholders, as compiled by the default dialect."""
        return str(self.statement.compile())

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.statement.compile().params)


def coerce_value(spec: ColumnSpec, value: Any) -> Any:
    """Coerce a client value to the column's type.

    Raises:
        CoercionError: if the value cannot represent the column type.
    """
    if value is None:
        if not spec.nullable:
            raise CoercionError("NULL_NOT_ALLOWED", f"Column '{spec.name}' cannot be null")
        return None

    kind = spec.type
    if kind == "integer":
        if isinstance(value, bool):
            raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INT_RE.match(value.strip()):
            return int(value.strip())
        raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects an integer")

    if kind in ("float", "decimal"):
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects a number")
        try:
            return Decimal(str(value).strip()) if kind == "decimal" else float(value)
        except (InvalidOperation, ValueError):
            raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects a number")

    if kind == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
            return value.strip().lower() in _TRUE
        raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects a boolean")

    if kind == "date":
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                pass
        raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects an ISO date")

    if kind == "datetime":
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip())
            except ValueError:
                pass
        raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects an ISO datetime")

    # string / text
    if not isinstance(value, str):
        raise CoercionError("TYPE_MISMATCH", f"Column '{spec.name}' expects a string")
    if spec.max_length is not None and len(value) > spec.max_length:
        raise CoercionError(
            "TOO_LONG", f"Column '{spec.name}' accepts at most {spec.max_length} characters"
        )
    return value


class StatementBuilder:
    """Builds parameterized statements for the five supported operations."""

    def __init__(
        self,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        self.max_page_size = max_page_size or settings.CRUD_MAX_PAGE_SIZE
        self.default_page_size = min(
            default_page_size or settings.CRUD_DEFAULT_PAGE_SIZE, self.max_page_size
        )

    def build(self, request: CrudRequest, descriptor: TableDescriptor) -> ParameterizedStatement:
        """Build the statement for ``request``.

        Raises:
            ValidationError: with one FieldError per problem found.
        """
        errors: List[FieldError] = []
        values = self._resolve_payload(request.payload or {}, descriptor, errors)

        builders = {
            Operation.LIST: self._build_list,
            Operation.READ: self._build_read,
            Operation.CREATE: self._build_create,
            Operation.UPDATE: self._build_update,
            Operation.DELETE: self._build_delete,
        }
        statement = builders[Operation(request.operation)](request, descriptor, values, errors)
        if errors:
            raise ValidationError(errors)
        return statement

    # ---- helpers ----

    def _resolve_payload(
        self,
        payload: Dict[str, Any],
        descriptor: TableDescriptor,
        errors: List[FieldError],
    ) -> Dict[str, Any]:
        """Map payload keys to canonical column names and coerce the values."""
        values: Dict[str, Any] = {}
        for raw_name, raw_value in payload.items():
            spec = descriptor.column(raw_name)
            if spec is None:
                errors.append(FieldError(raw_name, "UNKNOWN_COLUMN", f"Unknown column '{raw_name}'"))
                continue
            if spec.name in values:
                errors.append(FieldError(raw_name, "DUPLICATE_COLUMN", f"Column '{spec.name}' given twice"))
                continue
            try:
                values[spec.name] = coerce_value(spec, raw_value)
            except CoercionError as m:
                errors.append(FieldError(spec.name, m.code, m.message))
        return values

    def _key(
        self,
        request: CrudRequest,
        descriptor: TableDescriptor,
        values: Dict[str, Any],
        errors: List[FieldError],
    ) -> Tuple[bool, Any]:
        """Resolve the primary key value from the request key or the payload."""
        pk = descriptor.primary_key
        in_payload = pk.name in values
        if request.key is None and not in_payload:
            errors.append(FieldError(pk.name, "MISSING_PRIMARY_KEY", f"Primary key '{pk.name}' is required"))
            return False, None
        if request.key is None:
            key = values[pk.name]
        else:
            try:
                key = coerce_value(pk, request.key)
            except CoercionError as m:
                errors.append(FieldError(pk.name, m.code, m.message))
                return False, None
            if in_payload and values[pk.name] != key:
                errors.append(FieldError(pk.name, "KEY_MISMATCH", "Payload key does not match the addressed row"))
                return False, None
        if key is None:
            errors.append(FieldError(pk.name, "MISSING_PRIMARY_KEY", f"Primary key '{pk.name}' is required"))
            return False, None
        return True, key

    def _condition(
        self,
        descriptor: TableDescriptor,
        column_name: str,
        operator: str,
        value: Any,
        errors: List[FieldError],
    ):
        spec = descriptor.column(column_name)
        if spec is None:
            errors.append(FieldError(column_name, "UNKNOWN_COLUMN", f"Unknown column '{column_name}'"))
            return None
        try:
            op = FilterOperator(str(operator).lower())
        except ValueError:
            errors.append(FieldError(spec.name, "UNSUPPORTED_OPERATOR", f"Unsupported operator '{operator}'"))
            return None

        col = descriptor.table.c[spec.name]
        if op == FilterOperator.LIKE:
            if spec.type not in ("string", "text") or not isinstance(value, str):
                errors.append(FieldError(spec.name, "UNSUPPORTED_OPERATOR", "'like' needs a text column and a string pattern"))
                return None
            return col.like(value)

        if value is None and op in _RANGE_OPERATORS:
            errors.append(FieldError(spec.name, "TYPE_MISMATCH", "Range filters need a value"))
            return None
        try:
            # Filters may compare against NULL even on non-nullable columns
            coerced = None if value is None else coerce_value(
                ColumnSpec(spec.name, spec.type, True, None), value
            )
        except CoercionError as m:
            errors.append(FieldError(spec.name, m.code, m.message))
            return None

        if op == FilterOperator.EQ:
            return col.is_(None) if coerced is None else col == coerced
        if op == FilterOperator.NE:
            return col.is_not(None) if coerced is None else col != coerced
        if op == FilterOperator.GT:
            return col > coerced
        if op == FilterOperator.GE:
            return col >= coerced
        if op == FilterOperator.LT:
            return col < coerced
        return col <= coerced

    # ---- operations ----

    def _build_list(self, request, descriptor, values, errors) -> ParameterizedStatement:
        table = descriptor.table
        pk_col = table.c[descriptor.primary_key_column]

        conditions = []
        for flt in request.filters or []:
            cond = self._condition(descriptor, flt.column, flt.operator, flt.value, errors)
            if cond is not None:
                conditions.append(cond)

        order_by = []
        sorted_on_key = False
        if request.sort is not None:
            spec = descriptor.column(request.sort.column)
            direction = str(request.sort.direction or "").lower()
            if spec is None:
                errors.append(FieldError(request.sort.column, "UNKNOWN_COLUMN", f"Unknown column '{request.sort.column}'"))
            elif direction not in (SortDirection.ASC.value, SortDirection.DESC.value):
                errors.append(FieldError(spec.name, "INVALID_SORT", "Sort direction must be 'asc' or 'desc'"))
            else:
                sort_col = table.c[spec.name]
                order_by.append(sort_col.desc() if direction == SortDirection.DESC.value else sort_col.asc())
                sorted_on_key = spec.name == descriptor.primary_key_column
        if not sorted_on_key:
            # Primary key tie-breaker keeps offset pagination stable
            order_by.append(pk_col.asc())

        page = request.page
        offset = page.offset if page and page.offset is not None else 0
        limit = page.limit if page and page.limit is not None else self.default_page_size
        if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
            errors.append(FieldError("offset", "INVALID_PAGE", "Offset must be a non-negative integer"))
            offset = 0
        if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= self.max_page_size:
            errors.append(FieldError(
                "limit", "INVALID_PAGE", f"Limit must be between 1 and {self.max_page_size}"
            ))
            limit = self.default_page_size

        stmt = sa.select(*table.c).where(*conditions).order_by(*order_by).offset(offset).limit(limit)
        count_stmt = sa.select(sa.func.count()).select_from(table).where(*conditions)
        return ParameterizedStatement(
            operation=Operation.LIST,
            descriptor=descriptor,
            statement=stmt,
            count_statement=count_stmt,
            offset=offset,
            limit=limit,
        )

    def _build_read(self, request, descriptor, values, errors) -> ParameterizedStatement:
        ok, key = self._key(request, descriptor, values, errors)
        table = descriptor.table
        stmt = sa.select(*table.c).where(table.c[descriptor.primary_key_column] == key)
        return ParameterizedStatement(Operation.READ, descriptor, stmt, key_value=key if ok else None)

    def _build_create(self, request, descriptor, values, errors) -> ParameterizedStatement:
        if request.key is not None:
            errors.append(FieldError(
                descriptor.primary_key_column, "KEY_NOT_ALLOWED", "CREATE takes the primary key in the payload only"
            ))
        reported = {e.field for e in errors}
        for spec in descriptor.columns.values():
            if spec.required_on_create and spec.name not in values and spec.name not in reported:
                errors.append(FieldError(spec.name, "MISSING_REQUIRED", f"Column '{spec.name}' is required"))
        stmt = sa.insert(descriptor.table).values(values)
        return ParameterizedStatement(
            Operation.CREATE,
            descriptor,
            stmt,
            key_value=values.get(descriptor.primary_key_column),
            values=values,
        )

    def _build_update(self, request, descriptor, values, errors) -> ParameterizedStatement:
        ok, key = self._key(request, descriptor, values, errors)
        changes = {k: v for k, v in values.items() if k != descriptor.primary_key_column}
        if ok and not changes:
            errors.append(FieldError(None, "NOTHING_TO_UPDATE", "At least one non-key column must change"))
        table = descriptor.table
        stmt = (
            sa.update(table)
            .where(table.c[descriptor.primary_key_column] == key)
            .values(changes)
        )
        return ParameterizedStatement(Operation.UPDATE, descriptor, stmt, key_value=key, values=changes)

    def _build_delete(self, request, descriptor, values, errors) -> ParameterizedStatement:
        ok, key = self._key(request, descriptor, values, errors)
        table = descriptor.table
        stmt = sa.delete(table).where(table.c[descriptor.primary_key_column] == key)
        return ParameterizedStatement(Operation.DELETE, descriptor, stmt, key_value=key)
