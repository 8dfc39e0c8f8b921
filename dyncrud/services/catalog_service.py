"""Table catalog — the trusted registry of tables the dynamic CRUD API may touch.

The catalog is the only source of identifiers that may appear in a generated
statement. It is loaded from a trusted source (a JSON file shipped with the
deployment, or reflection of an allow-listed set of tables) and is read-only
afterwards; ``reload()`` builds a complete new snapshot and swaps it in one
assignment.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from dyncrud.core.config import settings
from dyncrud.core.exceptions import CatalogError, TableNotAvailableError
from dyncrud.models import PROTECTED_TABLES

logger = logging.getLogger("dyncrud.catalog")

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COLUMN_TYPES = ("integer", "float", "decimal", "string", "text", "boolean", "date", "datetime")

SENSITIVE_COLUMN_NAMES = frozenset({
    "password", "password_hash", "hashed_password", "secret", "secret_key",
    "access_key", "api_key", "token", "refresh_token", "token_hash",
})

_SA_TYPES: Dict[str, Callable[[Optional[int]], sa.types.TypeEngine]] = {
    "integer": lambda _: sa.Integer(),
    "float": lambda _: sa.Float(),
    "decimal": lambda _: sa.Numeric(),
    "string": lambda length: sa.String(length),
    "text": lambda _: sa.Text(),
    "boolean": lambda _: sa.Boolean(),
    "date": lambda _: sa.Date(),
    "datetime": lambda _: sa.DateTime(),
}


@dataclass(frozen=True)
class ColumnSpec:
    """Allowed shape of one column."""

    name: str
    type: str
    nullable: bool = True
    max_length: Optional[int] = None
    generated: bool = False  # filled by the storage engine (autoincrement, server default)

    @property
    def required_on_create(self) -> bool:
        return not self.nullable and not self.generated


@dataclass(frozen=True)
class TableDescriptor:
    """One fully described catalog entry."""

    name: str
    columns: Mapping[str, ColumnSpec]
    primary_key_column: str
    table: sa.Table = field(compare=False, repr=False, default=None)

    def column(self, name: Optional[str]) -> Optional[ColumnSpec]:
        """Case-insensitive column lookup returning the canonical spec."""
        if not name:
            return None
        spec = self.columns.get(name)
        if spec is not None:
            return spec
        lowered = name.lower()
        for col_name, col_spec in self.columns.items():
            if col_name.lower() == lowered:
                return col_spec
        return None

    @property
    def primary_key(self) -> ColumnSpec:
        return self.columns[self.primary_key_column]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "primary_key": self.primary_key_column,
            "columns": [
                {
                    "name": c.name,
                    "type": c.type,
                    "nullable": c.nullable,
                    "max_length": c.max_length,
                    "generated": c.generated,
                    "primary_key": c.name == self.primary_key_column,
                }
                for c in self.columns.values()
            ],
        }


def _check_identifier(kind: str, name: Any) -> str:
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise CatalogError(f"Invalid {kind} identifier in catalog: {name!r}")
    return name


def build_descriptor(
    name: str,
    primary_key: str,
    columns: Iterable[ColumnSpec],
) -> TableDescriptor:
    """Validate a table definition and freeze it into a descriptor.

    Raises:
        CatalogError: if the definition is not complete and safe.
    """
    _check_identifier("table", name)
    if name.lower() in PROTECTED_TABLES:
        raise CatalogError(f"Table '{name}' is reserved and cannot be registered")

    kept: Dict[str, ColumnSpec] = {}
    for spec in columns:
        _check_identifier("column", spec.name)
        if spec.type not in COLUMN_TYPES:
            raise CatalogError(f"Column '{name}.{spec.name}' has unsupported type '{spec.type}'")
        if spec.name.lower() in {c.lower() for c in kept}:
            raise CatalogError(f"Column '{name}.{spec.name}' is declared twice")
        if spec.name.lower() in SENSITIVE_COLUMN_NAMES and spec.name != primary_key:
            logger.info("Catalog: hiding sensitive column %s.%s", name, spec.name)
            continue
        kept[spec.name] = spec

    if primary_key not in kept:
        raise CatalogError(f"Table '{name}' must describe its primary key column")

    metadata = sa.MetaData()
    table = sa.Table(
        name,
        metadata,
        *[
            sa.Column(
                spec.name,
                _SA_TYPES[spec.type](spec.max_length),
                primary_key=spec.name == primary_key,
                autoincrement=spec.generated if spec.name == primary_key else False,
                nullable=spec.nullable,
            )
            for spec in kept.values()
        ],
    )
    return TableDescriptor(
        name=name,
        columns=MappingProxyType(kept),
        primary_key_column=primary_key,
        table=table,
    )


def load_from_file(path: str) -> List[TableDescriptor]:
    """Load descriptors from a JSON catalog document.

    Format::

        {"tables": [
            {"name": "widgets", "primary_key": "id",
             "columns": {"id": {"type": "integer", "nullable": false, "generated": true},
                         "name": {"type": "string", "nullable": false, "max_length": 100}}}
        ]}

    Any invalid entry fails the whole load.
    """
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise CatalogError(f"Cannot read catalog file {path}: {e}") from e

    descriptors = []
    for entry in document.get("tables", []):
        if not isinstance(entry, dict) or not isinstance(entry.get("columns"), dict):
            raise CatalogError(f"Malformed catalog entry: {entry!r}")
        columns = []
        for col_name, col_def in entry["columns"].items():
            col_def = col_def or {}
            columns.append(ColumnSpec(
                name=col_name,
                type=str(col_def.get("type", "string")).lower(),
                nullable=bool(col_def.get("nullable", True)),
                max_length=col_def.get("max_length"),
                generated=bool(col_def.get("generated", False)),
            ))
        descriptors.append(build_descriptor(
            entry.get("name"), entry.get("primary_key", "id"), columns,
        ))
    return descriptors


def _type_name(sa_type: sa.types.TypeEngine) -> Optional[str]:
    if isinstance(sa_type, sa.Boolean):
        return "boolean"
    if isinstance(sa_type, sa.Integer):
        return "integer"
    if isinstance(sa_type, sa.Float):
        return "float"
    if isinstance(sa_type, sa.Numeric):
        return "decimal"
    if isinstance(sa_type, sa.DateTime):
        return "datetime"
    if isinstance(sa_type, sa.Date):
        return "date"
    if isinstance(sa_type, sa.Text):
        return "text"
    if isinstance(sa_type, sa.String):
        return "string"
    return None


def load_from_database(engine: Engine, table_names: Iterable[str]) -> List[TableDescriptor]:
    """Reflect an allow-listed set of tables.

    Tables that are missing, reserved, lack a single-column primary key, or use
    column types the builder cannot bind are skipped with a warning.
    """
    inspector = sa.inspect(engine)
    existing = {name.lower(): name for name in inspector.get_table_names()}
    descriptors = []

    for requested in table_names:
        name = existing.get(requested.lower())
        if name is None:
            logger.warning("Catalog: table %s not found in database, skipping", requested)
            continue
        pk_cols = inspector.get_pk_constraint(name).get("constrained_columns") or []
        if len(pk_cols) != 1:
            logger.warning("Catalog: table %s needs exactly one primary key column, skipping", name)
            continue

        columns = []
        unsupported = []
        for col in inspector.get_columns(name):
            type_name = _type_name(col["type"])
            if type_name is None:
                unsupported.append(col["name"])
                continue
            is_pk = col["name"] == pk_cols[0]
            autoincrement = col.get("autoincrement", "auto")
            columns.append(ColumnSpec(
                name=col["name"],
                type=type_name,
                nullable=bool(col.get("nullable", True)),
                max_length=getattr(col["type"], "length", None) if type_name == "string" else None,
                generated=col.get("default") is not None
                or (is_pk and type_name == "integer" and autoincrement is not False),
            ))
        if unsupported:
            logger.warning("Catalog: table %s has unsupported column types %s, skipping", name, unsupported)
            continue
        try:
            descriptors.append(build_descriptor(name, pk_cols[0], columns))
        except CatalogError as e:
            logger.warning("Catalog: table %s rejected: %s", name, e.message)
    return descriptors


class TableCatalog:
    """Immutable-after-load registry of table descriptors.

    ``loader`` returns the complete list of descriptors from the trusted source.
    """

    def __init__(self, loader: Callable[[], List[TableDescriptor]]):
        self._loader = loader
        self._tables: Mapping[str, TableDescriptor] = MappingProxyType({})
        self.reload()

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[TableDescriptor]) -> "TableCatalog":
        frozen = list(descriptors)
        return cls(lambda: frozen)

    @classmethod
    def from_settings(cls, engine: Optional[Engine] = None) -> "TableCatalog":
        """Build the catalog configured by CATALOG_SOURCE."""
        if settings.CATALOG_SOURCE == "reflect":
            if engine is None:
                from dyncrud.db.session import engine as default_engine
                engine = default_engine
            tables = list(settings.CATALOG_TABLES)
            return cls(lambda: load_from_database(engine, tables))
        if settings.CATALOG_SOURCE == "file":
            path = settings.CATALOG_FILE
            return cls(lambda: load_from_file(path))
        raise CatalogError(f"Unknown CATALOG_SOURCE '{settings.CATALOG_SOURCE}'")

    def reload(self) -> int:
        """Re-read the trusted source and swap in the new snapshot.

        On failure the previous snapshot stays in place and the error propagates.
        """
        snapshot: Dict[str, TableDescriptor] = {}
        for descriptor in self._loader():
            key = descriptor.name.lower()
            if key in snapshot:
                raise CatalogError(f"Table '{descriptor.name}' is registered twice")
            snapshot[key] = descriptor
        self._tables = MappingProxyType(snapshot)
        logger.info("Catalog loaded with %d table(s)", len(snapshot))
        return len(snapshot)

    def describe(self, table_name: Optional[str]) -> TableDescriptor:
        """Return the descriptor for ``table_name``.

        Raises:
            TableNotAvailableError: if the table is not registered.
        """
        descriptor = self._tables.get(table_name.lower()) if table_name else None
        if descriptor is None:
            raise TableNotAvailableError()
        return descriptor

    def is_column_allowed(self, table_name: str, column_name: str) -> bool:
        descriptor = self._tables.get(table_name.lower()) if table_name else None
        return descriptor is not None and descriptor.column(column_name) is not None

    def table_names(self) -> List[str]:
        return sorted(d.name for d in self._tables.values())

    def __contains__(self, table_name: str) -> bool:
        return bool(table_name) and table_name.lower() in self._tables

    def __len__(self) -> int:
        return len(self._tables)
