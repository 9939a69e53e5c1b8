#!/usr/bin/env python3
"""
rowferry Schema Catalog

Loads and saves the schema snapshot file produced by schema extraction and
serves TableSchema objects to the migration engine.

The modification-timestamp capability of each table is decided here, once,
when the snapshot is loaded: an explicit declaration wins, otherwise the
first temporal column whose name matches a known pattern is flagged.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Iterable

from core.errors import ConfigurationError, SchemaNotFoundError
from core.schema_ir import ColumnSpec, TableSchema
from core.type_registry import TypeRegistry

logger = logging.getLogger(__name__)

TIMESTAMP_NAME_PATTERNS = (
    'updatedat',
    'updated_at',
    'dataalteracao',
    'datamodificacao',
    'modifiedat',
    'modified_at',
    'last_modified',
)


def detect_timestamp_column(columns: Iterable[ColumnSpec], source_dialect: str = 'mssql') -> Optional[str]:
    """Name of the first temporal column matching a modification pattern, if any"""
    for column in columns:
        lowered = column.name.lower()
        if not any(pattern in lowered for pattern in TIMESTAMP_NAME_PATTERNS):
            continue
        if TypeRegistry.is_temporal(source_dialect, column.source_type):
            return column.name
        logger.debug(f"Column {column.name} matches a timestamp pattern but is {column.source_type}, ignored")
    return None


class SchemaCatalog:
    """Read-only view over a schema snapshot"""

    def __init__(self, schemas: Dict[str, TableSchema], source_dialect: str = 'mssql',
                 path: Optional[str] = None):
        self._schemas = schemas
        self.source_dialect = source_dialect
        self.path = path

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, dict], source_dialect: str = 'mssql',
                      timestamp_columns: Optional[Dict[str, str]] = None,
                      path: Optional[str] = None) -> 'SchemaCatalog':
        timestamp_columns = timestamp_columns or {}
        schemas = {}
        for key, entry in snapshot.items():
            name = entry.get('table_name', key)
            columns = [ColumnSpec.from_snapshot(c) for c in entry.get('columns', [])]
            _resolve_timestamp_capability(name, columns, timestamp_columns.get(name), source_dialect)
            schemas[name] = TableSchema(
                name=name,
                expected_row_count=int(entry.get('row_count') or 0),
                columns=columns,
                target_create_statement=entry.get('create_sql', ''),
                metadata={k: v for k, v in entry.items()
                          if k not in ('table_name', 'row_count', 'columns', 'create_sql')},
            )
        return cls(schemas, source_dialect=source_dialect, path=path)

    @classmethod
    def load(cls, path: str, source_dialect: str = 'mssql',
             timestamp_columns: Optional[Dict[str, str]] = None) -> 'SchemaCatalog':
        """Load a snapshot written by ``save`` or by schema extraction"""
        if not os.path.exists(path):
            raise ConfigurationError(
                f"Schema snapshot not found: {path}. Run 'rowferry extract-schema' first.")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                snapshot = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Schema snapshot {path} is not valid JSON: {e}")

        catalog = cls.from_snapshot(snapshot, source_dialect, timestamp_columns, path)
        logger.info(f"Loaded schema for {len(catalog)} tables from {path}")
        return catalog

    def save(self, path: Optional[str] = None) -> str:
        """Write the snapshot JSON plus a combined CREATE script next to it"""
        path = path or self.path
        if not path:
            raise ConfigurationError("No schema snapshot path configured")
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        snapshot = {schema.name: schema.to_snapshot() for schema in self._schemas.values()}
        with open(target, 'w', encoding='utf-8') as f:
            json.dump(snapshot, f, indent=2, default=str)

        script = '\n\n'.join(
            f"-- Table: {s.name} ({s.expected_row_count} rows)\n{s.target_create_statement}"
            for s in self._schemas.values()
        )
        target.with_suffix('.sql').write_text(script + '\n', encoding='utf-8')

        self.path = str(target)
        logger.info(f"Schema snapshot saved to {target}")
        return self.path

    def get_schema(self, table_name: str) -> TableSchema:
        schema = self._schemas.get(table_name)
        if schema is None:
            raise SchemaNotFoundError(table_name)
        return schema

    def get_all_schemas(self) -> List[TableSchema]:
        """All schemas, smallest expected row count first; ties keep snapshot order"""
        return sorted(self._schemas.values(), key=lambda s: s.expected_row_count)

    def table_names(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


def _resolve_timestamp_capability(table: str, columns: List[ColumnSpec],
                                  declared: Optional[str], source_dialect: str) -> None:
    """Leave at most one column flagged as the modification timestamp"""
    if declared:
        names = [c.name for c in columns]
        if declared not in names:
            raise ConfigurationError(
                f"Timestamp column {declared!r} declared for {table} does not exist",
                {'table': table, 'columns': names})
        chosen = declared
    else:
        flagged = [c.name for c in columns if c.is_modification_timestamp]
        chosen = flagged[0] if flagged else detect_timestamp_column(columns, source_dialect)
        if len(flagged) > 1:
            logger.warning(f"{table}: several timestamp columns flagged {flagged}, using {chosen}")

    for column in columns:
        column.is_modification_timestamp = column.name == chosen
    if chosen:
        logger.debug(f"{table}: modification timestamp column is {chosen}")
