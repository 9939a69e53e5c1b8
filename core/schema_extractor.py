#!/usr/bin/env python3
"""
rowferry Schema Extractor

Reads table definitions and row counts from the source session and builds
the schema snapshot, including a target CREATE TABLE statement per table.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.dialects import get_dialect
from core.errors import TableNotFoundError
from core.schema_catalog import SchemaCatalog
from core.type_registry import TypeRegistry

logger = logging.getLogger(__name__)

# Source defaults with no portable target equivalent
_SKIPPED_DEFAULT_MARKERS = ('newid', 'getdate', 'getutcdate', 'sysdatetime', 'nextval', '::')

MYSQL_TABLE_OPTIONS = 'ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci'


def simplify_default(default_value: Optional[str]) -> Optional[str]:
    """Reduce a catalog default like ``((0))`` or ``('N')`` to a literal, or None"""
    if default_value is None:
        return None
    value = str(default_value).replace('(', '').replace(')', '').strip()
    if not value or value.upper() == 'NULL':
        return None
    if any(marker in value.lower() for marker in _SKIPPED_DEFAULT_MARKERS):
        return None
    return value


def generate_create_table(table_name: str, columns: Sequence[Dict[str, Any]],
                          source_dialect: str = 'mssql', target_dialect: str = 'mysql') -> str:
    """Render CREATE TABLE IF NOT EXISTS for the target from snapshot columns"""
    dialect = get_dialect(target_dialect)
    target = TypeRegistry.normalize_dialect(target_dialect)
    primary_keys = [c['column_name'] for c in columns if c.get('is_primary_key')]

    definitions = []
    inline_pk = False
    for col in columns:
        name = col['column_name']
        col_type = TypeRegistry.map_type(
            col['data_type'], col.get('max_length'), col.get('precision'), col.get('scale'),
            source_dialect=source_dialect, target_dialect=target_dialect,
        )
        definition = f"  {dialect.quote(name)} {col_type}"
        identity = bool(col.get('is_identity'))

        if identity and target == 'sqlite' and primary_keys in ([], [name]):
            # Only INTEGER PRIMARY KEY aliases the rowid
            definitions.append(f"  {dialect.quote(name)} INTEGER PRIMARY KEY AUTOINCREMENT")
            inline_pk = True
            continue

        if not col.get('is_nullable', True):
            definition += ' NOT NULL'

        if identity:
            if target == 'mysql':
                definition += ' AUTO_INCREMENT'
            elif target == 'postgres':
                definition += ' GENERATED BY DEFAULT AS IDENTITY'
        else:
            default = simplify_default(col.get('default_value'))
            if default is not None:
                definition += f" DEFAULT {default}"

        definitions.append(definition)

    if primary_keys and not inline_pk:
        definitions.append(f"  PRIMARY KEY ({dialect.quote_list(primary_keys)})")
    elif not primary_keys and target == 'mysql':
        # AUTO_INCREMENT requires a key
        identity_cols = [c['column_name'] for c in columns if c.get('is_identity')]
        if identity_cols:
            definitions.append(f"  PRIMARY KEY ({dialect.quote_list(identity_cols)})")

    sql = f"CREATE TABLE IF NOT EXISTS {dialect.quote(table_name)} (\n" + ',\n'.join(definitions) + "\n)"
    if target == 'mysql':
        sql += f" {MYSQL_TABLE_OPTIONS}"
    return sql + ';'


class SchemaExtractor:
    """Builds a SchemaCatalog from a live source session"""

    def __init__(self, source, target_dialect: str = 'mysql',
                 timestamp_columns: Optional[Dict[str, str]] = None):
        self.source = source
        self.source_dialect = source.dialect.name
        self.target_dialect = target_dialect
        self.timestamp_columns = timestamp_columns or {}

    def extract_table(self, table_name: str) -> Dict[str, Any]:
        """Snapshot entry for one table"""
        columns = self.source.get_columns(table_name)
        row_count = self.source.get_row_count(table_name)

        for col in columns:
            lossy, reason = TypeRegistry.is_lossy_conversion(
                self.source_dialect, col['data_type'], self.target_dialect)
            if lossy:
                logger.warning(f"{table_name}.{col['column_name']}: {reason}")

        identities = [c['column_name'] for c in columns if c['is_identity']]
        if len(identities) > 1:
            logger.warning(f"{table_name}: several identity columns {identities}, keeping {identities[0]}")
            for col in columns:
                col['is_identity'] = col['column_name'] == identities[0]

        return {
            'table_name': table_name,
            'row_count': row_count,
            'columns': columns,
            'create_sql': generate_create_table(
                table_name, columns, self.source_dialect, self.target_dialect),
        }

    def extract_all(self, tables: Optional[List[str]] = None) -> SchemaCatalog:
        """
        Extract every requested table (all source tables by default).

        Returns a catalog with the timestamp capability already resolved, so
        the saved snapshot carries explicit flags.
        """
        available = self.source.get_tables()
        selected = tables or available
        logger.info(f"Extracting schema for {len(selected)} tables")

        snapshot = {}
        for table_name in selected:
            if table_name not in available:
                raise TableNotFoundError(table_name, {'side': 'source'})
            entry = self.extract_table(table_name)
            logger.info(f"Extracted schema: {table_name} ({entry['row_count']} rows, {len(entry['columns'])} columns)")
            snapshot[table_name] = entry

        return SchemaCatalog.from_snapshot(
            snapshot, source_dialect=self.source_dialect, timestamp_columns=self.timestamp_columns)
