"""
Migration checkpoint resolution.

Every run derives its resume point from the live target: row count,
highest identity value and newest modification timestamp. Nothing about
progress is persisted between runs.
"""

import logging
from typing import Any, Optional

from core.errors import MigrationError, TableNotFoundError
from core.schema_ir import MigrationState, MigrationStatus, TableSchema
from core.type_registry import format_timestamp

logger = logging.getLogger(__name__)


class CheckpointResolver:
    """Computes a MigrationStatus for a table from the target session"""

    def __init__(self, target):
        self.target = target
        self.dialect = target.dialect

    def resolve(self, schema: TableSchema) -> MigrationStatus:
        table = schema.name
        try:
            count = self._count(table)
        except TableNotFoundError:
            logger.info(f"{table}: target table does not exist")
            return MigrationStatus(MigrationState.NO_TARGET_TABLE, 0, schema.expected_row_count)

        if count == 0:
            return MigrationStatus(MigrationState.EMPTY, 0, schema.expected_row_count)

        last_id = None
        identity = schema.identity_column
        if identity is not None:
            last_id = self._max(table, identity.name)

        last_ts = None
        ts_column = schema.timestamp_column
        if ts_column is not None:
            try:
                last_ts = format_timestamp(self._max(table, ts_column.name))
            except MigrationError as e:
                logger.warning(f"{table}: could not read MAX({ts_column.name}), ignoring timestamp watermark: {e.message}")

        state = MigrationState.NEEDS_SYNC if count >= schema.expected_row_count else MigrationState.PARTIAL
        status = MigrationStatus(state, count, schema.expected_row_count, last_id, last_ts)
        logger.debug(f"{table}: {state.value}, {count}/{schema.expected_row_count} rows, "
                     f"last id {last_id}, last timestamp {last_ts}")
        return status

    def _count(self, table: str) -> int:
        rows = self.target.query(self.dialect.count_sql(table), table=table)
        return int(rows[0]['row_count']) if rows else 0

    def _max(self, table: str, column: str) -> Optional[Any]:
        rows = self.target.query(self.dialect.max_sql(table, column), table=table)
        return rows[0]['max_value'] if rows else None
