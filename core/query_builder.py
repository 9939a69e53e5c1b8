"""
Incremental selection queries.

Turns a MigrationStatus into the source-side SELECT that fetches only the
rows still missing from, or stale in, the target.
"""

import logging
from typing import List

from core.dialects import Dialect
from core.schema_ir import MigrationState, MigrationStatus, SelectionQuery, TableSchema

logger = logging.getLogger(__name__)


class IncrementalQueryBuilder:
    """
    Builds source SELECTs for one table.

    Predicates:
      identity watermark   ``id > last_id``
      timestamp watermark  ``ts > last_ts``
    In needs_sync the timestamp predicate alone is used when available. In
    any other state both are OR-ed together. Tables with neither column
    page positionally from the target row count (partial) or from zero.
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    def order_column(self, schema: TableSchema) -> str:
        if schema.identity_column is not None:
            return schema.identity_column.name
        if schema.timestamp_column is not None:
            return schema.timestamp_column.name
        return schema.columns[0].name

    def _id_predicate(self, schema: TableSchema, status: MigrationStatus):
        identity = schema.identity_column
        if identity is None or status.last_migrated_id is None:
            return None
        return f"{self.dialect.quote(identity.name)} > {self.dialect.placeholder}", status.last_migrated_id

    def _ts_predicate(self, schema: TableSchema, status: MigrationStatus):
        ts_column = schema.timestamp_column
        if ts_column is None or status.last_migrated_timestamp is None:
            return None
        return f"{self.dialect.quote(ts_column.name)} > {self.dialect.placeholder}", status.last_migrated_timestamp

    def _select(self, schema: TableSchema, predicate: str = "", params=(), offset: int = 0) -> SelectionQuery:
        order_by = self.order_column(schema)
        sql = self.dialect.select_sql(schema.name, schema.column_names, predicate, order_by, offset)
        return SelectionQuery(sql=sql, params=tuple(params), order_by=order_by,
                              predicate=predicate, offset=offset)

    def build(self, schema: TableSchema, status: MigrationStatus) -> SelectionQuery:
        """Single query covering every row that may need applying"""
        id_pred = self._id_predicate(schema, status)
        ts_pred = self._ts_predicate(schema, status)

        if status.state == MigrationState.NEEDS_SYNC and ts_pred:
            return self._select(schema, ts_pred[0], (ts_pred[1],))
        if id_pred and ts_pred:
            return self._select(schema, f"({id_pred[0]} OR {ts_pred[0]})", (id_pred[1], ts_pred[1]))
        if id_pred:
            return self._select(schema, id_pred[0], (id_pred[1],))
        if ts_pred:
            return self._select(schema, ts_pred[0], (ts_pred[1],))

        if schema.identity_column is None and schema.timestamp_column is None:
            # Positional paging cannot see updates, and rescans from zero
            # once the target is complete
            offset = status.current_target_row_count if status.state == MigrationState.PARTIAL else 0
            if offset:
                logger.info(f"{schema.name}: no identity or timestamp column, resuming at offset {offset}")
            return self._select(schema, offset=offset)

        return self._select(schema)

    def build_passes(self, schema: TableSchema, status: MigrationStatus) -> List[SelectionQuery]:
        """
        Same row set as ``build`` but with the OR split into a new-row pass
        and an updated-row pass, for sources that scan on OR predicates.
        """
        id_pred = self._id_predicate(schema, status)
        ts_pred = self._ts_predicate(schema, status)
        if status.state == MigrationState.NEEDS_SYNC or not (id_pred and ts_pred):
            return [self.build(schema, status)]

        identity = self.dialect.quote(schema.identity_column.name)
        ph = self.dialect.placeholder
        return [
            self._select(schema, id_pred[0], (id_pred[1],)),
            self._select(schema, f"{ts_pred[0]} AND {identity} <= {ph}", (ts_pred[1], id_pred[1])),
        ]
