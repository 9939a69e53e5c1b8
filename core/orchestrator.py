#!/usr/bin/env python3
"""
rowferry Table Orchestrator

Drives one table through

    PENDING -> RESOLVING -> SKIPPED
                         -> FETCHING -> APPLYING -> DONE

with FAILED reachable from any non-terminal state. Row-level failures are
counted, never fatal, unless their share of attempted rows passes the
configured ratio.
"""

import logging
from contextlib import closing
from typing import Callable, Optional

from core.batch_applier import BatchApplier, IdentifierRemap
from core.checkpoint import CheckpointResolver
from core.errors import (
    FailureThresholdError, MigrationError, TableMigrationError, TargetError
)
from core.query_builder import IncrementalQueryBuilder
from core.schema_ir import (
    MigrationState, ProgressEvent, TableResult, TableSchema, TableState
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class TableOrchestrator:
    """Migrates one table at a time from ``source`` to ``target``"""

    def __init__(self, source, target, remap: IdentifierRemap,
                 batch_size: int = 1000,
                 workers: int = 1,
                 max_failure_ratio: Optional[float] = 0.1,
                 split_passes: bool = False,
                 dry_run: bool = False,
                 progress_callback: Optional[ProgressCallback] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.source = source
        self.target = target
        self.remap = remap
        self.batch_size = batch_size
        self.workers = workers
        self.max_failure_ratio = max_failure_ratio
        self.split_passes = split_passes
        self.dry_run = dry_run
        self.progress_callback = progress_callback

        self.resolver = CheckpointResolver(target)
        self.query_builder = IncrementalQueryBuilder(source.dialect)

    def ensure_table(self, schema: TableSchema) -> None:
        """Create the target table; an existing table counts as success"""
        if not schema.target_create_statement:
            raise TableMigrationError(schema.name, "no CREATE statement in schema snapshot")
        try:
            self.target.execute(schema.target_create_statement, table=schema.name)
            logger.info(f"Created target table: {schema.name}")
        except TargetError as e:
            if 'already exists' not in e.message.lower():
                raise
            logger.info(f"Target table already exists: {schema.name}")

    def run(self, schema: TableSchema, result: Optional[TableResult] = None) -> TableResult:
        """Migrate one table; ``result`` is filled in place, also on failure"""
        result = result or TableResult(schema.name)
        try:
            self._run(schema, result)
        except TableMigrationError as e:
            result.state = TableState.FAILED
            result.error = e.message
            raise
        except MigrationError as e:
            result.state = TableState.FAILED
            result.error = e.message
            raise TableMigrationError(schema.name, e.message, e.code, e.details) from e
        except Exception as e:
            result.state = TableState.FAILED
            result.error = str(e)
            raise TableMigrationError(schema.name, f"unexpected error: {e}") from e
        return result

    def _run(self, schema: TableSchema, result: TableResult) -> None:
        table = schema.name

        if schema.expected_row_count == 0:
            if not self.dry_run:
                self.ensure_table(schema)
            result.state = TableState.SKIPPED
            logger.info(f"Skipping empty table: {table}")
            return

        result.state = TableState.RESOLVING
        status = self.resolver.resolve(schema)
        result.status = status
        logger.info(f"{table}: {status.state.value} ({status.current_target_row_count}/{status.expected_row_count} rows)")

        if status.state == MigrationState.NO_TARGET_TABLE and not self.dry_run:
            self.ensure_table(schema)

        result.state = TableState.FETCHING
        if self.split_passes:
            queries = self.query_builder.build_passes(schema, status)
        else:
            queries = [self.query_builder.build(schema, status)]

        with BatchApplier(self.target, self.remap, self.workers) as applier:
            statement = applier.plan_writes(schema, status)

            if self.dry_run:
                for query in queries:
                    logger.info(f"[dry-run] {table}: {statement.mode.value} rows from: {query.sql} {list(query.params)}")
                result.state = TableState.DONE
                return

            for pass_number, query in enumerate(queries, 1):
                logger.info(f"{table}: pass {pass_number}/{len(queries)} selecting {query.describe()}")
                self._apply_query(schema, query, statement, applier, result)

        result.state = TableState.DONE
        outcome = result.outcome
        if result.rows_fetched == 0:
            logger.info(f"{table}: up to date")
        else:
            logger.info(f"{table}: done, {outcome.inserted} inserted, {outcome.updated} updated, "
                        f"{outcome.skipped} skipped, {outcome.failed} failed")

    def _apply_query(self, schema, query, statement, applier, result: TableResult) -> None:
        table = schema.name
        base_count = result.status.current_target_row_count
        with closing(self.source.stream(query.sql, query.params, self.batch_size)) as batches:
            for rows in batches:
                result.state = TableState.APPLYING
                result.batches += 1
                result.rows_fetched += len(rows)
                outcome = applier.apply(schema, rows, statement)
                result.outcome.merge(outcome)
                logger.info(f"{table}: batch {result.batches} applied {len(rows)} rows")

                event = ProgressEvent(
                    table=table,
                    migrated=base_count + result.outcome.inserted,
                    expected=schema.expected_row_count,
                    batch_number=result.batches,
                    outcome=outcome,
                )
                logger.info(event.format())
                if self.progress_callback:
                    self.progress_callback(event)

                self._check_failure_ratio(table, result)

    def _check_failure_ratio(self, table: str, result: TableResult) -> None:
        if self.max_failure_ratio is None:
            return
        failed = result.outcome.failed
        attempted = result.outcome.attempted
        if attempted and failed / attempted > self.max_failure_ratio:
            raise FailureThresholdError(table, failed, attempted, self.max_failure_ratio)
