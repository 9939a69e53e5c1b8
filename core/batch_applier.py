#!/usr/bin/env python3
"""
rowferry Batch Applier

Applies slices of source rows to the target one row at a time:
- values are transcoded in schema column order
- the write mode is chosen once per table
- duplicate-key conflicts are counted as skipped, other row errors as failed
- new target identifiers that differ from the source are recorded in the
  run's IdentifierRemap

Rows of one slice may be written by a bounded thread pool; the call returns
only once every write of the slice has finished.
"""

import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from core.dialects import WriteStatement
from core.errors import DuplicateKeyError, RowWriteError
from core.schema_ir import BatchOutcome, MigrationState, MigrationStatus, TableSchema
from core.type_registry import transcode_row

logger = logging.getLogger(__name__)


class IdentifierRemap:
    """Thread-safe, append-only map of ``"table.sourceId"`` to the target identifier"""

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(table: str, source_id: Any) -> str:
        return f"{table}.{source_id}"

    def record(self, table: str, source_id: Any, target_id: Any) -> None:
        key = self.key(table, source_id)
        with self._lock:
            if key not in self._entries:
                self._entries[key] = target_id

    def get(self, table: str, source_id: Any) -> Optional[Any]:
        with self._lock:
            return self._entries.get(self.key(table, source_id))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def save(self, path: str) -> int:
        """Write the map as JSON via a temporary file and an atomic rename"""
        entries = self.snapshot()
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(target.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(entries, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
        logger.info(f"Saved {len(entries)} id mappings to {target}")
        return len(entries)


class BatchApplier:
    """Writes row slices of one table to the target session"""

    def __init__(self, target, remap: IdentifierRemap, workers: int = 1):
        self.target = target
        self.dialect = target.dialect
        self.remap = remap
        self.workers = max(int(workers), 1)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def plan_writes(self, schema: TableSchema, status: MigrationStatus) -> WriteStatement:
        """Pick the write statement for the whole table pass"""
        identity = schema.identity_column
        columns = schema.column_names
        if identity is None:
            return self.dialect.insert(schema.name, columns)
        if status.state == MigrationState.NEEDS_SYNC:
            return self.dialect.upsert(schema.name, columns, identity.name)
        return self.dialect.insert_ignore(schema.name, columns, identity.name)

    def apply(self, schema: TableSchema, rows: Sequence[Dict[str, Any]],
              statement: WriteStatement) -> BatchOutcome:
        """Apply ``rows`` and return their outcome counts; row errors never escape"""
        outcome = BatchOutcome()
        if not rows:
            return outcome

        identity = schema.identity_column
        identity_name = identity.name if identity is not None else None
        columns = schema.column_names

        def apply_row(row):
            source_id = row.get(identity_name) if identity_name else None
            values = transcode_row(row, columns)
            try:
                result = self.target.write(statement, values)
            except DuplicateKeyError as e:
                logger.debug(f"{schema.name}: duplicate row {source_id} skipped: {e.message}")
                self._count(outcome, 'skipped')
                return
            except RowWriteError as e:
                logger.error(f"{schema.name}: row {source_id if source_id is not None else _describe(row)} "
                             f"failed: {e.message}")
                self._count(outcome, 'failed')
                return

            if result.rows_affected == 0 and not result.was_update:
                self._count(outcome, 'skipped')
            elif result.was_update:
                self._count(outcome, 'updated')
            else:
                self._count(outcome, 'inserted')
                if (identity_name and result.inserted_id is not None and source_id is not None
                        and str(result.inserted_id) != str(source_id)):
                    self.remap.record(schema.name, source_id, result.inserted_id)

        if self.workers == 1:
            for row in rows:
                apply_row(row)
        else:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.workers,
                                                    thread_name_prefix='rowferry-apply')
            futures = [self._executor.submit(apply_row, row) for row in rows]
            errors = []
            for future in futures:
                # Collect every result so the slice is fully settled before returning
                error = future.exception()
                if error is not None:
                    errors.append(error)
            if errors:
                raise errors[0]

        return outcome

    def _count(self, outcome: BatchOutcome, field_name: str):
        with self._lock:
            setattr(outcome, field_name, getattr(outcome, field_name) + 1)


def _describe(row: Dict[str, Any]) -> str:
    items = list(row.items())[:3]
    return '{' + ', '.join(f"{k}={v!r}" for k, v in items) + (', ...}' if len(row) > 3 else '}')
