#!/usr/bin/env python3
"""
rowferry SQLite Adapter

SQLite session usable as migration source or target:
- get_tables(), get_columns() for schema extraction
- query() / stream() for reads
- write() for classified single-row writes

The connection runs in autocommit mode and is shared across worker
threads behind a lock.
"""

import sqlite3
import logging
import re
import threading
from decimal import Decimal
from typing import Dict, List, Any, Optional, Iterator, Sequence
from uuid import UUID

from core.dialects import SQLiteDialect, WriteStatement
from core.errors import DuplicateKeyError, RowWriteError, TableNotFoundError, SourceError, TargetError
from core.schema_ir import WriteMode, WriteResult

logger = logging.getLogger(__name__)

_NO_SUCH_TABLE = re.compile(r'no such table: (?:\w+\.)?(\S+)')
_TYPE_ARGS = re.compile(r'^\s*([A-Za-z ]+?)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$')

# sqlite3 binds neither type natively; REAL columns coerce the decimal text
sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(UUID, str)


class SQLiteAdapter:
    """SQLite adapter for rowferry sessions."""

    def __init__(
        self,
        database: str = ':memory:',
        timeout: float = 30.0,
        role: str = 'target',
        **kwargs
    ):
        """
        Initialize SQLite adapter.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            timeout: Busy timeout in seconds
            role: 'source' or 'target', selects the error class for session failures
        """
        self.database = database
        self.timeout = timeout
        self.role = role
        self.dialect = SQLiteDialect()
        self._error_cls = SourceError if role == 'source' else TargetError
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()
        logger.info(f"SQLite adapter initialized for {database} ({role})")

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._connection = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None
            )
            self._connection.row_factory = sqlite3.Row
            logger.debug(f"Connected to SQLite database: {self.database}")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite: {e}")
            raise self._error_cls(f"Failed to connect to SQLite database {self.database}: {e}")

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise self._error_cls(f"SQLite adapter for {self.database} is closed")
        return self._connection

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info(f"SQLite adapter closed ({self.role})")

    def _translate(self, e: sqlite3.Error, table: Optional[str] = None):
        match = _NO_SUCH_TABLE.search(str(e))
        if match:
            return TableNotFoundError(table or match.group(1), {'error': str(e)})
        return self._error_cls(f"SQLite error: {e}")

    def query(self, sql: str, params: Optional[Sequence[Any]] = None,
              table: Optional[str] = None) -> List[Dict[str, Any]]:
        """Execute a SELECT and return all rows as dictionaries"""
        with self._lock:
            try:
                cursor = self.connection.execute(sql, tuple(params or ()))
                return [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise self._translate(e, table)

    def stream(self, sql: str, params: Optional[Sequence[Any]] = None,
               batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        """Yield result rows in slices of ``batch_size``"""
        try:
            with self._lock:
                cursor = self.connection.execute(sql, tuple(params or ()))
            try:
                while True:
                    with self._lock:
                        rows = cursor.fetchmany(batch_size)
                    if not rows:
                        break
                    yield [dict(row) for row in rows]
            finally:
                cursor.close()
        except sqlite3.Error as e:
            raise self._translate(e)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None,
                table: Optional[str] = None) -> WriteResult:
        """Execute a non-row statement (DDL, maintenance)"""
        with self._lock:
            try:
                cursor = self.connection.execute(sql, tuple(params or ()))
                return WriteResult(rows_affected=max(cursor.rowcount, 0), inserted_id=cursor.lastrowid)
            except sqlite3.Error as e:
                raise self._translate(e, table)

    def execute_script(self, script: str) -> None:
        """Execute a multi-statement SQL script."""
        with self._lock:
            try:
                self.connection.executescript(script)
            except sqlite3.Error as e:
                raise self._translate(e)

    def write(self, statement: WriteStatement, values: Sequence[Any]) -> WriteResult:
        """
        Apply one row with ``statement`` and classify the outcome.

        SQLite reports one changed row for both branches of an upsert, so
        the key is probed first; the lock keeps probe and write together.
        """
        values = tuple(values)
        with self._lock:
            try:
                existed = False
                if statement.mode == WriteMode.UPSERT:
                    key_index = statement.columns.index(statement.key_column)
                    probe = (f"SELECT 1 FROM {self.dialect.quote(statement.table)} "
                             f"WHERE {self.dialect.quote(statement.key_column)} = ? LIMIT 1")
                    existed = self.connection.execute(probe, (values[key_index],)).fetchone() is not None

                cursor = self.connection.execute(statement.sql, values)
            except sqlite3.IntegrityError as e:
                message = str(e)
                if 'UNIQUE constraint failed' in message or 'PRIMARY KEY must be unique' in message:
                    raise DuplicateKeyError(message, {'table': statement.table})
                raise RowWriteError(f"Integrity error: {message}", {'table': statement.table})
            except sqlite3.OperationalError as e:
                if _NO_SUCH_TABLE.search(str(e)):
                    raise TableNotFoundError(statement.table)
                raise RowWriteError(f"SQLite error: {e}", {'table': statement.table})
            except sqlite3.Error as e:
                raise RowWriteError(f"SQLite error: {e}", {'table': statement.table})

            if cursor.rowcount == 0:
                return WriteResult(rows_affected=0)
            if existed:
                return WriteResult(rows_affected=cursor.rowcount, was_update=True)
            return WriteResult(rows_affected=cursor.rowcount, inserted_id=cursor.lastrowid)

    # Introspection

    def get_tables(self) -> List[str]:
        """Get list of user tables in database."""
        rows = self.query("""
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
            AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """)
        tables = [row['name'] for row in rows]
        logger.debug(f"Found {len(tables)} tables: {tables}")
        return tables

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        """
        Describe the columns of ``table_name`` in snapshot form.

        A single INTEGER PRIMARY KEY column aliases the rowid and is
        reported as the identity column.
        """
        rows = self.query(f"PRAGMA table_info({self.dialect.quote(table_name)})")
        if not rows:
            raise TableNotFoundError(table_name)

        pk_columns = [row for row in rows if row['pk']]
        columns = []
        for row in rows:
            data_type, max_length, precision, scale = self._parse_declared_type(row['type'])
            is_identity = (
                len(pk_columns) == 1
                and row['pk'] == 1
                and data_type == 'integer'
            )
            columns.append({
                'column_name': row['name'],
                'data_type': data_type,
                'max_length': max_length,
                'precision': precision,
                'scale': scale,
                'is_nullable': not row['notnull'] and not is_identity,
                'is_identity': is_identity,
                'is_primary_key': bool(row['pk']),
                'default_value': row['dflt_value'],
            })
        return columns

    def get_row_count(self, table_name: str) -> int:
        rows = self.query(self.dialect.count_sql(table_name), table=table_name)
        return int(rows[0]['row_count']) if rows else 0

    @staticmethod
    def _parse_declared_type(declared: str):
        """Split 'VARCHAR(255)' or 'DECIMAL(10,2)' into name and size arguments."""
        match = _TYPE_ARGS.match(declared or '')
        if not match:
            return (declared or 'text').lower(), None, None, None
        name = match.group(1).strip().lower()
        first = int(match.group(2)) if match.group(2) else None
        second = int(match.group(3)) if match.group(3) else None
        if name in ('decimal', 'numeric'):
            return name, None, first, second
        return name, first, None, None

    def get_statistics(self) -> Dict[str, Any]:
        """Get adapter statistics."""
        return {
            'backend': 'sqlite',
            'role': self.role,
            'database': self.database,
            'connected': self._connection is not None,
        }
