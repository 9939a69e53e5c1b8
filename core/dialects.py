"""
SQL dialect rendering for source and target sessions.

Each dialect knows how to quote identifiers, which DBAPI placeholder its
driver expects, how to skip rows positionally, and how to spell the three
write modes the batch applier uses.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.errors import ConfigurationError
from core.schema_ir import WriteMode


@dataclass
class WriteStatement:
    """A prepared per-table write, reused for every row of the table"""
    sql: str
    mode: WriteMode
    table: str
    columns: List[str]
    key_column: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class Dialect:
    name = 'generic'
    placeholder = '%s'

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def quote_list(self, identifiers: Sequence[str]) -> str:
        return ', '.join(self.quote(i) for i in identifiers)

    def placeholders(self, count: int) -> str:
        return ', '.join([self.placeholder] * count)

    def count_sql(self, table: str) -> str:
        return f"SELECT COUNT(*) AS row_count FROM {self.quote(table)}"

    def max_sql(self, table: str, column: str) -> str:
        return f"SELECT MAX({self.quote(column)}) AS max_value FROM {self.quote(table)}"

    def select_sql(self, table: str, columns: Sequence[str], predicate: str = "",
                   order_by: Optional[str] = None, offset: int = 0) -> str:
        sql = f"SELECT {self.quote_list(columns)} FROM {self.quote(table)}"
        if predicate:
            sql += f" WHERE {predicate}"
        if order_by:
            sql += f" ORDER BY {self.quote(order_by)}"
        if offset:
            sql += " " + self.offset_clause(offset)
        return sql

    def offset_clause(self, offset: int) -> str:
        return f"OFFSET {int(offset)}"

    def insert(self, table: str, columns: Sequence[str]) -> WriteStatement:
        sql = (f"INSERT INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))})")
        return WriteStatement(sql, WriteMode.INSERT, table, list(columns))

    def insert_ignore(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        raise NotImplementedError(f"{self.name} cannot be used as a write target")

    def upsert(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        raise NotImplementedError(f"{self.name} cannot be used as a write target")

    def _update_columns(self, columns: Sequence[str], key: str) -> List[str]:
        return [c for c in columns if c != key]


class MSSQLDialect(Dialect):
    name = 'mssql'

    def quote(self, identifier: str) -> str:
        return '[' + identifier.replace(']', ']]') + ']'

    def offset_clause(self, offset: int) -> str:
        # Requires ORDER BY, which select_sql always emits for offsets
        return f"OFFSET {int(offset)} ROWS"


class MySQLDialect(Dialect):
    name = 'mysql'

    def quote(self, identifier: str) -> str:
        return '`' + identifier.replace('`', '``') + '`'

    def offset_clause(self, offset: int) -> str:
        # MySQL has no bare OFFSET
        return f"LIMIT 18446744073709551615 OFFSET {int(offset)}"

    def insert_ignore(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        sql = (f"INSERT IGNORE INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))})")
        return WriteStatement(sql, WriteMode.INSERT_IGNORE, table, list(columns), key)

    def upsert(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        updates = self._update_columns(columns, key)
        if not updates:
            return self.insert_ignore(table, columns, key)
        assignments = ', '.join(f"{self.quote(c)} = VALUES({self.quote(c)})" for c in updates)
        sql = (f"INSERT INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))}) "
               f"ON DUPLICATE KEY UPDATE {assignments}")
        return WriteStatement(sql, WriteMode.UPSERT, table, list(columns), key)


class PostgreSQLDialect(Dialect):
    name = 'postgresql'

    def insert_ignore(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        sql = (f"INSERT INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))}) "
               f"ON CONFLICT DO NOTHING RETURNING {self.quote(key)}, TRUE AS inserted")
        return WriteStatement(sql, WriteMode.INSERT_IGNORE, table, list(columns), key)

    def upsert(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        updates = self._update_columns(columns, key)
        if not updates:
            return self.insert_ignore(table, columns, key)
        assignments = ', '.join(f"{self.quote(c)} = EXCLUDED.{self.quote(c)}" for c in updates)
        # xmax is zero only for freshly inserted tuples
        sql = (f"INSERT INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))}) "
               f"ON CONFLICT ({self.quote(key)}) DO UPDATE SET {assignments} "
               f"RETURNING {self.quote(key)}, (xmax = 0) AS inserted")
        return WriteStatement(sql, WriteMode.UPSERT, table, list(columns), key)


class SQLiteDialect(Dialect):
    name = 'sqlite'
    placeholder = '?'

    def offset_clause(self, offset: int) -> str:
        return f"LIMIT -1 OFFSET {int(offset)}"

    def insert_ignore(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        sql = (f"INSERT OR IGNORE INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))})")
        return WriteStatement(sql, WriteMode.INSERT_IGNORE, table, list(columns), key)

    def upsert(self, table: str, columns: Sequence[str], key: str) -> WriteStatement:
        updates = self._update_columns(columns, key)
        if not updates:
            return self.insert_ignore(table, columns, key)
        assignments = ', '.join(f"{self.quote(c)} = excluded.{self.quote(c)}" for c in updates)
        sql = (f"INSERT INTO {self.quote(table)} ({self.quote_list(columns)}) "
               f"VALUES ({self.placeholders(len(columns))}) "
               f"ON CONFLICT({self.quote(key)}) DO UPDATE SET {assignments}")
        return WriteStatement(sql, WriteMode.UPSERT, table, list(columns), key)


_DIALECTS = {
    'mssql': MSSQLDialect,
    'mysql': MySQLDialect,
    'postgresql': PostgreSQLDialect,
    'sqlite': SQLiteDialect,
}


def get_dialect(name: str) -> Dialect:
    """Resolve a dialect from a name or URL scheme ('mysql+pymysql', 'postgres', ...)"""
    scheme = name.lower().split('+')[0]
    if scheme in ('postgres', 'postgresql'):
        scheme = 'postgresql'
    elif scheme in ('mariadb',):
        scheme = 'mysql'
    elif scheme in ('sqlserver',):
        scheme = 'mssql'
    dialect_cls = _DIALECTS.get(scheme)
    if dialect_cls is None:
        raise ConfigurationError(f"Unsupported database type: {name}")
    return dialect_cls()
