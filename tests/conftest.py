#!/usr/bin/env python3
"""
rowferry Test Configuration - PyTest Configuration and Fixtures

Provides a pair of throwaway SQLite databases (source and target), a schema
catalog extracted from the source, and a coordinator wired to both, so the
migration engine can be exercised end to end without a database server.
"""

import pytest
import os
import sys
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database_manager import DatabaseManager
from core.migration import MigrationCoordinator
from core.schema_extractor import SchemaExtractor
from extensions.plugins.sqlite_adapter import SQLiteAdapter

ACCOUNT_ROWS = 2500
SETTING_ROWS = 10
BASE_TIME = datetime(2024, 1, 1, 0, 0, 0)

SOURCE_DDL = """
CREATE TABLE Accounts (
    Id INTEGER PRIMARY KEY,
    Name VARCHAR(100) NOT NULL,
    Balance DECIMAL(12,2),
    UpdatedAt DATETIME
);
CREATE TABLE Settings (
    "Key" TEXT PRIMARY KEY,
    Value TEXT
);
"""


def account_timestamp(account_id: int) -> str:
    """Modification time of an untouched account row; grows with the id"""
    return (BASE_TIME + timedelta(minutes=account_id)).strftime('%Y-%m-%d %H:%M:%S')


def build_source_database(path, accounts: int = ACCOUNT_ROWS, settings: int = SETTING_ROWS) -> None:
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(SOURCE_DDL)
        conn.executemany(
            "INSERT INTO Accounts (Id, Name, Balance, UpdatedAt) VALUES (?, ?, ?, ?)",
            [(i, f"account-{i}", round(i * 1.5, 2), account_timestamp(i)) for i in range(1, accounts + 1)],
        )
        conn.executemany(
            'INSERT INTO Settings ("Key", Value) VALUES (?, ?)',
            [(f"setting.{i}", f"value-{i}") for i in range(1, settings + 1)],
        )
        conn.commit()
    finally:
        conn.close()


def sqlite_url(path) -> str:
    return f"sqlite:///{Path(path).resolve()}"


def fetch_all(path, sql: str, params=()):
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


def execute_sql(path, sql: str, params=()):
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(sql, params)
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def source_db(tmp_path):
    """Source database with Accounts (identity + timestamp) and Settings (neither)"""
    path = tmp_path / "source.db"
    build_source_database(path)
    return path


@pytest.fixture
def target_db(tmp_path):
    """Path of an empty target database file"""
    return tmp_path / "target.db"


@pytest.fixture
def catalog(source_db):
    """Schema catalog extracted from the source with SQLite CREATE statements"""
    source = SQLiteAdapter(database=str(source_db), role='source')
    try:
        return SchemaExtractor(source, target_dialect='sqlite').extract_all()
    finally:
        source.close()


@pytest.fixture
def manager(source_db, target_db):
    manager = DatabaseManager(sqlite_url(source_db), sqlite_url(target_db))
    yield manager
    manager.close_all()


@pytest.fixture
def id_mappings_path(tmp_path):
    return tmp_path / "id-mappings.json"


@pytest.fixture
def make_coordinator(catalog, manager, id_mappings_path):
    """Factory for coordinators sharing one source/target pair"""
    def factory(**kwargs):
        kwargs.setdefault('id_mappings_path', str(id_mappings_path))
        kwargs.setdefault('batch_size', 1000)
        return MigrationCoordinator(catalog, manager, **kwargs)
    return factory
