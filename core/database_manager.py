#!/usr/bin/env python3
"""
rowferry Database Manager - Source and Target Sessions

This module owns the two database sessions a migration run uses. Sessions
are opened lazily on first use and closed together at shutdown.

Supported backends:
- SQL Server (source only)
- MySQL / MariaDB
- PostgreSQL
- SQLite (built-in)

Usage:
    with DatabaseManager(source_url, target_url) as manager:
        source = manager.acquire_source()
        target = manager.acquire_target()
"""

import logging
import os
import threading
from enum import Enum
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from core.errors import ConfigurationError, MigrationError, sanitize_error

logger = logging.getLogger(__name__)

class BackendType(Enum):
    """Supported database backend types"""
    MSSQL = "mssql"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @classmethod
    def from_url(cls, url: str) -> 'BackendType':
        scheme = urlparse(url).scheme.split('+')[0].lower()
        aliases = {
            'postgres': cls.POSTGRESQL,
            'mariadb': cls.MYSQL,
            'sqlserver': cls.MSSQL,
        }
        if scheme in aliases:
            return aliases[scheme]
        try:
            return cls(scheme)
        except ValueError:
            raise ConfigurationError(f"Unsupported database URL scheme: {scheme or '<none>'}")

def sqlite_path_from_url(url: str) -> str:
    """Resolve the database file of a sqlite:// URL"""
    parsed = urlparse(url)
    db_path = (parsed.netloc + parsed.path).replace('//', '/')
    if db_path in ('/:memory:', ':memory:'):
        return ':memory:'
    # sqlite:///C:/path yields /C:/path
    if os.name == 'nt' and len(db_path) > 2 and db_path[0] == '/' and db_path[2] == ':':
        db_path = db_path[1:]
    if not db_path:
        raise ConfigurationError(f"SQLite URL has no database path: {url}")
    return db_path

def create_session(url: str, role: str, **options):
    """
    Open a session for ``url``.

    Args:
        url: Database URL (mssql://, mysql://, postgresql://, sqlite:///)
        role: 'source' or 'target'
        **options: Backend connection settings (pool size, timeouts)
    """
    backend = BackendType.from_url(url)

    if backend == BackendType.MSSQL:
        if role == 'target':
            raise ConfigurationError("SQL Server is supported as a migration source only")
        from extensions.plugins.mssql_adapter import create_adapter_from_url
        return create_adapter_from_url(url, role=role)
    if backend == BackendType.MYSQL:
        from extensions.plugins.mysql_adapter import create_adapter_from_url
        return create_adapter_from_url(url, role=role, **options)
    if backend == BackendType.POSTGRESQL:
        from extensions.plugins.postgresql_adapter import create_adapter_from_url
        return create_adapter_from_url(url, role=role, **options)

    from extensions.plugins.sqlite_adapter import SQLiteAdapter
    return SQLiteAdapter(database=sqlite_path_from_url(url), role=role)

class DatabaseManager:
    """
    Connection provider for one migration run.

    Holds the source and target URLs and hands out one long-lived session
    for each, created on first request.
    """

    def __init__(self, source_url: Optional[str], target_url: Optional[str],
                 target_options: Optional[Dict[str, Any]] = None):
        self.source_url = source_url
        self.target_url = target_url
        self.target_options = target_options or {}
        self.sessions: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close_all()
        return False

    def _acquire(self, role: str, url: Optional[str], options: Dict[str, Any]):
        with self._lock:
            if role in self.sessions:
                return self.sessions[role]
            if not url:
                raise ConfigurationError(f"No {role} database URL configured")
            logger.info(f"Opening {role} session: {sanitize_error(url)}")
            session = create_session(url, role, **options)
            self.sessions[role] = session
            return session

    def acquire_source(self):
        """Source session, opened on first call"""
        return self._acquire('source', self.source_url, {})

    def acquire_target(self):
        """Target session, opened on first call"""
        return self._acquire('target', self.target_url, self.target_options)

    def test_connections(self) -> Dict[str, Dict[str, Any]]:
        """Open both sessions and run a trivial query on each"""
        results = {}
        for role, acquire in (('source', self.acquire_source), ('target', self.acquire_target)):
            try:
                session = acquire()
                session.query("SELECT 1 AS ok")
                results[role] = {'success': True, 'backend': session.dialect.name}
                logger.info(f"{role.capitalize()} connection OK ({session.dialect.name})")
            except MigrationError as e:
                results[role] = {'success': False, 'error': e.message}
                logger.error(f"{role.capitalize()} connection failed: {e.message}")
        return results

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics for all open sessions"""
        with self._lock:
            return {role: session.get_statistics() for role, session in self.sessions.items()}

    def close_all(self):
        """Close all open sessions; a failure closing one does not skip the other"""
        with self._lock:
            errors = []
            for role, session in list(self.sessions.items()):
                try:
                    session.close()
                    logger.debug(f"Closed {role} session")
                except MigrationError as e:
                    logger.error(f"Error closing {role} session: {e.message}")
                    errors.append(e)
            self.sessions.clear()
            if errors:
                raise errors[0]
