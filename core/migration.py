"""
rowferry Migration Runner
=========================

Sequences table migrations for a run:
- full runs go smallest table first
- filtered runs keep the caller's order
- the first failed table stops the run
- the identifier remap is written at the end of every run, failed or not
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from core.batch_applier import IdentifierRemap
from core.checkpoint import CheckpointResolver
from core.database_manager import BackendType, DatabaseManager
from core.errors import (
    ConfigurationError, MigrationError, SchemaNotFoundError, TableMigrationError, TableNotFoundError
)
from core.orchestrator import ProgressCallback, TableOrchestrator
from core.schema_catalog import SchemaCatalog
from core.schema_ir import MigrationStatus, RunSummary, TableResult, TableState

logger = logging.getLogger(__name__)


def format_summary(summary: RunSummary) -> str:
    totals = summary.totals
    applied = totals.inserted + totals.updated
    line = (f"Migrated {summary.tables_migrated} tables, {applied} rows applied "
            f"({totals.inserted} inserted, {totals.updated} updated, "
            f"{totals.skipped} skipped, {totals.failed} failed)")
    if summary.remap_path:
        line += f"; {summary.remap_entries} id mappings written to {summary.remap_path}"
    return line


class MigrationCoordinator:
    """Runs the table orchestrator over a list of tables"""

    def __init__(self, catalog: SchemaCatalog, manager: DatabaseManager,
                 id_mappings_path: str = 'id-mappings.json',
                 batch_size: int = 1000,
                 workers: int = 1,
                 max_failure_ratio: Optional[float] = 0.1,
                 split_passes: bool = False,
                 dry_run: bool = False,
                 phases: Optional[Dict[str, List[str]]] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.catalog = catalog
        self.manager = manager
        self.id_mappings_path = id_mappings_path
        self.batch_size = batch_size
        self.workers = workers
        self.max_failure_ratio = max_failure_ratio
        self.split_passes = split_passes
        self.dry_run = dry_run
        self.phases = phases or {}
        self.progress_callback = progress_callback
        self.last_summary: Optional[RunSummary] = None

    @classmethod
    def from_config(cls, config, catalog: Optional[SchemaCatalog] = None,
                    manager: Optional[DatabaseManager] = None, dry_run: bool = False,
                    progress_callback: Optional[ProgressCallback] = None) -> 'MigrationCoordinator':
        """Build a coordinator from a MigratorConfig"""
        if manager is None:
            config.require_urls('source', 'target')
            manager = DatabaseManager(
                config.source_url, config.target_url,
                target_options={'max_connections': config.workers + 1},
            )
        if catalog is None:
            source_dialect = BackendType.from_url(manager.source_url).value if manager.source_url else 'mssql'
            catalog = SchemaCatalog.load(config.schema_path, source_dialect, config.timestamp_columns)
        return cls(
            catalog, manager,
            id_mappings_path=config.id_mappings_path,
            batch_size=config.batch_size,
            workers=config.workers,
            max_failure_ratio=config.max_failure_ratio,
            split_passes=config.split_passes,
            dry_run=dry_run,
            phases=config.phases,
            progress_callback=progress_callback,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self.manager.close_all()

    def run_all(self) -> RunSummary:
        """Migrate every catalogued table, smallest expected row count first"""
        names = [schema.name for schema in self.catalog.get_all_schemas()]
        logger.info(f"Starting full migration of {len(names)} tables")
        return self._run(names)

    def run_tables(self, names: Iterable[str]) -> RunSummary:
        """Migrate the named tables in the given order"""
        names = list(names)
        logger.info(f"Starting migration of {len(names)} tables: {', '.join(names)}")
        return self._run(names)

    def run_phase(self, phase: str) -> RunSummary:
        if phase not in self.phases:
            raise ConfigurationError(f"Unknown phase: {phase}", {'available': sorted(self.phases)})
        logger.info(f"Running phase {phase}")
        return self.run_tables(self.phases[phase])

    def _run(self, names: List[str]) -> RunSummary:
        remap = IdentifierRemap()
        summary = RunSummary(remap_path=None if self.dry_run else self.id_mappings_path)
        self.last_summary = summary
        failure = None
        try:
            orchestrator = TableOrchestrator(
                self.manager.acquire_source(), self.manager.acquire_target(), remap,
                batch_size=self.batch_size,
                workers=self.workers,
                max_failure_ratio=self.max_failure_ratio,
                split_passes=self.split_passes,
                dry_run=self.dry_run,
                progress_callback=self.progress_callback,
            )
            for index, name in enumerate(names, 1):
                logger.info(f"[{index}/{len(names)}] {name}")
                result = TableResult(name)
                summary.tables.append(result)
                try:
                    schema = self.catalog.get_schema(name)
                except SchemaNotFoundError as e:
                    result.state = TableState.FAILED
                    result.error = e.message
                    raise TableMigrationError(name, e.message, e.code) from e
                orchestrator.run(schema, result)
        except MigrationError as e:
            failure = e
            summary.failed_table = getattr(e, 'table', None)
            summary.error = e.message
            logger.error(f"Migration stopped: {e.message}")
            raise
        finally:
            if not self.dry_run:
                try:
                    summary.remap_entries = remap.save(self.id_mappings_path)
                except OSError as save_error:
                    logger.error(f"Could not write id mappings to {self.id_mappings_path}: {save_error}")
                    if failure is None:
                        raise
            logger.info(format_summary(summary))
        return summary

    def status(self, names: Optional[Iterable[str]] = None) -> List[MigrationStatus]:
        """Freshly computed checkpoint for each table"""
        resolver = CheckpointResolver(self.manager.acquire_target())
        schemas = self.select_schemas(names)
        return [resolver.resolve(schema) for schema in schemas]

    def verify(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Compare source and target row counts per table"""
        source = self.manager.acquire_source()
        target = self.manager.acquire_target()
        report = []
        for schema in self.select_schemas(names):
            source_rows = _count(source, schema.name)
            try:
                target_rows = _count(target, schema.name)
            except TableNotFoundError:
                target_rows = None
            match = target_rows == source_rows
            report.append({
                'table': schema.name,
                'source_rows': source_rows,
                'target_rows': target_rows,
                'match': match,
            })
            if match:
                logger.info(f"{schema.name}: {source_rows} rows in source and target")
            else:
                logger.warning(f"{schema.name}: source has {source_rows} rows, target has "
                               f"{'no table' if target_rows is None else target_rows}")
        return report

    def select_schemas(self, names: Optional[Iterable[str]]):
        if names is None:
            return self.catalog.get_all_schemas()
        return [self.catalog.get_schema(name) for name in names]


def _count(session, table: str) -> int:
    rows = session.query(session.dialect.count_sql(table), table=table)
    return int(rows[0]['row_count']) if rows else 0
