"""
rowferry core package

Resumable, incremental migration engine: checkpoint resolution, incremental
selection, batch application and run coordination.
"""

from core.errors import MigrationError, TableMigrationError, FailureThresholdError
from core.schema_ir import (
    ColumnSpec, TableSchema, MigrationState, MigrationStatus, BatchOutcome, RunSummary
)

__version__ = "0.1.0"

__all__ = [
    'MigrationError',
    'TableMigrationError',
    'FailureThresholdError',
    'ColumnSpec',
    'TableSchema',
    'MigrationState',
    'MigrationStatus',
    'BatchOutcome',
    'RunSummary',
]
