from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple
from enum import Enum


@dataclass
class ColumnSpec:
    """Column definition as captured in the schema snapshot"""
    name: str
    source_type: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool = True
    is_identity: bool = False
    is_primary_key: bool = False
    default_value: Optional[str] = None
    is_modification_timestamp: bool = False

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> 'ColumnSpec':
        return cls(
            name=data['column_name'],
            source_type=data['data_type'],
            max_length=data.get('max_length'),
            precision=data.get('precision'),
            scale=data.get('scale'),
            nullable=bool(data.get('is_nullable', True)),
            is_identity=bool(data.get('is_identity', False)),
            is_primary_key=bool(data.get('is_primary_key', False)),
            default_value=data.get('default_value'),
            is_modification_timestamp=bool(data.get('is_modification_timestamp', False)),
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            'column_name': self.name,
            'data_type': self.source_type,
            'max_length': self.max_length,
            'precision': self.precision,
            'scale': self.scale,
            'is_nullable': self.nullable,
            'is_identity': self.is_identity,
            'is_primary_key': self.is_primary_key,
            'default_value': self.default_value,
            'is_modification_timestamp': self.is_modification_timestamp,
        }


@dataclass
class TableSchema:
    """Table definition owned by the schema catalog.

    ``columns`` is the single source of column order: every name list and
    value list built for this table is derived from it.
    """
    name: str
    expected_row_count: int
    columns: List[ColumnSpec]
    target_create_statement: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        identities = [c.name for c in self.columns if c.is_identity]
        if len(identities) > 1:
            raise ValueError(f"Table {self.name} declares more than one identity column: {identities}")

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def identity_column(self) -> Optional[ColumnSpec]:
        return next((c for c in self.columns if c.is_identity), None)

    @property
    def timestamp_column(self) -> Optional[ColumnSpec]:
        # Only the first flagged column is honored
        return next((c for c in self.columns if c.is_modification_timestamp), None)

    @property
    def primary_key(self) -> List[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    def get_column(self, name: str) -> Optional[ColumnSpec]:
        return next((c for c in self.columns if c.name == name), None)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            'table_name': self.name,
            'row_count': self.expected_row_count,
            'columns': [c.to_snapshot() for c in self.columns],
            'create_sql': self.target_create_statement,
        }


class MigrationState(Enum):
    EMPTY = "empty"
    NO_TARGET_TABLE = "no_table"
    PARTIAL = "partial"
    NEEDS_SYNC = "needs_sync"


@dataclass
class MigrationStatus:
    """Checkpoint computed from live target state; never persisted"""
    state: MigrationState
    current_target_row_count: int
    expected_row_count: int
    last_migrated_id: Optional[Any] = None
    last_migrated_timestamp: Optional[Any] = None

    @property
    def has_watermark(self) -> bool:
        return self.last_migrated_id is not None or self.last_migrated_timestamp is not None


class WriteMode(Enum):
    INSERT = "insert"
    INSERT_IGNORE = "insert_ignore"
    UPSERT = "upsert"


@dataclass
class SelectionQuery:
    """Source-side SELECT for one incremental pass"""
    sql: str
    params: Tuple[Any, ...] = ()
    order_by: str = ""
    predicate: str = ""
    offset: int = 0

    def describe(self) -> str:
        return self.predicate or (f"OFFSET {self.offset}" if self.offset else "full table")


@dataclass
class WriteResult:
    """Outcome of a single target write"""
    rows_affected: int
    inserted_id: Optional[Any] = None
    was_update: bool = False


@dataclass
class BatchOutcome:
    """Per-row outcome counters"""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.inserted + self.updated + self.skipped + self.failed

    def merge(self, other: 'BatchOutcome') -> 'BatchOutcome':
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        return self

    def to_dict(self) -> Dict[str, int]:
        return {
            'inserted': self.inserted,
            'updated': self.updated,
            'skipped': self.skipped,
            'failed': self.failed,
        }


class TableState(Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    SKIPPED = "skipped"
    FETCHING = "fetching"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProgressEvent:
    table: str
    migrated: int
    expected: int
    batch_number: int
    outcome: BatchOutcome

    @property
    def percent(self) -> float:
        if self.expected <= 0:
            return 100.0
        return self.migrated / self.expected * 100

    def format(self) -> str:
        return f"{self.table}: {self.migrated}/{self.expected} ({self.percent:.1f}%)"


@dataclass
class TableResult:
    table: str
    state: TableState = TableState.PENDING
    status: Optional[MigrationStatus] = None
    outcome: BatchOutcome = field(default_factory=BatchOutcome)
    rows_fetched: int = 0
    batches: int = 0
    error: Optional[str] = None


@dataclass
class RunSummary:
    tables: List[TableResult] = field(default_factory=list)
    remap_entries: int = 0
    remap_path: Optional[str] = None
    failed_table: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed_table is None and self.error is None

    @property
    def totals(self) -> BatchOutcome:
        total = BatchOutcome()
        for result in self.tables:
            total.merge(result.outcome)
        return total

    @property
    def tables_migrated(self) -> int:
        return sum(1 for t in self.tables if t.state in (TableState.DONE, TableState.SKIPPED))
