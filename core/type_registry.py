"""
Column type mapping for rowferry

Source catalog types are first resolved to a canonical IRType, then rendered
as a target column type. Row values are transcoded here as well so that the
checkpoint literal and the written value share one timestamp format.
"""

import re
from datetime import datetime, date, time, timezone
from enum import Enum
from typing import Any, Dict, List, Tuple, Optional, Sequence
from uuid import UUID

# Canonical, timezone-naive, whole-second timestamp literal
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

# Source "unbounded" length marker (varchar(max), nvarchar(max), varbinary(max))
UNBOUNDED_LENGTH = -1


class IRType(Enum):
    SMALLINT = "SMALLINT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "DECIMAL"
    REAL = "REAL"
    DOUBLE = "DOUBLE PRECISION"
    CHAR = "CHAR"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"
    BYTEA = "BYTEA"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMP_TZ = "TIMESTAMP WITH TIME ZONE"
    BOOLEAN = "BOOLEAN"
    UUID = "UUID"
    JSON = "JSON"
    UNKNOWN = "UNKNOWN"


TEMPORAL_TYPES = (IRType.DATE, IRType.TIMESTAMP, IRType.TIMESTAMP_TZ)

# Kinds whose precision/scale (DECIMAL) or length (CHAR/VARCHAR) come from the type string
SIZED_TYPES = (IRType.DECIMAL, IRType.CHAR, IRType.VARCHAR)

# Catalog type names per dialect, grouped by the canonical type they resolve to.
# Within a dialect, longer names that share a prefix must come first.
SOURCE_TYPE_NAMES: Dict[str, Dict[IRType, Tuple[str, ...]]] = {
    'mssql': {
        IRType.SMALLINT: ('tinyint', 'smallint'),
        IRType.INTEGER: ('int',),
        IRType.BIGINT: ('bigint',),
        IRType.BOOLEAN: ('bit',),
        IRType.DECIMAL: ('decimal', 'numeric', 'smallmoney', 'money'),
        IRType.DOUBLE: ('float',),
        IRType.REAL: ('real',),
        IRType.TIMESTAMP_TZ: ('datetimeoffset',),
        IRType.TIMESTAMP: ('datetime2', 'smalldatetime', 'datetime'),
        IRType.DATE: ('date',),
        IRType.TIME: ('time',),
        IRType.VARCHAR: ('varchar', 'nvarchar'),
        IRType.CHAR: ('char', 'nchar'),
        IRType.TEXT: ('text', 'ntext', 'xml'),
        # timestamp is rowversion, an 8-byte counter
        IRType.BYTEA: ('varbinary', 'binary', 'image', 'timestamp', 'rowversion'),
        IRType.UUID: ('uniqueidentifier',),
    },
    'postgres': {
        IRType.SMALLINT: ('smallint',),
        IRType.INTEGER: ('integer',),
        IRType.BIGINT: ('bigint',),
        IRType.DECIMAL: ('numeric',),
        IRType.REAL: ('real',),
        IRType.DOUBLE: ('double precision',),
        IRType.VARCHAR: ('varchar', 'character varying'),
        IRType.TEXT: ('text',),
        IRType.BYTEA: ('bytea',),
        IRType.BOOLEAN: ('boolean',),
        IRType.TIMESTAMP_TZ: ('timestamp with time zone', 'timestamptz'),
        IRType.TIMESTAMP: ('timestamp without time zone', 'timestamp'),
        IRType.DATE: ('date',),
        IRType.TIME: ('time',),
        IRType.UUID: ('uuid',),
        IRType.JSON: ('jsonb', 'json'),
    },
    'mysql': {
        IRType.BOOLEAN: ('tinyint(1)',),
        IRType.SMALLINT: ('tinyint', 'smallint'),
        IRType.BIGINT: ('bigint',),
        IRType.INTEGER: ('integer', 'int'),
        IRType.DECIMAL: ('decimal',),
        IRType.REAL: ('float',),
        IRType.DOUBLE: ('double',),
        IRType.VARCHAR: ('varchar',),
        IRType.CHAR: ('char',),
        IRType.TEXT: ('longtext', 'text'),
        IRType.BYTEA: ('longblob', 'blob'),
        IRType.TIMESTAMP: ('datetime',),
        IRType.TIMESTAMP_TZ: ('timestamp',),
        IRType.DATE: ('date',),
        IRType.TIME: ('time',),
        IRType.JSON: ('json',),
    },
    'sqlite': {
        IRType.INTEGER: ('integer', 'int'),
        IRType.DOUBLE: ('real',),
        IRType.DECIMAL: ('numeric', 'decimal'),
        IRType.VARCHAR: ('varchar',),
        IRType.TEXT: ('text',),
        IRType.BYTEA: ('blob',),
        IRType.BOOLEAN: ('boolean',),
        IRType.TIMESTAMP: ('datetime', 'timestamp'),
        IRType.DATE: ('date',),
    },
}

# Currency types carry a fixed precision and scale
FIXED_DECIMALS = {'money': (19, 4), 'smallmoney': (10, 4)}

TARGET_DIALECTS = ('mysql', 'postgres', 'sqlite')

#                    mysql         postgres            sqlite
TARGET_TYPE_ROWS = {
    IRType.SMALLINT: ('SMALLINT', 'SMALLINT', 'INTEGER'),
    IRType.INTEGER: ('INT', 'INTEGER', 'INTEGER'),
    IRType.BIGINT: ('BIGINT', 'BIGINT', 'INTEGER'),
    IRType.DECIMAL: ('DECIMAL', 'NUMERIC', 'REAL'),
    IRType.REAL: ('FLOAT', 'REAL', 'REAL'),
    IRType.DOUBLE: ('DOUBLE', 'DOUBLE PRECISION', 'REAL'),
    IRType.CHAR: ('CHAR', 'CHAR', 'TEXT'),
    IRType.VARCHAR: ('VARCHAR', 'VARCHAR', 'TEXT'),
    IRType.TEXT: ('TEXT', 'TEXT', 'TEXT'),
    IRType.BYTEA: ('LONGBLOB', 'BYTEA', 'BLOB'),
    # values arrive as 0/1
    IRType.BOOLEAN: ('TINYINT(1)', 'SMALLINT', 'INTEGER'),
    IRType.DATE: ('DATE', 'DATE', 'TEXT'),
    IRType.TIME: ('TIME', 'TIME', 'TEXT'),
    IRType.TIMESTAMP: ('DATETIME', 'TIMESTAMP', 'TEXT'),
    # values arrive UTC-normalized and naive
    IRType.TIMESTAMP_TZ: ('TIMESTAMP', 'TIMESTAMP', 'TEXT'),
    IRType.UUID: ('CHAR(36)', 'UUID', 'TEXT'),
    IRType.JSON: ('JSON', 'JSONB', 'TEXT'),
}


class TypeInfo:
    def __init__(self, ir_type: IRType, precision: Optional[int] = None,
                 scale: Optional[int] = None, length: Optional[int] = None):
        self.ir_type = ir_type
        self.precision = precision
        self.scale = scale
        self.length = length

    def __repr__(self):
        return f"TypeInfo({self.ir_type.value}, p={self.precision}, s={self.scale}, l={self.length})"


class TypeRegistry:
    # dialect -> catalog type name -> IRType, in lookup order
    SOURCE_TO_IR: Dict[str, Dict[str, IRType]] = {
        dialect: {name: kind for kind, names in groups.items() for name in names}
        for dialect, groups in SOURCE_TYPE_NAMES.items()
    }

    # dialect -> IRType -> target column type
    IR_TO_TARGET: Dict[str, Dict[IRType, str]] = {
        dialect: {kind: row[position] for kind, row in TARGET_TYPE_ROWS.items()}
        for position, dialect in enumerate(TARGET_DIALECTS)
    }

    # Byte-length types that store two bytes per character
    WIDE_CHAR_TYPES = {'nchar', 'nvarchar'}

    @staticmethod
    def normalize_dialect(dialect: str) -> str:
        dialect_lower = dialect.lower()
        if 'postgres' in dialect_lower: return 'postgres'
        if 'mysql' in dialect_lower or 'mariadb' in dialect_lower: return 'mysql'
        if 'mssql' in dialect_lower or 'sqlserver' in dialect_lower: return 'mssql'
        if 'sqlite' in dialect_lower: return 'sqlite'
        return dialect_lower

    @staticmethod
    def map_to_ir(source_dialect: str, source_type: str) -> TypeInfo:
        """Resolve a catalog type string such as ``decimal(10,2)`` to a TypeInfo"""
        type_lower = source_type.lower().strip()
        names = TypeRegistry.SOURCE_TO_IR.get(TypeRegistry.normalize_dialect(source_dialect))
        if names is None:
            return TypeInfo(IRType.UNKNOWN)

        base_type, precision, scale, length = TypeRegistry._parse_type_string(type_lower)

        # The full string wins so that "tinyint(1)" is not read as "tinyint"
        ir_type = names.get(type_lower) or names.get(base_type)
        if ir_type is None:
            # 'int unsigned' -> 'int', but 'timeline' is not 'time'
            ir_type = next((kind for name, kind in names.items()
                            if base_type.startswith(name) and base_type[len(name)] in ' ('),
                           IRType.UNKNOWN)

        if ir_type == IRType.DECIMAL:
            precision, scale = FIXED_DECIMALS.get(base_type, (precision, scale))
        elif ir_type not in SIZED_TYPES:
            precision = scale = None
        return TypeInfo(ir_type, precision, scale, length)

    @staticmethod
    def map_from_ir(target_dialect: str, type_info: TypeInfo) -> str:
        """Map IR type to target type"""
        dialect_lower = TypeRegistry.normalize_dialect(target_dialect)

        if dialect_lower not in TypeRegistry.IR_TO_TARGET:
            return 'TEXT'

        targets = TypeRegistry.IR_TO_TARGET[dialect_lower]
        base_type = targets.get(type_info.ir_type, targets[IRType.TEXT])

        # Add precision/scale/length
        if type_info.ir_type == IRType.DECIMAL and type_info.precision:
            if dialect_lower == 'sqlite':
                return base_type
            if type_info.scale is not None:
                return f"{base_type}({type_info.precision},{type_info.scale})"
            return f"{base_type}({type_info.precision})"
        elif type_info.ir_type in (IRType.VARCHAR, IRType.CHAR):
            if dialect_lower == 'sqlite':
                return base_type
            if type_info.length:
                return f"{base_type}({type_info.length})"
            if type_info.ir_type == IRType.VARCHAR:
                # VARCHAR without a bound is not valid everywhere
                return targets[IRType.TEXT]

        return base_type

    @staticmethod
    def map_type(source_type: str, max_length: Optional[int] = None, precision: Optional[int] = None,
                 scale: Optional[int] = None, source_dialect: str = 'mssql',
                 target_dialect: str = 'mysql') -> str:
        """Map a catalog column (type name plus length/precision/scale) to a target column type.

        Catalog lengths are byte lengths: ``-1`` marks an unbounded column and
        wide-character types carry twice their character count. Unknown types
        map to the target's unbounded text type.
        """
        info = TypeRegistry.map_to_ir(source_dialect, source_type)
        if info.ir_type == IRType.UNKNOWN:
            return TypeRegistry.map_from_ir(target_dialect, TypeInfo(IRType.TEXT))

        if info.ir_type in (IRType.VARCHAR, IRType.CHAR, IRType.BYTEA):
            length = max_length if max_length is not None else info.length
            if length == UNBOUNDED_LENGTH:
                ir = IRType.BYTEA if info.ir_type == IRType.BYTEA else IRType.TEXT
                return TypeRegistry.map_from_ir(target_dialect, TypeInfo(ir))
            base_type = TypeRegistry._parse_type_string(source_type.lower().strip())[0]
            if length and max_length is not None and base_type in TypeRegistry.WIDE_CHAR_TYPES:
                length = length // 2
            info = TypeInfo(info.ir_type, length=length)

        elif info.ir_type == IRType.DECIMAL:
            # money/smallmoney carry fixed precision from the mapping table
            if info.precision is None:
                info = TypeInfo(IRType.DECIMAL, precision, scale)

        return TypeRegistry.map_from_ir(target_dialect, info)

    @staticmethod
    def is_temporal(source_dialect: str, source_type: str) -> bool:
        return TypeRegistry.map_to_ir(source_dialect, source_type).ir_type in TEMPORAL_TYPES

    @staticmethod
    def _parse_type_string(type_str: str) -> Tuple[str, Optional[int], Optional[int], Optional[int]]:
        """Parse 'varchar(255)' -> ('varchar', None, None, 255)
        Also handles 'timestamp(6) with time zone' -> ('timestamp with time zone', 6, None, 6)
        """
        # Capture: base_prefix, optional (precision, scale), and trailing modifiers
        match = re.match(r'([a-zA-Z0-9_]+)\s*(?:\((\d+)(?:,\s*(\d+))?\))?\s*(.*)', type_str)
        if not match:
            return (type_str.strip(), None, None, None)

        base_prefix = match.group(1).strip()
        precision = int(match.group(2)) if match.group(2) else None
        scale = int(match.group(3)) if match.group(3) else None
        trailing = match.group(4).strip() if match.group(4) else ""

        # Combine base prefix with trailing modifiers (e.g., "timestamp" + "with time zone")
        base = (base_prefix + ' ' + trailing).strip() if trailing else base_prefix
        length = precision  # Alias

        return (base, precision, scale, length)

    @staticmethod
    def is_lossy_conversion(source_dialect: str, source_type: str, target_dialect: str) -> Tuple[bool, Optional[str]]:
        """Check if conversion is lossy"""
        source_ir = TypeRegistry.map_to_ir(source_dialect, source_type)
        if source_ir.ir_type == IRType.UNKNOWN:
            return (True, f"Unknown type: {source_dialect} {source_type} -> TEXT")

        target_type_str = TypeRegistry.map_from_ir(target_dialect, source_ir)
        target = TypeRegistry.normalize_dialect(target_dialect)

        if source_ir.ir_type == IRType.DECIMAL and target == 'sqlite':
            return (True, f"Precision loss: {source_dialect} {source_type} -> SQLite REAL (floating point)")

        if source_ir.ir_type == IRType.TIMESTAMP_TZ:
            return (True, f"Timezone loss: {source_dialect} {source_type} -> {target_dialect} {target_type_str} (UTC normalized)")

        if source_ir.ir_type == IRType.TIMESTAMP and source_type.lower().startswith('datetime2'):
            return (True, f"Sub-second truncation: {source_dialect} {source_type} -> {target_type_str}")

        return (False, None)


def format_timestamp(value: Any) -> Any:
    """Render a temporal value as the canonical naive whole-second literal.

    Aware datetimes are normalized to UTC first. Non-temporal values are
    returned unchanged.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, date):
        return datetime.combine(value, time()).strftime(TIMESTAMP_FORMAT)
    if isinstance(value, time):
        return value.strftime('%H:%M:%S')
    return value


def transcode_value(value: Any) -> Any:
    """Convert one source value into a target-compatible value"""
    if value is None:
        return None
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (datetime, date, time)):
        return format_timestamp(value)
    # uniqueidentifier lands in CHAR(36)/UUID/TEXT columns
    if isinstance(value, UUID):
        return str(value)
    return value


def transcode_row(row: Dict[str, Any], columns: Sequence[str]) -> List[Any]:
    """Build the value list for ``columns`` from a source row, in column order"""
    return [transcode_value(row.get(name)) for name in columns]
