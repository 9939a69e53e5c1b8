
import sys
import unittest
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent.resolve()))

from core.type_registry import (
    TypeRegistry, IRType, TypeInfo, format_timestamp, transcode_row, transcode_value
)

class TestTypeRegistryMatrix(unittest.TestCase):

    def assertMapping(self, dialect, source_type, expected_ir):
        info = TypeRegistry.map_to_ir(dialect, source_type)
        self.assertEqual(info.ir_type, expected_ir, f"{dialect}: {source_type} -> {info.ir_type} (Expected {expected_ir})")

    def assertReverseMapping(self, dialect, ir_type, expected_target_str):
        info = TypeInfo(ir_type)
        target = TypeRegistry.map_from_ir(dialect, info)
        self.assertTrue(expected_target_str.lower() in target.lower(), f"{dialect}: {ir_type} -> {target} (Expected ~ {expected_target_str})")

    # --- MSSQL ---
    def test_mssql_matrix(self):
        self.assertMapping('mssql', 'int', IRType.INTEGER)
        self.assertMapping('mssql', 'bit', IRType.BOOLEAN)
        self.assertMapping('mssql', 'money', IRType.DECIMAL)
        self.assertMapping('mssql', 'datetime2', IRType.TIMESTAMP)
        self.assertMapping('mssql', 'datetimeoffset', IRType.TIMESTAMP_TZ)
        self.assertMapping('mssql', 'nvarchar', IRType.VARCHAR)
        self.assertMapping('mssql', 'uniqueidentifier', IRType.UUID)
        self.assertMapping('mssql', 'image', IRType.BYTEA)
        self.assertMapping('mssql', 'hierarchyid', IRType.UNKNOWN)

    # --- POSTGRES ---
    def test_postgres_matrix(self):
        self.assertMapping('postgres', 'boolean', IRType.BOOLEAN)
        self.assertMapping('postgres', 'uuid', IRType.UUID)
        self.assertMapping('postgresql', 'jsonb', IRType.JSON)
        self.assertMapping('postgres', 'timestamp with time zone', IRType.TIMESTAMP_TZ)
        self.assertMapping('postgres', 'bytea', IRType.BYTEA)
        self.assertMapping('postgres', 'numeric', IRType.DECIMAL)

    # --- MYSQL ---
    def test_mysql_matrix(self):
        self.assertMapping('mysql', 'tinyint(1)', IRType.BOOLEAN)
        self.assertMapping('mysql', 'tinyint', IRType.SMALLINT)
        self.assertMapping('mysql', 'datetime', IRType.TIMESTAMP)
        self.assertMapping('mysql', 'int unsigned', IRType.INTEGER)
        self.assertMapping('mariadb', 'json', IRType.JSON)

        self.assertReverseMapping('mysql', IRType.BOOLEAN, 'tinyint(1)')
        self.assertReverseMapping('mysql', IRType.JSON, 'json')
        self.assertReverseMapping('mysql', IRType.BYTEA, 'longblob')

    # --- SQLITE ---
    def test_sqlite_matrix(self):
        self.assertMapping('sqlite', 'integer', IRType.INTEGER)
        self.assertMapping('sqlite', 'text', IRType.TEXT)
        self.assertMapping('sqlite', 'blob', IRType.BYTEA)
        self.assertMapping('sqlite', 'boolean', IRType.BOOLEAN)
        self.assertMapping('sqlite', 'datetime', IRType.TIMESTAMP)

        self.assertReverseMapping('sqlite', IRType.TIMESTAMP, 'text')
        self.assertReverseMapping('sqlite', IRType.DECIMAL, 'real')

    def test_modifiers_after_a_known_name(self):
        self.assertMapping('mysql', 'bigint(20) unsigned', IRType.BIGINT)
        self.assertMapping('mysql', 'integer', IRType.INTEGER)
        self.assertMapping('postgres', 'character varying(255)', IRType.VARCHAR)


class TestMapType(unittest.TestCase):
    """Catalog column -> target column type"""

    def test_mssql_to_mysql_strings(self):
        self.assertEqual(TypeRegistry.map_type('varchar', 100), 'VARCHAR(100)')
        # nvarchar lengths are bytes; two per character
        self.assertEqual(TypeRegistry.map_type('nvarchar', 200), 'VARCHAR(100)')
        self.assertEqual(TypeRegistry.map_type('nchar', 20), 'CHAR(10)')
        self.assertEqual(TypeRegistry.map_type('nvarchar', -1), 'TEXT')
        self.assertEqual(TypeRegistry.map_type('varbinary', -1), 'LONGBLOB')

    def test_mssql_to_mysql_numbers(self):
        self.assertEqual(TypeRegistry.map_type('decimal', precision=18, scale=4), 'DECIMAL(18,4)')
        self.assertEqual(TypeRegistry.map_type('money'), 'DECIMAL(19,4)')
        self.assertEqual(TypeRegistry.map_type('bit'), 'TINYINT(1)')
        self.assertEqual(TypeRegistry.map_type('tinyint'), 'SMALLINT')

    def test_mssql_to_mysql_temporal(self):
        self.assertEqual(TypeRegistry.map_type('datetime'), 'DATETIME')
        self.assertEqual(TypeRegistry.map_type('datetimeoffset'), 'TIMESTAMP')
        self.assertEqual(TypeRegistry.map_type('uniqueidentifier'), 'CHAR(36)')

    def test_unknown_type_falls_back_to_text(self):
        self.assertEqual(TypeRegistry.map_type('sql_variant'), 'TEXT')
        self.assertEqual(TypeRegistry.map_type('geography', target_dialect='postgresql'), 'TEXT')
        # a known name as prefix is not enough
        self.assertEqual(TypeRegistry.map_type('timeline'), 'TEXT')
        self.assertEqual(TypeRegistry.map_type('dateparts', target_dialect='sqlite'), 'TEXT')

    def test_rowversion_is_binary(self):
        self.assertEqual(TypeRegistry.map_type('timestamp', 8, 0, 0, 'mssql', 'mysql'), 'LONGBLOB')
        self.assertEqual(TypeRegistry.map_type('rowversion', 8, target_dialect='postgresql'), 'BYTEA')
        self.assertFalse(TypeRegistry.is_temporal('mssql', 'timestamp'))

    def test_other_targets(self):
        self.assertEqual(TypeRegistry.map_type('nvarchar', 100, target_dialect='postgresql'), 'VARCHAR(50)')
        self.assertEqual(TypeRegistry.map_type('decimal', precision=10, scale=2, target_dialect='sqlite'), 'REAL')
        self.assertEqual(TypeRegistry.map_type('int', target_dialect='sqlite'), 'INTEGER')

    def test_lossy_conversions(self):
        lossy, reason = TypeRegistry.is_lossy_conversion('mssql', 'datetimeoffset', 'mysql')
        self.assertTrue(lossy)
        self.assertIn('UTC', reason)
        self.assertTrue(TypeRegistry.is_lossy_conversion('mssql', 'decimal(10,2)', 'sqlite')[0])
        self.assertEqual(TypeRegistry.is_lossy_conversion('mssql', 'int', 'mysql'), (False, None))

    def test_is_temporal(self):
        self.assertTrue(TypeRegistry.is_temporal('mssql', 'datetime2'))
        self.assertTrue(TypeRegistry.is_temporal('mssql', 'date'))
        self.assertFalse(TypeRegistry.is_temporal('mssql', 'time'))
        self.assertFalse(TypeRegistry.is_temporal('mssql', 'nvarchar'))


class TestTranscoding(unittest.TestCase):

    def test_format_timestamp(self):
        self.assertEqual(format_timestamp(datetime(2024, 3, 5, 7, 8, 9, 123456)), '2024-03-05 07:08:09')
        self.assertEqual(format_timestamp(date(2024, 3, 5)), '2024-03-05 00:00:00')
        aware = datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone(timedelta(hours=3)))
        self.assertEqual(format_timestamp(aware), '2024-03-05 09:00:00')
        self.assertEqual(format_timestamp('2024-03-05 07:08:09'), '2024-03-05 07:08:09')
        self.assertIsNone(format_timestamp(None))

    def test_transcode_value(self):
        self.assertEqual(transcode_value(True), 1)
        self.assertEqual(transcode_value(False), 0)
        self.assertIsNone(transcode_value(None))
        self.assertEqual(transcode_value(time(13, 45, 0)), '13:45:00')
        self.assertEqual(transcode_value(Decimal('1.50')), Decimal('1.50'))
        self.assertEqual(transcode_value(b'\x00\x01'), b'\x00\x01')
        ref = UUID('12345678-1234-5678-1234-567812345678')
        self.assertEqual(transcode_value(ref), '12345678-1234-5678-1234-567812345678')

    def test_transcode_row_follows_column_order(self):
        row = {'Name': 'alice', 'Active': True, 'Id': 7, 'Extra': 'ignored'}
        self.assertEqual(transcode_row(row, ['Id', 'Name', 'Active', 'Missing']), [7, 'alice', 1, None])


if __name__ == '__main__':
    unittest.main()
