#!/usr/bin/env python3
"""
Unit tests for the rowferry command line
"""

import os
import unittest
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent.resolve()))

from core.errors import ConfigurationError, SourceError, TableMigrationError
from core.schema_ir import RunSummary, TableResult, TableState
from tools import db_migrator
from tools.db_migrator import build_parser, main

CLEAN_ENV = {k: v for k, v in os.environ.items() if not k.startswith('ROWFERRY_')}


class TestParser(unittest.TestCase):

    def test_migrate_options(self):
        args = build_parser().parse_args(
            ['--source', 'mssql://sa@h/db', 'migrate', 'Users,Accounts', '--workers', '4', '--dry-run'])
        self.assertEqual(args.command, 'migrate')
        self.assertEqual(args.tables, 'Users,Accounts')
        self.assertEqual(args.workers, 4)
        self.assertTrue(args.dry_run)
        self.assertIsNone(args.split_passes)

    def test_command_is_required(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_tables_and_phase_are_exclusive(self):
        with self.assertRaises(SystemExit) as ctx:
            main(['migrate', 'Users', '--phase', 'core'])
        self.assertEqual(ctx.exception.code, 2)

    def test_split_tables(self):
        self.assertEqual(db_migrator._split_tables(' Users, ,Accounts '), ['Users', 'Accounts'])
        self.assertEqual(db_migrator._split_tables(None), [])


@patch.dict(os.environ, CLEAN_ENV, clear=True)
class TestCommands(unittest.TestCase):

    def setUp(self):
        self.coordinator = MagicMock()
        self.coordinator.__enter__.return_value = self.coordinator
        self.coordinator.__exit__.return_value = False
        patcher = patch.object(db_migrator.MigrationCoordinator, 'from_config', return_value=self.coordinator)
        self.from_config = patcher.start()
        self.addCleanup(patcher.stop)
        self.base = ['--env-file', '', '--source', 'sqlite:///:memory:', '--target', 'sqlite:///:memory:']

    def test_migrate_filtered_tables(self):
        self.coordinator.run_tables.return_value = RunSummary()
        self.assertEqual(main(self.base + ['migrate', 'Users,Accounts', '--batch-size', '250']), 0)
        self.coordinator.run_tables.assert_called_once_with(['Users', 'Accounts'])
        config = self.from_config.call_args[0][0]
        self.assertEqual(config.batch_size, 250)

    def test_migrate_phase(self):
        self.coordinator.run_phase.return_value = RunSummary()
        self.assertEqual(main(self.base + ['migrate', '--phase', 'core']), 0)
        self.coordinator.run_phase.assert_called_once_with('core')

    def test_failed_migration_exits_non_zero_with_summary(self):
        summary = RunSummary(failed_table='Users', error='Users: boom')
        summary.tables.append(TableResult('Users', state=TableState.FAILED))
        self.coordinator.last_summary = summary
        self.coordinator.run_all.side_effect = TableMigrationError('Users', 'boom')

        with patch('builtins.print') as printed:
            self.assertEqual(main(self.base + ['migrate']), 1)
        self.assertIn('Migrated 0 tables', printed.call_args_list[0][0][0])

    def test_session_failure_still_prints_summary(self):
        self.coordinator.last_summary = RunSummary(error='Lost connection')
        self.coordinator.run_all.side_effect = SourceError('Lost connection')

        with patch('builtins.print') as printed:
            self.assertEqual(main(self.base + ['migrate']), 1)
        self.assertIn('Migrated 0 tables', printed.call_args_list[0][0][0])

    def test_unknown_phase_exits_without_summary(self):
        self.coordinator.last_summary = None
        self.coordinator.run_phase.side_effect = ConfigurationError('Unknown phase: nope')

        with patch('builtins.print') as printed:
            self.assertEqual(main(self.base + ['migrate', '--phase', 'nope']), 1)
        printed.assert_not_called()

    def test_verify_mismatch_exits_non_zero(self):
        self.coordinator.verify.return_value = [
            {'table': 'Users', 'source_rows': 5, 'target_rows': 5, 'match': True},
            {'table': 'Orders', 'source_rows': 9, 'target_rows': None, 'match': False},
        ]
        with patch('builtins.print') as printed:
            self.assertEqual(main(self.base + ['verify']), 1)
        lines = [c[0][0] for c in printed.call_args_list]
        self.assertEqual(lines, ['Users: source=5 target=5 OK', 'Orders: source=9 target=missing MISMATCH'])

    def test_phases_listing(self):
        with patch.object(db_migrator, 'load_config') as load_config, patch('builtins.print') as printed:
            load_config.return_value.phases = {'core': ['Users', 'Accounts']}
            load_config.return_value.log_level = 'INFO'
            load_config.return_value.log_dir = None
            self.assertEqual(main(['phases']), 0)
        printed.assert_called_once_with('core: Users, Accounts')

    def test_missing_urls_exit_non_zero(self):
        self.assertEqual(main(['--env-file', '', 'test-connections']), 1)


if __name__ == '__main__':
    unittest.main()
