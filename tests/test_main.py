#!/usr/bin/env python3
"""
Unit tests for the reconciliation runner and command line interface.

The LDAP directory is mocked; the source export is a temporary YAML file.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import Mock, patch

import yaml

# Add parent directory to path to import user_reconcile modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from user_reconcile.ldap_directory import LDAPConnectionError
from user_reconcile.main import (
    ReconcileRunner, main,
    EXIT_SUCCESS, EXIT_RECORD_ERRORS, EXIT_CONFIG_ERROR,
    EXIT_LDAP_CONNECTION_ERROR, EXIT_RECONCILE_FAILED
)
from user_reconcile.models import UserRecord


@patch('user_reconcile.main.setup_logging')
class TestReconcileRunner(unittest.TestCase):
    """Test cases for ReconcileRunner."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp(prefix='user_reconcile_main_')
        self.source_path = os.path.join(self.temp_dir, 'users.yaml')
        with open(self.source_path, 'w', encoding='utf-8') as f:
            yaml.dump([
                {'sam_account_name': 'alice', 'first_name': 'Alice', 'last_name': 'Smith', 'email': 'alice@example.com'},
                {'sam_account_name': 'bob', 'first_name': 'Bob', 'last_name': 'Jones', 'email': 'bob@example.com'},
            ], f)

        self.config = {
            'source': {'path': self.source_path},
            'target': {
                'server_url': 'ldaps://dc01.example.com',
                'bind_dn': 'CN=svc,DC=example,DC=com',
                'bind_password': 'test_password'
            },
            'logging': {'log_dir': os.path.join(self.temp_dir, 'logs')},
            'error_handling': {'max_retries': 1, 'retry_wait_seconds': 0}
        }

        self.directory = Mock()
        self.directory.resolve.side_effect = lambda identifier: {
            'alice': UserRecord('alice', 'Alice', 'Smith', 'old@example.com'),
            'bob': UserRecord('bob', 'Bob', 'Jones', 'bob@example.com'),
        }.get(identifier)
        directory_patcher = patch('user_reconcile.main.LDAPDirectory', return_value=self.directory)
        self.mock_directory_class = directory_patcher.start()
        self.addCleanup(directory_patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self):
        path = os.path.join(self.temp_dir, 'config.yaml')
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(self.config, f)
        return path

    def test_dry_run_by_default(self, mock_setup_logging):
        runner = ReconcileRunner(self.write_config())

        self.assertEqual(runner.run(), EXIT_SUCCESS)

        self.directory.connect.assert_called_once()
        self.directory.persist.assert_not_called()
        self.directory.disconnect.assert_called_once()
        self.assertEqual(runner.summary['would_update'], 1)
        self.assertEqual(runner.summary['up_to_date'], 1)
        mock_setup_logging.assert_called_once()

    def test_apply_updates(self, mock_setup_logging):
        runner = ReconcileRunner(self.write_config(), dry_run=False)

        self.assertEqual(runner.run(), EXIT_SUCCESS)

        self.directory.persist.assert_called_once_with(
            UserRecord('alice', 'Alice', 'Smith', 'alice@example.com')
        )
        self.assertEqual(runner.summary['updated'], 1)

    def test_config_dry_run_false(self, mock_setup_logging):
        self.config['reconcile'] = {'dry_run': False}

        ReconcileRunner(self.write_config()).run()

        self.directory.persist.assert_called_once()

    def test_cli_override_wins_over_config(self, mock_setup_logging):
        self.config['reconcile'] = {'dry_run': False}

        ReconcileRunner(self.write_config(), dry_run=True).run()

        self.directory.persist.assert_not_called()

    def test_configuration_error(self, mock_setup_logging):
        runner = ReconcileRunner(os.path.join(self.temp_dir, 'missing.yaml'))

        self.assertEqual(runner.run(), EXIT_CONFIG_ERROR)

    def test_ldap_connection_error(self, mock_setup_logging):
        self.directory.connect.side_effect = LDAPConnectionError("LDAP server unreachable")

        self.assertEqual(ReconcileRunner(self.write_config()).run(), EXIT_LDAP_CONNECTION_ERROR)

    def test_source_failure(self, mock_setup_logging):
        os.unlink(self.source_path)

        self.assertEqual(ReconcileRunner(self.write_config()).run(), EXIT_RECONCILE_FAILED)
        self.directory.resolve.assert_not_called()
        self.directory.disconnect.assert_called_once()

    def test_target_failure_aborts(self, mock_setup_logging):
        self.directory.persist.side_effect = RuntimeError("write refused")

        self.assertEqual(ReconcileRunner(self.write_config(), dry_run=False).run(), EXIT_RECONCILE_FAILED)

    def test_isolated_target_failure(self, mock_setup_logging):
        self.config['error_handling']['isolate_record_errors'] = True
        self.directory.persist.side_effect = RuntimeError("write refused")

        runner = ReconcileRunner(self.write_config(), dry_run=False)

        self.assertEqual(runner.run(), EXIT_RECORD_ERRORS)
        self.assertEqual(runner.summary['failed'], 1)
        self.assertEqual(runner.summary['up_to_date'], 1)

    def test_health_check_healthy(self, mock_setup_logging):
        self.directory.test_connection.return_value = True

        health = ReconcileRunner(self.write_config()).health_check()

        self.assertEqual(health['status'], 'healthy')
        self.assertEqual(health['checks']['source']['status'], 'pass')
        self.assertEqual(health['checks']['ldap']['status'], 'pass')

    def test_health_check_unhealthy(self, mock_setup_logging):
        self.directory.test_connection.return_value = False
        self.config['reconcile'] = {'field_mappings': {'title': 'job_title'}}

        health = ReconcileRunner(self.write_config()).health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['field_mappings']['status'], 'fail')
        self.assertEqual(health['checks']['ldap']['status'], 'fail')

    def test_health_check_bad_config(self, mock_setup_logging):
        health = ReconcileRunner(os.path.join(self.temp_dir, 'missing.yaml')).health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(list(health['checks']), ['configuration'])


class TestMain(unittest.TestCase):
    """Test cases for the command line entry point."""

    @patch('user_reconcile.main.ReconcileRunner')
    def test_apply_flag(self, mock_runner):
        mock_runner.return_value.run.return_value = EXIT_SUCCESS

        with patch.object(sys, 'argv', ['user-reconcile', '-c', 'cfg.yaml', '--apply']):
            with self.assertRaises(SystemExit) as ctx:
                main()

        self.assertEqual(ctx.exception.code, EXIT_SUCCESS)
        mock_runner.assert_called_once_with(config_path='cfg.yaml', dry_run=False)

    @patch('user_reconcile.main.ReconcileRunner')
    def test_default_mode_comes_from_config(self, mock_runner):
        mock_runner.return_value.run.return_value = EXIT_RECONCILE_FAILED

        with patch.object(sys, 'argv', ['user-reconcile']):
            with self.assertRaises(SystemExit) as ctx:
                main()

        self.assertEqual(ctx.exception.code, EXIT_RECONCILE_FAILED)
        mock_runner.assert_called_once_with(config_path=None, dry_run=None)

    @patch('user_reconcile.main.ReconcileRunner')
    def test_health_check_flag(self, mock_runner):
        mock_runner.return_value.health_check.return_value = {'status': 'unhealthy', 'checks': {}}

        with patch.object(sys, 'argv', ['user-reconcile', '--health-check']), \
                patch('builtins.print'):
            with self.assertRaises(SystemExit) as ctx:
                main()

        self.assertEqual(ctx.exception.code, 1)
        mock_runner.return_value.run.assert_not_called()


if __name__ == '__main__':
    unittest.main()
