"""
Main entry point for User Reconcile.

This module wires configuration, logging, the source export, the LDAP
directory and the reconciliation engine together, and maps failures to
process exit codes.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, Optional

from user_reconcile.config import load_config, ConfigurationError
from user_reconcile.engine import (
    ReconciliationEngine, SynchronizationFailure,
    NOT_FOUND, UPDATED, WOULD_UPDATE, UP_TO_DATE, FAILED
)
from user_reconcile.field_mapping import FieldMapping
from user_reconcile.ldap_directory import LDAPDirectory, LDAPConnectionError
from user_reconcile.logging_setup import setup_logging
from user_reconcile.sources import FileUserSource

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_RECORD_ERRORS = 1
EXIT_CONFIG_ERROR = 2
EXIT_LDAP_CONNECTION_ERROR = 3
EXIT_RECONCILE_FAILED = 4


class ReconcileRunner:
    """
    Runs one reconciliation pass from configuration.

    Owns the LDAP connection for the duration of the pass.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: Optional[bool] = None):
        """
        Initialize the runner.

        Args:
            config_path: Path to configuration file
            dry_run: Overrides reconcile.dry_run from the configuration when not None
        """
        self.config_path = config_path
        self.dry_run = dry_run
        self.config = None
        self.directory = None
        self.summary = None

    def run(self) -> int:
        """
        Run a complete reconciliation pass.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            dry_run = self._effective_dry_run()
            logger.info(f"Starting User Reconcile ({'dry run' if dry_run else 'apply changes'})")

            field_mapping = FieldMapping.from_config(self.config['reconcile'])
            error_config = self.config.get('error_handling', {})

            self.directory = LDAPDirectory(self.config['target'], field_mapping, error_config)
            self.directory.connect()

            engine = ReconciliationEngine(
                FileUserSource(self.config['source']),
                self.directory,
                field_mapping,
                isolate_record_errors=error_config.get('isolate_record_errors', False)
            )
            self.summary = engine.reconcile(dry_run=dry_run)
            self._log_summary()

            if self.summary[FAILED] > 0:
                logger.warning(f"Reconciliation completed with {self.summary[FAILED]} user failures")
                return EXIT_RECORD_ERRORS

            logger.info("Reconciliation completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            return EXIT_LDAP_CONNECTION_ERROR
        except SynchronizationFailure as e:
            logger.error(f"{e} Cause: {type(e.cause).__name__}: {e.cause}")
            return EXIT_RECONCILE_FAILED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_RECONCILE_FAILED
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def _effective_dry_run(self) -> bool:
        if self.dry_run is not None:
            return self.dry_run
        return bool(self.config['reconcile'].get('dry_run', True))

    def _log_summary(self):
        """Log final reconciliation statistics."""
        summary = self.summary
        logger.info("=== Reconciliation Summary ===")
        logger.info(f"Mode: {'dry run' if summary['dry_run'] else 'apply'}")
        logger.info(f"Runtime: {summary['runtime_seconds']:.2f} seconds")
        logger.info(f"Users processed: {summary['users_processed']}")
        logger.info(f"Updated: {summary[UPDATED]}")
        logger.info(f"Would update: {summary[WOULD_UPDATE]}")
        logger.info(f"Up to date: {summary[UP_TO_DATE]}")
        logger.info(f"Not found in target: {summary[NOT_FOUND]}")
        logger.info(f"Failed: {summary[FAILED]}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration, the source export and LDAP connectivity.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        def record(check: str, passed: bool, message: str):
            health_status['checks'][check] = {
                'status': 'pass' if passed else 'fail',
                'message': message
            }
            if not passed:
                health_status['status'] = 'unhealthy'

        try:
            self._load_configuration()
            record('configuration', True, 'Configuration loaded successfully')
        except ConfigurationError as e:
            record('configuration', False, f'Configuration error: {e}')
            return health_status

        field_mapping = FieldMapping.from_config(self.config['reconcile'])
        if field_mapping.unresolved:
            record('field_mappings', False,
                   f"Unknown user fields for: {', '.join(field_mapping.unresolved)}")
        else:
            record('field_mappings', True, f"{len(field_mapping.accessors)} fields compared")

        try:
            users = FileUserSource(self.config['source']).fetch_all()
            record('source', True, f'{len(users)} users readable from source')
        except Exception as e:
            record('source', False, f'Source read failed: {e}')

        directory = LDAPDirectory(self.config['target'], field_mapping, self.config.get('error_handling'))
        if directory.test_connection():
            record('ldap', True, 'LDAP connection successful')
        else:
            record('ldap', False, 'LDAP connection failed')
        directory.disconnect()

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.directory:
            self.directory.disconnect()


def main():
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Reconcile source users against an LDAP directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--apply', dest='dry_run', action='store_false', default=None,
                      help='Write updates to the directory')
    mode.add_argument('--dry-run', dest='dry_run', action='store_true', default=None,
                      help='Only report the updates that would be made')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of reconciliation')

    args = parser.parse_args()

    runner = ReconcileRunner(config_path=args.config, dry_run=args.dry_run)

    if args.health_check:
        health_status = runner.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(runner.run())


if __name__ == "__main__":
    main()
