"""
Logging setup and configuration for User Reconcile.

This module configures the application log (file rotation, retention and
console output), scrubs credentials from log messages, and provides the
audit logger that records one structured event per reconciliation decision.
"""

import os
import re
import glob
import json
import logging
import logging.handlers
from typing import Dict, Any, Iterable, Optional
from datetime import datetime, timedelta

AUDIT_LOGGER_NAME = 'audit'

SENSITIVE_KEYWORDS = [
    'password', 'bind_password', 'secret', 'token', 'credential',
    'pwd', 'authorization', 'api_key', 'client_secret'
]


def _compile_patterns(keywords):
    patterns = []
    for keyword in keywords:
        # key=value
        patterns.append((re.compile(rf'({keyword}\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****'))
        # "key": "value"
        patterns.append((re.compile(rf'("{keyword}"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1****\2'))
        # 'key': 'value' as printed by repr() of a dict
        patterns.append((re.compile(rf"('{keyword}'\s*:\s*')[^']*(')", re.IGNORECASE), r'\1****\2'))
    return patterns


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    _PATTERNS = _compile_patterns(SENSITIVE_KEYWORDS)

    def filter(self, record):
        """Replace sensitive values in the record message."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self._PATTERNS:
                msg = pattern.sub(replacement, msg)
            record.msg = msg

        return True


class AuditFormatter(logging.Formatter):
    """Render audit records as one JSON object per line."""

    AUDIT_FIELDS = ('event', 'identifier', 'outcome', 'dry_run', 'fields', 'error', 'error_type')

    def format(self, record):
        entry = {
            'timestamp': self.formatTime(record, '%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'message': record.getMessage(),
        }
        for name in self.AUDIT_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)
        return json.dumps(entry)


class LoggingManager:
    """
    Manages logging configuration for the User Reconcile application.

    Provides file-based logging with rotation and retention, a separate
    JSON-lines audit trail, and console output.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'WARNING').upper()
        audit_enabled = logging_config.get('audit_file', True)

        os.makedirs(self.log_dir, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler('app.log', rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(message)s',
                datefmt='%H:%M:%S'
            ))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        audit_logger.handlers.clear()
        if audit_enabled:
            audit_handler = self._create_file_handler('audit.log', rotation)
            audit_handler.setLevel(logging.INFO)
            audit_handler.setFormatter(AuditFormatter())
            audit_handler.addFilter(sensitive_filter)
            audit_logger.addHandler(audit_handler)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}, audit={audit_enabled}")

    def _create_file_handler(self, filename: str, rotation: str) -> logging.Handler:
        """
        Create a file handler for a log file in the log directory.

        Args:
            filename: Log file name
            rotation: 'daily' or 'midnight' for daily rotation, anything else disables it
        """
        log_file = os.path.join(self.log_dir, filename)

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in self.get_log_files():
            if log_file.endswith('.log'):
                continue
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                logging.getLogger(__name__).warning(f"Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> list:
        """Return the current and rotated log files, sorted by name."""
        if not self.log_dir:
            return []

        log_files = glob.glob(os.path.join(self.log_dir, 'app.log*'))
        log_files += glob.glob(os.path.join(self.log_dir, 'audit.log*'))
        return sorted(log_files)


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class AuditLogger:
    """Records reconciliation decisions as structured audit events."""

    def __init__(self, name: str = AUDIT_LOGGER_NAME):
        self.logger = logging.getLogger(name)

    def log_decision(self, identifier: str, outcome: str, dry_run: bool,
                     fields: Optional[Iterable[str]] = None, error: Optional[Exception] = None):
        """
        Log the decision taken for one user.

        Args:
            identifier: Lookup key of the user
            outcome: Decision outcome, e.g. 'updated' or 'not_found'
            dry_run: Whether the pass was a dry run
            fields: Comparison keys that differ between source and target
            error: Error that prevented a decision, if any
        """
        extra = {
            'event': 'decision',
            'identifier': identifier,
            'outcome': outcome,
            'dry_run': dry_run,
            'fields': list(fields or []),
        }
        message = f"Decision: user={identifier} outcome={outcome}"
        if error is not None:
            extra['error'] = str(error)
            extra['error_type'] = type(error).__name__
            self.logger.error(f"{message} error={error}", extra=extra)
        elif outcome == 'not_found':
            self.logger.warning(message, extra=extra)
        else:
            self.logger.info(message, extra=extra)

    def log_pass_failed(self, cause: Exception, dry_run: bool):
        """Log that a reconciliation pass was aborted by an error."""
        self.logger.error(
            f"Reconciliation pass failed: {type(cause).__name__}: {cause}",
            extra={
                'event': 'pass_failed',
                'dry_run': dry_run,
                'error': str(cause),
                'error_type': type(cause).__name__,
            }
        )
