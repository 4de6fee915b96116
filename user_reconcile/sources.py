"""
File-backed user source.

Reads the authoritative user export (YAML or CSV) that the reconciliation
engine compares against the directory.
"""

import os
import csv
import logging
from typing import Dict, Any, List

import yaml

from user_reconcile.collaborators import UserSource, SourceFetchFailure
from user_reconcile.models import UserRecord

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('yaml', 'csv')


def detect_format(path: str) -> str:
    """Guess the export format from a file extension."""
    extension = os.path.splitext(path)[1].lower()
    if extension in ('.yaml', '.yml'):
        return 'yaml'
    if extension == '.csv':
        return 'csv'
    return ''


class FileUserSource(UserSource):
    """
    Source users read from an exported file.

    YAML exports hold either a list of user mappings or a mapping with a
    'users' list. CSV exports have one user per row with a header line.
    Empty CSV cells are read as absent values (None).
    The 'columns' setting renames export columns to UserRecord fields.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: The 'source' configuration section
        """
        self.path = config['path']
        self.format = (config.get('format') or detect_format(self.path)).lower()
        self.columns = config.get('columns') or {}
        self.encoding = config.get('encoding', 'utf-8')

    def fetch_all(self) -> List[UserRecord]:
        if self.format not in SUPPORTED_FORMATS:
            raise SourceFetchFailure(f"Unsupported source format '{self.format}' for {self.path}")

        try:
            with open(self.path, 'r', encoding=self.encoding, newline='') as f:
                if self.format == 'yaml':
                    rows = self._read_yaml(f)
                else:
                    rows = [self._blank_to_none(row) for row in csv.DictReader(f)]
        except OSError as e:
            raise SourceFetchFailure(f"Cannot read source file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise SourceFetchFailure(f"Invalid YAML in source file {self.path}: {e}") from e
        except csv.Error as e:
            raise SourceFetchFailure(f"Invalid CSV in source file {self.path}: {e}") from e

        users = [UserRecord.from_dict(self._rename(row)) for row in rows]
        logger.debug(f"Read {len(users)} users from {self.path}")
        return users

    def _read_yaml(self, stream) -> List[Dict[str, Any]]:
        data = yaml.safe_load(stream)
        if data is None:
            return []
        if isinstance(data, dict):
            data = data.get('users')
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise SourceFetchFailure(f"Source file {self.path} must contain a list of users")
        return data

    def _rename(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if not self.columns:
            return row
        return {self.columns.get(column, column): value for column, value in row.items()}

    @staticmethod
    def _blank_to_none(row: Dict[str, Any]) -> Dict[str, Any]:
        # CSV cannot tell an empty value from a missing one, and the directory
        # cannot store an empty string either
        return {column: (None if value == '' else value) for column, value in row.items()}
