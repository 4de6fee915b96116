"""
Field mapping configuration for user reconciliation.

Compiles the configured comparison keys into a table of record accessors once,
at configuration time, so the diff logic never has to look fields up by name.
"""

import logging
from operator import attrgetter
from typing import Callable, Dict, Any, List, Optional

from user_reconcile.models import UserRecord, USER_FIELDS

logger = logging.getLogger(__name__)

Accessor = Callable[[UserRecord], Optional[str]]

DEFAULT_FIELD_MAPPINGS = {
    'givenName': 'first_name',
    'sn': 'last_name',
    'mail': 'email',
}

DEFAULT_SEARCH_BY = 'sam_account_name'


def field_accessor(field_name: str) -> Optional[Accessor]:
    """
    Return an accessor for a record field, or None if no such field exists.

    Args:
        field_name: Name of a UserRecord field
    """
    if field_name not in USER_FIELDS:
        return None
    return attrgetter(field_name)


def unresolved_fields(field_names: List[str]) -> List[str]:
    """Return the names from field_names that are not UserRecord fields."""
    return [name for name in field_names if name not in USER_FIELDS]


class FieldMapping:
    """
    Compiled comparison keys plus the identifier selector.

    Each comparison key names a target directory attribute and maps to the
    UserRecord field holding its value. Keys whose field does not exist are
    dropped from the accessor table and never take part in a comparison.
    """

    def __init__(self, mappings: Dict[str, str], search_by: str = DEFAULT_SEARCH_BY):
        """
        Compile field mappings.

        Args:
            mappings: Comparison key to record field name
            search_by: Record field used as the cross-store lookup key
        """
        self.mappings = dict(mappings)
        self.search_by = search_by
        self.accessors: Dict[str, Accessor] = {}
        self.unresolved: List[str] = []

        for key, field_name in self.mappings.items():
            accessor = field_accessor(field_name)
            if accessor is None:
                self.unresolved.append(key)
                logger.warning(f"Field mapping {key} -> {field_name} does not match a user field, "
                               f"it will never trigger an update")
                continue
            self.accessors[key] = accessor

        self.identifier_accessor = field_accessor(search_by)
        if self.identifier_accessor is None:
            logger.warning(f"Identifier field {search_by} does not match a user field, "
                           f"no user will be found in the target")

    @classmethod
    def from_config(cls, reconcile_config: Dict[str, Any]) -> 'FieldMapping':
        """
        Build a field mapping from the reconcile configuration section.

        Args:
            reconcile_config: The 'reconcile' section of the configuration
        """
        return cls(
            reconcile_config.get('field_mappings', DEFAULT_FIELD_MAPPINGS),
            reconcile_config.get('search_by', DEFAULT_SEARCH_BY)
        )

    def identifier(self, record: UserRecord) -> str:
        """Return the lookup key for a record, or an empty string."""
        if self.identifier_accessor is None:
            return ''
        value = self.identifier_accessor(record)
        return '' if value is None else value

    def items(self):
        """Iterate over (comparison key, accessor) pairs in mapping order."""
        return self.accessors.items()

    def field_for(self, key: str) -> Optional[str]:
        """Return the record field for a resolvable comparison key."""
        if key not in self.accessors:
            return None
        return self.mappings[key]

    def __repr__(self):
        return f"FieldMapping({self.mappings!r}, search_by={self.search_by!r})"
