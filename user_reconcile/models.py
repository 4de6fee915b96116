"""
Record model for user reconciliation.

A UserRecord is an immutable snapshot of one user as seen by either the
source store or the target directory.
"""

from dataclasses import dataclass, fields
from typing import Dict, Any, Optional, Tuple


@dataclass(frozen=True)
class UserRecord:
    """
    Snapshot of a reconcilable user.

    Every field is an optional string. None means the attribute is absent,
    which is distinct from an empty string.
    """
    sam_account_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserRecord':
        """
        Build a record from a mapping, ignoring keys that are not record fields.

        Args:
            data: Mapping of field name to value

        Returns:
            New UserRecord instance
        """
        values = {}
        for name in USER_FIELDS:
            if name in data:
                value = data[name]
                values[name] = None if value is None else str(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, Optional[str]]:
        """Return field values keyed by field name, in field order."""
        return {name: getattr(self, name) for name in USER_FIELDS}


USER_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(UserRecord))
