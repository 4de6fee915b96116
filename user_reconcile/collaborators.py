"""
Interfaces for the stores the reconciliation engine talks to.

Source and target adapters must inherit from these classes and implement the
required methods.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from user_reconcile.models import UserRecord


class SourceFetchFailure(Exception):
    """Raised when the source record set cannot be obtained."""
    pass


class UserSource(ABC):
    """Authoritative store the reconciliation reads users from."""

    @abstractmethod
    def fetch_all(self) -> List[UserRecord]:
        """
        Return the complete set of source users for one pass.

        Raises:
            SourceFetchFailure: If the users cannot be read
        """
        pass


class UserTarget(ABC):
    """Directory whose users are checked and updated."""

    @abstractmethod
    def resolve(self, identifier: str) -> Optional[UserRecord]:
        """
        Look up a user by identifier.

        Args:
            identifier: Lookup key computed from the source record

        Returns:
            The target's record, or None if no user matches
        """
        pass

    @abstractmethod
    def persist(self, record: UserRecord) -> None:
        """
        Replace the target user matching the record's identity with its values.

        Args:
            record: Source record whose values should be written
        """
        pass
