"""
Reconciliation engine for User Reconcile.

This module contains the core logic: for every source user it finds the
matching target user, decides whether the target is stale on the mapped
fields, and updates it unless running in dry-run mode.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from user_reconcile.collaborators import UserSource, UserTarget
from user_reconcile.field_mapping import FieldMapping
from user_reconcile.logging_setup import AuditLogger
from user_reconcile.models import UserRecord

logger = logging.getLogger(__name__)

NOT_FOUND = 'not_found'
UPDATED = 'updated'
WOULD_UPDATE = 'would_update'
UP_TO_DATE = 'up_to_date'
FAILED = 'failed'

OUTCOMES = (NOT_FOUND, UPDATED, WOULD_UPDATE, UP_TO_DATE, FAILED)


class SynchronizationFailure(Exception):
    """Raised when a reconciliation pass is aborted. The original error is kept in `cause`."""

    def __init__(self, message: str, cause: Exception):
        super().__init__(message)
        self.cause = cause


class ReconciliationEngine:
    """
    Reconciles source users against a target directory.

    Users are processed one at a time in the order the source returns them.
    Each processed user produces exactly one audit decision event.
    """

    def __init__(self, source: UserSource, target: UserTarget, field_mapping: FieldMapping,
                 audit: Optional[AuditLogger] = None, isolate_record_errors: bool = False):
        """
        Initialize the engine.

        Args:
            source: Store supplying the authoritative users
            target: Directory checked and updated against the source
            field_mapping: Compiled comparison keys and identifier selector
            audit: Audit logger receiving decision events
            isolate_record_errors: Continue with the next user when the target
                fails for one user instead of aborting the pass
        """
        self.source = source
        self.target = target
        self.field_mapping = field_mapping
        self.audit = audit or AuditLogger()
        self.isolate_record_errors = isolate_record_errors

    def reconcile(self, dry_run: bool = True) -> Dict[str, Any]:
        """
        Run one complete reconciliation pass.

        Args:
            dry_run: Report decisions without writing to the target

        Returns:
            Summary of the pass with per-outcome counts and the ordered decisions

        Raises:
            SynchronizationFailure: If fetching the source users fails, or the
                target fails while record isolation is off
        """
        summary = {
            'dry_run': dry_run,
            'users_processed': 0,
            'errors': 0,
            'decisions': [],
            'start_time': datetime.now(),
            'end_time': None,
            'runtime_seconds': 0,
        }
        for outcome in OUTCOMES:
            summary[outcome] = 0

        mode = 'dry run' if dry_run else 'apply'
        logger.info(f"Starting reconciliation pass ({mode})")

        try:
            source_users = list(self.source.fetch_all())
            logger.info(f"Retrieved {len(source_users)} users from source")

            for source_user in source_users:
                decision = self._reconcile_user(source_user, dry_run)
                summary['decisions'].append(decision)
                summary['users_processed'] += 1
                summary[decision['outcome']] += 1
                if decision['outcome'] == FAILED:
                    summary['errors'] += 1

        except Exception as e:
            logger.error(f"Error during user reconciliation: {e}", exc_info=True)
            self.audit.log_pass_failed(e, dry_run)
            raise SynchronizationFailure("Failed to synchronize users.", e) from e

        finally:
            summary['end_time'] = datetime.now()
            summary['runtime_seconds'] = (summary['end_time'] - summary['start_time']).total_seconds()

        logger.info(f"Reconciliation pass finished: {summary['users_processed']} processed, "
                    f"{summary[UPDATED]} updated, {summary[WOULD_UPDATE]} would update, "
                    f"{summary[UP_TO_DATE]} up to date, {summary[NOT_FOUND]} not found, "
                    f"{summary[FAILED]} failed")
        return summary

    def _reconcile_user(self, source_user: UserRecord, dry_run: bool) -> Dict[str, Any]:
        """Decide, and possibly apply, the update for a single source user."""
        identifier = self.resolve_identifier(source_user)

        try:
            outcome, fields = self._decide(identifier, source_user, dry_run)
        except Exception as e:
            if not self.isolate_record_errors:
                raise
            logger.error(f"Failed to reconcile user {identifier}: {e}")
            self.audit.log_decision(identifier, FAILED, dry_run, error=e)
            return {'identifier': identifier, 'outcome': FAILED, 'fields': [], 'error': str(e)}

        self.audit.log_decision(identifier, outcome, dry_run, fields)
        return {'identifier': identifier, 'outcome': outcome, 'fields': fields}

    def _decide(self, identifier: str, source_user: UserRecord, dry_run: bool) -> tuple:
        target_user = self.target.resolve(identifier)

        if target_user is None:
            logger.warning(f"User {identifier} not found in target system")
            return NOT_FOUND, []

        fields = self.changed_fields(source_user, target_user)
        if not fields:
            logger.info(f"User {identifier} is up-to-date in target, no update required")
            return UP_TO_DATE, []

        logger.info(f"User {identifier} needs update: {', '.join(fields)}")
        if dry_run:
            return WOULD_UPDATE, fields

        self.target.persist(source_user)
        logger.info(f"Updated user {identifier}")
        return UPDATED, fields

    def resolve_identifier(self, record: UserRecord) -> str:
        """
        Return the cross-store lookup key for a record.

        Never fails: an unknown identifier field or an absent value gives ''.
        """
        return self.field_mapping.identifier(record)

    def needs_update(self, source: UserRecord, target: UserRecord) -> bool:
        """Return True if any resolvable mapped field differs between the two records."""
        return any(get(source) != get(target) for _, get in self.field_mapping.items())

    def changed_fields(self, source: UserRecord, target: UserRecord) -> List[str]:
        """Return the comparison keys whose values differ, in mapping order."""
        changed = []
        for key, get in self.field_mapping.items():
            if get(source) != get(target):
                logger.debug(f"Field {key} differs: {get(target)!r} -> {get(source)!r}")
                changed.append(key)
        return changed
