"""
LDAP target directory for user reconciliation.

This module connects to an LDAP or Active Directory server, looks users up by
their identifier attribute and writes the mapped attributes back when the
reconciliation engine asks for an update.
"""

import logging
import ssl
from typing import Dict, Any, List, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException, LDAPBindError, LDAPCommunicationError
from ldap3.utils.conv import escape_filter_chars

from user_reconcile.collaborators import UserTarget
from user_reconcile.field_mapping import FieldMapping
from user_reconcile.models import UserRecord, USER_FIELDS
from user_reconcile.retry import retry_call, is_retryable_error, create_retry_callback, MaxRetriesExceeded

logger = logging.getLogger(__name__)

# LDAP result codes that mean "the search ran but found nothing"
EMPTY_SEARCH_RESULTS = (0, 32)


def is_transient_ldap_error(exception: Exception) -> bool:
    """Socket level failures and busy or unavailable servers are worth retrying; bad credentials are not."""
    return isinstance(exception, LDAPCommunicationError) or is_retryable_error(exception)


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPUpdateError(Exception):
    """Raised when an LDAP entry cannot be modified."""
    pass


class LDAPDirectory(UserTarget):
    """
    Target directory backed by an LDAP server.

    Comparison keys of the field mapping are used as LDAP attribute names, so a
    mapping of givenName -> first_name reads and writes the givenName attribute.
    """

    def __init__(self, config: Dict[str, Any], field_mapping: FieldMapping,
                 error_config: Optional[Dict[str, Any]] = None):
        """
        Initialize the LDAP directory.

        Args:
            config: The 'target' configuration section
            field_mapping: Compiled field mapping shared with the engine
            error_config: The 'error_handling' configuration section
        """
        self.config = config
        self.field_mapping = field_mapping
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.user_base_dn = config.get('user_base_dn', '')
        self.user_filter = config.get('user_filter', '(objectClass=person)')
        self.identifier_attribute = config.get('identifier_attribute', 'sAMAccountName')

        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        error_config = error_config or {}
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[float] = None) -> bool:
        """
        Connect and bind to the LDAP server, retrying transient failures.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between attempts (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all attempts
        """
        max_retries = self.max_retries if max_retries is None else max_retries
        retry_wait = self.retry_wait if retry_wait is None else retry_wait

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}") from e

        try:
            self.connection = retry_call(
                self._open_and_bind,
                max_attempts=max(1, max_retries),
                delay=retry_wait,
                exceptions=(LDAPException,),
                retry_if=is_transient_ldap_error,
                on_retry=create_retry_callback("LDAP connection")
            )
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(
                f"Failed to connect to LDAP after {e.attempts} attempts: {e.last_exception}"
            ) from e
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to connect to LDAP: {e}") from e

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _open_and_bind(self) -> Connection:
        connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )

        try:
            connection.open()

            if self.start_tls and not self.use_ssl:
                if not connection.start_tls():
                    raise LDAPException(f"Failed to start TLS: {connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not connection.bind():
                raise LDAPBindError(f"Bind failed: {connection.result}")

        except LDAPException:
            try:
                connection.unbind()
            except LDAPException as cleanup_error:
                logger.debug(f"Error closing failed LDAP connection: {cleanup_error}")
            raise

        return connection

    def _create_tls_config(self) -> Optional[Tls]:
        """Create the TLS configuration, or None for plain LDAP."""
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}") from e

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def resolve(self, identifier: str) -> Optional[UserRecord]:
        """
        Find the user whose identifier attribute equals identifier.

        Returns:
            The directory's record, or None if there is no single matching entry

        Raises:
            LDAPQueryError: If the search fails
        """
        if not identifier:
            logger.debug("Skipping directory lookup for empty identifier")
            return None

        entries = self._search_user(identifier)
        if not entries:
            return None
        if len(entries) > 1:
            logger.warning(f"Identifier {identifier} matches {len(entries)} directory entries, "
                           f"treating it as not found")
            return None

        return self._entry_to_record(entries[0])

    def persist(self, record: UserRecord) -> None:
        """
        Replace the mapped attributes of the matching directory entry.

        Absent or empty values clear the attribute.

        Raises:
            LDAPQueryError: If the entry lookup fails
            LDAPUpdateError: If there is no single entry to update or the modify fails
        """
        identifier = self.field_mapping.identifier(record)
        if not identifier:
            raise LDAPUpdateError("Cannot update a user without an identifier")

        entries = self._search_user(identifier)
        if len(entries) != 1:
            raise LDAPUpdateError(f"Expected one directory entry for {identifier}, found {len(entries)}")

        dn = str(entries[0].entry_dn)
        changes = self.build_changes(record)
        if not changes:
            logger.debug(f"No mapped attributes to write for {dn}")
            return

        try:
            success = self.connection.modify(dn, changes)
        except LDAPException as e:
            raise LDAPUpdateError(f"Failed to modify {dn}: {e}") from e

        if not success:
            raise LDAPUpdateError(f"Failed to modify {dn}: {self.connection.result}")

        logger.debug(f"Modified {dn}: {', '.join(changes)} from {record.to_dict()}")

    def build_changes(self, record: UserRecord) -> Dict[str, list]:
        """Build an ldap3 modify request replacing every resolvable mapped attribute."""
        changes = {}
        for attribute, get in self.field_mapping.items():
            value = get(record)
            changes[attribute] = [(MODIFY_REPLACE, [value] if value else [])]
        return changes

    def _search_user(self, identifier: str) -> List[Any]:
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        search_filter = f"(&{self.user_filter}({self.identifier_attribute}={escape_filter_chars(identifier)}))"
        attributes = [self.identifier_attribute] + list(self.field_mapping.accessors)

        try:
            success = self.connection.search(
                search_base=self._get_search_base(),
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes
            )
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP search for {identifier} failed: {e}") from e

        if not success:
            if self.connection.result.get('result') in EMPTY_SEARCH_RESULTS:
                return []
            raise LDAPQueryError(f"LDAP search for {identifier} failed: {self.connection.result}")

        return list(self.connection.entries)

    def _entry_to_record(self, entry) -> UserRecord:
        """Map an LDAP entry onto a UserRecord using the field mapping."""
        attributes = {name.lower(): values for name, values in entry.entry_attributes_as_dict.items()}

        def first_value(attribute):
            values = attributes.get(attribute.lower())
            if not values:
                return None
            return str(values[0])

        record_values = {}
        for attribute, _ in self.field_mapping.items():
            record_values[self.field_mapping.field_for(attribute)] = first_value(attribute)
        if self.field_mapping.search_by in USER_FIELDS:
            record_values[self.field_mapping.search_by] = first_value(self.identifier_attribute)

        return UserRecord(**record_values)

    def _get_search_base(self) -> str:
        """Return the configured base DN, or derive one from the bind DN or server info."""
        if self.user_base_dn:
            return self.user_base_dn

        dc_parts = [part.strip() for part in self.bind_dn.split(',') if part.strip().upper().startswith('DC=')]
        if dc_parts:
            return ','.join(dc_parts)

        if self.server and self.server.info and self.server.info.naming_contexts:
            return self.server.info.naming_contexts[0]

        raise LDAPQueryError("Cannot determine search base DN")

    def test_connection(self) -> bool:
        """
        Test LDAP connectivity without raising.

        Returns:
            True if the server answers a root DSE search
        """
        try:
            if not self._connected:
                self.connect(max_retries=1, retry_wait=0)

            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope='BASE',
                attributes=['namingContexts'],
                size_limit=1
            )
        except (LDAPException, LDAPConnectionError) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
