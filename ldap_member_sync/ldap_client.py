"""
LDAP directory client for the member sync engine.

This module implements the DirectoryClient capability on top of ldap3. It
locates entries by their GUID attribute (objectGUID on Active Directory,
entryUUID on OpenLDAP), and creates, modifies and deletes member entries.
"""

import ssl
import uuid
import logging
from typing import Any, Callable, Dict, List, Optional, Set
from ldap3 import Server, Connection, SUBTREE, BASE, ALL, ALL_ATTRIBUTES, MODIFY_REPLACE, Tls
from ldap3.core.exceptions import LDAPException, LDAPBindError, LDAPCommunicationError
from ldap3.utils.conv import escape_bytes, escape_filter_chars
from ldap3.utils.dn import escape_rdn

from ldap_member_sync.directory import DirectoryClient
from ldap_member_sync.exceptions import DirectoryUnavailable, RecordNotFound, WriteRejected
from ldap_member_sync.retry import retry_directory_call

logger = logging.getLogger(__name__)

# LDAP result codes that mean "try again later" rather than "refused"
UNAVAILABLE_RESULT_CODES = {51, 52}  # busy, unavailable
NO_SUCH_OBJECT = 32

AD_OBJECT_CLASSES = ['top', 'person', 'organizationalPerson', 'user']
LDAP_OBJECT_CLASSES = ['top', 'person', 'organizationalPerson', 'inetOrgPerson']


class LDAPDirectoryClient(DirectoryClient):
    """
    ldap3-backed directory client.

    The connection is opened lazily on first use and re-opened after a
    communication failure. Connection attempts are retried according to the
    error_handling settings; individual operations are not.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.is_enabled = config.get('enabled', True)
        self.server_url = config.get('server_url', '')
        self.bind_dn = config.get('bind_dn', '')
        self.bind_password = config.get('bind_password', '')
        self.base_dn = config.get('base_dn', '')
        self.new_user_dn = config.get('new_user_dn') or self.base_dn
        self.group_base_dn = config.get('group_base_dn')
        self.guid_attribute = config.get('guid_attribute', 'objectGUID')
        self.active_directory = config.get('active_directory', self.guid_attribute.lower() == 'objectguid')
        self.username_attribute = config.get(
            'username_attribute', 'sAMAccountName' if self.active_directory else 'uid')
        self.naming_attribute = config.get('naming_attribute', 'CN' if self.active_directory else 'uid')
        self.user_object_classes = config.get(
            'user_object_classes', AD_OBJECT_CLASSES if self.active_directory else LDAP_OBJECT_CLASSES)
        self.attributes = config.get('attributes', [ALL_ATTRIBUTES])

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    def enabled(self) -> bool:
        return bool(self.is_enabled)

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between retries (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            DirectoryUnavailable: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait if retry_wait is not None else self.retry_wait

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} "
                         f"(SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to create LDAP server: {e}")

        retry_directory_call(self._open_connection, "LDAP connection",
                             max_attempts=max_retries, delay=retry_wait)

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _open_connection(self):
        """Open, secure and bind a single connection."""
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            self.connection.open()

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPBindError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except LDAPException:
            self._discard_connection()
            raise

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
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
            raise DirectoryUnavailable(f"Failed to create TLS configuration: {e}")

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding connection: {e}")
        self.connection = None
        self._connected = False

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

    def search(self, identifier: str) -> Dict[str, Any]:
        """
        Fetch all readable attributes of the entry bound to a GUID.

        Returns:
            Dictionary of attribute name -> list of values, plus 'dn'
        """
        entry = self._run('search', lambda: self._find_entry(identifier, self.attributes),
                          DirectoryUnavailable)
        attributes = dict(entry.entry_attributes_as_dict)
        attributes['dn'] = entry.entry_dn
        return attributes

    def create(self, attributes: Dict[str, Any]) -> str:
        """
        Create a member entry below new_user_dn.

        Returns:
            GUID of the new entry
        """
        rdn_value = self._attribute_value(attributes, self.naming_attribute) \
            or self._attribute_value(attributes, self.username_attribute)
        if not rdn_value:
            raise WriteRejected(
                f"Cannot create entry without a {self.naming_attribute} or {self.username_attribute} value")

        entry_attributes = {name: value for name, value in attributes.items()}
        if not self._attribute_value(entry_attributes, self.username_attribute):
            entry_attributes[self.username_attribute] = rdn_value
        if not self._attribute_value(entry_attributes, 'cn'):
            entry_attributes['cn'] = rdn_value
        if not self.active_directory and not self._attribute_value(entry_attributes, 'sn'):
            entry_attributes['sn'] = rdn_value

        dn = f"{self.naming_attribute}={escape_rdn(str(rdn_value))},{self.new_user_dn}"
        logger.debug(f"Creating directory entry {dn}")

        def operation():
            success = self.connection.add(dn, self.user_object_classes, entry_attributes)
            self._check_result(f"Create of {dn}", success)
            self.connection.search(search_base=dn, search_filter='(objectClass=*)',
                                   search_scope=BASE, attributes=[self.guid_attribute])
            if not self.connection.entries:
                raise WriteRejected(f"Created entry {dn} could not be read back")
            return self._extract_guid(self.connection.entries[0])

        guid = self._run('create', operation, WriteRejected)
        logger.info(f"Created directory entry {dn} with GUID {guid}")
        return guid

    def modify(self, identifier: str, attributes: Dict[str, Any]) -> None:
        """Replace the given attributes on the entry bound to a GUID."""
        changes = {}
        for name, value in attributes.items():
            if name.lower() == self.naming_attribute.lower():
                # Renaming needs a modify DN operation
                continue
            values = list(value) if isinstance(value, (list, tuple, set)) else [value]
            changes[name] = [(MODIFY_REPLACE, values)]

        if not changes:
            return

        def operation():
            entry = self._find_entry(identifier, [self.guid_attribute], WriteRejected)
            success = self.connection.modify(entry.entry_dn, changes)
            self._check_result(f"Modify of {entry.entry_dn}", success)

        self._run('modify', operation, WriteRejected)
        logger.debug(f"Modified {sorted(changes)} on {identifier}")

    def delete(self, identifier: str) -> None:
        """Delete the entry bound to a GUID."""
        def operation():
            entry = self._find_entry(identifier, [self.guid_attribute], WriteRejected)
            success = self.connection.delete(entry.entry_dn)
            self._check_result(f"Delete of {entry.entry_dn}", success)

        self._run('delete', operation, WriteRejected)

    def set_credential(self, identifier: str, secret: str) -> None:
        """Set the password of the entry bound to a GUID."""
        def operation():
            entry = self._find_entry(identifier, [self.guid_attribute], WriteRejected)
            if self.active_directory:
                success = self.connection.extend.microsoft.modify_password(entry.entry_dn, secret)
            else:
                success = self.connection.extend.standard.modify_password(entry.entry_dn, new_password=secret)
            self._check_result(f"Password change of {entry.entry_dn}", success)

        self._run('set_credential', operation, WriteRejected)

    def groups_for(self, identifier: str) -> Set[str]:
        """
        Return the DNs of the groups the entry belongs to.

        Uses the memberOf attribute, or a member search below group_base_dn
        when one is configured (directories without a memberOf overlay).
        """
        def operation():
            entry = self._find_entry(identifier, ['memberOf'])
            if not self.group_base_dn:
                if 'memberOf' not in entry.entry_attributes_as_dict:
                    return set()
                return set(entry.entry_attributes_as_dict['memberOf'])

            search_filter = f"(member={escape_filter_chars(entry.entry_dn)})"
            success = self.connection.search(search_base=self.group_base_dn, search_filter=search_filter,
                                             search_scope=SUBTREE, attributes=['cn'])
            if not success and self.connection.result.get('result') not in (0, NO_SUCH_OBJECT):
                self._check_result(f"Group search for {entry.entry_dn}", success, DirectoryUnavailable)
            return {group.entry_dn for group in self.connection.entries}

        groups = self._run('groups_for', operation, DirectoryUnavailable)
        logger.debug(f"Entry {identifier} is a member of {len(groups)} groups")
        return groups

    def _run(self, operation_name: str, operation: Callable[[], Any], error_class: type) -> Any:
        """
        Run a directory operation, translating ldap3 errors.

        Communication failures become DirectoryUnavailable and drop the
        connection so that the next call reconnects. Other ldap3 errors become
        error_class.
        """
        if not self._connected:
            self.connect()

        try:
            return operation()
        except LDAPCommunicationError as e:
            self._discard_connection()
            raise DirectoryUnavailable(f"LDAP {operation_name} failed: {e}")
        except LDAPException as e:
            raise error_class(f"LDAP {operation_name} failed: {e}")

    def _find_entry(self, identifier: str, attributes: List[str], error_class: type = DirectoryUnavailable):
        """
        Return the entry bound to a GUID.

        A failed search raises DirectoryUnavailable for busy/unavailable
        results and error_class otherwise.
        """
        search_filter = self._guid_filter(identifier)
        success = self.connection.search(
            search_base=self._get_domain_base(),
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes
        )
        if not success and self.connection.result.get('result') not in (0, NO_SUCH_OBJECT):
            self._check_result(f"Search for {identifier}", success, error_class)
        if not self.connection.entries:
            raise RecordNotFound(identifier)
        return self.connection.entries[0]

    def _guid_filter(self, identifier: str) -> str:
        """Build the search filter for a GUID string."""
        if self.guid_attribute.lower() == 'objectguid':
            try:
                raw = uuid.UUID(str(identifier).strip('{}')).bytes_le
            except ValueError:
                raise RecordNotFound(identifier, f"Malformed GUID: {identifier}")
            return f"(objectGUID={escape_bytes(raw)})"
        return f"({self.guid_attribute}={escape_filter_chars(str(identifier))})"

    def _extract_guid(self, entry) -> str:
        raw_values = entry[self.guid_attribute].raw_values
        if not raw_values:
            raise WriteRejected(f"Entry {entry.entry_dn} has no {self.guid_attribute}")
        raw = raw_values[0]
        if self.guid_attribute.lower() == 'objectguid':
            return str(uuid.UUID(bytes_le=raw))
        return raw.decode('utf-8') if isinstance(raw, bytes) else str(raw)

    def _check_result(self, description: str, success: bool, error_class: type = WriteRejected):
        """Raise the matching sync error for a failed ldap3 operation."""
        if success:
            return
        result = self.connection.result or {}
        code = result.get('result')
        message = f"{description} failed: {result.get('description')} {result.get('message', '')}".strip()
        if code in UNAVAILABLE_RESULT_CODES:
            raise DirectoryUnavailable(message)
        raise error_class(message)

    @staticmethod
    def _attribute_value(attributes: Dict[str, Any], name: str) -> Any:
        for key, value in attributes.items():
            if key.lower() == name.lower():
                if isinstance(value, (list, tuple)):
                    return value[0] if value else None
                return value
        return None

    def _get_domain_base(self) -> str:
        """Determine the search base from config, bind DN or server info."""
        if self.base_dn:
            return self.base_dn

        if 'DC=' in self.bind_dn.upper():
            parts = self.bind_dn.split(',')
            dc_parts = [part.strip() for part in parts if part.strip().upper().startswith('DC=')]
            if dc_parts:
                return ','.join(dc_parts)

        if self.server and self.server.info and self.server.info.naming_contexts:
            return self.server.info.naming_contexts[0]

        raise DirectoryUnavailable("Cannot determine directory base DN")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without raising.

        Returns:
            True if the server answers a root DSE search
        """
        try:
            if not self._connected:
                self.connect(max_retries=1, retry_wait=0)
            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts'],
                size_limit=1
            )
        except (DirectoryUnavailable, LDAPException) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'enabled': self.enabled(),
            'connected': self._connected,
            'server_url': self.server_url,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn,
            'base_dn': self.base_dn,
            'guid_attribute': self.guid_attribute,
            'active_directory': self.active_directory
        }

        if self.connection:
            stats.update({
                'server_host': getattr(self.connection.server, 'host', None),
                'server_port': getattr(self.connection.server, 'port', None),
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
