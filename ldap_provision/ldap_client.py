"""
LDAP client for connecting to and writing to LDAP directories.

This module provides a scoped directory session on top of ldap3: connect and
bind, add entries, replace attributes, and search a subtree. The
``DirectorySession`` base class names the operations the provisioning code
relies on so that a test double can stand in for a live server.
"""

import abc
import logging
import ssl
from typing import Dict, List, Any, Iterator, Optional, Tuple
from ldap3 import Server, Connection, SUBTREE, ALL, MODIFY_REPLACE, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError
from ldap3.core.results import RESULT_ENTRY_ALREADY_EXISTS

logger = logging.getLogger(__name__)


class LDAPConnectionError(Exception):
    """Raised when the LDAP server cannot be reached."""
    pass


class LDAPAuthenticationError(LDAPConnectionError):
    """Raised when the bind credentials are rejected."""
    pass


class DirectoryOperationError(Exception):
    """Raised when an add, modify or search request fails."""

    def __init__(self, message: str, dn: Optional[str] = None, reason: Optional[str] = None):
        self.dn = dn
        self.reason = reason or message
        super().__init__(message)


class EntryAlreadyExistsError(DirectoryOperationError):
    """Raised when an add request targets a DN that is already present."""
    pass


class DirectorySession(abc.ABC):
    """
    Operations available on a directory session.

    Used as a context manager: ``connect`` runs on entry and ``disconnect``
    always runs on exit.
    """

    @abc.abstractmethod
    def connect(self) -> None:
        """Open and bind the session."""

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Close the session. Safe to call more than once."""

    @abc.abstractmethod
    def add_entry(self, dn: str, attributes: Dict[str, List[str]]) -> None:
        """Add a new entry.

        Raises:
            EntryAlreadyExistsError: If an entry with this DN exists
            DirectoryOperationError: For any other failure
        """

    @abc.abstractmethod
    def modify_entry(self, dn: str, attributes: Dict[str, List[str]]) -> None:
        """Replace the values of the given attributes on an existing entry."""

    @abc.abstractmethod
    def search_subtree(self, base_dn: str, search_filter: str,
                       attributes: List[str]) -> Iterator[Tuple[str, Dict[str, List[Any]]]]:
        """Yield ``(dn, attributes)`` for every entry at or below ``base_dn``."""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def describe_result(result: Optional[Dict[str, Any]]) -> str:
    """Render an ldap3 result dictionary as a short diagnostic."""
    if not result:
        return 'unknown error'
    description = result.get('description') or f"result code {result.get('result')}"
    message = (result.get('message') or '').strip()
    if message:
        return f"{description}: {message}"
    return description


class DirectoryClient(DirectorySession):
    """
    LDAP client for provisioning a directory.

    Used as a context manager: the connection is opened and bound on entry
    and always unbound on exit.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary (the ``ldap`` config section)
        """
        self.config = config
        self.host = config['host']
        self.port = int(config['port'])
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', False)
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def server_address(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self) -> None:
        """
        Open the connection and bind with the configured credentials.

        Raises:
            LDAPConnectionError: If the server cannot be reached
            LDAPAuthenticationError: If the bind is rejected
        """
        try:
            self.server = Server(
                self.host,
                port=self.port,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL
            )
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False
            )
            self.connection.open()

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPConnectionError(
                        f"Failed to start TLS: {describe_result(self.connection.result)}")
                logger.debug("StartTLS negotiation successful")
        except LDAPSocketOpenError as e:
            self._close_quietly()
            raise LDAPConnectionError(f"Failed to connect to LDAP server {self.server_address}: {e}")
        except LDAPException as e:
            self._close_quietly()
            raise LDAPConnectionError(f"Failed to connect to LDAP server {self.server_address}: {e}")
        except LDAPConnectionError:
            self._close_quietly()
            raise

        try:
            bound = self.connection.bind()
        except LDAPException as e:
            self._close_quietly()
            raise LDAPAuthenticationError(f"Failed to bind to LDAP server: {e}")

        if not bound:
            reason = describe_result(self.connection.result)
            self._close_quietly()
            raise LDAPAuthenticationError(f"Failed to bind to LDAP server: {reason}")

        self._connected = True
        logger.info(f"Connected and bound to LDAP server {self.server_address}")

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
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def _close_quietly(self):
        if self.connection is not None:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while closing connection: {e}")
            self.connection = None
        self._connected = False

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection is not None:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected:
            raise DirectoryOperationError("Not connected to LDAP server")

    def add_entry(self, dn: str, attributes: Dict[str, List[str]]) -> None:
        self._require_connection()
        logger.debug(f"Adding entry {dn} with attributes {sorted(attributes)}")

        try:
            success = self.connection.add(dn, attributes=attributes)
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to add {dn}: {e}", dn=dn, reason=str(e))

        if not success:
            result = self.connection.result or {}
            reason = describe_result(result)
            if result.get('result') == RESULT_ENTRY_ALREADY_EXISTS:
                raise EntryAlreadyExistsError(f"Entry already exists: {dn}", dn=dn, reason=reason)
            raise DirectoryOperationError(f"Failed to add {dn}: {reason}", dn=dn, reason=reason)

    def modify_entry(self, dn: str, attributes: Dict[str, List[str]]) -> None:
        self._require_connection()
        changes = {name: [(MODIFY_REPLACE, list(values))] for name, values in attributes.items()}
        logger.debug(f"Replacing {sorted(changes)} on {dn}")

        try:
            success = self.connection.modify(dn, changes)
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to modify {dn}: {e}", dn=dn, reason=str(e))

        if not success:
            reason = describe_result(self.connection.result)
            raise DirectoryOperationError(f"Failed to modify {dn}: {reason}", dn=dn, reason=reason)

    def search_subtree(self, base_dn: str, search_filter: str,
                       attributes: List[str]) -> Iterator[Tuple[str, Dict[str, List[Any]]]]:
        self._require_connection()
        # ldap3 always returns the entry DN; it is not a schema attribute
        requested = [name for name in attributes if name.lower() != 'dn']
        logger.debug(f"Searching with filter: {search_filter} in base: {base_dn}")

        try:
            success = self.connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=requested
            )
        except LDAPException as e:
            raise DirectoryOperationError(f"Search under {base_dn} failed: {e}", dn=base_dn, reason=str(e))

        if not success and (self.connection.result or {}).get('description') != 'success':
            reason = describe_result(self.connection.result)
            raise DirectoryOperationError(f"Search under {base_dn} failed: {reason}", dn=base_dn, reason=reason)

        for item in self.connection.response or []:
            if item.get('type') != 'searchResEntry':
                continue
            yield item['dn'], dict(item.get('attributes') or {})
