"""Listing of directory contents below a base DN."""

import logging
from typing import Iterator, Tuple
from ldap_provision.ldap_client import DirectorySession

logger = logging.getLogger(__name__)

LIST_FILTER = '(objectClass=*)'
LIST_ATTRIBUTES = ['dn', 'objectClass']


def list_entries(session: DirectorySession, base_dn: str) -> Iterator[Tuple[str, str]]:
    """
    Yield ``(dn, objectClass)`` for every entry at or below ``base_dn``.

    Entries come back in server order. ``objectClass`` is the first value of
    the attribute, or an empty string if the server returned none.

    Raises:
        DirectoryOperationError: If the search fails
    """
    count = 0
    for dn, attributes in session.search_subtree(base_dn, LIST_FILTER, LIST_ATTRIBUTES):
        count += 1
        yield dn, _first_value(attributes, 'objectClass')
    logger.debug(f"Listed {count} entries under {base_dn}")


def _first_value(attributes, name: str) -> str:
    # Attribute names are case-insensitive
    for key, values in attributes.items():
        if key.lower() == name.lower():
            if isinstance(values, (list, tuple)):
                return str(values[0]) if values else ''
            return str(values)
    return ''


def format_entry(dn: str, object_class: str) -> str:
    return f"{dn} ({object_class})"
