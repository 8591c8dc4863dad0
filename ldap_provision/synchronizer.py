"""
Directory synchronization: tree creation followed by user create-or-update.

Tree creation is all-or-nothing: the first failed add stops the run. User
sync adds each account and falls back to replacing its attributes when the
entry already exists. A failed replace is recorded and the batch continues;
any other add failure stops the batch.
"""

import logging
from typing import Dict, List, Optional, NamedTuple, Sequence
from ldap_provision.config import ConfigurationError
from ldap_provision.descriptors import TreeNode, UserRecord
from ldap_provision.ldap_client import (
    DirectorySession,
    DirectoryOperationError,
    EntryAlreadyExistsError
)

logger = logging.getLogger(__name__)

CREATED = 'created'
UPDATED = 'updated'
FAILED = 'failed'

USER_OBJECT_CLASSES = ['top', 'person']


class SyncError(DirectoryOperationError):
    """Base exception for fatal synchronization errors."""
    pass


class TreeCreationError(SyncError):
    """Raised when a tree entry cannot be added."""
    pass


class UserSyncError(SyncError):
    """Raised when a user add fails for a reason other than an existing entry."""

    def __init__(self, message: str, dn: str, reason: str, results: List['UserResult']):
        super().__init__(message, dn=dn, reason=reason)
        self.results = results


class UserResult(NamedTuple):
    """Outcome of provisioning one user."""
    username: str
    dn: str
    outcome: str
    reason: Optional[str] = None


def build_user_dn(dn_format: str, username: str) -> str:
    """Substitute ``username`` into a ``%s`` style DN format."""
    return dn_format % username


def check_dn_format(dn_format: str) -> None:
    """
    Reject a DN format that does not take exactly one ``%s``.

    Raises:
        ConfigurationError: If substituting a username fails
    """
    try:
        build_user_dn(dn_format, 'user')
    except (TypeError, ValueError, KeyError) as e:
        raise ConfigurationError(
            f"Invalid user DN format {dn_format!r}: expected exactly one %s for the username ({e})")


def user_attributes(user: UserRecord) -> Dict[str, List[str]]:
    """Full attribute set for a new user entry."""
    return {
        'objectClass': list(USER_OBJECT_CLASSES),
        'cn': [user.display_name],
        'sn': [user.display_name],
        'userPassword': [user.password],
    }


def user_replacements(user: UserRecord) -> Dict[str, List[str]]:
    """Attributes replaced on an existing user entry."""
    return {
        'cn': [user.display_name],
        'sn': [user.display_name],
        'userPassword': [user.password],
    }


def create_tree(session: DirectorySession, nodes: Sequence[TreeNode]) -> None:
    """
    Add every tree node, in order.

    Args:
        session: Connected directory session
        nodes: Tree nodes to add

    Raises:
        TreeCreationError: On the first add that fails; later nodes are not attempted
    """
    for node in nodes:
        try:
            session.add_entry(node.dn, node.attributes)
        except DirectoryOperationError as e:
            raise TreeCreationError(
                f"Failed to add entry {node.dn} to LDAP server: {e.reason}",
                dn=node.dn,
                reason=e.reason
            ) from e
        logger.debug(f"Added tree entry {node.dn}")

    logger.info(f"LDAP tree creation successful ({len(nodes)} entries)")


def sync_users(session: DirectorySession, users: Sequence[UserRecord], dn_format: str) -> List[UserResult]:
    """
    Create each user, updating the ones that already exist.

    Args:
        session: Connected directory session
        users: User records to provision
        dn_format: DN format with a single ``%s`` for the username

    Returns:
        One result per user, in input order

    Raises:
        ConfigurationError: If dn_format cannot take a username; raised
            before any request is issued
        UserSyncError: If an add fails for any reason other than an existing
            entry. The exception carries the results collected so far,
            including the failed user.
    """
    check_dn_format(dn_format)
    results = []

    for user in users:
        dn = build_user_dn(dn_format, user.username)

        try:
            session.add_entry(dn, user_attributes(user))
        except EntryAlreadyExistsError:
            logger.info(f"User {user.display_name} already exists, updating...")
            results.append(_update_user(session, user, dn))
            continue
        except DirectoryOperationError as e:
            results.append(UserResult(user.username, dn, FAILED, e.reason))
            raise UserSyncError(
                f"Failed to add user {user.display_name}: {e.reason}",
                dn=dn,
                reason=e.reason,
                results=results
            ) from e

        logger.info(f"Successfully added user {user.display_name}")
        results.append(UserResult(user.username, dn, CREATED))

    return results


def _update_user(session: DirectorySession, user: UserRecord, dn: str) -> UserResult:
    try:
        session.modify_entry(dn, user_replacements(user))
    except DirectoryOperationError as e:
        logger.error(f"Failed to update user {user.display_name}: {e.reason}")
        return UserResult(user.username, dn, FAILED, e.reason)

    logger.info(f"Successfully updated user {user.display_name}")
    return UserResult(user.username, dn, UPDATED)


def summarize(results: Sequence[UserResult]) -> Dict[str, int]:
    """Count results per outcome."""
    counts = {CREATED: 0, UPDATED: 0, FAILED: 0}
    for result in results:
        counts[result.outcome] += 1
    return counts
