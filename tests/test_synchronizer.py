#!/usr/bin/env python3
"""
Unit tests for tree creation and user create-or-update.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fake_directory import FakeDirectorySession
from ldap_provision.config import ConfigurationError
from ldap_provision.descriptors import TreeNode, UserRecord
from ldap_provision.synchronizer import (
    check_dn_format,
    create_tree,
    sync_users,
    build_user_dn,
    summarize,
    TreeCreationError,
    UserSyncError,
    UserResult,
    CREATED,
    UPDATED,
    FAILED
)

DN_FORMAT = 'cn=%s,CN=Users,DC=global,DC=domain,DC=net'
ALICE_DN = 'cn=alice,CN=Users,DC=global,DC=domain,DC=net'


def make_nodes(count):
    return [
        TreeNode(dn=f'OU=Unit{i},DC=global,DC=domain,DC=net',
                 attributes={'objectClass': ['top', 'organizationalUnit'], 'ou': [f'Unit{i}']})
        for i in range(count)
    ]


def make_users(count):
    return [
        UserRecord(display_name=f'User {i}', password=f'pw{i}', organizational_unit='Ops', username=f'user{i}')
        for i in range(count)
    ]


class TestCreateTree(unittest.TestCase):
    """Test cases for create_tree."""

    def test_adds_every_node_in_order(self):
        """All nodes are added once, in input order."""
        nodes = make_nodes(4)
        session = FakeDirectorySession()

        create_tree(session, nodes)

        self.assertEqual(
            [(kind, dn) for kind, dn, _ in session.requests],
            [('add', node.dn) for node in nodes]
        )
        self.assertEqual(session.requests[0][2], nodes[0].attributes)

    def test_empty_tree_issues_no_requests(self):
        session = FakeDirectorySession()
        create_tree(session, [])
        self.assertEqual(session.requests, [])

    def test_stops_at_first_failed_add(self):
        """A rejected K-th add means exactly K add requests and a fatal error naming the DN."""
        nodes = make_nodes(5)
        failing = nodes[2]
        session = FakeDirectorySession(add_failures={failing.dn: 'noSuchObject'})

        with self.assertRaises(TreeCreationError) as ctx:
            create_tree(session, nodes)

        self.assertEqual(len(session.requests), 3)
        self.assertEqual(ctx.exception.dn, failing.dn)
        self.assertIn(failing.dn, str(ctx.exception))
        self.assertIn('noSuchObject', str(ctx.exception))

    def test_existing_tree_entry_is_fatal(self):
        """Tree creation has no update fallback."""
        nodes = make_nodes(2)
        session = FakeDirectorySession(existing=[nodes[0].dn])

        with self.assertRaises(TreeCreationError):
            create_tree(session, nodes)

        self.assertEqual(session.request_kinds(), ['add'])


class TestSyncUsers(unittest.TestCase):
    """Test cases for sync_users."""

    def setUp(self):
        self.alice = UserRecord(display_name='Alice A', password='p1', organizational_unit='X', username='alice')

    def test_new_user_is_created(self):
        session = FakeDirectorySession()

        results = sync_users(session, [self.alice], DN_FORMAT)

        self.assertEqual(results, [UserResult('alice', ALICE_DN, CREATED)])
        kind, dn, attributes = session.requests[0]
        self.assertEqual(kind, 'add')
        self.assertEqual(dn, ALICE_DN)
        self.assertEqual(attributes, {
            'objectClass': ['top', 'person'],
            'cn': ['Alice A'],
            'sn': ['Alice A'],
            'userPassword': ['p1'],
        })

    def test_existing_user_is_updated(self):
        session = FakeDirectorySession(existing=[ALICE_DN])

        results = sync_users(session, [self.alice], DN_FORMAT)

        self.assertEqual(results, [UserResult('alice', ALICE_DN, UPDATED)])
        self.assertEqual(session.request_kinds(), ['add', 'modify'])
        kind, dn, attributes = session.requests[1]
        self.assertEqual(dn, ALICE_DN)
        self.assertEqual(attributes, {'cn': ['Alice A'], 'sn': ['Alice A'], 'userPassword': ['p1']})
        self.assertNotIn('objectClass', attributes)

    def test_failed_update_is_recorded_and_not_fatal(self):
        session = FakeDirectorySession(existing=[ALICE_DN], modify_failures={ALICE_DN: 'insufficient access'})

        results = sync_users(session, [self.alice], DN_FORMAT)

        self.assertEqual(results, [UserResult('alice', ALICE_DN, FAILED, 'insufficient access')])

    def test_failed_update_continues_with_next_user(self):
        users = make_users(3)
        first_dn = build_user_dn(DN_FORMAT, users[0].username)
        session = FakeDirectorySession(existing=[first_dn], modify_failures={first_dn: 'insufficientAccessRights'})

        results = sync_users(session, users, DN_FORMAT)

        self.assertEqual([r.outcome for r in results], [FAILED, CREATED, CREATED])
        self.assertEqual(session.request_kinds(), ['add', 'modify', 'add', 'add'])

    def test_all_new_users_issue_one_add_each(self):
        users = make_users(6)
        session = FakeDirectorySession()

        results = sync_users(session, users, DN_FORMAT)

        self.assertEqual(session.request_kinds(), ['add'] * 6)
        self.assertTrue(all(r.outcome == CREATED for r in results))
        self.assertEqual([r.username for r in results], [u.username for u in users])

    def test_all_existing_users_issue_add_and_modify_each(self):
        users = make_users(5)
        session = FakeDirectorySession(existing=[build_user_dn(DN_FORMAT, u.username) for u in users])

        results = sync_users(session, users, DN_FORMAT)

        self.assertEqual(len(session.requests), 10)
        self.assertEqual(session.request_kinds(), ['add', 'modify'] * 5)
        self.assertTrue(all(r.outcome == UPDATED for r in results))

    def test_other_add_failure_aborts_batch(self):
        """Only an existing entry triggers the update fallback; other add errors stop the run."""
        users = make_users(4)
        failing_dn = build_user_dn(DN_FORMAT, users[1].username)
        session = FakeDirectorySession(add_failures={failing_dn: 'constraintViolation'})

        with self.assertRaises(UserSyncError) as ctx:
            sync_users(session, users, DN_FORMAT)

        error = ctx.exception
        self.assertEqual(session.request_kinds(), ['add', 'add'])
        self.assertEqual(error.dn, failing_dn)
        self.assertEqual(error.reason, 'constraintViolation')
        self.assertEqual([r.outcome for r in error.results], [CREATED, FAILED])
        self.assertEqual(error.results[1].reason, 'constraintViolation')

    def test_custom_dn_format(self):
        session = FakeDirectorySession()
        results = sync_users(session, [self.alice], 'uid=%s,ou=People,dc=example,dc=org')
        self.assertEqual(results[0].dn, 'uid=alice,ou=People,dc=example,dc=org')


class TestHelpers(unittest.TestCase):
    """Test cases for DN building and result summaries."""

    def test_build_user_dn(self):
        self.assertEqual(build_user_dn(DN_FORMAT, 'alice'), ALICE_DN)

    def test_check_dn_format(self):
        check_dn_format(DN_FORMAT)
        for bad in ('cn=alice,DC=x', 'cn=%s,ou=%s', 'cn=%d', 'cn=%(name)s'):
            with self.assertRaises(ConfigurationError):
                check_dn_format(bad)

    def test_sync_users_rejects_bad_format_before_any_request(self):
        session = FakeDirectorySession()
        with self.assertRaises(ConfigurationError):
            sync_users(session, make_users(2), 'cn={},DC=x')
        self.assertEqual(session.requests, [])

    def test_summarize(self):
        results = [
            UserResult('a', 'cn=a', CREATED),
            UserResult('b', 'cn=b', UPDATED),
            UserResult('c', 'cn=c', UPDATED),
            UserResult('d', 'cn=d', FAILED, 'busy'),
        ]
        self.assertEqual(summarize(results), {CREATED: 1, UPDATED: 2, FAILED: 1})


if __name__ == '__main__':
    unittest.main()
