#!/usr/bin/env python3
"""
Unit tests for the persistence lifecycle hooks.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_directory import FakeDirectory
from ldap_member_sync.engine import MemberSyncEngine
from ldap_member_sync.exceptions import DirectoryUnavailable, ValidationFailed, WriteRejected
from ldap_member_sync.models import MemberRecord, SyncOutcome
from ldap_member_sync.persistence import MemberStore
from ldap_member_sync.policy import SyncPolicy


class TestMemberStoreWrite(unittest.TestCase):
    """Test cases for MemberStore.write."""

    def setUp(self):
        self.directory = FakeDirectory(entries={'abc-123': {'uid': ['jdoe']}})
        self.directory.next_guids = ['new-guid']
        self.engine = MemberSyncEngine(self.directory, SyncPolicy(
            update_ldap_from_local=True, create_users_in_ldap=True, delete_users_in_ldap=True))
        self.save = Mock()
        self.remove = Mock()
        self.store = MemberStore(self.engine, self.save, self.remove)

    def test_new_record_is_created_before_save(self):
        record = MemberRecord(username='jdoe')
        guid_at_save = []
        self.save.side_effect = lambda r: guid_at_save.append(r.guid)

        outcome = self.store.write(record)

        self.assertEqual(outcome.action, 'create')
        self.assertEqual(guid_at_save, ['new-guid'])
        self.assertEqual(self.directory.calls_to('modify'), [])

    def test_bound_record_is_pushed_after_save(self):
        record = MemberRecord(username='jdoe', guid='abc-123', first_name='Jane')

        outcome = self.store.write(record)

        self.save.assert_called_once_with(record)
        self.assertEqual(outcome.action, 'push')
        self.assertEqual(len(self.directory.calls_to('modify')), 1)

    def test_invalid_username_aborts_write(self):
        record = MemberRecord(username='Not Valid')

        with self.assertRaises(ValidationFailed) as context:
            self.store.write(record)

        self.assertEqual(context.exception.result.field_errors('username'),
                         ['Username must only contain lowercase alphanumeric characters and dots.'])
        self.save.assert_not_called()
        self.assertEqual(self.directory.calls, [])

    def test_rejected_create_aborts_write(self):
        self.directory.fail_on['create'] = WriteRejected('insufficientAccessRights')

        with self.assertRaises(WriteRejected):
            self.store.write(MemberRecord(username='jdoe'))

        self.save.assert_not_called()

    def test_push_outage_does_not_fail_persistence(self):
        self.directory.fail_on['modify'] = DirectoryUnavailable('server down')
        record = MemberRecord(username='jdoe', guid='abc-123', first_name='Jane')

        outcome = self.store.write(record)

        self.save.assert_called_once_with(record)
        self.assertEqual(outcome.status, SyncOutcome.FAILED)
        self.assertIsInstance(outcome.error, DirectoryUnavailable)

    def test_strict_write_raises_push_outage(self):
        self.directory.fail_on['modify'] = DirectoryUnavailable('server down')

        with self.assertRaises(DirectoryUnavailable):
            self.store.write(MemberRecord(username='jdoe', guid='abc-123', first_name='Jane'), strict=True)

    def test_write_without_sync_makes_no_directory_calls(self):
        record = MemberRecord(username='jdoe', guid='abc-123', first_name='Jane')

        outcome = self.store.write_without_sync(record)

        self.save.assert_called_once_with(record)
        self.assertEqual(outcome.status, SyncOutcome.SKIPPED)
        self.assertEqual(self.directory.calls, [])

    def test_write_without_sync_still_validates_username(self):
        record = MemberRecord(username='Bad User!')

        with self.assertRaises(ValidationFailed) as context:
            self.store.write_without_sync(record)

        self.assertEqual(context.exception.field, 'username')
        self.save.assert_not_called()
        self.assertEqual(self.directory.calls, [])

    def test_write_without_sync_accepts_valid_username(self):
        record = MemberRecord(username='jane.doe')

        outcome = self.store.write_without_sync(record)

        self.save.assert_called_once_with(record)
        self.assertEqual(outcome.status, SyncOutcome.SKIPPED)
        self.assertIsNone(record.guid)

    def test_suppression_does_not_leak_after_failed_write(self):
        record = MemberRecord(username='jdoe', guid='abc-123', first_name='Jane')
        self.save.side_effect = RuntimeError('database is locked')

        with self.assertRaises(RuntimeError):
            self.store.write_without_sync(record)
        self.assertEqual(self.directory.calls, [])

        self.save.side_effect = None
        outcome = self.store.write(record)

        self.assertEqual(outcome.action, 'push')
        self.assertEqual(len(self.directory.calls_to('modify')), 1)


class TestMemberStoreDelete(unittest.TestCase):
    """Test cases for MemberStore.delete."""

    def setUp(self):
        self.directory = FakeDirectory(entries={'abc-123': {'uid': ['jdoe']}})
        self.remove = Mock()

    def make_store(self, **policy_options):
        engine = MemberSyncEngine(self.directory, SyncPolicy(**policy_options))
        return MemberStore(engine, Mock(), self.remove)

    def test_deletes_directory_entry(self):
        store = self.make_store(delete_users_in_ldap=True)
        record = MemberRecord(username='jdoe', guid='abc-123')

        outcome = store.delete(record)

        self.remove.assert_called_once_with(record)
        self.assertEqual(outcome.status, SyncOutcome.SUCCESS)
        self.assertEqual(self.directory.entries, {})

    def test_directory_failure_never_blocks_local_deletion(self):
        self.directory.fail_on['delete'] = DirectoryUnavailable('server down')
        store = self.make_store(delete_users_in_ldap=True)
        record = MemberRecord(username='jdoe', guid='abc-123')

        outcome = store.delete(record)

        self.remove.assert_called_once_with(record)
        self.assertEqual(outcome.status, SyncOutcome.FAILED)

    def test_skip_sync(self):
        store = self.make_store(delete_users_in_ldap=True)

        outcome = store.delete(MemberRecord(username='jdoe', guid='abc-123'), skip_sync=True)

        self.assertEqual(outcome.status, SyncOutcome.SKIPPED)
        self.assertEqual(self.directory.calls, [])

    def test_store_requires_remove_callable(self):
        engine = MemberSyncEngine(self.directory, SyncPolicy())

        with self.assertRaises(TypeError):
            MemberStore(engine, Mock(), None)


if __name__ == '__main__':
    unittest.main()
