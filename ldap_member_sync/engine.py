"""
Member synchronization engine.

This module contains the core logic that keeps a single local member record
and its directory entry in sync: pulling directory attributes, writing local
changes back, creating and deleting directory entries, and delegating group
reconciliation.
"""

import os
import re
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ldap_member_sync.directory import DirectoryClient
from ldap_member_sync.exceptions import SyncError, ValidationFailed
from ldap_member_sync.field_mapper import BINARY_ATTRIBUTES, FieldMapper
from ldap_member_sync.groups import GroupMembershipResolver
from ldap_member_sync.logging_setup import security_logger
from ldap_member_sync.models import MemberRecord, SyncOutcome, ValidationResult
from ldap_member_sync.policy import SyncPolicy

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r'^[a-z0-9.]+$')
USERNAME_ERROR = 'Username must only contain lowercase alphanumeric characters and dots.'


class MemberSyncEngine:
    """
    Orchestrates synchronization of one member record with the directory.

    All operations are synchronous and scoped to a single record. Failures are
    raised to the caller immediately; the engine never retries.
    """

    def __init__(self, directory: DirectoryClient, policy: SyncPolicy,
                 group_resolver: Optional[GroupMembershipResolver] = None,
                 field_mapper: Optional[FieldMapper] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize sync engine.

        Args:
            directory: Directory access capability
            policy: Sync policy switches and mappings
            group_resolver: Resolver for directory-sourced groups (built from policy if None)
            field_mapper: Attribute mapper (built from policy if None)
            clock: Callable returning the current time (datetime.now if None)
        """
        self.directory = directory
        self.policy = policy
        self.field_mapper = field_mapper or FieldMapper(policy.field_mappings)
        self.group_resolver = group_resolver or GroupMembershipResolver(directory, policy.group_mappings)
        self.clock = clock or datetime.now

    def pull_from_directory(self, record: MemberRecord, with_groups: bool = False) -> SyncOutcome:
        """
        Update a record from its directory entry.

        Everything is fetched before the record is touched, so on failure the
        record (including last_synced) is left exactly as it was.

        Args:
            record: Record bound to a directory entry
            with_groups: Also reconcile directory-sourced group associations

        Returns:
            SyncOutcome describing the pull

        Raises:
            DirectoryUnavailable: If the directory cannot be reached
            RecordNotFound: If the GUID has no directory entry any more
        """
        if not self.directory.enabled():
            return SyncOutcome.skipped('pull', 'directory disabled')
        if not record.guid:
            return SyncOutcome.skipped('pull', 'record has no GUID')

        logger.debug(f"Pulling directory attributes for {record.guid}")
        attributes = self.directory.search(record.guid)
        local_groups = self.group_resolver.resolve(record) if with_groups else None

        fields = self.field_mapper.to_local_fields(attributes)
        fields = self._store_thumbnails(record, fields)

        for name, value in fields.items():
            record.set_field(name, value)
        record.is_expired = False
        record.last_synced = self.clock()

        detail = {'fields': sorted(fields)}
        if local_groups is not None:
            added, removed = self.group_resolver.apply(record, local_groups)
            detail.update({'groups_added': sorted(added), 'groups_removed': sorted(removed)})

        logger.info(f"Updated member {record.username} from directory ({len(fields)} fields)")
        return SyncOutcome.success('pull', **detail)

    def push_to_directory(self, record: MemberRecord) -> SyncOutcome:
        """
        Write the record's mapped fields to its directory entry.

        Raises:
            DirectoryUnavailable: If the directory cannot be reached
            WriteRejected: If the directory refuses the modification
            MappingAmbiguous: If the mapping cannot be inverted
        """
        if not self.directory.enabled():
            return SyncOutcome.skipped('push', 'directory disabled')
        if not record.guid:
            return SyncOutcome.skipped('push', 'record has no GUID')
        if not self.policy.update_ldap_from_local:
            return SyncOutcome.skipped('push', 'write-back disabled')

        attributes = self.field_mapper.to_directory_attributes(record)
        if not attributes:
            return SyncOutcome.skipped('push', 'no mapped values')

        logger.debug(f"Writing attributes {sorted(attributes)} to {record.guid}")
        self.directory.modify(record.guid, attributes)
        record.last_synced = self.clock()

        logger.info(f"Updated directory entry for member {record.username}")
        return SyncOutcome.success('push', attributes=sorted(attributes))

    def create_in_directory(self, record: MemberRecord) -> SyncOutcome:
        """
        Create a directory entry for a local record and bind it by GUID.

        Safe to retry: a record that already has a GUID is left alone.

        Raises:
            ValidationFailed: If the username has invalid characters (no directory call is made)
            DirectoryUnavailable: If the directory cannot be reached
            WriteRejected: If the directory refuses the new entry
        """
        if record.guid:
            return SyncOutcome.skipped('create', 'record already bound')
        if not self.directory.enabled():
            return SyncOutcome.skipped('create', 'directory disabled')
        if not self.policy.create_users_in_ldap:
            return SyncOutcome.skipped('create', 'create-on-write disabled')
        if not record.username:
            return SyncOutcome.skipped('create', 'record has no username')

        self._check_username(record.username)

        attributes = self.field_mapper.to_directory_attributes(record)
        try:
            guid = self.directory.create(attributes)
        except SyncError:
            security_logger.log_directory_operation('create', record.username, False)
            raise

        record.guid = guid
        record.last_synced = self.clock()
        security_logger.log_directory_operation('create', record.username, True)
        logger.info(f"Created directory entry {guid} for member {record.username}")
        return SyncOutcome.success('create', guid=guid)

    def delete_from_directory(self, record: MemberRecord) -> SyncOutcome:
        """
        Delete the directory entry of a locally deleted record.

        The local deletion has already committed, so failures are logged and
        reported in the outcome instead of raised.
        """
        if not self.directory.enabled():
            return SyncOutcome.skipped('delete', 'directory disabled')
        if not self.policy.delete_users_in_ldap:
            return SyncOutcome.skipped('delete', 'delete-on-delete disabled')
        if not record.guid:
            return SyncOutcome.skipped('delete', 'record has no GUID')

        try:
            self.directory.delete(record.guid)
        except SyncError as e:
            logger.error(f"Failed to delete directory entry {record.guid} for {record.username}: {e}")
            security_logger.log_directory_operation('delete', record.username, False)
            return SyncOutcome.failure('delete', e)

        security_logger.log_directory_operation('delete', record.username, True)
        logger.info(f"Deleted directory entry {record.guid} for member {record.username}")
        return SyncOutcome.success('delete', guid=record.guid)

    def sync_groups(self, record: MemberRecord) -> SyncOutcome:
        """Reconcile directory-sourced group associations for a bound record."""
        if not self.directory.enabled():
            return SyncOutcome.skipped('groups', 'directory disabled')
        if not record.guid:
            return SyncOutcome.skipped('groups', 'record has no GUID')

        added, removed = self.group_resolver.reconcile_groups(record)
        return SyncOutcome.success('groups', groups_added=sorted(added), groups_removed=sorted(removed))

    def reconcile(self, record: MemberRecord) -> SyncOutcome:
        """
        Entry point for a record persistence event.

        Either creates the directory entry (unbound record, create-on-write)
        or writes local changes back followed by group reconciliation. Never
        pulls, so the change that triggered the write is not overwritten.

        Returns:
            SyncOutcome of the step that ran

        Raises:
            SyncError: Any failure of the step that ran
        """
        if not self.directory.enabled():
            return SyncOutcome.skipped('reconcile', 'directory disabled')

        if not record.guid and self.policy.create_users_in_ldap and record.username:
            return self.create_in_directory(record)

        if record.guid and self.policy.update_ldap_from_local:
            outcome = self.push_to_directory(record)
            # Groups only after a completed push
            groups = self.sync_groups(record)
            outcome.detail.update(groups.detail)
            return outcome

        return SyncOutcome.skipped('reconcile', 'nothing to synchronize')

    def set_password(self, record: MemberRecord, new_password: str) -> SyncOutcome:
        """
        Forward an already validated password change to the directory.

        Raises:
            DirectoryUnavailable: If the directory cannot be reached
            WriteRejected: If the directory refuses the new password
        """
        if not self.directory.enabled():
            return SyncOutcome.skipped('password', 'directory disabled')
        if not record.guid:
            return SyncOutcome.skipped('password', 'record has no GUID')

        try:
            self.directory.set_credential(record.guid, new_password)
        except SyncError:
            security_logger.log_directory_operation('set_password', record.username, False)
            raise

        security_logger.log_directory_operation('set_password', record.username, True)
        logger.info(f"Propagated password change for member {record.username}")
        return SyncOutcome.success('password')

    def on_password_change(self, record: MemberRecord, new_password: str,
                           validation: Optional[ValidationResult] = None) -> SyncOutcome:
        """Propagate a password change unless local validation already failed."""
        if validation is not None and not validation.is_valid():
            return SyncOutcome.skipped('password', 'local validation failed')
        return self.set_password(record, new_password)

    def validate(self, record: MemberRecord,
                 result: Optional[ValidationResult] = None) -> ValidationResult:
        """
        Contribute the username rule to a record's validation result.

        Empty usernames are allowed so that records can be registered before a
        username is chosen. The rule only applies when create-on-write is on.
        """
        result = result if result is not None else ValidationResult()
        if not record.username or not self.policy.create_users_in_ldap:
            return result
        if not USERNAME_PATTERN.fullmatch(record.username):
            result.add_error(USERNAME_ERROR, field='username')
        return result

    def read_only_fields(self, record: MemberRecord) -> List[str]:
        """Mapped fields that the management UI should present as read-only."""
        return self.field_mapper.read_only_fields(record, self.policy)

    def _check_username(self, username: str):
        if not USERNAME_PATTERN.fullmatch(username):
            result = ValidationResult()
            result.add_error(USERNAME_ERROR, field='username')
            raise ValidationFailed(USERNAME_ERROR, field='username', result=result)

    def _store_thumbnails(self, record: MemberRecord, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Write binary photo attributes to the thumbnail path and keep the file path instead."""
        binary_fields = {
            local_field for directory_attr, local_field in self.field_mapper.mapping.items()
            if directory_attr.lower() in BINARY_ATTRIBUTES
        }
        if not binary_fields.intersection(fields):
            return fields

        stored = dict(fields)
        for name in binary_fields.intersection(fields):
            data = stored[name]
            if not isinstance(data, (bytes, bytearray)):
                continue
            filename = f"thumbnailphoto-{record.guid}.jpg"
            path = os.path.join(self.policy.thumbnail_path, filename)
            try:
                os.makedirs(self.policy.thumbnail_path, exist_ok=True)
                with open(path, 'wb') as f:
                    f.write(data)
            except OSError as e:
                # Keep the previous photo; the other fields still apply
                logger.warning(f"Could not store thumbnail for {record.username} at {path}: {e}")
                del stored[name]
                continue
            logger.debug(f"Stored thumbnail for {record.username} at {path}")
            stored[name] = path
        return stored
