"""
Record lifecycle hooks for the persistence layer.

MemberStore wraps the persistence collaborator's save/remove callables and
calls the engine around them: validation and directory creation before the
save, write-back after it, and directory deletion after a removal.
"""

import logging
from typing import Any, Callable

from ldap_member_sync.engine import MemberSyncEngine
from ldap_member_sync.exceptions import SyncError, ValidationFailed
from ldap_member_sync.models import MemberRecord, SyncOutcome

logger = logging.getLogger(__name__)


class MemberStore:
    """
    Persists member records and triggers directory synchronization.

    Synchronization can be suppressed for a single call with skip_sync. The
    flag is a parameter of that call only, so it cannot leak into later writes
    even when the save raises.
    """

    def __init__(self, engine: MemberSyncEngine,
                 save: Callable[[MemberRecord], Any],
                 remove: Callable[[MemberRecord], Any]):
        """
        Initialize store.

        Args:
            engine: Sync engine to notify
            save: Callable persisting a record
            remove: Callable deleting a record

        Raises:
            TypeError: If save or remove is not callable
        """
        if not callable(save) or not callable(remove):
            raise TypeError("MemberStore needs callable save and remove functions")
        self.engine = engine
        self._save = save
        self._remove = remove

    def validate(self, record: MemberRecord):
        """
        Run the username rule, whether or not the write synchronizes.

        Raises:
            ValidationFailed: If the username is invalid
        """
        result = self.engine.validate(record)
        if not result.is_valid():
            raise ValidationFailed('; '.join(result.messages), field='username', result=result)

    def before_write(self, record: MemberRecord) -> SyncOutcome:
        """
        Validate the record and create its directory entry if policy asks for it.

        Raises:
            ValidationFailed: If the username is invalid
            SyncError: If the directory entry cannot be created; the write is aborted
        """
        self.validate(record)
        return self.engine.create_in_directory(record)

    def after_write(self, record: MemberRecord, strict: bool = False) -> SyncOutcome:
        """
        Write local changes back to the directory after the record was saved.

        Directory failures are logged and reported in the outcome, because the
        local save has already happened. With strict=True they are raised.
        """
        if not record.guid or not self.engine.policy.update_ldap_from_local:
            return SyncOutcome.skipped('reconcile', 'write-back not applicable')

        try:
            return self.engine.reconcile(record)
        except SyncError as e:
            if strict:
                raise
            logger.error(f"Write-back for member {record.username} failed: {e}")
            return SyncOutcome.failure('reconcile', e)

    def write(self, record: MemberRecord, skip_sync: bool = False,
              strict: bool = False) -> SyncOutcome:
        """
        Save a record, synchronizing it with the directory unless skip_sync is set.

        skip_sync suppresses directory operations only; validation still runs.

        A write that creates the directory entry does not also write back:
        each persistence event runs a single sync direction.

        Returns:
            SyncOutcome of the directory step
        """
        if skip_sync:
            self.validate(record)
            self._save(record)
            return SyncOutcome.skipped('reconcile', 'sync suppressed')

        created = self.before_write(record)
        self._save(record)

        if created.status == SyncOutcome.SUCCESS:
            return created
        return self.after_write(record, strict=strict)

    def write_without_sync(self, record: MemberRecord) -> SyncOutcome:
        """Save a record without triggering any directory operation."""
        return self.write(record, skip_sync=True)

    def delete(self, record: MemberRecord, skip_sync: bool = False) -> SyncOutcome:
        """
        Delete a record locally, then its directory entry if policy asks for it.

        Directory failures never undo or block the local deletion.
        """
        self._remove(record)
        if skip_sync:
            return SyncOutcome.skipped('delete', 'sync suppressed')
        return self.engine.delete_from_directory(record)
