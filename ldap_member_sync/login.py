"""
Refresh of member data after a successful login.
"""

import logging

from ldap_member_sync.engine import MemberSyncEngine
from ldap_member_sync.exceptions import SyncError
from ldap_member_sync.logging_setup import security_logger
from ldap_member_sync.models import MemberRecord, SyncOutcome

logger = logging.getLogger(__name__)


class LoginReconciler:
    """
    Re-pulls directory data for a member who has just authenticated.

    With allow_update_failure_during_login set, a failed refresh is logged and
    the login proceeds with the stored (possibly stale) data. Otherwise the
    error is raised and the caller must abort the login. Lenient mode relies
    on a scheduled full sync to correct stale group memberships.
    """

    def __init__(self, engine: MemberSyncEngine):
        self.engine = engine
        self.policy = engine.policy

    def after_login(self, record: MemberRecord) -> SyncOutcome:
        """
        Refresh a member record and its groups from the directory.

        Returns:
            SyncOutcome of the refresh (failed only in lenient mode)

        Raises:
            SyncError: If the refresh fails and failures are not tolerated
        """
        if not record.guid:
            return SyncOutcome.skipped('login', 'record has no GUID')
        if not self.policy.update_local_from_ldap:
            return SyncOutcome.skipped('login', 'directory to local sync disabled')

        try:
            outcome = self.engine.pull_from_directory(record, with_groups=True)
        except SyncError as e:
            security_logger.log_login_sync(record.username, False)
            if self.policy.allow_update_failure_during_login:
                logger.warning(f"Could not refresh member {record.username} during login, "
                               f"continuing with stored data: {e}")
                return SyncOutcome.failure('login', e)
            logger.error(f"Refreshing member {record.username} during login failed: {e}")
            raise

        security_logger.log_login_sync(record.username, True)
        return outcome
