"""
Group membership reconciliation between the directory and local groups.
"""

import logging
from typing import Dict, Optional, Set, Tuple

from ldap_member_sync.directory import DirectoryClient
from ldap_member_sync.models import GroupAssociation, MemberRecord

logger = logging.getLogger(__name__)


def normalize_dn(dn: str) -> str:
    """Normalize a DN for comparison (case and whitespace around separators)."""
    return ','.join(part.strip() for part in str(dn).split(',')).lower()


class GroupMembershipResolver:
    """
    Computes a member's directory-sourced group associations.

    Reconciliation is a full replacement: the directory-sourced associations
    after a pass are exactly the mapped directory groups, regardless of what
    was there before. Manual associations are never added or removed here.
    """

    def __init__(self, directory: DirectoryClient, group_mappings: Dict[str, str]):
        """
        Initialize resolver.

        Args:
            directory: Directory client used to read group memberships
            group_mappings: Directory group DN -> local group name
        """
        self.directory = directory
        self.group_mappings = {normalize_dn(dn): group for dn, group in group_mappings.items()}

    def local_group_for(self, group_dn: str) -> Optional[str]:
        """Return the local group mapped to a directory group, if any."""
        return self.group_mappings.get(normalize_dn(group_dn))

    def resolve(self, record: MemberRecord) -> Set[str]:
        """
        Fetch the local groups a member should belong to according to the directory.

        Raises:
            DirectoryUnavailable: If the directory cannot be queried
        """
        directory_groups = self.directory.groups_for(record.guid)

        local_groups = set()
        for group_dn in directory_groups:
            local_group = self.local_group_for(group_dn)
            if local_group is None:
                logger.debug(f"Ignoring unmapped directory group {group_dn}")
                continue
            local_groups.add(local_group)

        logger.debug(f"Resolved {len(local_groups)} local groups from "
                     f"{len(directory_groups)} directory groups for {record.username}")
        return local_groups

    def apply(self, record: MemberRecord, local_groups: Set[str]) -> Tuple[Set[str], Set[str]]:
        """
        Replace the member's directory-sourced associations with local_groups.

        The new association set is built completely before it is assigned, so
        the record never holds a partially reconciled state.

        Returns:
            Tuple of (groups added, groups removed)
        """
        current = record.directory_groups
        added = set(local_groups) - current
        removed = current - set(local_groups)

        manual = {a for a in record.group_associations if not a.directory_sourced}
        sourced = {GroupAssociation(group, directory_sourced=True) for group in local_groups}
        record.group_associations = manual | sourced

        if added or removed:
            logger.info(f"Groups for {record.username}: {len(added)} added, {len(removed)} removed")
        return added, removed

    def reconcile_groups(self, record: MemberRecord) -> Tuple[Set[str], Set[str]]:
        """
        Fetch directory memberships and replace directory-sourced associations.

        Returns:
            Tuple of (groups added, groups removed)

        Raises:
            DirectoryUnavailable: If the directory cannot be queried; the
                record is left untouched
        """
        if not record.guid:
            logger.debug(f"Skipping group reconciliation for unbound member {record.username}")
            return set(), set()

        return self.apply(record, self.resolve(record))
