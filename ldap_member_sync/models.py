"""
Data model for member synchronization.

MemberRecord is the local identity entity the engine reads and writes. The
persistence layer owns storage; these objects only carry state between it and
the engine.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from ldap_member_sync.exceptions import SyncError


class GroupAssociation:
    """
    Link between a member and a local group.

    Directory-sourced associations are derived from directory group membership
    and replaced wholesale on every group reconciliation. Manual associations
    are assigned locally and never touched by the engine.
    """

    __slots__ = ('group', 'directory_sourced')

    def __init__(self, group: str, directory_sourced: bool = False):
        self.group = group
        self.directory_sourced = directory_sourced

    def __eq__(self, other):
        if not isinstance(other, GroupAssociation):
            return NotImplemented
        return self.group == other.group and self.directory_sourced == other.directory_sourced

    def __hash__(self):
        return hash((self.group, self.directory_sourced))

    def __repr__(self):
        source = 'directory' if self.directory_sourced else 'manual'
        return f"GroupAssociation({self.group!r}, {source})"


class MemberRecord:
    """Local member record, optionally bound to a directory entry by GUID."""

    def __init__(self, username: str = '', guid: Optional[str] = None,
                 first_name: Optional[str] = None, surname: Optional[str] = None,
                 email: Optional[str] = None, is_expired: bool = False,
                 last_synced: Optional[datetime] = None,
                 group_associations: Optional[Set[GroupAssociation]] = None,
                 id: Optional[Any] = None, **extra_fields):
        self.id = id
        self.guid = guid
        self.username = username
        self.first_name = first_name
        self.surname = surname
        self.email = email
        self.is_expired = is_expired
        self.last_synced = last_synced
        self.group_associations = set(group_associations or ())
        for name, value in extra_fields.items():
            setattr(self, name, value)

    @property
    def is_directory_managed(self) -> bool:
        """True once the record is bound to a directory entry."""
        return bool(self.guid)

    @property
    def directory_groups(self) -> Set[str]:
        return {a.group for a in self.group_associations if a.directory_sourced}

    @property
    def manual_groups(self) -> Set[str]:
        return {a.group for a in self.group_associations if not a.directory_sourced}

    def get_field(self, name: str) -> Any:
        return getattr(self, name, None)

    def set_field(self, name: str, value: Any) -> None:
        setattr(self, name, value)

    def __repr__(self):
        return f"MemberRecord(username={self.username!r}, guid={self.guid!r})"


class ValidationResult:
    """Collects field-level validation errors from several validators."""

    def __init__(self):
        self.errors: List[Tuple[Optional[str], str]] = []

    def add_error(self, message: str, field: Optional[str] = None) -> None:
        self.errors.append((field, message))

    def is_valid(self) -> bool:
        return not self.errors

    @property
    def messages(self) -> List[str]:
        return [message for _, message in self.errors]

    def field_errors(self, field: str) -> List[str]:
        return [message for name, message in self.errors if name == field]


class SyncOutcome:
    """
    Result of a single sync attempt.

    Not persisted. Returned to the caller so that hooks that must not fail
    (after-delete, lenient login) can still report what happened.
    """

    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'

    def __init__(self, status: str, action: str, error: Optional[SyncError] = None,
                 detail: Optional[Dict[str, Any]] = None):
        self.status = status
        self.action = action
        self.error = error
        self.detail = detail or {}

    @classmethod
    def success(cls, action: str, **detail) -> 'SyncOutcome':
        return cls(cls.SUCCESS, action, detail=detail)

    @classmethod
    def skipped(cls, action: str, reason: str) -> 'SyncOutcome':
        return cls(cls.SKIPPED, action, detail={'reason': reason})

    @classmethod
    def failure(cls, action: str, error: SyncError) -> 'SyncOutcome':
        return cls(cls.FAILED, action, error=error)

    @property
    def ok(self) -> bool:
        return self.status != self.FAILED

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error else None

    def __repr__(self):
        if self.error:
            return f"SyncOutcome({self.status}, {self.action}, {self.error_kind}: {self.error})"
        return f"SyncOutcome({self.status}, {self.action})"
