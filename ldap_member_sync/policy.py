"""
Synchronization policy.

SyncPolicy is built once from the ``member_sync`` configuration section and
handed to every component at construction time. It carries no behavior beyond
lookups.
"""

from typing import Any, Dict, Optional

DEFAULT_FIELD_MAPPINGS = {
    'givenName': 'first_name',
    'uid': 'username',
    'sn': 'surname',
    'mail': 'email',
}

DEFAULT_THUMBNAIL_PATH = 'Uploads'


class SyncPolicy:
    """
    Read-only set of switches controlling which sync directions are enabled.

    The switches are independent. Write-back relies on the GUID binding that
    create-on-write establishes, so callers check create before write-back
    wherever both apply.
    """

    def __init__(self,
                 update_ldap_from_local: bool = False,
                 create_users_in_ldap: bool = False,
                 delete_users_in_ldap: bool = False,
                 allow_update_failure_during_login: bool = False,
                 update_local_from_ldap: bool = True,
                 field_mappings: Optional[Dict[str, str]] = None,
                 thumbnail_path: str = DEFAULT_THUMBNAIL_PATH,
                 group_mappings: Optional[Dict[str, str]] = None):
        self._update_ldap_from_local = bool(update_ldap_from_local)
        self._create_users_in_ldap = bool(create_users_in_ldap)
        self._delete_users_in_ldap = bool(delete_users_in_ldap)
        self._allow_update_failure_during_login = bool(allow_update_failure_during_login)
        self._update_local_from_ldap = bool(update_local_from_ldap)
        mappings = DEFAULT_FIELD_MAPPINGS if field_mappings is None else field_mappings
        self._field_mappings = dict(mappings)
        self._thumbnail_path = thumbnail_path
        self._group_mappings = dict(group_mappings or {})

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SyncPolicy':
        """
        Build a policy from the ``member_sync`` configuration section.

        Args:
            config: The ``member_sync`` dictionary (missing keys use defaults)

        Returns:
            SyncPolicy instance
        """
        config = config or {}
        return cls(
            update_ldap_from_local=config.get('update_ldap_from_local', False),
            create_users_in_ldap=config.get('create_users_in_ldap', False),
            delete_users_in_ldap=config.get('delete_users_in_ldap', False),
            allow_update_failure_during_login=config.get('allow_update_failure_during_login', False),
            update_local_from_ldap=config.get('update_local_from_ldap', True),
            field_mappings=config.get('field_mappings'),
            thumbnail_path=config.get('thumbnail_path', DEFAULT_THUMBNAIL_PATH),
            group_mappings=config.get('group_mappings'),
        )

    @property
    def update_ldap_from_local(self) -> bool:
        return self._update_ldap_from_local

    @property
    def create_users_in_ldap(self) -> bool:
        return self._create_users_in_ldap

    @property
    def delete_users_in_ldap(self) -> bool:
        return self._delete_users_in_ldap

    @property
    def allow_update_failure_during_login(self) -> bool:
        return self._allow_update_failure_during_login

    @property
    def update_local_from_ldap(self) -> bool:
        return self._update_local_from_ldap

    @property
    def field_mappings(self) -> Dict[str, str]:
        # Copy so callers cannot mutate the policy
        return dict(self._field_mappings)

    @property
    def thumbnail_path(self) -> str:
        return self._thumbnail_path

    @property
    def group_mappings(self) -> Dict[str, str]:
        return dict(self._group_mappings)

    def __repr__(self):
        return (f"SyncPolicy(write_back={self._update_ldap_from_local}, "
                f"create={self._create_users_in_ldap}, delete={self._delete_users_in_ldap}, "
                f"lenient_login={self._allow_update_failure_during_login}, "
                f"pull={self._update_local_from_ldap})")
