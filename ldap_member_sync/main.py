"""
Application wiring and command-line entry point for LDAP Member Sync.

MemberSyncApplication builds the directory client, policy, engine, login
reconciler and member store from a configuration file. The command line
offers a health check and a read-only lookup of a single directory entry.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ldap_member_sync.config import load_config, ConfigurationError
from ldap_member_sync.engine import MemberSyncEngine
from ldap_member_sync.exceptions import SyncError, DirectoryUnavailable
from ldap_member_sync.ldap_client import LDAPDirectoryClient
from ldap_member_sync.logging_setup import setup_logging, security_logger
from ldap_member_sync.login import LoginReconciler
from ldap_member_sync.models import MemberRecord
from ldap_member_sync.persistence import MemberStore
from ldap_member_sync.policy import SyncPolicy

logger = logging.getLogger(__name__)


class MemberSyncApplication:
    """
    Builds and holds the sync components for one configuration.

    The persistence layer obtains a MemberStore from store(); the
    authentication layer calls login.after_login() after a successful login.
    """

    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                 directory=None):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file (ignored if config is given)
            config: Already loaded configuration dictionary
            directory: DirectoryClient to use instead of the ldap3 client
        """
        self.config_path = config_path
        self.config = config
        self.directory = directory
        self.policy = None
        self.engine = None
        self.login = None

    def setup(self, configure_logging: bool = True) -> 'MemberSyncApplication':
        """
        Load configuration and build all components.

        Raises:
            ConfigurationError: If the configuration cannot be loaded
        """
        if self.config is None:
            self.config = load_config(self.config_path)
            security_logger.log_configuration_access(self.config_path or 'config.yaml')

        if configure_logging:
            setup_logging(self.config.get('logging', {}))

        if self.directory is None:
            self.directory = LDAPDirectoryClient(self.config['ldap'])

        self.policy = SyncPolicy.from_config(self.config.get('member_sync', {}))
        self.engine = MemberSyncEngine(self.directory, self.policy)
        self.login = LoginReconciler(self.engine)

        logger.info(f"Member sync configured: {self.policy}")
        return self

    def store(self, save: Callable[[MemberRecord], Any],
              remove: Callable[[MemberRecord], Any]) -> MemberStore:
        """Create a MemberStore wired to this application's engine."""
        return MemberStore(self.engine, save, remove)

    def lookup(self, guid: str) -> Dict[str, Any]:
        """
        Pull a directory entry into a fresh record without persisting it.

        Returns:
            Dictionary of mapped local fields and directory groups
        """
        record = MemberRecord(guid=guid)
        self.engine.pull_from_directory(record, with_groups=True)

        result = {'guid': record.guid}
        for field in self.engine.field_mapper.local_fields():
            result[field] = record.get_field(field)
        result['groups'] = sorted(record.directory_groups)
        result['last_synced'] = record.last_synced.isoformat() if record.last_synced else None
        return result

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration and directory connectivity.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            if self.engine is None:
                self.setup(configure_logging=False)
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        if not self.directory.enabled():
            health_status['checks']['directory'] = {
                'status': 'skip',
                'message': 'Directory synchronization disabled'
            }
            return health_status

        try:
            self.directory.connect(max_retries=1, retry_wait=0)
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': 'Directory connection successful'
            }
        except DirectoryUnavailable as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'
        finally:
            self.close()

        return health_status

    def close(self):
        """Release the directory connection."""
        if self.directory is not None and hasattr(self.directory, 'disconnect'):
            self.directory.disconnect()


def main():
    """Main entry point for the command-line tool."""
    parser = argparse.ArgumentParser(description='LDAP Member Sync')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Check configuration and directory connectivity')
    parser.add_argument('--lookup', metavar='GUID',
                        help='Show the local fields a directory entry maps to')

    args = parser.parse_args()

    app = MemberSyncApplication(config_path=args.config)

    if args.health_check:
        health_status = app.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    if args.lookup:
        try:
            app.setup()
            print(json.dumps(app.lookup(args.lookup), indent=2, default=str))
            sys.exit(0)
        except ConfigurationError as e:
            print(f"Configuration error: {e}")
            sys.exit(2)
        except SyncError as e:
            print(f"Lookup failed: {e}")
            sys.exit(3)
        finally:
            app.close()

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
