#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers loading, validation, defaults and environment variable overrides.
"""

import os
import sys
import tempfile
import yaml
import unittest
from unittest.mock import patch
from typing import Dict, Any

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_member_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.valid_config = {
            'ldap': {
                'server_url': 'ldaps://ldap.example.com:636',
                'bind_dn': 'CN=Service,DC=example,DC=com',
                'bind_password': 'password',
                'base_dn': 'OU=Users,DC=example,DC=com',
                'new_user_dn': 'OU=New,OU=Users,DC=example,DC=com'
            },
            'member_sync': {
                'update_ldap_from_local': True,
                'create_users_in_ldap': True,
                'field_mappings': {
                    'givenName': 'first_name',
                    'sAMAccountName': 'username',
                    'sn': 'surname',
                    'mail': 'email'
                },
                'group_mappings': {
                    'CN=Staff,OU=Groups,DC=example,DC=com': 'staff'
                }
            },
            'logging': {
                'level': 'DEBUG',
                'log_dir': 'logs'
            }
        }
        self.temp_files = []

    def tearDown(self):
        for path in self.temp_files:
            if os.path.exists(path):
                os.unlink(path)

    def create_test_config(self, config_data: Dict[str, Any]) -> str:
        """Create a temporary config file with the given data."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(config_data, f)
            self.temp_files.append(f.name)
            return f.name

    def test_valid_config(self):
        """Test loading a valid configuration."""
        config = ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertEqual(config['ldap']['server_url'], 'ldaps://ldap.example.com:636')
        self.assertTrue(config['member_sync']['create_users_in_ldap'])
        self.assertEqual(config['member_sync']['field_mappings']['sAMAccountName'], 'username')
        self.assertEqual(config['logging']['level'], 'DEBUG')

    def test_defaults_applied(self):
        """Test default values for optional sections."""
        config_data = {'ldap': self.valid_config['ldap']}
        config = ConfigLoader(self.create_test_config(config_data)).load()

        sync = config['member_sync']
        self.assertFalse(sync['update_ldap_from_local'])
        self.assertFalse(sync['create_users_in_ldap'])
        self.assertFalse(sync['delete_users_in_ldap'])
        self.assertFalse(sync['allow_update_failure_during_login'])
        self.assertTrue(sync['update_local_from_ldap'])
        self.assertEqual(sync['field_mappings']['givenName'], 'first_name')
        self.assertEqual(sync['thumbnail_path'], 'Uploads')
        self.assertEqual(config['ldap']['guid_attribute'], 'objectGUID')
        self.assertTrue(config['ldap']['enabled'])
        self.assertEqual(config['logging']['retention_days'], 7)
        self.assertEqual(config['error_handling']['max_retries'], 3)
        self.assertEqual(config['ldap']['error_handling']['retry_wait_seconds'], 5)

    def test_missing_ldap_fields(self):
        """Test validation of required LDAP fields."""
        config_data = {'ldap': {'server_url': 'ldap://ldap.example.com'}}

        with patch.dict(os.environ):
            os.environ.pop('LDAP_BIND_PASSWORD', None)
            with self.assertRaises(ConfigurationError) as context:
                ConfigLoader(self.create_test_config(config_data)).load()

        self.assertIn('bind_dn', str(context.exception))
        self.assertIn('bind_password', str(context.exception))

    def test_disabled_directory_needs_no_credentials(self):
        """Test that a disabled directory can omit connection settings."""
        config = ConfigLoader(self.create_test_config({'ldap': {'enabled': False}})).load()

        self.assertFalse(config['ldap']['enabled'])

    def test_non_boolean_switch_rejected(self):
        """Test validation of policy switch types."""
        self.valid_config['member_sync']['delete_users_in_ldap'] = 'yes'

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('delete_users_in_ldap', str(context.exception))

    def test_duplicate_mapping_keys_rejected(self):
        """Test that directory attribute names must be unique regardless of case."""
        self.valid_config['member_sync']['field_mappings'] = {'mail': 'email', 'MAIL': 'email2'}

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('duplicate', str(context.exception))

    def test_invalid_group_mappings_rejected(self):
        """Test validation of group mappings."""
        self.valid_config['member_sync']['group_mappings'] = ['CN=Staff,DC=example,DC=com']

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.create_test_config(self.valid_config)).load()

    def test_env_var_overrides(self):
        """Test environment variable overrides for sensitive data."""
        config_file = self.create_test_config(self.valid_config)

        with patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'env_ldap_password'}):
            config = ConfigLoader(config_file).load()

        self.assertEqual(config['ldap']['bind_password'], 'env_ldap_password')

    def test_env_var_satisfies_required_password(self):
        """Test that the bind password may come only from the environment."""
        del self.valid_config['ldap']['bind_password']
        config_file = self.create_test_config(self.valid_config)

        with patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'env_ldap_password'}):
            config = load_config(config_file)

        self.assertEqual(config['ldap']['bind_password'], 'env_ldap_password')

    def test_config_path_from_environment(self):
        """Test CONFIG_PATH environment variable."""
        config_file = self.create_test_config(self.valid_config)

        with patch.dict(os.environ, {'CONFIG_PATH': config_file}):
            loader = ConfigLoader()

        self.assertEqual(loader.config_path, config_file)

    def test_invalid_yaml(self):
        """Test handling of invalid YAML syntax."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("invalid: yaml: syntax: [\n")
            self.temp_files.append(f.name)

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(f.name).load()

        self.assertIn('YAML', str(context.exception))

    def test_missing_config_file(self):
        """Test handling of missing configuration file."""
        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader('/tmp/non_existent_member_sync_config.yaml').load()

        self.assertIn('not found', str(context.exception))

    def test_empty_sections(self):
        """Test that empty YAML sections receive defaults."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("ldap:\n  enabled: false\nmember_sync:\nlogging:\n")
            self.temp_files.append(f.name)

        config = load_config(f.name)

        self.assertTrue(config['member_sync']['update_local_from_ldap'])
        self.assertEqual(config['logging']['level'], 'INFO')


if __name__ == '__main__':
    unittest.main()
