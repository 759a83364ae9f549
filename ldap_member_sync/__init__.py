"""
LDAP Member Sync - Keep local member records and an LDAP/Active Directory in sync.

This package provides the synchronization engine that pulls directory attributes
into local member records, writes local changes back to the directory under a
configurable policy, and keeps directory-sourced group memberships consistent.
"""

__version__ = "1.0.0"
__author__ = "LDAP Sync Team"
