"""
In-memory DirectoryClient used by the engine tests.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_member_sync.directory import DirectoryClient
from ldap_member_sync.exceptions import RecordNotFound


class FakeDirectory(DirectoryClient):
    """
    Stores entries in a dict keyed by GUID and records every call.

    Set ``fail_on`` to {'search': SomeError(...)} to make an operation raise.
    """

    def __init__(self, entries=None, groups=None, is_enabled=True):
        self.entries = dict(entries or {})
        self.groups = {guid: set(dns) for guid, dns in (groups or {}).items()}
        self.passwords = {}
        self.is_enabled = is_enabled
        self.fail_on = {}
        self.calls = []
        self.next_guids = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def calls_to(self, name):
        return [call for call in self.calls if call[0] == name]

    def enabled(self):
        return self.is_enabled

    def search(self, identifier):
        self._record('search', identifier)
        if identifier not in self.entries:
            raise RecordNotFound(identifier)
        return dict(self.entries[identifier])

    def create(self, attributes):
        self._record('create', dict(attributes))
        guid = self.next_guids.pop(0) if self.next_guids else f"guid-{len(self.entries) + 1}"
        self.entries[guid] = dict(attributes)
        return guid

    def modify(self, identifier, attributes):
        self._record('modify', identifier, dict(attributes))
        if identifier not in self.entries:
            raise RecordNotFound(identifier)
        self.entries[identifier].update(attributes)

    def delete(self, identifier):
        self._record('delete', identifier)
        if identifier not in self.entries:
            raise RecordNotFound(identifier)
        del self.entries[identifier]

    def set_credential(self, identifier, secret):
        self._record('set_credential', identifier)
        self.passwords[identifier] = secret

    def groups_for(self, identifier):
        self._record('groups_for', identifier)
        return set(self.groups.get(identifier, set()))
