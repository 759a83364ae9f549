"""
Directory access capability consumed by the sync engine.

Concrete implementations must inherit from DirectoryClient. The engine only
calls the methods defined here; transport details, connection handling and
retry policy belong to the implementation.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Set


class DirectoryClient(ABC):
    """
    Abstract base class for directory access.

    Implementations raise the errors from ldap_member_sync.exceptions:
    DirectoryUnavailable for transport failures, RecordNotFound for unknown
    identifiers and WriteRejected when the directory refuses a write.
    """

    @abstractmethod
    def enabled(self) -> bool:
        """Return True if directory synchronization is configured and active."""
        pass

    @abstractmethod
    def search(self, identifier: str) -> Dict[str, Any]:
        """
        Fetch the attributes of the entry bound to a GUID.

        Raises:
            RecordNotFound: If no entry carries this identifier
        """
        pass

    @abstractmethod
    def create(self, attributes: Dict[str, Any]) -> str:
        """Create a directory entry and return its identifier."""
        pass

    @abstractmethod
    def modify(self, identifier: str, attributes: Dict[str, Any]) -> None:
        """Replace the given attributes on an existing entry."""
        pass

    @abstractmethod
    def delete(self, identifier: str) -> None:
        """Delete an existing entry."""
        pass

    @abstractmethod
    def set_credential(self, identifier: str, secret: str) -> None:
        """Set the password of an existing entry."""
        pass

    @abstractmethod
    def groups_for(self, identifier: str) -> Set[str]:
        """Return the identifiers (DNs) of the groups an entry belongs to."""
        pass
