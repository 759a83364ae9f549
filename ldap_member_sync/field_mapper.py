"""
Translation between directory attributes and local member fields.

Both directions are driven by the configured attribute mapping. Unmapped
attributes are ignored and absent values produce absent entries, so the
translation never fails on missing keys.
"""

import logging
from typing import Any, Dict, List, Optional

from ldap_member_sync.exceptions import MappingAmbiguous

logger = logging.getLogger(__name__)

# Binary attributes that are pulled into files rather than written back
BINARY_ATTRIBUTES = {'thumbnailphoto', 'jpegphoto'}


class FieldMapper:
    """Maps directory attribute names to local field names and back."""

    def __init__(self, mapping: Dict[str, str]):
        """
        Initialize the mapper.

        Args:
            mapping: Ordered dictionary of directory attribute -> local field
        """
        self.mapping = dict(mapping)

    def local_fields(self) -> List[str]:
        """Mapped local field names in mapping order, without duplicates."""
        fields = []
        for local_field in self.mapping.values():
            if local_field not in fields:
                fields.append(local_field)
        return fields

    def directory_attributes(self) -> List[str]:
        return list(self.mapping.keys())

    def to_local_fields(self, directory_attributes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate directory attributes into local field values.

        Attribute names are matched case-insensitively. When two directory
        attributes target the same local field, the first one in mapping order
        that carries a value wins.

        Args:
            directory_attributes: Attributes as returned by the directory client

        Returns:
            Dictionary of local field -> value
        """
        lowered = {str(name).lower(): value for name, value in directory_attributes.items()}
        local = {}

        for directory_attr, local_field in self.mapping.items():
            if local_field in local:
                continue
            value = self._normalize(lowered.get(directory_attr.lower()))
            if value is None:
                continue
            local[local_field] = value

        return local

    def to_directory_attributes(self, record) -> Dict[str, Any]:
        """
        Translate a local record into directory attribute values.

        Args:
            record: MemberRecord (or any object exposing the mapped fields)

        Returns:
            Dictionary of directory attribute -> value

        Raises:
            MappingAmbiguous: If several directory attributes map to one local field
        """
        self._check_invertible()

        attributes = {}
        for directory_attr, local_field in self.mapping.items():
            if directory_attr.lower() in BINARY_ATTRIBUTES:
                continue
            value = self._normalize(getattr(record, local_field, None))
            if value is None:
                continue
            attributes[directory_attr] = value

        return attributes

    def read_only_fields(self, record, policy) -> List[str]:
        """
        Local fields that must not be edited by hand for this record.

        Directory-managed records have their mapped fields overwritten on the
        next pull, unless local changes are written back to the directory.
        """
        if record.is_directory_managed and not policy.update_ldap_from_local:
            return self.local_fields()
        return []

    def _check_invertible(self):
        seen = {}
        for directory_attr, local_field in self.mapping.items():
            if local_field in seen:
                raise MappingAmbiguous(
                    f"Local field '{local_field}' is mapped from both "
                    f"'{seen[local_field]}' and '{directory_attr}'"
                )
            seen[local_field] = directory_attr

    @staticmethod
    def _normalize(value: Any) -> Optional[Any]:
        """Collapse single-valued lists and drop empty values."""
        if isinstance(value, (list, tuple)):
            values = [v for v in value if v not in (None, '', b'')]
            if not values:
                return None
            if len(values) == 1:
                return values[0]
            return values
        if value in ('', b''):
            return None
        return value
