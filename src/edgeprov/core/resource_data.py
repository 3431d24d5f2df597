"""Desired and last-applied snapshots of one resource."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from edgeprov.core.models import DeviceField
from edgeprov.core.normalize import normalize_value


def _key(name: str | DeviceField) -> str:
    return name.value if isinstance(name, DeviceField) else str(name)


@dataclass(slots=True)
class ResourceData:
    """Pair of configuration snapshots for a single resource.

    ``current`` is the desired configuration from the inventory and
    ``previous`` the snapshot stored after the last successful apply. Change
    detection only looks at top-level attributes; nested blocks are compared
    as a whole.
    """

    current: Mapping[str, Any]
    previous: Mapping[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return str(self.previous.get(DeviceField.UUID.value) or "")

    def get(self, name: str | DeviceField) -> Any:
        return self.current.get(_key(name))

    def get_previous(self, name: str | DeviceField) -> Any:
        return self.previous.get(_key(name))

    def get_change(self, name: str | DeviceField) -> tuple[Any, Any]:
        return self.get_previous(name), self.get(name)

    def has_change(self, name: str | DeviceField) -> bool:
        key = _key(name)
        old, new = self.get_change(key)
        return normalize_value(key, old) != normalize_value(key, new)

    def changed_fields(self) -> list[str]:
        """Return configured top-level attributes whose value differs from the previous snapshot."""

        return sorted(key for key in self.current if self.has_change(key))
