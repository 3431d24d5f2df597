"""Normalization helpers between Device values and stored state snapshots."""

from __future__ import annotations

from typing import Any, Mapping

from edgeprov.core.models import Device, DeviceField, DeviceInterface, DeviceUserPublicKey

# Attributes kept for a secondary device; the rest is shared with the primary.
_SECONDARY_FIELDS: tuple[DeviceField, ...] = (
    DeviceField.UUID,
    DeviceField.NAME,
    DeviceField.STATUS,
    DeviceField.LICENSE_STATUS,
    DeviceField.METRO_CODE,
    DeviceField.IBX,
    DeviceField.REGION,
    DeviceField.HOSTNAME,
    DeviceField.LICENSE_TOKEN,
    DeviceField.LICENSE_FILE_ID,
    DeviceField.ACL_TEMPLATE_ID,
    DeviceField.SSH_IP_ADDRESS,
    DeviceField.SSH_IP_FQDN,
    DeviceField.ACCOUNT_NUMBER,
    DeviceField.NOTIFICATIONS,
    DeviceField.REDUNDANCY_TYPE,
    DeviceField.REDUNDANT_ID,
    DeviceField.ADDITIONAL_BANDWIDTH,
    DeviceField.INTERFACES,
    DeviceField.VENDOR_CONFIGURATION,
    DeviceField.SSH_KEY,
)

_INTERFACE_KEYS = (
    "id",
    "name",
    "status",
    "operational_status",
    "mac_address",
    "ip_address",
    "assigned_type",
    "type",
)


def _flatten_interfaces(interfaces: list[DeviceInterface]) -> list[dict[str, Any]]:
    return [{key: getattr(interface, key) for key in _INTERFACE_KEYS} for interface in interfaces]


def _flatten_ssh_key(key: DeviceUserPublicKey | None) -> dict[str, str] | None:
    if key is None:
        return None
    return {"username": key.username, "key_name": key.key_name}


def _flatten_value(device: Device, field: DeviceField) -> Any:
    if field is DeviceField.INTERFACES:
        return _flatten_interfaces(device.interfaces)
    if field is DeviceField.SSH_KEY:
        return _flatten_ssh_key(device.ssh_key)
    if field is DeviceField.NOTIFICATIONS:
        return list(device.notifications)
    if field is DeviceField.VENDOR_CONFIGURATION:
        return dict(device.vendor_configuration)
    return getattr(device, field.name.lower())


def flatten_device(primary: Device, secondary: Device | None = None) -> dict[str, Any]:
    """Convert a device (and its redundant peer) into a state snapshot mapping."""

    snapshot: dict[str, Any] = {}
    for field in DeviceField:
        if field is DeviceField.SECONDARY:
            continue
        snapshot[field.value] = _flatten_value(primary, field)

    if secondary is not None:
        secondary_map = {field.value: _flatten_value(secondary, field) for field in _SECONDARY_FIELDS}
        secondary_map[DeviceField.LICENSE_FILE.value] = secondary.license_file
        snapshot[DeviceField.SECONDARY.value] = [secondary_map]
    else:
        snapshot[DeviceField.SECONDARY.value] = []
    return snapshot


def single_element(value: Any) -> Mapping[str, Any] | None:
    """Return the only mapping held by an optional singleton block.

    Accepts a mapping or a one-element list; anything else yields None.
    """

    if isinstance(value, Mapping):
        return value
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], Mapping):
        return value[0]
    return None


def normalize_value(field: str, value: Any) -> Any:
    """Normalize a declarative value so equal configurations compare equal.

    - notifications behave as a set
    - empty strings, zero and missing values are the same "unset"
    - singleton blocks compare by their only element
    """

    if value in (None, "", 0, [], {}) and not isinstance(value, bool):
        return None
    if field == DeviceField.NOTIFICATIONS.value and isinstance(value, (list, tuple, set)):
        return sorted(set(value))
    if field == DeviceField.SSH_KEY.value:
        key_map = single_element(value)
        return dict(key_map) if key_map is not None else value
    if isinstance(value, Mapping):
        return {str(key): normalize_value(str(key), item) for key, item in value.items()}
    return value
