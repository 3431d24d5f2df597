"""Change detection between desired and last-applied device state."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from edgeprov.core.models import REMOTE_OWNED_FIELDS, DeviceField, MutableField
from edgeprov.core.normalize import normalize_value, single_element
from edgeprov.core.resource_data import ResourceData
from edgeprov.netedge.client import DeviceUpdateRequest

Changes = dict[MutableField, Any]

_UPDATE_SETTERS: dict[MutableField, Callable[[DeviceUpdateRequest, Any], DeviceUpdateRequest]] = {
    MutableField.NAME: lambda request, value: request.with_device_name(value or ""),
    MutableField.TERM_LENGTH: lambda request, value: request.with_term_length(int(value or 0)),
    MutableField.NOTIFICATIONS: lambda request, value: request.with_notifications(list(value or [])),
    MutableField.ADDITIONAL_BANDWIDTH: lambda request, value: request.with_additional_bandwidth(int(value or 0)),
    MutableField.ACL_TEMPLATE_ID: lambda request, value: request.with_acl_template(value or ""),
}

# Attributes that only live in the inventory or are handled elsewhere. The
# hostname is sent as a prefix and read back in full, and the vendor
# configuration is read back with keys the API adds, so neither compares.
_NOT_DRIFT: frozenset[str] = frozenset(
    {
        DeviceField.SECONDARY.value,
        DeviceField.LICENSE_FILE.value,
        DeviceField.HOSTNAME.value,
        DeviceField.VENDOR_CONFIGURATION.value,
    }
    | {field.value for field in REMOTE_OWNED_FIELDS}
    | {field.value for field in MutableField}
)


def compute_changes(supported: Iterable[MutableField], data: ResourceData) -> Changes:
    """Return the supported attributes of the primary device that changed."""

    changes: Changes = {}
    for field in supported:
        if data.has_change(field.value):
            changes[field] = data.get(field.value)
    return changes


def compute_secondary_changes(
    supported: Iterable[MutableField], data: ResourceData, logger: logging.Logger | None = None
) -> Changes:
    """Return the supported attributes of the secondary device that changed.

    The secondary lives in a nested block without per-attribute change
    tracking, so both snapshots are compared attribute by attribute.
    """

    logger = logger or logging.getLogger(__name__)
    changes: Changes = {}
    if not data.has_change(DeviceField.SECONDARY):
        return changes

    old_block, new_block = data.get_change(DeviceField.SECONDARY)
    old_map = single_element(old_block)
    new_map = single_element(new_block)
    if old_map is None or new_map is None:
        logger.warning(
            "illegal number of secondary device configurations, skipping secondary changes",
            extra={"device": data.id or "-"},
        )
        return changes

    for field in supported:
        old_value = normalize_value(field.value, old_map.get(field.value))
        new_value = normalize_value(field.value, new_map.get(field.value))
        if old_value != new_value:
            changes[field] = new_map.get(field.value)
    return changes


def immutable_drift(data: ResourceData) -> list[str]:
    """Return configured attributes that changed but cannot be updated in place."""

    return [name for name in data.changed_fields() if name not in _NOT_DRIFT]


def apply_changes(request: DeviceUpdateRequest, changes: Mapping[Any, Any]) -> DeviceUpdateRequest:
    """Fill ``request`` with the given changes; unknown keys are ignored."""

    for field, value in changes.items():
        setter = _UPDATE_SETTERS.get(field) if isinstance(field, MutableField) else None
        if setter is None:
            continue
        setter(request, value)
    return request
