"""Create, read, update and delete cycles for network edge devices.

A device may be a single appliance or a redundant primary/secondary pair.
Creation is one API call for the pair; waiting, updates and ACL template
detachment are then run for each side in turn. Nothing is rolled back when a
later step fails: the error names the device so the operator can act on it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from edgeprov.common.diff import (
    Changes,
    apply_changes,
    compute_changes,
    compute_secondary_changes,
    immutable_drift,
)
from edgeprov.common.waiter import StateWaiter, WaitError
from edgeprov.core.config import ProvisioningSettings, expand_device
from edgeprov.core.logging import device_context
from edgeprov.core.models import (
    ACL_DEVICE_STATUS_PROVISIONED,
    ACL_DEVICE_STATUS_PROVISIONING,
    DEVICE_STATE_DEPROVISIONED,
    DEVICE_STATE_DEPROVISIONING,
    DEVICE_STATE_INITIALIZING,
    DEVICE_STATE_PROVISIONED,
    DEVICE_STATE_PROVISIONING,
    DEVICE_STATE_WAITING_SECONDARY,
    ERROR_CODE_DEVICE_REMOVED,
    LICENSE_STATE_APPLIED,
    LICENSE_STATE_APPLYING,
    LICENSE_STATE_REGISTERED,
    LICENSE_STATE_UNSET,
    SUPPORTED_CHANGES,
    DeviceField,
    MutableField,
)
from edgeprov.core.normalize import flatten_device, single_element
from edgeprov.core.resource_data import ResourceData
from edgeprov.netedge.client import NetworkEdgeApiError, NetworkEdgeClient, NetworkEdgeClientError
from edgeprov.netedge.license import upload_licenses

PROVISIONING_PENDING = (DEVICE_STATE_INITIALIZING, DEVICE_STATE_PROVISIONING, DEVICE_STATE_WAITING_SECONDARY)
PROVISIONING_TARGET = (DEVICE_STATE_PROVISIONED,)
LICENSE_PENDING = (LICENSE_STATE_APPLYING, LICENSE_STATE_UNSET)
LICENSE_TARGET = (LICENSE_STATE_REGISTERED, LICENSE_STATE_APPLIED)
ACL_PENDING = (ACL_DEVICE_STATUS_PROVISIONING,)
ACL_TARGET = (ACL_DEVICE_STATUS_PROVISIONED,)


class DeviceProvisioningError(RuntimeError):
    """Raised when a device operation fails; names the device and the phase."""

    def __init__(self, message: str, resource_id: str = "", phase: str = "") -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.phase = phase


@dataclass(slots=True)
class DeviceStatusSource:
    client: NetworkEdgeClient
    uuid: str

    def refresh(self) -> str:
        return self.client.get_device(self.uuid).status


@dataclass(slots=True)
class DeviceLicenseStatusSource:
    client: NetworkEdgeClient
    uuid: str

    def refresh(self) -> str:
        return self.client.get_device(self.uuid).license_status


@dataclass(slots=True)
class AclTemplateStatusSource:
    client: NetworkEdgeClient
    uuid: str

    def refresh(self) -> str:
        return self.client.get_acl_template_status(self.uuid)


@dataclass(slots=True)
class DevicePlan:
    """Changes an update cycle would send for one resource."""

    primary: Changes
    secondary: Changes
    drift: list[str]

    @property
    def is_empty(self) -> bool:
        return not self.primary and not self.secondary


def plan_device(data: ResourceData, logger: logging.Logger | None = None) -> DevicePlan:
    """Compute the in-place changes for an existing device without calling the API."""

    secondary: Changes = {}
    if data.get_previous(DeviceField.REDUNDANT_ID):
        secondary = compute_secondary_changes(SUPPORTED_CHANGES, data, logger)
    return DevicePlan(
        primary=compute_changes(SUPPORTED_CHANGES, data),
        secondary=secondary,
        drift=immutable_drift(data),
    )


class DeviceProvisioner:
    """Drive the provisioning API for one device or redundant pair."""

    def __init__(
        self,
        client: NetworkEdgeClient,
        settings: ProvisioningSettings | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.settings = settings or ProvisioningSettings()
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock

    def _waiter(
        self, uuid: str, source: Any, pending: tuple[str, ...], target: tuple[str, ...],
        interval: float, timeout: float, description: str,
    ) -> StateWaiter:
        return StateWaiter(
            resource_id=uuid,
            pending=pending,
            target=target,
            source=source,
            interval=interval,
            timeout=timeout,
            description=description,
            logger=self.logger,
            sleep=self._sleep,
            clock=self._clock,
        )

    def provisioning_waiter(self, uuid: str) -> StateWaiter:
        return self._waiter(
            uuid,
            DeviceStatusSource(self.client, uuid),
            PROVISIONING_PENDING,
            PROVISIONING_TARGET,
            self.settings.poll_interval,
            self.settings.create_timeout,
            "provisioning status",
        )

    def license_waiter(self, uuid: str) -> StateWaiter:
        return self._waiter(
            uuid,
            DeviceLicenseStatusSource(self.client, uuid),
            LICENSE_PENDING,
            LICENSE_TARGET,
            self.settings.poll_interval,
            self.settings.create_timeout,
            "license status",
        )

    def acl_template_waiter(self, acl_template_id: str) -> StateWaiter:
        return self._waiter(
            acl_template_id,
            AclTemplateStatusSource(self.client, acl_template_id),
            ACL_PENDING,
            ACL_TARGET,
            self.settings.acl_poll_interval,
            self.settings.update_timeout,
            "acl template status",
        )

    def create(
        self,
        attributes: Mapping[str, Any],
        label: str = "device",
        on_created: Callable[[str], None] | None = None,
    ) -> dict[str, Any]:
        """Create the device (or pair), wait until it is usable and return its state snapshot.

        ``on_created`` receives the primary uuid as soon as the API assigns it,
        before any waiting starts.
        """

        log_extra = device_context(label)
        primary, secondary = expand_device(attributes, f"device '{label}'")
        upload_licenses(self.client, primary, secondary, self.logger)

        try:
            if secondary is not None:
                self.logger.info(
                    "creating redundant device pair primary=%s secondary=%s",
                    primary.name,
                    secondary.name,
                    extra=log_extra,
                )
                primary_id, secondary_id = self.client.create_redundant_device(primary, secondary)
                uuids = [primary_id, secondary_id]
            else:
                self.logger.info("creating device name=%s", primary.name, extra=log_extra)
                primary_id = self.client.create_device(primary)
                uuids = [primary_id]
        except NetworkEdgeClientError as exc:
            raise DeviceProvisioningError(
                f"error creating network device '{primary.name}': {exc}", phase="create"
            ) from exc

        self.logger.info("device created uuid=%s", ",".join(uuids), extra=device_context(label, primary_id))
        if on_created is not None:
            on_created(primary_id)

        self._wait_provisioned(uuids)
        self._wait_licensed(uuids)

        snapshot = self.read(primary_id, attributes, label)
        if snapshot is None:
            raise DeviceProvisioningError(
                f"network device ({primary_id}) disappeared right after creation", primary_id, "read"
            )
        return snapshot

    def _wait_provisioned(self, uuids: list[str]) -> None:
        for uuid in uuids:
            try:
                self.provisioning_waiter(uuid).wait()
            except WaitError as exc:
                raise DeviceProvisioningError(
                    f"error waiting for network device ({uuid}) to be created: {exc}", uuid, "provisioning"
                ) from exc

    def _wait_licensed(self, uuids: list[str]) -> None:
        for uuid in uuids:
            try:
                self.license_waiter(uuid).wait()
            except WaitError as exc:
                raise DeviceProvisioningError(
                    f"error waiting for network device ({uuid}) license to be applied: {exc}", uuid, "license"
                ) from exc

    def settle(
        self, snapshot: Mapping[str, Any], attributes: Mapping[str, Any] | None = None, label: str = "device"
    ) -> dict[str, Any]:
        """Bring a stored device that is not yet usable to its provisioned and licensed state.

        Sides still initializing or applying a license are polled again; a
        side in any other state, such as FAILED, raises DeviceProvisioningError.
        """

        sides = [snapshot, *(snapshot.get(DeviceField.SECONDARY.value) or [])]
        unprovisioned = [
            side[DeviceField.UUID.value]
            for side in sides
            if side.get(DeviceField.STATUS.value) not in PROVISIONING_TARGET
        ]
        unlicensed = [
            side[DeviceField.UUID.value]
            for side in sides
            if side.get(DeviceField.LICENSE_STATUS.value) not in LICENSE_TARGET
        ]
        if not unprovisioned and not unlicensed:
            return dict(snapshot)

        primary_id = snapshot[DeviceField.UUID.value]
        self.logger.info(
            "device uuid=%s is not ready, resuming wait status=%s license_status=%s",
            primary_id,
            snapshot.get(DeviceField.STATUS.value),
            snapshot.get(DeviceField.LICENSE_STATUS.value),
            extra=device_context(label, primary_id),
        )
        self._wait_provisioned(unprovisioned)
        self._wait_licensed(unlicensed)

        settled = self.read(primary_id, attributes, label)
        if settled is None:
            raise DeviceProvisioningError(
                f"network device ({primary_id}) disappeared while waiting for it", primary_id, "read"
            )
        return settled

    def read(
        self, uuid: str, attributes: Mapping[str, Any] | None = None, label: str = "device"
    ) -> dict[str, Any] | None:
        """Fetch the device (and its peer) and return a state snapshot.

        Returns None when the device is being or has been deprovisioned.
        """

        attributes = attributes or {}
        log_extra = device_context(label, uuid)
        try:
            primary = self.client.get_device(uuid)
        except NetworkEdgeClientError as exc:
            raise DeviceProvisioningError(
                f"cannot fetch primary network device due to {exc}", uuid, "read"
            ) from exc

        if primary.status in (DEVICE_STATE_DEPROVISIONING, DEVICE_STATE_DEPROVISIONED):
            self.logger.warning("device uuid=%s is %s, dropping it from state", uuid, primary.status, extra=log_extra)
            return None

        secondary = None
        if primary.redundant_id:
            try:
                secondary = self.client.get_device(primary.redundant_id)
            except NetworkEdgeClientError as exc:
                raise DeviceProvisioningError(
                    f"cannot fetch secondary network device due to {exc}", primary.redundant_id, "read"
                ) from exc

        # License file paths are local inputs; the API never returns them.
        primary.license_file = attributes.get(DeviceField.LICENSE_FILE.value) or ""
        if secondary is not None:
            secondary_map = single_element(attributes.get(DeviceField.SECONDARY.value)) or {}
            secondary.license_file = secondary_map.get(DeviceField.LICENSE_FILE.value) or ""

        self.logger.debug(
            "device read uuid=%s status=%s license_status=%s",
            uuid,
            primary.status,
            primary.license_status,
            extra=log_extra,
        )
        return flatten_device(primary, secondary)

    def plan(self, data: ResourceData) -> DevicePlan:
        return plan_device(data, self.logger)

    def _execute_update(self, uuid: str, changes: Changes, log_extra: dict[str, str]) -> None:
        if not changes:
            return
        self.logger.info(
            "updating device uuid=%s fields=%s",
            uuid,
            ",".join(sorted(field.value for field in changes)),
            extra=log_extra,
        )
        try:
            apply_changes(self.client.new_device_update_request(uuid), changes).execute()
        except NetworkEdgeClientError as exc:
            raise DeviceProvisioningError(
                f"error updating network device {uuid}: {exc}", uuid, "update"
            ) from exc

    def _state_change_waiters(self, changes: Changes) -> list[StateWaiter]:
        waiters = []
        for field, value in changes.items():
            # Only template reattachment is tracked remotely; detaching needs no wait.
            if field is MutableField.ACL_TEMPLATE_ID and value:
                waiters.append(self.acl_template_waiter(value))
        return waiters

    def update(self, data: ResourceData, label: str = "device") -> dict[str, Any] | None:
        """Send in-place changes for the device and its peer and wait for them to settle."""

        uuid = data.id
        log_extra = device_context(label, uuid)
        plan = self.plan(data)
        for name in plan.drift:
            self.logger.warning(
                "attribute '%s' changed but cannot be updated in place; change ignored", name, extra=log_extra
            )

        secondary_id = str(data.get_previous(DeviceField.REDUNDANT_ID) or "")
        self._execute_update(uuid, plan.primary, log_extra)
        if secondary_id:
            self._execute_update(secondary_id, plan.secondary, log_extra)

        pending = [(uuid, waiter) for waiter in self._state_change_waiters(plan.primary)]
        pending += [(secondary_id, waiter) for waiter in self._state_change_waiters(plan.secondary)]
        for device_id, waiter in pending:
            try:
                waiter.wait()
            except WaitError as exc:
                raise DeviceProvisioningError(
                    f"error waiting for network device {device_id!r} to be updated: {exc}", device_id, "update"
                ) from exc

        return self.read(uuid, data.current, label)

    def _detach_acl_template(self, uuid: str, acl_template_id: str, log_extra: dict[str, str]) -> None:
        try:
            self.client.new_device_update_request(uuid).with_acl_template("").execute()
        except NetworkEdgeClientError as exc:
            self.logger.warning(
                "could not unassign ACL template %s from device %s: %s",
                acl_template_id,
                uuid,
                exc,
                extra=log_extra,
            )
            return
        self.logger.info("acl template %s unassigned from device %s", acl_template_id, uuid, extra=log_extra)

    def delete(self, state: Mapping[str, Any], label: str = "device") -> None:
        """Delete the device described by ``state``.

        ACL templates are detached first on both sides; failures there are
        only logged. A device the API reports as already removed counts as
        deleted.
        """

        uuid = str(state.get(DeviceField.UUID.value) or "")
        log_extra = device_context(label, uuid)
        if not uuid:
            raise DeviceProvisioningError(f"state for '{label}' has no device uuid", phase="delete")

        acl_template_id = state.get(DeviceField.ACL_TEMPLATE_ID.value)
        if acl_template_id:
            self._detach_acl_template(uuid, acl_template_id, log_extra)

        secondary_block = state.get(DeviceField.SECONDARY.value)
        if secondary_block:
            secondary = single_element(secondary_block)
            if secondary is None:
                self.logger.warning(
                    "could not get secondary device from state: illegal number of secondary blocks",
                    extra=log_extra,
                )
            elif secondary.get(DeviceField.ACL_TEMPLATE_ID.value) and secondary.get(DeviceField.UUID.value):
                self._detach_acl_template(
                    secondary[DeviceField.UUID.value], secondary[DeviceField.ACL_TEMPLATE_ID.value], log_extra
                )

        self.logger.info("deleting device uuid=%s", uuid, extra=log_extra)
        try:
            self.client.delete_device(uuid)
        except NetworkEdgeApiError as exc:
            if exc.has_error_code(ERROR_CODE_DEVICE_REMOVED):
                self.logger.info("device uuid=%s was already removed", uuid, extra=log_extra)
                return
            raise
