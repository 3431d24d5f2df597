"""Data models for network edge devices."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEVICE_STATE_INITIALIZING = "INITIALIZING"
DEVICE_STATE_PROVISIONING = "PROVISIONING"
DEVICE_STATE_WAITING_SECONDARY = "WAITING_FOR_SECONDARY"
DEVICE_STATE_PROVISIONED = "PROVISIONED"
DEVICE_STATE_FAILED = "FAILED"
DEVICE_STATE_DEPROVISIONING = "DEPROVISIONING"
DEVICE_STATE_DEPROVISIONED = "DEPROVISIONED"

LICENSE_STATE_UNSET = ""
LICENSE_STATE_APPLYING = "APPLYING_LICENSE"
LICENSE_STATE_REGISTERED = "REGISTERED"
LICENSE_STATE_APPLIED = "APPLIED"
LICENSE_STATE_FAILED = "REGISTRATION_FAILED"

ACL_DEVICE_STATUS_PROVISIONING = "PROVISIONING"
ACL_DEVICE_STATUS_PROVISIONED = "PROVISIONED"

MANAGEMENT_TYPE_SELF = "SELF-CONFIGURED"
MANAGEMENT_TYPE_EQUINIX = "EQUINIX-CONFIGURED"
LICENSE_MODE_BYOL = "BYOL"
LICENSE_MODE_SUBSCRIPTION = "Sub"

ERROR_CODE_DEVICE_REMOVED = "IC-LAYER2-4021"

TERM_LENGTHS = (1, 12, 24, 36)


class DeviceField(str, Enum):
    """Device attributes and their names in the declarative inventory."""

    UUID = "uuid"
    NAME = "name"
    TYPE_CODE = "type_code"
    STATUS = "status"
    LICENSE_STATUS = "license_status"
    METRO_CODE = "metro_code"
    IBX = "ibx"
    REGION = "region"
    THROUGHPUT = "throughput"
    THROUGHPUT_UNIT = "throughput_unit"
    HOSTNAME = "hostname"
    PACKAGE_CODE = "package_code"
    VERSION = "version"
    BYOL = "byol"
    LICENSE_TOKEN = "license_token"
    LICENSE_FILE = "license_file"
    LICENSE_FILE_ID = "license_file_id"
    ACL_TEMPLATE_ID = "acl_template_id"
    SSH_IP_ADDRESS = "ssh_ip_address"
    SSH_IP_FQDN = "ssh_ip_fqdn"
    ACCOUNT_NUMBER = "account_number"
    NOTIFICATIONS = "notifications"
    PURCHASE_ORDER_NUMBER = "purchase_order_number"
    REDUNDANCY_TYPE = "redundancy_type"
    REDUNDANT_ID = "redundant_id"
    TERM_LENGTH = "term_length"
    ADDITIONAL_BANDWIDTH = "additional_bandwidth"
    ORDER_REFERENCE = "order_reference"
    INTERFACE_COUNT = "interface_count"
    CORE_COUNT = "core_count"
    SELF_MANAGED = "self_managed"
    INTERFACES = "interface"
    VENDOR_CONFIGURATION = "vendor_configuration"
    SSH_KEY = "ssh_key"
    SECONDARY = "secondary_device"


class MutableField(str, Enum):
    """Attributes the remote API accepts after a device has been created."""

    NAME = DeviceField.NAME.value
    TERM_LENGTH = DeviceField.TERM_LENGTH.value
    NOTIFICATIONS = DeviceField.NOTIFICATIONS.value
    ADDITIONAL_BANDWIDTH = DeviceField.ADDITIONAL_BANDWIDTH.value
    ACL_TEMPLATE_ID = DeviceField.ACL_TEMPLATE_ID.value


SUPPORTED_CHANGES: tuple[MutableField, ...] = tuple(MutableField)

# Attributes owned by the remote system; mirrored into state, never sent.
REMOTE_OWNED_FIELDS: frozenset[DeviceField] = frozenset(
    {
        DeviceField.UUID,
        DeviceField.STATUS,
        DeviceField.LICENSE_STATUS,
        DeviceField.IBX,
        DeviceField.REGION,
        DeviceField.LICENSE_FILE_ID,
        DeviceField.SSH_IP_ADDRESS,
        DeviceField.SSH_IP_FQDN,
        DeviceField.REDUNDANCY_TYPE,
        DeviceField.REDUNDANT_ID,
        DeviceField.INTERFACES,
    }
)


@dataclass(slots=True)
class DeviceInterface:
    """Network interface reported by the remote system."""

    id: int
    name: str = ""
    status: str = ""
    operational_status: str = ""
    mac_address: str = ""
    ip_address: str = ""
    assigned_type: str = ""
    type: str = ""


@dataclass(slots=True)
class DeviceUserPublicKey:
    """SSH public key bound to a device user at creation time."""

    username: str
    key_name: str


@dataclass(slots=True)
class Device:
    """Representation of a network edge device.

    ``secondary`` is only set on a primary device that is provisioned as part
    of a redundant pair.
    """

    name: str = ""
    type_code: str = ""
    metro_code: str = ""
    package_code: str = ""
    version: str = ""
    account_number: str = ""
    uuid: str = ""
    status: str = ""
    license_status: str = ""
    ibx: str = ""
    region: str = ""
    throughput: int = 0
    throughput_unit: str = ""
    hostname: str = ""
    byol: bool = False
    license_token: str = ""
    license_file: str = ""
    license_file_id: str = ""
    acl_template_id: str = ""
    ssh_ip_address: str = ""
    ssh_ip_fqdn: str = ""
    notifications: list[str] = field(default_factory=list)
    purchase_order_number: str = ""
    redundancy_type: str = ""
    redundant_id: str = ""
    term_length: int = 0
    additional_bandwidth: int = 0
    order_reference: str = ""
    interface_count: int = 0
    core_count: int = 0
    self_managed: bool = False
    interfaces: list[DeviceInterface] = field(default_factory=list)
    vendor_configuration: dict[str, str] = field(default_factory=dict)
    ssh_key: DeviceUserPublicKey | None = None
    secondary: Device | None = None
