"""Configuration helpers for EdgeProvision."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from pathlib import Path
from typing import Any, Mapping

import yaml

from edgeprov.core.models import (
    TERM_LENGTHS,
    Device,
    DeviceField,
    DeviceUserPublicKey,
)


@dataclass(slots=True)
class ConfigPaths:
    """Paths used by the application."""

    devices: Path
    secrets: Path
    state: Path


DEFAULT_CONFIG = ConfigPaths(
    devices=Path("config/devices.yml"),
    secrets=Path("config/secrets.yml"),
    state=Path("state"),
)

DEFAULT_API_URL = "https://api.equinix.com"


@dataclass(slots=True)
class ProvisioningSettings:
    """API endpoint and timing values used by provisioning cycles."""

    base_url: str = DEFAULT_API_URL
    request_timeout: float = 30.0
    create_timeout: float = 60 * 60.0
    update_timeout: float = 10 * 60.0
    poll_interval: float = 5.0
    acl_poll_interval: float = 1.0


class DevicesConfigError(ValueError):
    """Raised when devices.yml cannot be parsed or validated."""


_METRO_CODE_RE = re.compile(r"^[A-Z]{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _require_string(mapping: Mapping[str, Any], field: str, context: str) -> str:
    value = mapping.get(field)
    if value is None or value == "":
        raise DevicesConfigError(f"{context}: missing required field '{field}'.")
    if not isinstance(value, str):
        raise DevicesConfigError(f"{context}: field '{field}' must be a string.")
    return value


def _optional_string(
    mapping: Mapping[str, Any], field: str, context: str, length: tuple[int, int] | None = None
) -> str:
    value = mapping.get(field)
    if value is None:
        return ""
    if not isinstance(value, str) or value == "":
        raise DevicesConfigError(f"{context}: field '{field}' must be a non-empty string when provided.")
    if length and not length[0] <= len(value) <= length[1]:
        raise DevicesConfigError(
            f"{context}: field '{field}' must be between {length[0]} and {length[1]} characters."
        )
    return value


def _optional_int(mapping: Mapping[str, Any], field: str, context: str, minimum: int = 1) -> int:
    value = mapping.get(field)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DevicesConfigError(f"{context}: field '{field}' must be an integer.")
    if value < minimum:
        raise DevicesConfigError(f"{context}: field '{field}' must be at least {minimum}.")
    return value


def _optional_bool(mapping: Mapping[str, Any], field: str, context: str) -> bool:
    value = mapping.get(field, False)
    if not isinstance(value, bool):
        raise DevicesConfigError(f"{context}: field '{field}' must be true or false.")
    return value


def _validate_name(mapping: Mapping[str, Any], context: str) -> str:
    name = _require_string(mapping, DeviceField.NAME.value, context)
    if not 3 <= len(name) <= 50:
        raise DevicesConfigError(f"{context}: name must be between 3 and 50 characters.")
    return name


def _validate_metro_code(mapping: Mapping[str, Any], context: str) -> str:
    value = _require_string(mapping, DeviceField.METRO_CODE.value, context)
    if not _METRO_CODE_RE.match(value):
        raise DevicesConfigError(f"{context}: invalid metro_code '{value}'. Expected two upper-case letters.")
    return value


def _validate_term_length(mapping: Mapping[str, Any], context: str) -> int:
    value = mapping.get(DeviceField.TERM_LENGTH.value)
    if value is None:
        raise DevicesConfigError(f"{context}: missing required field 'term_length'.")
    if isinstance(value, bool) or value not in TERM_LENGTHS:
        allowed = ", ".join(str(term) for term in TERM_LENGTHS)
        raise DevicesConfigError(f"{context}: invalid term_length '{value}'. Allowed: {allowed}.")
    return value


def _validate_throughput_unit(mapping: Mapping[str, Any], context: str) -> str:
    value = mapping.get(DeviceField.THROUGHPUT_UNIT.value)
    if value is None:
        return ""
    if value not in ("Mbps", "Gbps"):
        raise DevicesConfigError(f"{context}: invalid throughput_unit '{value}'. Allowed: Mbps, Gbps.")
    return value


def _validate_notifications(mapping: Mapping[str, Any], context: str) -> list[str]:
    value = mapping.get(DeviceField.NOTIFICATIONS.value)
    if not isinstance(value, list) or not value:
        raise DevicesConfigError(f"{context}: notifications must be a non-empty list of e-mail addresses.")

    addresses: list[str] = []
    for address in value:
        if not isinstance(address, str) or not _EMAIL_RE.match(address):
            raise DevicesConfigError(f"{context}: invalid notification address '{address}'.")
        if address not in addresses:
            addresses.append(address)
    return addresses


def _validate_vendor_configuration(mapping: Mapping[str, Any], context: str) -> dict[str, str]:
    value = mapping.get(DeviceField.VENDOR_CONFIGURATION.value)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise DevicesConfigError(f"{context}: vendor_configuration must be a mapping.")

    result: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str) or item == "":
            raise DevicesConfigError(f"{context}: vendor_configuration '{key}' must be a non-empty string.")
        result[str(key)] = item
    return result


def _validate_ssh_key(mapping: Mapping[str, Any], context: str) -> DeviceUserPublicKey | None:
    value = mapping.get(DeviceField.SSH_KEY.value)
    if value is None:
        return None
    if isinstance(value, list):
        if len(value) != 1:
            raise DevicesConfigError(f"{context}: ssh_key accepts exactly one key block.")
        value = value[0]
    if not isinstance(value, Mapping):
        raise DevicesConfigError(f"{context}: ssh_key must be a mapping.")
    return DeviceUserPublicKey(
        username=_require_string(value, "username", f"{context} ssh_key"),
        key_name=_require_string(value, "key_name", f"{context} ssh_key"),
    )


def _validate_license(mapping: Mapping[str, Any], context: str) -> tuple[str, str]:
    token = _optional_string(mapping, DeviceField.LICENSE_TOKEN.value, context)
    license_file = _optional_string(mapping, DeviceField.LICENSE_FILE.value, context)
    if token and license_file:
        raise DevicesConfigError(f"{context}: license_token and license_file cannot be used together.")
    return token, license_file


def secondary_block(raw_device: Mapping[str, Any], context: str) -> Mapping[str, Any] | None:
    """Return the single secondary device block, if any.

    The block may be written either as a mapping or as a list holding one
    mapping. More than one block is a configuration error.
    """

    value = raw_device.get(DeviceField.SECONDARY.value)
    if value is None or value == []:
        return None
    if isinstance(value, list):
        if len(value) > 1:
            raise DevicesConfigError(
                f"{context}: illegal number of secondary device configurations: expected 1, have {len(value)}."
            )
        value = value[0]
    if not isinstance(value, Mapping):
        raise DevicesConfigError(f"{context}: secondary_device must be a mapping.")
    return value


def _expand_secondary(raw_secondary: Mapping[str, Any], context: str) -> Device:
    context = f"{context} secondary_device"
    token, license_file = _validate_license(raw_secondary, context)
    return Device(
        uuid=raw_secondary.get(DeviceField.UUID.value) or "",
        name=_validate_name(raw_secondary, context),
        metro_code=_validate_metro_code(raw_secondary, context),
        hostname=_optional_string(raw_secondary, DeviceField.HOSTNAME.value, context, (2, 15)),
        license_token=token,
        license_file=license_file,
        license_file_id=raw_secondary.get(DeviceField.LICENSE_FILE_ID.value) or "",
        acl_template_id=_optional_string(raw_secondary, DeviceField.ACL_TEMPLATE_ID.value, context),
        account_number=_require_string(raw_secondary, DeviceField.ACCOUNT_NUMBER.value, context),
        notifications=_validate_notifications(raw_secondary, context),
        additional_bandwidth=_optional_int(raw_secondary, DeviceField.ADDITIONAL_BANDWIDTH.value, context),
        vendor_configuration=_validate_vendor_configuration(raw_secondary, context),
        ssh_key=_validate_ssh_key(raw_secondary, context),
    )


def expand_device(raw_device: Mapping[str, Any], context: str = "device") -> tuple[Device, Device | None]:
    """Translate declarative device attributes into primary and secondary devices.

    Performs validation only; no file or network access happens here.
    """

    if not isinstance(raw_device, Mapping):
        raise DevicesConfigError(f"{context}: each device must be a mapping.")

    token, license_file = _validate_license(raw_device, context)
    primary = Device(
        uuid=raw_device.get(DeviceField.UUID.value) or "",
        name=_validate_name(raw_device, context),
        type_code=_require_string(raw_device, DeviceField.TYPE_CODE.value, context),
        metro_code=_validate_metro_code(raw_device, context),
        throughput=_optional_int(raw_device, DeviceField.THROUGHPUT.value, context),
        throughput_unit=_validate_throughput_unit(raw_device, context),
        hostname=_optional_string(raw_device, DeviceField.HOSTNAME.value, context, (2, 10)),
        package_code=_require_string(raw_device, DeviceField.PACKAGE_CODE.value, context),
        version=_require_string(raw_device, DeviceField.VERSION.value, context),
        byol=_optional_bool(raw_device, DeviceField.BYOL.value, context),
        license_token=token,
        license_file=license_file,
        license_file_id=raw_device.get(DeviceField.LICENSE_FILE_ID.value) or "",
        acl_template_id=_optional_string(raw_device, DeviceField.ACL_TEMPLATE_ID.value, context),
        account_number=_require_string(raw_device, DeviceField.ACCOUNT_NUMBER.value, context),
        notifications=_validate_notifications(raw_device, context),
        purchase_order_number=_optional_string(
            raw_device, DeviceField.PURCHASE_ORDER_NUMBER.value, context, (1, 30)
        ),
        term_length=_validate_term_length(raw_device, context),
        additional_bandwidth=_optional_int(raw_device, DeviceField.ADDITIONAL_BANDWIDTH.value, context),
        order_reference=_optional_string(raw_device, DeviceField.ORDER_REFERENCE.value, context, (1, 100)),
        interface_count=_optional_int(raw_device, DeviceField.INTERFACE_COUNT.value, context),
        core_count=_optional_int(raw_device, DeviceField.CORE_COUNT.value, context),
        self_managed=_optional_bool(raw_device, DeviceField.SELF_MANAGED.value, context),
        vendor_configuration=_validate_vendor_configuration(raw_device, context),
        ssh_key=_validate_ssh_key(raw_device, context),
    )
    if primary.core_count == 0:
        raise DevicesConfigError(f"{context}: missing required field 'core_count'.")

    raw_secondary = secondary_block(raw_device, context)
    secondary = _expand_secondary(raw_secondary, context) if raw_secondary is not None else None
    return primary, secondary


def load_devices(path: Path, logger: logging.Logger | None = None) -> dict[str, Mapping[str, Any]]:
    """Load and validate devices.yml, keyed by resource label.

    Invalid entries are logged and skipped so one broken resource does not
    block the others.
    """

    logger = logger or logging.getLogger(__name__)

    if not path.exists():
        raise FileNotFoundError(f"Devices inventory not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        raw_data = yaml.safe_load(handle) or {}

    if not isinstance(raw_data, dict):
        raise DevicesConfigError("Top-level devices.yml structure must be a mapping.")

    raw_devices = raw_data.get("devices")
    if raw_devices is None:
        raise DevicesConfigError("devices.yml must contain a 'devices' mapping.")
    if not isinstance(raw_devices, dict):
        raise DevicesConfigError("The 'devices' field must be a mapping of resource labels to devices.")

    devices: dict[str, Mapping[str, Any]] = {}
    for label, raw_device in raw_devices.items():
        label = str(label)
        context = f"device '{label}'"
        log_extra = {"device": label}
        try:
            primary, secondary = expand_device(raw_device, context)
        except DevicesConfigError as exc:
            logger.error("%s", exc, extra=log_extra)
            continue

        devices[label] = raw_device
        logger.info(
            "device=%s type=%s metro=%s redundant=%s loaded from devices.yml",
            label,
            primary.type_code,
            primary.metro_code,
            secondary is not None,
            extra=log_extra,
        )
        logger.debug(
            "device=%s name=%s package=%s version=%s byol=%s",
            label,
            primary.name,
            primary.package_code,
            primary.version,
            primary.byol,
            extra=log_extra,
        )

    return devices


def _positive_number(section: Mapping[str, Any], key: str, default: float, context: str) -> float:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise DevicesConfigError(f"{context}: '{key}' must be a positive number.")
    return float(value)


def load_settings(local_cfg: Mapping[str, Any] | None) -> ProvisioningSettings:
    """Build provisioning settings from the ``api`` and ``provisioning`` sections of local.yml."""

    settings = ProvisioningSettings()
    if not isinstance(local_cfg, Mapping):
        return settings

    api_section = local_cfg.get("api") or {}
    if not isinstance(api_section, Mapping):
        raise DevicesConfigError("local.yml: 'api' must be a mapping.")
    base_url = api_section.get("base_url")
    if base_url is not None:
        if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            raise DevicesConfigError("local.yml api: 'base_url' must be an http(s) URL.")
        settings.base_url = base_url.rstrip("/")
    settings.request_timeout = _positive_number(api_section, "timeout", settings.request_timeout, "local.yml api")

    section = local_cfg.get("provisioning") or {}
    if not isinstance(section, Mapping):
        raise DevicesConfigError("local.yml: 'provisioning' must be a mapping.")
    context = "local.yml provisioning"
    settings.create_timeout = _positive_number(section, "create_timeout", settings.create_timeout, context)
    settings.update_timeout = _positive_number(section, "update_timeout", settings.update_timeout, context)
    settings.poll_interval = _positive_number(section, "poll_interval", settings.poll_interval, context)
    settings.acl_poll_interval = _positive_number(
        section, "acl_poll_interval", settings.acl_poll_interval, context
    )
    return settings
