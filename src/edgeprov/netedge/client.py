"""Network Edge REST API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Mapping

import requests
from requests.exceptions import RequestException

from edgeprov.core.models import (
    LICENSE_MODE_BYOL,
    LICENSE_MODE_SUBSCRIPTION,
    MANAGEMENT_TYPE_EQUINIX,
    MANAGEMENT_TYPE_SELF,
    Device,
    DeviceInterface,
    DeviceUserPublicKey,
)

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/oauth2/v1/token"
DEVICE_ENDPOINT = "/ne/v1/device"
LICENSE_FILE_ENDPOINT = "/ne/v1/device/licenseFiles"
ACL_TEMPLATE_ENDPOINT = "/ne/v1/device/acl-template"


class NetworkEdgeClientError(RuntimeError):
    """Base exception for Network Edge client errors."""


class NetworkEdgeAuthError(NetworkEdgeClientError):
    """Raised when the OAuth token cannot be obtained."""


@dataclass(slots=True)
class ApplicationError:
    """Single error entry reported in an API error response."""

    code: str
    message: str = ""
    property_name: str = ""


class NetworkEdgeApiError(NetworkEdgeClientError):
    """Raised when the API answers with an error status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        application_errors: list[ApplicationError] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.application_errors = application_errors or []

    def has_error_code(self, code: str) -> bool:
        return any(error.code == code for error in self.application_errors)


def _parse_application_errors(payload: Any) -> list[ApplicationError]:
    if isinstance(payload, Mapping):
        payload = payload.get("errors", [payload])
    if not isinstance(payload, list):
        return []

    errors: list[ApplicationError] = []
    for item in payload:
        if not isinstance(item, Mapping):
            continue
        code = item.get("errorCode") or item.get("code")
        if not code:
            continue
        errors.append(
            ApplicationError(
                code=str(code),
                message=str(item.get("errorMessage") or item.get("message") or ""),
                property_name=str(item.get("property") or ""),
            )
        )
    return errors


def _json(response: requests.Response, *keys: str) -> Any:
    """Decode a successful response body and pick the given keys from it.

    A missing body or key is reported as NetworkEdgeClientError naming the endpoint.
    """

    endpoint = f"{response.request.method} {response.request.path_url}" if response.request else response.url
    try:
        body = response.json()
    except ValueError as exc:
        raise NetworkEdgeClientError(f"{endpoint} returned a body that is not JSON") from exc
    if not isinstance(body, Mapping):
        raise NetworkEdgeClientError(f"{endpoint} returned an unexpected body: {type(body).__name__}")
    if not keys:
        return body
    try:
        values = tuple(body[key] for key in keys)
    except KeyError as exc:
        raise NetworkEdgeClientError(f"{endpoint} response is missing '{exc.args[0]}'") from exc
    return values[0] if len(values) == 1 else values


def device_to_request(device: Device) -> dict[str, Any]:
    """Build the creation payload for a device, skipping unset attributes."""

    payload: dict[str, Any] = {
        "virtualDeviceName": device.name,
        "deviceTypeCode": device.type_code,
        "metroCode": device.metro_code,
        "packageCode": device.package_code,
        "version": device.version,
        "accountNumber": device.account_number,
        "notifications": list(device.notifications),
        "termLength": device.term_length,
        "licenseMode": LICENSE_MODE_BYOL if device.byol else LICENSE_MODE_SUBSCRIPTION,
        "deviceManagementType": MANAGEMENT_TYPE_SELF if device.self_managed else MANAGEMENT_TYPE_EQUINIX,
        "hostNamePrefix": device.hostname,
        "licenseToken": device.license_token,
        "licenseFileId": device.license_file_id,
        "aclTemplateId": device.acl_template_id,
        "throughput": device.throughput,
        "throughputUnit": device.throughput_unit,
        "additionalBandwidth": device.additional_bandwidth,
        "purchaseOrderNumber": device.purchase_order_number,
        "orderReference": device.order_reference,
        "interfaceCount": device.interface_count,
        "core": device.core_count,
        "vendorConfig": dict(device.vendor_configuration),
    }
    if device.ssh_key is not None:
        payload["userPublicKey"] = {"username": device.ssh_key.username, "keyName": device.ssh_key.key_name}
    return {key: value for key, value in payload.items() if value not in ("", 0, [], {}, None)}


def _secondary_request(secondary: Device) -> dict[str, Any]:
    payload = device_to_request(secondary)
    # The pair shares commercial terms; only per-site attributes are sent for the secondary.
    for key in ("deviceTypeCode", "packageCode", "version", "termLength", "licenseMode",
                "deviceManagementType", "throughput", "throughputUnit", "interfaceCount", "core",
                "purchaseOrderNumber", "orderReference"):
        payload.pop(key, None)
    return payload


def device_from_response(payload: Mapping[str, Any]) -> Device:
    """Parse a device document returned by the API."""

    core = payload.get("core")
    core_count = core.get("core", 0) if isinstance(core, Mapping) else (core or 0)
    user_key = payload.get("userPublicKey")
    interfaces = [
        DeviceInterface(
            id=int(item.get("id") or 0),
            name=item.get("name") or "",
            status=item.get("status") or "",
            operational_status=item.get("operationalStatus") or "",
            mac_address=item.get("macAddress") or "",
            ip_address=item.get("ipAddress") or "",
            assigned_type=item.get("assignedType") or "",
            type=item.get("type") or "",
        )
        for item in payload.get("interfaces") or []
    ]

    return Device(
        uuid=payload.get("uuid") or "",
        name=payload.get("name") or "",
        type_code=payload.get("deviceTypeCode") or "",
        status=payload.get("status") or "",
        license_status=payload.get("licenseStatus") or "",
        metro_code=payload.get("metroCode") or "",
        ibx=payload.get("ibx") or "",
        region=payload.get("region") or "",
        throughput=int(payload.get("throughput") or 0),
        throughput_unit=payload.get("throughputUnit") or "",
        hostname=payload.get("hostName") or "",
        package_code=payload.get("packageCode") or "",
        version=payload.get("version") or "",
        byol=payload.get("licenseType") == LICENSE_MODE_BYOL,
        license_token=payload.get("licenseToken") or "",
        license_file_id=payload.get("licenseFileId") or "",
        acl_template_id=payload.get("aclTemplateUuid") or "",
        ssh_ip_address=payload.get("sshIpAddress") or "",
        ssh_ip_fqdn=payload.get("sshIpFqdn") or "",
        account_number=payload.get("accountNumber") or "",
        notifications=list(payload.get("notifications") or []),
        purchase_order_number=payload.get("purchaseOrderNumber") or "",
        redundancy_type=payload.get("redundancyType") or "",
        redundant_id=payload.get("redundantUuid") or "",
        term_length=int(payload.get("termLength") or 0),
        additional_bandwidth=int(payload.get("additionalBandwidth") or 0),
        order_reference=payload.get("orderReference") or "",
        interface_count=int(payload.get("interfaceCount") or 0),
        core_count=int(core_count),
        self_managed=payload.get("deviceManagementType") == MANAGEMENT_TYPE_SELF,
        interfaces=interfaces,
        vendor_configuration={str(k): str(v) for k, v in (payload.get("vendorConfig") or {}).items()},
        ssh_key=(
            DeviceUserPublicKey(username=user_key.get("username", ""), key_name=user_key.get("keyName", ""))
            if isinstance(user_key, Mapping)
            else None
        ),
    )


@dataclass(slots=True)
class DeviceUpdateRequest:
    """Chainable update of the mutable attributes of one device.

    Only attributes that were set are sent when ``execute`` is called.
    """

    client: NetworkEdgeClient
    uuid: str
    name: str | None = None
    term_length: int | None = None
    notifications: list[str] | None = None
    additional_bandwidth: int | None = None
    acl_template_id: str | None = None

    def with_device_name(self, name: str) -> DeviceUpdateRequest:
        self.name = name
        return self

    def with_term_length(self, term_length: int) -> DeviceUpdateRequest:
        self.term_length = term_length
        return self

    def with_notifications(self, notifications: list[str]) -> DeviceUpdateRequest:
        self.notifications = list(notifications)
        return self

    def with_additional_bandwidth(self, additional_bandwidth: int) -> DeviceUpdateRequest:
        self.additional_bandwidth = additional_bandwidth
        return self

    def with_acl_template(self, acl_template_id: str) -> DeviceUpdateRequest:
        self.acl_template_id = acl_template_id
        return self

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.name,
                self.term_length,
                self.notifications,
                self.additional_bandwidth,
                self.acl_template_id,
            )
        )

    def execute(self) -> None:
        """Send the collected changes; raises NetworkEdgeClientError on failure."""

        basic: dict[str, Any] = {}
        if self.name is not None:
            basic["deviceName"] = self.name
        if self.term_length is not None:
            basic["termLength"] = self.term_length
        if self.notifications is not None:
            basic["notifications"] = self.notifications
        if basic:
            self.client.request("PATCH", f"{DEVICE_ENDPOINT}/{self.uuid}", json=basic)

        if self.additional_bandwidth is not None:
            self.client.request(
                "PUT",
                f"{DEVICE_ENDPOINT}/additionalbandwidth/{self.uuid}",
                json={"additionalBandwidth": self.additional_bandwidth},
            )

        if self.acl_template_id is not None:
            self.client.request(
                "PUT",
                f"{DEVICE_ENDPOINT}/{self.uuid}/acl",
                json={"aclTemplateUuid": self.acl_template_id},
            )


@dataclass(slots=True)
class NetworkEdgeClient:
    """Client for interacting with the Network Edge provisioning API."""

    base_url: str
    client_id: str
    client_secret: str = field(repr=False)
    timeout: float = 30.0
    session: requests.Session = field(default_factory=requests.Session, repr=False)
    _access_token: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.session.headers.update({"Accept": "application/json"})

    def __enter__(self) -> NetworkEdgeClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _authenticate(self) -> str:
        logger.debug("requesting access token base_url=%s", self.base_url)
        try:
            response = self.session.post(
                f"{self.base_url}{TOKEN_ENDPOINT}",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise NetworkEdgeClientError(f"Unable to reach {self.base_url}: {exc}") from exc

        if not response.ok:
            raise NetworkEdgeAuthError(f"Authentication failed: {response.status_code} {response.reason}")
        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError) as exc:
            raise NetworkEdgeAuthError("Authentication response did not contain an access token") from exc

        self._access_token = token
        return token

    def request(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        """Perform an authenticated API call and return the successful response."""

        token = self._access_token or self._authenticate()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        logger.debug("%s %s", method, endpoint)
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{endpoint}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except RequestException as exc:
            raise NetworkEdgeClientError(f"{method} {endpoint} failed: {exc}") from exc

        if response.status_code == 401:
            self._access_token = None
        if not response.ok:
            try:
                application_errors = _parse_application_errors(response.json())
            except ValueError:
                application_errors = []
            details = "; ".join(f"{error.code}: {error.message}" for error in application_errors)
            raise NetworkEdgeApiError(
                f"{method} {endpoint} returned {response.status_code} {response.reason}"
                + (f" ({details})" if details else ""),
                response.status_code,
                application_errors,
            )
        return response

    def create_device(self, device: Device) -> str:
        response = self.request("POST", DEVICE_ENDPOINT, json=device_to_request(device))
        return _json(response, "uuid")

    def create_redundant_device(self, primary: Device, secondary: Device) -> tuple[str, str]:
        payload = device_to_request(primary)
        payload["secondary"] = _secondary_request(secondary)
        response = self.request("POST", DEVICE_ENDPOINT, json=payload)
        return _json(response, "uuid", "secondaryUuid")

    def get_device(self, uuid: str) -> Device:
        response = self.request("GET", f"{DEVICE_ENDPOINT}/{uuid}")
        return device_from_response(_json(response))

    def delete_device(self, uuid: str) -> None:
        self.request("DELETE", f"{DEVICE_ENDPOINT}/{uuid}")

    def new_device_update_request(self, uuid: str) -> DeviceUpdateRequest:
        return DeviceUpdateRequest(client=self, uuid=uuid)

    def upload_license_file(
        self,
        metro_code: str,
        type_code: str,
        management_type: str,
        license_mode: str,
        filename: str,
        content: BinaryIO,
    ) -> str:
        response = self.request(
            "POST",
            LICENSE_FILE_ENDPOINT,
            data={
                "metroCode": metro_code,
                "deviceTypeCode": type_code,
                "deviceManagementType": management_type,
                "licenseType": license_mode,
            },
            files={"file": (filename, content)},
        )
        return _json(response, "fileId")

    def get_acl_template_status(self, uuid: str) -> str:
        response = self.request("GET", f"{ACL_TEMPLATE_ENDPOINT}/{uuid}")
        return _json(response).get("deviceACLStatus") or ""
