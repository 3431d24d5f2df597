"""License file upload for bring-your-own-license devices."""

from __future__ import annotations

import logging
from pathlib import Path

from edgeprov.core.models import LICENSE_MODE_BYOL, MANAGEMENT_TYPE_SELF, Device
from edgeprov.netedge.client import NetworkEdgeClient, NetworkEdgeClientError


class LicenseUploadError(RuntimeError):
    """Raised when a license file cannot be read or uploaded."""


def upload_license_file(
    client: NetworkEdgeClient,
    file_path: str | Path,
    metro_code: str,
    type_code: str,
    logger: logging.Logger,
    log_extra: dict[str, str],
) -> str:
    """Upload one license file and return the file identifier assigned by the API.

    The file is sent byte-for-byte under its base name. A failure to close
    the file after the upload is only logged.
    """

    path = Path(file_path).expanduser()
    logger.debug("opening license file path=%s", path, extra=log_extra)
    try:
        handle = path.open("rb")
    except OSError as exc:
        raise LicenseUploadError(f"Unable to open license file '{file_path}': {exc}") from exc

    try:
        file_id = client.upload_license_file(
            metro_code, type_code, MANAGEMENT_TYPE_SELF, LICENSE_MODE_BYOL, path.name, handle
        )
    finally:
        try:
            handle.close()
        except OSError as exc:
            logger.warning("could not close license file path=%s reason=\"%s\"", path, exc, extra=log_extra)

    logger.info("license file uploaded filename=%s file_id=%s", path.name, file_id, extra=log_extra)
    return file_id


def upload_licenses(
    client: NetworkEdgeClient,
    primary: Device,
    secondary: Device | None,
    logger: logging.Logger | None = None,
) -> None:
    """Upload BYOL license files and store the resulting ids on the devices.

    Nothing happens unless the primary is BYOL and names a license file.
    The secondary upload reuses the primary's device type code.
    """

    logger = logger or logging.getLogger(__name__)
    if not primary.byol or not primary.license_file:
        return

    targets = [("primary", primary, primary.metro_code)]
    if secondary is not None and secondary.license_file:
        targets.append(("secondary", secondary, secondary.metro_code))

    for role, device, metro_code in targets:
        log_extra = {"device": device.name or "-"}
        try:
            device.license_file_id = upload_license_file(
                client, device.license_file, metro_code, primary.type_code, logger, log_extra
            )
        except NetworkEdgeClientError as exc:
            raise LicenseUploadError(
                f"error uploading {role} device license file '{device.license_file}': {exc}"
            ) from exc
        except LicenseUploadError as exc:
            raise LicenseUploadError(f"error uploading {role} device license file: {exc}") from exc
