import logging
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from edgeprov.core.models import Device
from edgeprov.netedge.client import NetworkEdgeApiError
from edgeprov.netedge.license import LicenseUploadError, upload_licenses


class RecordingClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.uploads: list[dict] = []
        self.error = error

    def upload_license_file(self, metro_code, type_code, management_type, license_mode, filename, content):
        if self.error is not None:
            raise self.error
        self.uploads.append(
            {
                "metro_code": metro_code,
                "type_code": type_code,
                "management_type": management_type,
                "license_mode": license_mode,
                "filename": filename,
                "content": content.read(),
            }
        )
        return f"file-{len(self.uploads)}"


class UploadLicensesTests(unittest.TestCase):
    logger = logging.getLogger("edgeprov.test.license")

    def test_nothing_happens_without_byol(self) -> None:
        client = RecordingClient()
        primary = Device(name="edge-01", type_code="CSR1000V", metro_code="SV", license_file="/tmp/missing.lic")

        upload_licenses(client, primary, None, self.logger)

        self.assertEqual([], client.uploads)
        self.assertEqual("", primary.license_file_id)

    def test_nothing_happens_without_license_file(self) -> None:
        client = RecordingClient()
        primary = Device(name="edge-01", type_code="CSR1000V", metro_code="SV", byol=True)

        upload_licenses(client, primary, None, self.logger)

        self.assertEqual([], client.uploads)

    def test_uploads_exact_bytes_under_base_name(self) -> None:
        payload = b"\x00\x01LICENSE-DATA\r\n\xff\xfe"
        with TemporaryDirectory() as tmpdir:
            license_path = Path(tmpdir) / "nested" / "device.lic"
            license_path.parent.mkdir()
            license_path.write_bytes(payload)

            client = RecordingClient()
            primary = Device(
                name="edge-01", type_code="CSR1000V", metro_code="SV", byol=True, license_file=str(license_path)
            )
            upload_licenses(client, primary, None, self.logger)

        self.assertEqual(1, len(client.uploads))
        upload = client.uploads[0]
        self.assertEqual(payload, upload["content"])
        self.assertEqual("device.lic", upload["filename"])
        self.assertEqual("SV", upload["metro_code"])
        self.assertEqual("CSR1000V", upload["type_code"])
        self.assertEqual("SELF-CONFIGURED", upload["management_type"])
        self.assertEqual("BYOL", upload["license_mode"])
        self.assertEqual("file-1", primary.license_file_id)

    def test_secondary_uses_its_metro_and_primary_type(self) -> None:
        with TemporaryDirectory() as tmpdir:
            primary_path = Path(tmpdir) / "primary.lic"
            secondary_path = Path(tmpdir) / "secondary.lic"
            primary_path.write_bytes(b"primary")
            secondary_path.write_bytes(b"secondary")

            client = RecordingClient()
            primary = Device(
                name="edge-01", type_code="PA-VM", metro_code="SV", byol=True, license_file=str(primary_path)
            )
            secondary = Device(name="edge-02", metro_code="DC", license_file=str(secondary_path))
            upload_licenses(client, primary, secondary, self.logger)

        self.assertEqual(["SV", "DC"], [upload["metro_code"] for upload in client.uploads])
        self.assertEqual(["PA-VM", "PA-VM"], [upload["type_code"] for upload in client.uploads])
        self.assertEqual([b"primary", b"secondary"], [upload["content"] for upload in client.uploads])
        self.assertEqual("file-1", primary.license_file_id)
        self.assertEqual("file-2", secondary.license_file_id)

    def test_unreadable_file_fails_before_upload(self) -> None:
        client = RecordingClient()
        primary = Device(
            name="edge-01", type_code="CSR1000V", metro_code="SV", byol=True, license_file="/nonexistent/device.lic"
        )

        with self.assertRaises(LicenseUploadError) as ctx:
            upload_licenses(client, primary, None, self.logger)

        self.assertIn("/nonexistent/device.lic", str(ctx.exception))
        self.assertEqual([], client.uploads)

    def test_api_failure_is_reported(self) -> None:
        with TemporaryDirectory() as tmpdir:
            license_path = Path(tmpdir) / "device.lic"
            license_path.write_bytes(b"data")
            client = RecordingClient(error=NetworkEdgeApiError("upload rejected", 400))
            primary = Device(
                name="edge-01", type_code="CSR1000V", metro_code="SV", byol=True, license_file=str(license_path)
            )

            with self.assertRaisesRegex(LicenseUploadError, "primary device license file"):
                upload_licenses(client, primary, None, self.logger)


if __name__ == "__main__":
    unittest.main()
