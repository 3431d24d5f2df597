"""API credential helpers.

Credentials are loaded from ``config/secrets.yml`` when present and can be
overridden via environment variables. Environment variables take priority,
and missing credentials trigger a fail-fast error before any API call.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "EDGEPROV_SECRET_"
DEFAULT_SECRETS_PATH = Path("config/secrets.yml")
DEFAULT_SECRET_REF = "network_edge"


class SecretsConfigError(ValueError):
    """Raised when the secrets file is missing required structure."""


class SecretNotFoundError(KeyError):
    """Raised when API credentials cannot be resolved for ``secret_ref``."""


@dataclass(slots=True)
class ApiCredentials:
    """OAuth client credentials for the provisioning API."""

    client_id: str
    client_secret: str = field(repr=False)


@dataclass(slots=True)
class Secrets:
    """Container for API credentials."""

    entries: Mapping[str, ApiCredentials]
    source_path: Path
    missing_source: bool = False

    def get(self, secret_ref: str) -> ApiCredentials | None:
        return self.entries.get(secret_ref)


def _normalize_secret_ref(secret_ref: str) -> str:
    """Convert secret references to ``UPPER_SNAKE_CASE`` for env lookup."""

    normalized = re.sub(r"[^A-Z0-9]+", "_", secret_ref.upper())
    return normalized.strip("_")


def _require_string(entry: Mapping[str, object], ref: str, key: str) -> str:
    value = entry.get(key)
    if value is None:
        raise SecretsConfigError(f"Secret '{ref}' is missing required field '{key}'.")
    if not isinstance(value, str):
        raise SecretsConfigError(f"Secret '{ref}' field '{key}' must be a string.")
    return value


def _load_file_secrets(path: Path) -> Secrets:
    """Load credentials from a YAML file.

    Expected structure::

        secrets:
          network_edge:
            client_id: ...
            client_secret: ...
    """

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SecretsConfigError(f"Unable to read secrets file: {path}") from exc

    if not isinstance(raw_data, Mapping):
        raise SecretsConfigError("Top-level secrets.yml structure must be a mapping.")

    raw_secrets = raw_data.get("secrets")
    if raw_secrets is None:
        raise SecretsConfigError("Field 'secrets' is required in secrets.yml.")
    if not isinstance(raw_secrets, Mapping):
        raise SecretsConfigError("Field 'secrets' must be a mapping of secret refs.")

    entries: dict[str, ApiCredentials] = {}
    for ref, entry in raw_secrets.items():
        if not isinstance(entry, Mapping):
            raise SecretsConfigError(f"Secret '{ref}' must be a mapping.")
        entries[str(ref)] = ApiCredentials(
            client_id=_require_string(entry, str(ref), "client_id"),
            client_secret=_require_string(entry, str(ref), "client_secret"),
        )

    return Secrets(entries=entries, source_path=path)


def load_secrets(path: Path = DEFAULT_SECRETS_PATH, logger: logging.Logger | None = None) -> Secrets:
    """Load secrets from the provided path."""

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        logger.warning("Secrets file not found at %s", path, extra={"device": "-"})
        return Secrets(entries={}, source_path=path, missing_source=True)

    secrets = _load_file_secrets(path)
    logger.debug("Secrets file loaded path=%s entries=%d", path, len(secrets.entries))
    return secrets


def resolve_api_credentials(
    secret_ref: str = DEFAULT_SECRET_REF, secrets: Secrets | None = None
) -> ApiCredentials:
    """Resolve API credentials.

    Resolution order per value:
    1. ``EDGEPROV_SECRET_<SECRET_REF>_CLIENT_ID`` / ``..._CLIENT_SECRET``
    2. ``config/secrets.yml`` (if present)
    """

    secrets = secrets or load_secrets()
    prefix = f"{ENV_PREFIX}{_normalize_secret_ref(secret_ref)}"
    entry = secrets.get(secret_ref)

    client_id = os.getenv(f"{prefix}_CLIENT_ID") or (entry.client_id if entry else None)
    client_secret = os.getenv(f"{prefix}_CLIENT_SECRET") or (entry.client_secret if entry else None)
    if not client_id or not client_secret:
        raise SecretNotFoundError(f"API credentials '{secret_ref}' not found.")

    return ApiCredentials(client_id=client_id, client_secret=client_secret)
