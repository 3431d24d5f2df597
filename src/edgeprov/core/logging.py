"""Logging setup for EdgeProvision runs.

Every record carries the resource label and, once the API has assigned one,
the device uuid. Both come from ``extra=device_context(...)`` at the call
site and default to ``-``. OAuth credentials are masked before a record
reaches any handler.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Any, Mapping

DEFAULT_DIRECTORY = Path("/var/log/edgeprov")
DEFAULT_FILENAME = "edgeprov.log"
DEFAULT_LEVEL = logging.INFO

LOG_FORMAT = "%(asctime)s | %(levelname)s | device=%(device)s uuid=%(uuid)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def device_context(label: str, uuid: str | None = None) -> dict[str, str]:
    """Return the ``extra`` mapping that tags a record with its resource."""

    return {"device": label, "uuid": uuid or "-"}


class DeviceContextFilter(logging.Filter):
    """Fill in the resource label and device uuid when a record has none."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "device", None):
            record.device = "-"
        if not getattr(record, "uuid", None):
            record.uuid = "-"
        return True


class SecretScrubberFilter(logging.Filter):
    """Mask OAuth credentials in log messages."""

    SECRET_PATTERN = re.compile(
        r"(client_secret|access_token|password|secret|token)=([^\s&]+)", re.IGNORECASE
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = self.SECRET_PATTERN.sub(r"\1=***", message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def _level_from_value(raw_level: Any) -> int:
    if isinstance(raw_level, int):
        return raw_level
    if isinstance(raw_level, str):
        level = logging.getLevelName(raw_level.upper())
        if isinstance(level, int):
            return level
    return DEFAULT_LEVEL


def _logging_section(local_config: Mapping[str, Any] | None) -> Mapping[str, Any]:
    section = (local_config or {}).get("logging")
    return section if isinstance(section, Mapping) else {}


def _file_handler(directory: Path, filename: str) -> tuple[logging.Handler | None, str | None]:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(directory / filename, encoding="utf-8"), None
    except OSError as exc:
        return None, str(exc)


def setup_logging(
    local_config: Mapping[str, Any] | None = None, cli_level: int | None = None
) -> logging.Logger:
    """Configure the stdout handler and, when its directory is usable, the log file.

    ``local_config`` is the parsed ``local.yml``; its ``logging`` section may
    set ``directory``, ``filename`` and ``level``. ``cli_level`` wins over
    the configured level.
    """

    section = _logging_section(local_config)
    directory = Path(section["directory"]).expanduser() if section.get("directory") else DEFAULT_DIRECTORY
    filename = str(section.get("filename") or DEFAULT_FILENAME)
    level = cli_level if cli_level is not None else _level_from_value(section.get("level"))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_handler, file_error = _file_handler(directory, filename)
    if file_handler is not None:
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(DeviceContextFilter())
        handler.addFilter(SecretScrubberFilter())
        root_logger.addHandler(handler)

    # urllib3 logs full request lines at debug level.
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    logger = logging.getLogger("edgeprov")
    logger.setLevel(level)
    if file_handler is None:
        logger.warning("Log directory '%s' is not usable (%s); logging to stdout only.", directory, file_error)
    else:
        logger.debug("Logging to %s", directory / filename)
    return logger
