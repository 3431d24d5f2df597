"""Storage helpers for last-applied device state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from edgeprov.core.config import DEFAULT_CONFIG

PROJECT_ROOT = Path(__file__).resolve().parents[3]
FALLBACK_STATE_DIR = PROJECT_ROOT / DEFAULT_CONFIG.state
DEFAULT_LOCAL_CONFIG = PROJECT_ROOT / "config" / "local.yml"
STATE_SUFFIX = ".json"


class StateFileError(ValueError):
    """Raised when a state file exists but cannot be parsed."""


def ensure_directory(path: Path) -> Path:
    """Ensure the target directory exists and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def state_path(state_dir: Path, label: str) -> Path:
    return state_dir / f"{label}{STATE_SUFFIX}"


def save_state(
    state_dir: Path, label: str, snapshot: Mapping[str, Any], logger: logging.Logger | None = None
) -> Path:
    """Persist the last-applied snapshot of a resource and return the file path.

    The file is written next to its final location first and then renamed so a
    crash never leaves a truncated state behind.
    """

    ensure_directory(state_dir)
    target = state_path(state_dir, label)
    temp_file = target.with_suffix(".tmp")
    temp_file.write_text(json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
    temp_file.replace(target)
    if logger:
        logger.info("state saved path=%s", target, extra={"device": label})
    return target


def load_state(state_dir: Path, label: str) -> dict[str, Any] | None:
    """Return the last-applied snapshot for ``label`` or None when unknown."""

    target = state_path(state_dir, label)
    if not target.exists():
        return None

    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise StateFileError(f"Corrupted state file: {target}") from exc

    if not isinstance(data, dict):
        raise StateFileError(f"State file must hold a mapping: {target}")
    return data


def remove_state(state_dir: Path, label: str, logger: logging.Logger | None = None) -> bool:
    """Delete the state file for ``label``; return whether one existed."""

    target = state_path(state_dir, label)
    if not target.exists():
        return False
    target.unlink()
    if logger:
        logger.info("state removed path=%s", target, extra={"device": label})
    return True


def list_states(state_dir: Path) -> list[str]:
    """Return the labels of every resource with a stored state."""

    if not state_dir.is_dir():
        return []
    return sorted(path.stem for path in state_dir.glob(f"*{STATE_SUFFIX}") if path.is_file())


def load_local_config(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> Mapping[str, Any] | None:
    """Load local.yml if it exists and return the mapping."""

    config_file = Path(config_path) if config_path else DEFAULT_LOCAL_CONFIG
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_file

    if logger:
        logger.debug("loading local config from %s", config_file)

    if not config_file.exists():
        if logger:
            logger.debug("local config not found at %s", config_file)
        return None

    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        if logger:
            logger.warning("unable to read local config file=%s reason=\"%s\"", config_file, exc)
        return None

    return data if isinstance(data, Mapping) else None


def _probe_directory(path: Path) -> tuple[bool, str | None]:
    """Try to create and write to the directory, returning success and reason."""

    try:
        path.mkdir(parents=True, exist_ok=True)
        test_file = path / ".write-test"
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("probe")
        test_file.unlink(missing_ok=True)
        return True, None
    except OSError as exc:
        return False, str(exc)


def _extract_local_state_dir(local_cfg: Mapping[str, Any] | None) -> Path | None:
    """Return state.directory from local.yml mapping when present."""

    if not isinstance(local_cfg, Mapping):
        return None

    state_section = local_cfg.get("state")
    if not isinstance(state_section, Mapping):
        return None

    directory_value = state_section.get("directory")
    if not directory_value:
        return None

    candidate = Path(directory_value).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def resolve_state_dir(
    cli_state_dir: str | Path | None, local_cfg: Mapping[str, Any] | None, logger: logging.Logger
) -> Path:
    """Determine the state directory with priority: CLI > local.yml > fallback."""

    candidates: list[tuple[str, Path]] = []

    if cli_state_dir:
        candidates.append(("cli", Path(cli_state_dir).expanduser()))

    local_candidate = _extract_local_state_dir(local_cfg)
    if local_candidate:
        candidates.append(("local_yml", local_candidate))

    for source, candidate in candidates:
        ok, reason = _probe_directory(candidate)
        if ok:
            logger.info("state_dir source=%s path=%s", source, candidate)
            return candidate

        logger.warning(
            'state_dir source=%s path=%s fallback=%s reason="%s"',
            source,
            candidate,
            FALLBACK_STATE_DIR,
            reason or "unavailable",
        )

    ok, fallback_reason = _probe_directory(FALLBACK_STATE_DIR)
    if not ok:
        logger.error(
            'state_dir fallback=%s reason="%s"', FALLBACK_STATE_DIR, fallback_reason or "unavailable"
        )
        raise OSError(f"Unable to use fallback state directory: {FALLBACK_STATE_DIR}")

    logger.info("state_dir source=fallback path=%s", FALLBACK_STATE_DIR)
    return FALLBACK_STATE_DIR
