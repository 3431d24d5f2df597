"""Helpers for building and persisting machine-readable run summaries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class ResourceResultData:
    """Summary of one resource handled during a run."""

    label: str
    action: str
    status: str
    uuid: str | None = None
    secondary_uuid: str | None = None
    changed_fields: list[str] = field(default_factory=list)
    drift: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "action": self.action,
            "status": self.status,
            "uuid": self.uuid,
            "secondary_uuid": self.secondary_uuid,
            "changed_fields": list(self.changed_fields),
            "drift": list(self.drift),
            "error": self.error,
        }


class RunSummaryBuilder:
    """Accumulate per-run data and store it as JSON."""

    def __init__(self, *, run_id: str, timestamp: str, command: str) -> None:
        self.run_id = run_id
        self.timestamp = timestamp
        self.command = command
        self.resources_total = 0
        self.created = 0
        self.updated = 0
        self.deleted = 0
        self.unchanged = 0
        self.failed = 0
        self._resources: list[ResourceResultData] = []

    def set_resources_total(self, total: int) -> None:
        self.resources_total = max(0, total)

    def add_resource(self, result: ResourceResultData) -> None:
        self._resources.append(result)

        if result.status == "failed":
            self.failed += 1
        elif result.action == "create":
            self.created += 1
        elif result.action == "update" and result.changed_fields:
            self.updated += 1
        elif result.action == "delete":
            self.deleted += 1
        else:
            self.unchanged += 1

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def build(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "command": self.command,
            "totals": {
                "resources_total": self.resources_total,
                "created": self.created,
                "updated": self.updated,
                "deleted": self.deleted,
                "unchanged": self.unchanged,
                "failed": self.failed,
            },
            "resources": [resource.to_dict() for resource in self._resources],
        }

    def save(self, state_dir: Path, logger: logging.Logger) -> Path:
        summary_dir = state_dir / "summary"
        summary_dir.mkdir(parents=True, exist_ok=True)

        target = summary_dir / f"run_{self.run_id}.json"
        target.write_text(json.dumps(self.build(), indent=2, ensure_ascii=False), encoding="utf-8")

        logger.info("run_summary_json_saved path=%s", target)
        return target
