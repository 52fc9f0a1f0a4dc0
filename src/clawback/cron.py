"""
Schedule entries — carry an agent's cron jobs across machines.

Jobs come from the agent runtime (clawback never talks to it) and
are stored as ``config/cron-jobs.json``. Paths inside job payloads
are turned into placeholders on export and expanded on import.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .manifest import utc_timestamp
from .pathmap import EnvMap, apply_remap, unapply_remap

logger = logging.getLogger("clawback.cron")

CRON_EXPORT_VERSION = 1

# Payload fields that may embed absolute paths
PAYLOAD_TEXT_FIELDS = ("text", "message")


class CronJob(BaseModel):
    """One scheduled job. Unknown runtime fields are kept as-is."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: Optional[str] = None
    schedule: dict[str, Any]
    payload: dict[str, Any]
    session_target: Optional[str] = Field(default=None, alias="sessionTarget")
    enabled: Optional[bool] = None
    delivery: Optional[dict[str, Any]] = None


class CronExport(BaseModel):
    """The config/cron-jobs.json document."""

    version: int = CRON_EXPORT_VERSION
    exported: str = Field(default_factory=utc_timestamp)
    jobs: list[CronJob] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True, exclude_none=True)


def _remap_payload(payload: dict[str, Any], convert) -> dict[str, Any]:
    result = dict(payload)
    for key in PAYLOAD_TEXT_FIELDS:
        if isinstance(result.get(key), str):
            result[key] = convert(result[key])
    return result


def export_cron_jobs(jobs: list[CronJob], env_map: EnvMap) -> CronExport:
    """Make jobs portable by replacing environment paths with placeholders."""
    exported = [
        job.model_copy(update={"payload": _remap_payload(job.payload, lambda t: apply_remap(t, env_map))})
        for job in jobs
    ]
    return CronExport(jobs=exported)


def import_cron_jobs(export: CronExport, env_map: EnvMap) -> list[CronJob]:
    """Expand placeholders in exported jobs for the target environment."""
    return [
        job.model_copy(update={"payload": _remap_payload(job.payload, lambda t: unapply_remap(t, env_map))})
        for job in export.jobs
    ]


def validate_cron_export(data: Any) -> Optional[CronExport]:
    """Check a decoded cron-jobs.json document.

    Returns:
        Optional[CronExport]: The parsed export, or None if the document
        does not have the expected shape.
    """
    if not isinstance(data, dict) or data.get("version") != CRON_EXPORT_VERSION:
        return None
    if not isinstance(data.get("exported"), str):
        return None
    try:
        return CronExport.model_validate(data)
    except ValidationError as exc:
        logger.debug("Invalid cron export: %s", exc)
        return None
