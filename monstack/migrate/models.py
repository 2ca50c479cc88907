"""Stack snapshot model and migration outcome reporting.

An export is a single directory (optionally tarred) with this layout, every
subtree optional::

    metadata.yaml
    dashboards/<uid>.json
    datasources/<name>.json
    folders/folders.json
    prometheus/prometheus.yml
    prometheus/prom_rules/*
    alertmanager/config.yml
    loki/config.yaml
    targets/<file>

Restore code must treat a missing subtree as "nothing to restore".
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import httpx
import yaml
from pydantic import BaseModel, Field, ValidationError, field_serializer

from ..errors import MetadataError, MonstackError

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.yaml"
DASHBOARDS_DIR = "dashboards"
DATASOURCES_DIR = "datasources"
FOLDERS_FILE = Path("folders") / "folders.json"
PROMETHEUS_CONFIG = Path("prometheus") / "prometheus.yml"
ALERT_RULES_DIR = Path("prometheus") / "prom_rules"
ALERTMANAGER_CONFIG = Path("alertmanager") / "config.yml"
LOKI_CONFIG = Path("loki") / "config.yaml"
TARGETS_DIR = "targets"

# Failures that skip one item in a bulk loop instead of aborting it.
ITEM_ERRORS = (httpx.HTTPError, MonstackError, ValueError, OSError)

_UNSAFE_CHARS = re.compile(r"[\\/\x00]")


class StackMetadata(BaseModel):
    """Contents of ``metadata.yaml``.

    Attributes
    ----------
    export_timestamp: datetime
        Capture time (UTC).
    grafana_url: str
        Source Grafana, empty when dashboards were not captured.
    prometheus_url: str
        Source Prometheus, empty when not captured.
    includes_data: bool
        A TSDB snapshot of the source Prometheus was requested. The snapshot
        (if created) stays inside the source Prometheus data directory; its
        bytes are not part of the export.
    """

    export_timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc).replace(microsecond=0)
    )
    grafana_url: str = ""
    prometheus_url: str = ""
    includes_data: bool = False
    dashboard_count: int = Field(0, ge=0)
    datasource_count: int = Field(0, ge=0)

    @field_serializer("export_timestamp")
    def _rfc3339(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json")
        for key in ("grafana_url", "prometheus_url"):
            if not data[key]:
                del data[key]
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def write_metadata(export_dir: Path, meta: StackMetadata) -> Path:
    path = export_dir / METADATA_FILE
    path.write_text(meta.to_yaml())
    return path


def read_metadata(export_dir: Path) -> StackMetadata:
    """Load ``metadata.yaml``; raise :class:`MetadataError` if absent or invalid."""
    path = export_dir / METADATA_FILE
    try:
        raw = path.read_text()
    except OSError as exc:
        raise MetadataError(f"reading metadata: {exc}") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise MetadataError(f"parsing metadata: {exc}") from exc
    if not isinstance(data, dict):
        raise MetadataError("parsing metadata: expected a mapping")
    try:
        return StackMetadata.model_validate(data)
    except ValidationError as exc:
        raise MetadataError(f"parsing metadata: {exc}") from exc


def list_json_documents(directory: Path) -> List[Path]:
    """Sorted ``*.json`` files in ``directory``; empty if it is absent."""
    if not directory.is_dir():
        return []
    return [p for p in sorted(directory.glob("*.json")) if p.is_file()]


def safe_filename(name: str) -> str:
    """Make a uid or datasource name usable as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip()
    if cleaned in ("", ".", ".."):
        return "unnamed"
    return cleaned


def strip_dashboard_id(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """Drop the store-assigned numeric ``id`` from a dashboard envelope in place."""
    dash = envelope.get("dashboard")
    if isinstance(dash, dict):
        dash.pop("id", None)
    return envelope


def unwrap_dashboard(data: bytes) -> Dict[str, Any]:
    """Return the bare dashboard object from an envelope or bare document."""
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("dashboard document is not a JSON object")
    inner = parsed.get("dashboard")
    if isinstance(inner, dict):
        return inner
    return parsed


# ---------------------------------------------------------------------------
# Outcome reporting
# ---------------------------------------------------------------------------


def classify_error(exc: BaseException) -> str:
    """Classify an exception into a coarse error type."""
    if isinstance(exc, httpx.HTTPStatusError):
        return "server_error" if exc.response.status_code >= 500 else "client_error"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.TransportError):
        return "connection_error"
    if isinstance(exc, (ValueError, ValidationError)):
        return "parse_error"
    if isinstance(exc, OSError):
        return "io_error"
    return "unknown_error"


@dataclass
class ItemWarning:
    """A per-item failure that did not stop the surrounding operation.

    Attributes
    ----------
    identifier : str
        Item the failure relates to (dashboard uid, datasource name, ...).
    kind : str
        What was being attempted (e.g. "dashboard.download").
    error : str
        Error message.
    error_type : str
        Coarse classification (see :func:`classify_error`).
    """

    identifier: str
    kind: str
    error: str
    error_type: str = "unknown_error"

    def __str__(self) -> str:
        return f"{self.kind} {self.identifier}: {self.error}"


@dataclass
class MigrationReport:
    """Result of an export, import, clone or copy.

    ``dashboards`` and ``datasources`` count items successfully written,
    uploaded or upserted. ``warnings`` holds every skipped item in the order
    the failures happened.
    """

    operation: str
    dashboards: int = 0
    datasources: int = 0
    warnings: List[ItemWarning] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def warn(self, identifier: str, kind: str, exc: BaseException) -> ItemWarning:
        """Record and log a per-item failure."""
        item = ItemWarning(
            identifier=identifier,
            kind=kind,
            error=str(exc),
            error_type=classify_error(exc),
        )
        self.warnings.append(item)
        logger.warning(
            f"migrate.{self.operation}.{kind}.failed",
            extra={
                "identifier": identifier,
                "error_type": item.error_type,
                "error": item.error,
            },
        )
        return item

    def summary(self) -> str:
        text = (
            f"{self.operation}: {self.dashboards} dashboards, "
            f"{self.datasources} datasources"
        )
        if self.warnings:
            text += f", {len(self.warnings)} warnings"
        return text
