"""Rebuild file-based service-discovery groups from live Prometheus state.

Prometheus does not expose the ``file_sd`` documents it was started with, but
every target it discovered from a file carries the origin path in the
``__meta_filepath`` discovered label. Walking ``/api/v1/targets`` therefore
lets us write equivalent target files for a new instance.

Each reconstructed group holds exactly one target. Merging targets that share
a label set would be more compact but could fold distinct discovery sources
into one group.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

FILEPATH_LABEL = "__meta_filepath"
ADDRESS_LABEL = "__address__"

# Internal labels Prometheus adds to discovered targets; never written back.
INTERNAL_LABELS = frozenset(
    {
        ADDRESS_LABEL,
        FILEPATH_LABEL,
        "__metrics_path__",
        "__scheme__",
        "__scrape_interval__",
        "__scrape_timeout__",
    }
)


class TargetGroup(BaseModel):
    """A ``file_sd`` target group: addresses plus shared labels."""

    targets: List[str]
    labels: Dict[str, str] = Field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"targets": list(self.targets)}
        if self.labels:
            doc["labels"] = dict(self.labels)
        return doc


class ActiveTarget(BaseModel):
    """One entry of ``data.activeTargets`` from ``/api/v1/targets``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    discovered_labels: Dict[str, str] = Field(
        default_factory=dict, alias="discoveredLabels"
    )
    labels: Dict[str, str] = Field(default_factory=dict)
    scrape_pool: str = Field("", alias="scrapePool")


def reconstruct_target_groups(
    active_targets: Iterable[ActiveTarget],
) -> Dict[str, List[TargetGroup]]:
    """Group active targets by the file they were discovered from.

    Targets without an origin file come from ``static_configs`` in the main
    config document and are skipped, as are targets with no address.

    Returns
    -------
    Dict[str, List[TargetGroup]]
        Origin file path to one single-target group per discovered target,
        in discovery order.
    """
    file_targets: Dict[str, List[TargetGroup]] = {}
    for target in active_targets:
        discovered = target.discovered_labels
        origin = discovered.get(FILEPATH_LABEL, "")
        if not origin:
            continue
        address = discovered.get(ADDRESS_LABEL, "")
        if not address:
            continue
        labels = {k: v for k, v in discovered.items() if k not in INTERNAL_LABELS}
        file_targets.setdefault(origin, []).append(
            TargetGroup(targets=[address], labels=labels)
        )
    return file_targets


def dump_target_file(groups: Iterable[TargetGroup]) -> str:
    """Render groups as a ``file_sd`` YAML document."""
    return yaml.safe_dump(
        [g.to_document() for g in groups], default_flow_style=False, sort_keys=True
    )


def write_target_files(
    stage_dir: Path, target_groups: Mapping[str, List[TargetGroup]]
) -> Dict[Path, str]:
    """Write reconstructed target files under ``stage_dir/targets``.

    Files that share a discovery directory in the source container are written
    into one local directory so that the whole directory can be bind-mounted
    back at its original path.

    Returns
    -------
    Dict[Path, str]
        Local directory to container directory, one entry per mount.
    """
    by_dir: Dict[str, Dict[str, List[TargetGroup]]] = {}
    for container_path, groups in target_groups.items():
        pure = PurePosixPath(container_path)
        by_dir.setdefault(str(pure.parent), {})[pure.name] = groups

    mounts: Dict[Path, str] = {}
    for container_dir, files in by_dir.items():
        local_dir = stage_dir / "targets" / container_dir.replace("/", "_")
        local_dir.mkdir(parents=True, exist_ok=True)
        for filename, groups in files.items():
            (local_dir / filename).write_text(dump_target_file(groups))
            logger.info(
                "migrate.targets.file_written",
                extra={"file": filename, "targets": len(groups)},
            )
        mounts[local_dir] = container_dir
    return mounts
