"""Export a running stack to a portable tar.gz archive."""

from __future__ import annotations

import json
import logging
import shutil
import tarfile
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..adapters import DashboardServer, MetricsStore
from ..adapters.grafana import APIDatasource, GrafanaClient
from ..adapters.prometheus import PrometheusClient
from ..config.models import ExportOptions
from ..errors import MigrationError
from .archive import pack_archive
from .models import (
    ALERT_RULES_DIR,
    ALERTMANAGER_CONFIG,
    DASHBOARDS_DIR,
    DATASOURCES_DIR,
    FOLDERS_FILE,
    ITEM_ERRORS,
    LOKI_CONFIG,
    PROMETHEUS_CONFIG,
    TARGETS_DIR,
    MigrationReport,
    StackMetadata,
    safe_filename,
    strip_dashboard_id,
    write_metadata,
)

logger = logging.getLogger(__name__)


def copy_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)


def copy_tree(src: Path, dst: Path) -> None:
    shutil.copytree(src, dst, dirs_exist_ok=True)


def collect_dashboards(
    grafana: DashboardServer, report: MigrationReport
) -> Dict[str, Dict[str, Any]]:
    """Download every dashboard envelope with its numeric ``id`` removed.

    Listing failures propagate. A dashboard that cannot be downloaded or
    parsed is recorded on ``report`` and skipped.

    Returns
    -------
    Dict[str, Dict[str, Any]]
        Dashboard uid to ``{"dashboard": ..., "meta": ...}`` envelope.
    """
    dashboards: Dict[str, Dict[str, Any]] = {}
    for hit in grafana.search_dashboards():
        try:
            envelope = json.loads(grafana.download_dashboard(hit.uid))
            if not isinstance(envelope, dict):
                raise ValueError("dashboard envelope is not a JSON object")
        except ITEM_ERRORS as exc:
            report.warn(hit.uid, "dashboard.download", exc)
            continue
        dashboards[hit.uid] = strip_dashboard_id(envelope)
    return dashboards


def _export_grafana(
    grafana: DashboardServer,
    stage_dir: Path,
    meta: StackMetadata,
    report: MigrationReport,
) -> None:
    dash_dir = stage_dir / DASHBOARDS_DIR
    dash_dir.mkdir(parents=True, exist_ok=True)
    try:
        dashboards = collect_dashboards(grafana, report)
    except ITEM_ERRORS as exc:
        report.warn(grafana.base_url, "dashboards.list", exc)
        dashboards = {}
    for uid, envelope in dashboards.items():
        try:
            path = dash_dir / f"{safe_filename(uid)}.json"
            path.write_text(json.dumps(envelope, indent=2))
        except OSError as exc:
            report.warn(uid, "dashboard.write", exc)
            continue
        meta.dashboard_count += 1

    ds_dir = stage_dir / DATASOURCES_DIR
    ds_dir.mkdir(parents=True, exist_ok=True)
    datasources: List[APIDatasource]
    try:
        datasources = grafana.list_datasources()
    except ITEM_ERRORS as exc:
        report.warn(grafana.base_url, "datasources.list", exc)
        datasources = []
    for ds in datasources:
        try:
            path = ds_dir / f"{safe_filename(ds.name)}.json"
            path.write_text(json.dumps(ds.model_dump(mode="json", exclude_none=True), indent=2))
        except (OSError, ValueError) as exc:
            report.warn(ds.name, "datasource.write", exc)
            continue
        meta.datasource_count += 1

    try:
        folders = grafana.list_folders()
    except ITEM_ERRORS as exc:
        report.warn(grafana.base_url, "folders.list", exc)
    else:
        folder_path = stage_dir / FOLDERS_FILE
        try:
            folder_path.parent.mkdir(parents=True, exist_ok=True)
            folder_path.write_text(json.dumps(folders, indent=2))
        except (OSError, TypeError, ValueError) as exc:
            report.warn(FOLDERS_FILE.as_posix(), "folders.write", exc)

    report.dashboards = meta.dashboard_count
    report.datasources = meta.datasource_count


def _collect_configs(opts: ExportOptions, stage_dir: Path, report: MigrationReport) -> List[str]:
    """Copy local config files into the staging tree.

    Missing sources are skipped. A copy that fails is recorded on ``report``
    and the remaining files are still copied.
    """
    copies: List[Tuple[Path, Path, Callable[[Path, Path], None]]] = []
    for src, rel in (
        (opts.prometheus_config, PROMETHEUS_CONFIG),
        (opts.alertmanager_config, ALERTMANAGER_CONFIG),
        (opts.loki_config, LOKI_CONFIG),
    ):
        if src and Path(src).is_file():
            copies.append((Path(src), rel, copy_file))
    if opts.alert_rules_dir and Path(opts.alert_rules_dir).is_dir():
        copies.append((Path(opts.alert_rules_dir), ALERT_RULES_DIR, copy_tree))
    for target_file in opts.target_files:
        src = Path(target_file)
        if target_file and src.is_file():
            copies.append((src, Path(TARGETS_DIR) / src.name, copy_file))

    copied: List[str] = []
    for src, rel, copy in copies:
        try:
            copy(src, stage_dir / rel)
        except OSError as exc:
            report.warn(rel.as_posix(), "config.copy", exc)
            continue
        copied.append(rel.as_posix())
    return copied


def export_stack(
    opts: ExportOptions,
    *,
    grafana: Optional[DashboardServer] = None,
    prometheus: Optional[MetricsStore] = None,
) -> MigrationReport:
    """Export dashboards, datasources, configs and target files to an archive.

    Parameters
    ----------
    opts: ExportOptions
        Source endpoints, local config paths and the output archive path.
    grafana, prometheus:
        Pre-built clients; when omitted they are created from ``opts`` (and
        only if the corresponding URL is set).

    Raises
    ------
    MigrationError
        If the staging directory, the metadata document or the archive
        cannot be written. Everything else is recorded as a warning.
    """
    report = MigrationReport(operation="export")
    try:
        stage_dir = Path(tempfile.mkdtemp(prefix="monstack-export-"))
    except OSError as exc:
        raise MigrationError(f"creating staging directory: {exc}") from exc

    with ExitStack() as stack:
        stack.callback(shutil.rmtree, stage_dir, ignore_errors=True)

        if grafana is None and opts.grafana.url:
            grafana = stack.enter_context(
                GrafanaClient(
                    opts.grafana.url,
                    opts.grafana.user,
                    opts.grafana.password,
                    opts.grafana.timeout_seconds,
                )
            )
        if prometheus is None and opts.prometheus_url:
            prometheus = stack.enter_context(PrometheusClient(opts.prometheus_url))

        meta = StackMetadata(
            grafana_url=grafana.base_url if grafana is not None else "",
            prometheus_url=prometheus.base_url if prometheus is not None else "",
            includes_data=prometheus is not None,
        )

        if grafana is not None:
            logger.info("migrate.export.grafana", extra={"url": grafana.base_url})
            _export_grafana(grafana, stage_dir, meta, report)

        report.details["config_files"] = _collect_configs(opts, stage_dir, report)

        report.details["data_transferred"] = False
        if prometheus is not None:
            try:
                snapshot_name = prometheus.create_snapshot()
            except ITEM_ERRORS as exc:
                report.warn(prometheus.base_url, "snapshot", exc)
            else:
                report.details["snapshot_name"] = snapshot_name
                logger.info(
                    "migrate.export.snapshot_created",
                    extra={
                        "snapshot": snapshot_name,
                        "hint": "snapshot stays in the source data directory; copy it out of band",
                    },
                )

        try:
            write_metadata(stage_dir, meta)
        except OSError as exc:
            raise MigrationError(f"writing metadata: {exc}") from exc

        try:
            size = pack_archive(stage_dir, opts.output_path)
        except (OSError, tarfile.TarError) as exc:
            raise MigrationError(f"packing archive: {exc}") from exc

    report.details["output_path"] = str(opts.output_path)
    report.details["archive_bytes"] = size
    report.details["metadata"] = meta
    logger.info(
        "migrate.export.complete",
        extra={
            "output": str(opts.output_path),
            "dashboards": meta.dashboard_count,
            "datasources": meta.datasource_count,
            "warnings": len(report.warnings),
        },
    )
    return report
