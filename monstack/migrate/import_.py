"""Restore a stack from an export archive or an unpacked export directory."""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..adapters import DashboardServer
from ..adapters.grafana import APIDatasource, GrafanaClient
from ..config.models import ImportOptions
from ..errors import ConnectivityError, MigrationError
from .archive import unpack_archive
from .export import copy_file, copy_tree
from .models import (
    ALERT_RULES_DIR,
    ALERTMANAGER_CONFIG,
    DASHBOARDS_DIR,
    DATASOURCES_DIR,
    ITEM_ERRORS,
    LOKI_CONFIG,
    PROMETHEUS_CONFIG,
    TARGETS_DIR,
    MigrationReport,
    list_json_documents,
    read_metadata,
    unwrap_dashboard,
)

logger = logging.getLogger(__name__)

PROMETHEUS_TYPE = "prometheus"
ALERTMANAGER_TYPE = "alertmanager"

# Export subtree to restore destination, relative to the base directory.
RESTORE_PATHS: List[Tuple[Path, Path]] = [
    (PROMETHEUS_CONFIG, Path("prometheus") / "build" / "prometheus.yml"),
    (ALERT_RULES_DIR, Path("prometheus") / "prom_rules"),
    (ALERTMANAGER_CONFIG, Path("prometheus") / "rule_config.yml"),
    (LOKI_CONFIG, Path("loki") / "conf" / "loki-config.yaml"),
]
TARGETS_RESTORE_DIR = Path("prometheus")

UrlRewrite = Callable[[APIDatasource], Optional[str]]


def upload_datasources(
    grafana: DashboardServer,
    datasources: Iterable[APIDatasource],
    report: MigrationReport,
    rewrite_url: Optional[UrlRewrite] = None,
) -> None:
    """Upsert datasources as new objects, optionally pointing them elsewhere.

    Each datasource has its ``id`` cleared so Grafana creates rather than
    updates by id. ``rewrite_url`` returns a replacement URL or ``None`` to
    keep the original. Failures are recorded per datasource.
    """
    for ds in datasources:
        ds = ds.model_copy(update={"id": 0})
        new_url = rewrite_url(ds) if rewrite_url is not None else None
        if new_url:
            logger.info(
                "migrate.datasource.rewrite_url",
                extra={"datasource": ds.name, "old": ds.url, "new": new_url},
            )
            ds = ds.model_copy(update={"url": new_url})
        try:
            grafana.upsert_datasource(ds)
        except ITEM_ERRORS as exc:
            report.warn(ds.name, "datasource.upsert", exc)
            continue
        report.datasources += 1


def upload_dashboards(
    grafana: DashboardServer,
    dashboards: Iterable[Tuple[str, Dict[str, Any]]],
    report: MigrationReport,
) -> None:
    """Upload bare dashboard objects with overwrite enabled."""
    for identifier, dashboard in dashboards:
        try:
            grafana.upload_dashboard(dashboard, 0, True)
        except ITEM_ERRORS as exc:
            report.warn(identifier, "dashboard.upload", exc)
            continue
        report.dashboards += 1


def _load_datasources(
    extract_dir: Path, report: MigrationReport
) -> List[APIDatasource]:
    datasources: List[APIDatasource] = []
    for path in list_json_documents(extract_dir / DATASOURCES_DIR):
        try:
            data = path.read_bytes()
        except OSError as exc:
            report.warn(path.name, "datasource.read", exc)
            continue
        try:
            datasources.append(APIDatasource.model_validate_json(data))
        except ValueError as exc:
            report.warn(path.name, "datasource.parse", exc)
    return datasources


def _load_dashboards(
    extract_dir: Path, report: MigrationReport
) -> List[Tuple[str, Dict[str, Any]]]:
    dashboards: List[Tuple[str, Dict[str, Any]]] = []
    for path in list_json_documents(extract_dir / DASHBOARDS_DIR):
        try:
            data = path.read_bytes()
        except OSError as exc:
            report.warn(path.name, "dashboard.read", exc)
            continue
        try:
            dashboards.append((path.name, unwrap_dashboard(data)))
        except ValueError as exc:
            report.warn(path.name, "dashboard.parse", exc)
    return dashboards


def restore_files(extract_dir: Path, base_dir: Path, report: MigrationReport) -> List[str]:
    """Copy config and target files present in the export under ``base_dir``."""
    restored: List[str] = []
    for rel_src, rel_dst in RESTORE_PATHS:
        src = extract_dir / rel_src
        dst = base_dir / rel_dst
        try:
            if src.is_file():
                copy_file(src, dst)
            elif src.is_dir():
                copy_tree(src, dst)
            else:
                continue
        except OSError as exc:
            report.warn(rel_src.as_posix(), "config.restore", exc)
            continue
        restored.append(rel_dst.as_posix())

    targets_dir = extract_dir / TARGETS_DIR
    if targets_dir.is_dir():
        for src in sorted(targets_dir.iterdir()):
            if not src.is_file():
                continue
            rel_dst = TARGETS_RESTORE_DIR / src.name
            try:
                copy_file(src, base_dir / rel_dst)
            except OSError as exc:
                report.warn(src.name, "targets.restore", exc)
                continue
            restored.append(rel_dst.as_posix())
    return restored


def _prepare_source(path: Path, stack: ExitStack) -> Path:
    """Return a directory holding the export, unpacking archives to a temp dir."""
    if not path.exists():
        raise MigrationError(f"accessing {path}: no such file or directory")
    if path.is_dir():
        logger.info("migrate.import.using_directory", extra={"path": str(path)})
        return path
    try:
        tmp_dir = Path(tempfile.mkdtemp(prefix="monstack-import-"))
    except OSError as exc:
        raise MigrationError(f"creating extract directory: {exc}") from exc
    stack.callback(shutil.rmtree, tmp_dir, ignore_errors=True)
    try:
        unpack_archive(path, tmp_dir)
    except (OSError, tarfile.TarError) as exc:
        raise MigrationError(f"unpacking archive: {exc}") from exc
    return tmp_dir


def import_stack(
    opts: ImportOptions,
    *,
    grafana: Optional[DashboardServer] = None,
) -> MigrationReport:
    """Restore configs locally and re-upload dashboards/datasources.

    Raises
    ------
    ArchiveIntegrityError
        The archive contains a traversal or oversized entry.
    MetadataError
        ``metadata.yaml`` is missing or malformed.
    MigrationError
        The input cannot be read, or the target Grafana is unreachable.
    """
    report = MigrationReport(operation="import")
    with ExitStack() as stack:
        extract_dir = _prepare_source(Path(opts.archive_path), stack)

        meta = read_metadata(extract_dir)
        report.details["metadata"] = meta
        logger.info(
            "migrate.import.metadata",
            extra={
                "export_timestamp": meta.export_timestamp.isoformat(),
                "dashboards": meta.dashboard_count,
                "datasources": meta.datasource_count,
            },
        )

        report.details["restored_files"] = restore_files(
            extract_dir, Path(opts.base_dir), report
        )

        if grafana is None and opts.grafana.url:
            grafana = stack.enter_context(
                GrafanaClient(
                    opts.grafana.url,
                    opts.grafana.user,
                    opts.grafana.password,
                    opts.grafana.timeout_seconds,
                )
            )
        if grafana is None:
            return report

        try:
            grafana.health()
        except ConnectivityError as exc:
            raise MigrationError(f"grafana not ready: {exc}") from exc

        rewrite: Optional[UrlRewrite] = None
        if opts.prometheus_url:
            prometheus_url = opts.prometheus_url

            def rewrite(ds: APIDatasource) -> Optional[str]:
                return prometheus_url if ds.type == PROMETHEUS_TYPE else None

        upload_datasources(grafana, _load_datasources(extract_dir, report), report, rewrite)
        upload_dashboards(grafana, _load_dashboards(extract_dir, report), report)

    logger.info(
        "migrate.import.complete",
        extra={
            "dashboards": report.dashboards,
            "datasources": report.datasources,
            "warnings": len(report.warnings),
        },
    )
    return report
