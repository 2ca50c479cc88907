"""Live copy of datasources and dashboards between two Grafana instances."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Any, Dict, List, Optional, Tuple

from ..adapters import DashboardServer
from ..adapters.grafana import GrafanaClient
from ..config.models import CopyOptions, GrafanaConnection
from ..errors import MigrationError
from .export import collect_dashboards
from .import_ import upload_dashboards, upload_datasources
from .models import ITEM_ERRORS, MigrationReport

logger = logging.getLogger(__name__)


def _client(conn: GrafanaConnection) -> GrafanaClient:
    return GrafanaClient(conn.url, conn.user, conn.password, conn.timeout_seconds)


def copy_stack(
    opts: CopyOptions,
    *,
    source: Optional[DashboardServer] = None,
    target: Optional[DashboardServer] = None,
) -> MigrationReport:
    """Copy datasources, then dashboards, from ``source`` to ``target``.

    Only a failed listing on the source aborts the copy; each item that cannot
    be downloaded or uploaded is recorded as a warning.
    """
    report = MigrationReport(operation="copy")
    with ExitStack() as stack:
        if source is None:
            source = stack.enter_context(_client(opts.source))
        if target is None:
            target = stack.enter_context(_client(opts.target))
        logger.info(
            "migrate.copy.start",
            extra={"source": source.base_url, "target": target.base_url},
        )

        if opts.include_datasources:
            try:
                datasources = source.list_datasources()
            except ITEM_ERRORS as exc:
                raise MigrationError(f"listing source datasources: {exc}") from exc
            upload_datasources(target, datasources, report)

        if opts.include_dashboards:
            try:
                envelopes = collect_dashboards(source, report)
            except ITEM_ERRORS as exc:
                raise MigrationError(f"listing source dashboards: {exc}") from exc
            dashboards: List[Tuple[str, Dict[str, Any]]] = []
            for uid, envelope in envelopes.items():
                inner = envelope.get("dashboard")
                dashboards.append((uid, inner if isinstance(inner, dict) else envelope))
            upload_dashboards(target, dashboards, report)

    logger.info(
        "migrate.copy.complete",
        extra={
            "dashboards": report.dashboards,
            "datasources": report.datasources,
            "warnings": len(report.warnings),
        },
    )
    return report
