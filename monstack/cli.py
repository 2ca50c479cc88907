"""Command-line interface for checking and migrating monitoring stacks.

Usage
-----
    monstack check --grafana-url http://localhost:3000
    monstack migrate export --grafana-url http://localhost:3000 --output stack.tar.gz
    monstack migrate import stack.tar.gz --grafana-url http://localhost:3000
    monstack migrate clone --grafana-port 3001 --prometheus-port 9091
    monstack migrate copy --source-grafana-url ... --target-grafana-url ...
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

import httpx
from pydantic import ValidationError

from .__version__ import __version__
from .adapters.runtime import CLIContainerRuntime
from .check import format_results, has_failures, run_checks
from .config.models import (
    DEFAULT_ALERTMANAGER_IMAGE,
    DEFAULT_GRAFANA_IMAGE,
    DEFAULT_PROMETHEUS_IMAGE,
    CheckOptions,
    CloneOptions,
    CopyOptions,
    EnvSettings,
    ExportOptions,
    GrafanaConnection,
    ImportOptions,
)
from .errors import MonstackError
from .migrate.clone import clone_stack
from .migrate.copy import copy_stack
from .migrate.export import export_stack
from .migrate.import_ import import_stack
from .migrate.models import MigrationReport
from .observability import setup_logging

logger = logging.getLogger(__name__)

_LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


def _add_grafana_flags(
    parser: argparse.ArgumentParser,
    settings: EnvSettings,
    prefix: str = "",
    default_url: str = "",
    label: str = "Grafana",
    required: bool = False,
) -> None:
    dest = prefix.replace("-", "_")
    parser.add_argument(
        f"--{prefix}grafana-url",
        dest=f"{dest}grafana_url",
        default=default_url,
        required=required,
        help=f"{label} URL",
    )
    parser.add_argument(
        f"--{prefix}grafana-user",
        dest=f"{dest}grafana_user",
        default=settings.grafana_user,
        help=f"{label} user",
    )
    parser.add_argument(
        f"--{prefix}grafana-password",
        dest=f"{dest}grafana_password",
        default=settings.grafana_password,
        help=f"{label} password",
    )


def _grafana_conn(args: argparse.Namespace, settings: EnvSettings, prefix: str = "") -> GrafanaConnection:
    return GrafanaConnection(
        url=getattr(args, f"{prefix}grafana_url"),
        user=getattr(args, f"{prefix}grafana_user"),
        password=getattr(args, f"{prefix}grafana_password"),
        timeout_seconds=settings.http_timeout_seconds,
    )


def _split_list(values: Optional[List[str]]) -> List[str]:
    out: List[str] = []
    for value in values or []:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


def _print_report(report: MigrationReport) -> None:
    print(report.summary())
    for warning in report.warnings:
        print(f"  warning: {warning}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_check(args: argparse.Namespace, settings: EnvSettings) -> int:
    opts = CheckOptions(
        grafana=GrafanaConnection(
            url=args.grafana_url,
            user=args.grafana_user,
            password=args.grafana_password,
            timeout_seconds=settings.health_timeout_seconds,
        ),
        prometheus_url=args.prometheus_url,
        alertmanager_url=args.alertmanager_url,
        health_timeout_seconds=settings.health_timeout_seconds,
    )
    results = run_checks(opts)
    print(format_results(results))
    if has_failures(results):
        print("check failed: one or more checks failed", file=sys.stderr)
        return 1
    return 0


def _cmd_export(args: argparse.Namespace, settings: EnvSettings) -> int:
    if not args.prometheus_url:
        logger.warning(
            "no --prometheus-url provided, metric data will not be included in the export"
        )
    opts = ExportOptions(
        grafana=_grafana_conn(args, settings),
        prometheus_url=args.prometheus_url,
        output_path=Path(args.output),
        prometheus_config=args.prometheus_config,
        alert_rules_dir=args.alert_rules_dir,
        alertmanager_config=args.alertmanager_config,
        loki_config=args.loki_config,
        target_files=_split_list(args.target_files),
    )
    report = export_stack(opts)
    _print_report(report)
    print(f"Stack exported to {opts.output_path}")
    return 0


def _cmd_import(args: argparse.Namespace, settings: EnvSettings) -> int:
    opts = ImportOptions(
        archive_path=Path(args.path),
        base_dir=Path(args.base_dir),
        grafana=_grafana_conn(args, settings),
        prometheus_url=args.prometheus_url,
    )
    report = import_stack(opts)
    _print_report(report)
    print("Stack imported successfully.")
    return 0


def _cmd_clone(args: argparse.Namespace, settings: EnvSettings) -> int:
    opts = CloneOptions(
        source_grafana=_grafana_conn(args, settings),
        source_prometheus_url=args.prometheus_url,
        prometheus_port=args.prometheus_port,
        grafana_port=args.grafana_port,
        alertmanager_port=args.alertmanager_port,
        stack_id=args.stack,
        prometheus_image=args.prometheus_image,
        grafana_image=args.grafana_image,
        alertmanager_image=args.alertmanager_image,
        base_dir=Path(args.base_dir),
        state_dir=Path(args.state_dir) if args.state_dir else None,
        readiness_attempts=settings.readiness_attempts,
        readiness_interval_seconds=settings.readiness_interval_seconds,
    )
    runtime = CLIContainerRuntime.detect(
        settings.container_runtime, probe_timeout=settings.health_timeout_seconds
    )
    report = clone_stack(opts, runtime)
    _print_report(report)
    endpoints = report.details.get("endpoints", {})
    print("\nCloned stack is running:")
    print(f"  Grafana:      {endpoints.get('grafana', '')}")
    print(f"  Prometheus:   {endpoints.get('prometheus', '')}")
    print(f"  AlertManager: {endpoints.get('alertmanager', '')}")
    return 0


def _cmd_copy(args: argparse.Namespace, settings: EnvSettings) -> int:
    opts = CopyOptions(
        source=_grafana_conn(args, settings, "source_"),
        target=_grafana_conn(args, settings, "target_"),
        include_dashboards=args.include_dashboards,
        include_datasources=args.include_datasources,
    )
    report = copy_stack(opts)
    _print_report(report)
    print("Stack copied successfully.")
    return 0


Handler = Callable[[argparse.Namespace, EnvSettings], int]


def build_parser(settings: EnvSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="monstack", description="Monitoring stack health checks and migration"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=_LOG_LEVELS,
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check health of the monitoring stack")
    _add_grafana_flags(check, settings, default_url="http://localhost:3000")
    check.add_argument("--prometheus-url", default="http://localhost:9090", help="Prometheus URL")
    check.add_argument(
        "--alertmanager-url", default="http://localhost:9093", help="AlertManager URL"
    )
    check.set_defaults(handler=_cmd_check, command_name="check")

    migrate = sub.add_parser("migrate", help="Stack migration operations")
    msub = migrate.add_subparsers(dest="migrate_command", required=True)

    export = msub.add_parser("export", help="Export a monitoring stack")
    _add_grafana_flags(export, settings)
    export.add_argument(
        "--prometheus-url", default="", help="Prometheus URL (requests a TSDB snapshot)"
    )
    export.add_argument("--output", default="stack-export.tar.gz", help="Output archive path")
    export.add_argument(
        "--prometheus-config",
        default="prometheus/build/prometheus.yml",
        help="Path to prometheus.yml",
    )
    export.add_argument(
        "--alert-rules-dir", default="prometheus/prom_rules", help="Path to alert rules directory"
    )
    export.add_argument(
        "--alertmanager-config",
        default="prometheus/rule_config.yml",
        help="Path to AlertManager config",
    )
    export.add_argument("--loki-config", default="", help="Path to Loki config")
    export.add_argument(
        "--target-files",
        action="append",
        help="Target files to include (repeatable or comma-separated)",
    )
    export.set_defaults(handler=_cmd_export, command_name="export")

    imp = msub.add_parser("import", help="Import a monitoring stack from an archive or directory")
    imp.add_argument("path", help="Export archive (.tar.gz) or unpacked export directory")
    _add_grafana_flags(imp, settings)
    imp.add_argument(
        "--prometheus-url", default="", help="Rewrite Prometheus datasource URLs to this address"
    )
    imp.add_argument("--base-dir", default=".", help="Root directory for restored files")
    imp.set_defaults(handler=_cmd_import, command_name="import")

    clone = msub.add_parser("clone", help="Clone a running stack to new ports")
    _add_grafana_flags(clone, settings, default_url="http://localhost:3000")
    clone.add_argument(
        "--prometheus-url", default="http://localhost:9090", help="Source Prometheus URL"
    )
    clone.add_argument("--prometheus-port", type=int, default=9091, help="Target Prometheus port")
    clone.add_argument("--grafana-port", type=int, default=3001, help="Target Grafana port")
    clone.add_argument(
        "--alertmanager-port", type=int, default=9095, help="Target AlertManager port"
    )
    clone.add_argument("--stack", type=int, default=1, help="Target stack ID")
    clone.add_argument("--prometheus-image", default=DEFAULT_PROMETHEUS_IMAGE)
    clone.add_argument("--grafana-image", default=DEFAULT_GRAFANA_IMAGE)
    clone.add_argument("--alertmanager-image", default=DEFAULT_ALERTMANAGER_IMAGE)
    clone.add_argument("--base-dir", default=".", help="Directory holding local stack configs")
    clone.add_argument(
        "--state-dir",
        default="",
        help="Keep rewritten config and target files here (default: temporary)",
    )
    clone.set_defaults(handler=_cmd_clone, command_name="clone")

    copy = msub.add_parser("copy", help="Live copy from one stack to another")
    _add_grafana_flags(copy, settings, prefix="source-", label="Source Grafana", required=True)
    _add_grafana_flags(copy, settings, prefix="target-", label="Target Grafana", required=True)
    copy.add_argument(
        "--include-dashboards",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Copy dashboards",
    )
    copy.add_argument(
        "--include-datasources",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Copy datasources",
    )
    copy.set_defaults(handler=_cmd_copy, command_name="copy")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint; returns the process exit code."""
    settings = EnvSettings()
    parser = build_parser(settings)
    args = parser.parse_args(argv)

    # Determine effective log level
    effective_level = args.log_level or (
        "DEBUG" if args.verbose > 0 else settings.log_level.upper()
    )
    setup_logging(effective_level)

    handler: Handler = args.handler
    try:
        return handler(args, settings)
    except (MonstackError, ValidationError, httpx.HTTPError, OSError) as exc:
        logger.debug("cli.command.failed", exc_info=True)
        print(f"{args.command_name} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
