"""Clone a running stack onto a fresh set of containers and ports.

The clone runs as a fixed sequence of stages; every stage except the
per-item re-import is fatal::

    validate -> export -> stage -> deploy -> wait -> re-import

There is no rollback. A failure after the network has been created leaves
whatever was already started running; rerunning with another ``stack_id``
(or removing the containers by name) is up to the operator.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..adapters import ContainerRuntime, DashboardServer, MetricsStore
from ..adapters.grafana import APIDatasource, GrafanaClient
from ..adapters.prometheus import PrometheusClient
from ..adapters.runtime import ContainerConfig, MountConfig, container_name
from ..config.models import CloneOptions
from ..errors import ConnectivityError, MigrationError, RuntimeCommandError
from .export import collect_dashboards
from .import_ import ALERTMANAGER_TYPE, PROMETHEUS_TYPE, upload_dashboards, upload_datasources
from .models import ITEM_ERRORS, MigrationReport
from .rewrite import rewrite_scrape_config
from .targets import write_target_files

logger = logging.getLogger(__name__)

PROMETHEUS_PORT = 9090
GRAFANA_PORT = 3000
ALERTMANAGER_PORT = 9093

ALERTMANAGER_ROLE = "aalert"
PROMETHEUS_ROLE = "aprom"
GRAFANA_ROLE = "agraf"

# Local inputs, relative to CloneOptions.base_dir.
PROMETHEUS_CONFIG_PATH = Path("prometheus") / "build" / "prometheus.yml"
ALERTMANAGER_CONFIG_PATH = Path("prometheus") / "rule_config.yml"
ALERT_RULES_PATH = Path("prometheus") / "prom_rules"
GRAFANA_DASHBOARDS_PATH = Path("grafana") / "build"
GRAFANA_PLUGINS_PATH = Path("grafana") / "plugins"
GRAFANA_PROVISIONING_PATH = Path("grafana") / "provisioning"

PROMETHEUS_FLAGS = [
    "--config.file=/etc/prometheus/prometheus.yml",
    "--storage.tsdb.path=/prometheus",
    f"--web.listen-address=0.0.0.0:{PROMETHEUS_PORT}",
    "--web.enable-lifecycle",
    "--web.enable-admin-api",
]

GRAFANA_ENV = [
    "GF_PATHS_PROVISIONING=/var/lib/grafana/provisioning",
    "GF_PLUGINS_ALLOW_LOADING_UNSIGNED_PLUGINS=scylladb-scylla-datasource",
    "GF_DATABASE_WAL=true",
    "GF_AUTH_ANONYMOUS_ENABLED=true",
    "GF_AUTH_ANONYMOUS_ORG_ROLE=Admin",
]


class StackNames:
    """Container names and in-network addresses for one cloned stack."""

    def __init__(self, opts: CloneOptions) -> None:
        self.alertmanager = container_name(
            ALERTMANAGER_ROLE, opts.alertmanager_port, ALERTMANAGER_PORT, opts.stack_id
        )
        self.prometheus = container_name(
            PROMETHEUS_ROLE, opts.prometheus_port, PROMETHEUS_PORT, opts.stack_id
        )
        self.grafana = container_name(
            GRAFANA_ROLE, opts.grafana_port, GRAFANA_PORT, opts.stack_id
        )

    @property
    def prometheus_url(self) -> str:
        return f"http://{self.prometheus}:{PROMETHEUS_PORT}"

    @property
    def alertmanager_url(self) -> str:
        return f"http://{self.alertmanager}:{ALERTMANAGER_PORT}"


def _validate_source(grafana: DashboardServer, prometheus: MetricsStore) -> None:
    try:
        grafana.health()
    except ConnectivityError as exc:
        raise MigrationError(f"source Grafana not reachable: {exc}") from exc
    try:
        prometheus.health()
    except ConnectivityError as exc:
        raise MigrationError(f"source Prometheus not reachable: {exc}") from exc


def _export_source(
    grafana: DashboardServer,
    prometheus: MetricsStore,
    report: MigrationReport,
) -> Tuple[List[Tuple[str, Dict[str, Any]]], List[APIDatasource], Dict[str, Any]]:
    try:
        envelopes = collect_dashboards(grafana, report)
    except ITEM_ERRORS as exc:
        raise MigrationError(f"exporting dashboards: {exc}") from exc
    dashboards: List[Tuple[str, Dict[str, Any]]] = []
    for uid, envelope in envelopes.items():
        inner = envelope.get("dashboard")
        dashboards.append((uid, inner if isinstance(inner, dict) else envelope))
    logger.info("migrate.clone.exported_dashboards", extra={"count": len(dashboards)})

    try:
        datasources = grafana.list_datasources()
    except ITEM_ERRORS as exc:
        raise MigrationError(f"exporting datasources: {exc}") from exc
    logger.info("migrate.clone.exported_datasources", extra={"count": len(datasources)})

    try:
        target_groups = prometheus.query_target_groups()
    except ITEM_ERRORS as exc:
        raise MigrationError(f"querying source targets: {exc}") from exc
    logger.info("migrate.clone.discovered_target_files", extra={"count": len(target_groups)})
    return dashboards, datasources, target_groups


def _stage(
    opts: CloneOptions,
    stage_dir: Path,
    target_groups: Dict[str, Any],
    names: StackNames,
    report: MigrationReport,
) -> Tuple[Path, Dict[Path, str]]:
    """Write target files and the rewritten prometheus.yml into ``stage_dir``."""
    try:
        target_mounts = write_target_files(stage_dir, target_groups)
    except (OSError, yaml.YAMLError) as exc:
        raise MigrationError(f"writing target files: {exc}") from exc

    config_src = Path(opts.base_dir) / PROMETHEUS_CONFIG_PATH
    try:
        original = config_src.read_text()
    except OSError as exc:
        raise MigrationError(f"reading prometheus.yml: {exc}") from exc

    rewritten, missed = rewrite_scrape_config(
        original,
        {
            "grafana": f"{names.grafana}:{GRAFANA_PORT}",
            "prometheus": f"localhost:{PROMETHEUS_PORT}",
        },
        alertmanager_target=f"{names.alertmanager}:{ALERTMANAGER_PORT}",
    )
    for rewrite in missed:
        report.warn(
            rewrite,
            "config.rewrite",
            ValueError(f"no {rewrite} target found in {config_src}; address left unchanged"),
        )
    report.details["rewrites_missed"] = missed

    config_path = stage_dir / "prometheus.yml"
    try:
        config_path.write_text(rewritten)
    except OSError as exc:
        raise MigrationError(f"writing cloned prometheus.yml: {exc}") from exc
    return config_path, target_mounts


def build_container_configs(
    opts: CloneOptions,
    names: StackNames,
    network: str,
    config_path: Path,
    target_mounts: Dict[Path, str],
) -> List[Tuple[str, ContainerConfig]]:
    """Return ``(label, config)`` pairs in start order."""
    base = Path(opts.base_dir).resolve()

    alertmanager = ContainerConfig(
        name=names.alertmanager,
        image=opts.alertmanager_image,
        network=network,
        port_bindings={f"{ALERTMANAGER_PORT}/tcp": str(opts.alertmanager_port)},
        command=["--config.file=/etc/alertmanager/config.yml"],
        mounts=[
            MountConfig(
                source=str(base / ALERTMANAGER_CONFIG_PATH),
                target="/etc/alertmanager/config.yml",
                read_only=True,
            )
        ],
    )

    prom_mounts = [
        MountConfig(
            source=str(config_path.resolve()),
            target="/etc/prometheus/prometheus.yml",
            read_only=True,
        ),
        MountConfig(
            source=str(base / ALERT_RULES_PATH),
            target="/etc/prometheus/prom_rules",
            read_only=True,
        ),
    ]
    for local_dir, container_dir in sorted(target_mounts.items()):
        prom_mounts.append(
            MountConfig(source=str(local_dir.resolve()), target=container_dir, read_only=True)
        )
    prometheus = ContainerConfig(
        name=names.prometheus,
        image=opts.prometheus_image,
        network=network,
        port_bindings={f"{PROMETHEUS_PORT}/tcp": str(opts.prometheus_port)},
        command=list(PROMETHEUS_FLAGS),
        mounts=prom_mounts,
    )

    grafana = ContainerConfig(
        name=names.grafana,
        image=opts.grafana_image,
        network=network,
        port_bindings={f"{GRAFANA_PORT}/tcp": str(opts.grafana_port)},
        env=list(GRAFANA_ENV),
        mounts=[
            MountConfig(
                source=str(base / GRAFANA_DASHBOARDS_PATH),
                target="/var/lib/grafana/dashboards",
            ),
            MountConfig(
                source=str(base / GRAFANA_PLUGINS_PATH),
                target="/var/lib/grafana/plugins",
            ),
            MountConfig(
                source=str(base / GRAFANA_PROVISIONING_PATH),
                target="/var/lib/grafana/provisioning",
            ),
        ],
    )
    return [("AlertManager", alertmanager), ("Prometheus", prometheus), ("Grafana", grafana)]


def _deploy(
    runtime: ContainerRuntime,
    opts: CloneOptions,
    names: StackNames,
    config_path: Path,
    target_mounts: Dict[Path, str],
) -> Dict[str, str]:
    logger.info(
        "migrate.clone.deploying",
        extra={
            "prometheus": opts.prometheus_port,
            "grafana": opts.grafana_port,
            "alertmanager": opts.alertmanager_port,
        },
    )
    try:
        network = runtime.create_network(opts.stack_id)
    except RuntimeCommandError as exc:
        raise MigrationError(f"creating network: {exc}") from exc

    started: Dict[str, str] = {}
    for label, cfg in build_container_configs(opts, names, network, config_path, target_mounts):
        try:
            started[cfg.name] = runtime.start_container(cfg)
        except RuntimeCommandError as exc:
            raise MigrationError(f"starting {label}: {exc}") from exc
    return started


def _wait(runtime: ContainerRuntime, opts: CloneOptions) -> None:
    logger.info("migrate.clone.waiting_for_services")
    probes = [
        ("Prometheus", f"http://localhost:{opts.prometheus_port}/-/ready"),
        ("Grafana", f"http://localhost:{opts.grafana_port}/api/health"),
    ]
    for label, url in probes:
        try:
            runtime.wait_for_health(
                url, opts.readiness_attempts, opts.readiness_interval_seconds
            )
        except ConnectivityError as exc:
            raise MigrationError(f"{label} health check: {exc}") from exc


def clone_stack(
    opts: CloneOptions,
    runtime: ContainerRuntime,
    *,
    source_grafana: Optional[DashboardServer] = None,
    source_prometheus: Optional[MetricsStore] = None,
    target_grafana: Optional[DashboardServer] = None,
) -> MigrationReport:
    """Clone the source stack into new containers on the configured ports.

    Parameters
    ----------
    opts: CloneOptions
        Source endpoints, target ports, images and local input paths.
    runtime: ContainerRuntime
        Network/container collaborator used for deployment and readiness.
    source_grafana, source_prometheus, target_grafana:
        Pre-built clients; built from ``opts`` when omitted. The target
        Grafana defaults to ``http://localhost:<grafana_port>`` with the
        source credentials.

    Returns
    -------
    MigrationReport
        Counts of re-imported items, per-item warnings, and in ``details`` the
        three endpoints, container ids and rewrites that did not apply.

    Raises
    ------
    MigrationError
        Any fatal stage failure; the message names the stage.
    """
    report = MigrationReport(operation="clone")
    names = StackNames(opts)

    with ExitStack() as stack:
        if source_grafana is None:
            source_grafana = stack.enter_context(
                GrafanaClient(
                    opts.source_grafana.url,
                    opts.source_grafana.user,
                    opts.source_grafana.password,
                    opts.source_grafana.timeout_seconds,
                )
            )
        if source_prometheus is None:
            source_prometheus = stack.enter_context(
                PrometheusClient(opts.source_prometheus_url)
            )

        logger.info("migrate.clone.validating_source")
        _validate_source(source_grafana, source_prometheus)

        logger.info("migrate.clone.exporting_source")
        dashboards, datasources, target_groups = _export_source(
            source_grafana, source_prometheus, report
        )

        if opts.state_dir is not None:
            stage_dir = Path(opts.state_dir)
            try:
                stage_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise MigrationError(f"creating staging directory: {exc}") from exc
        else:
            try:
                stage_dir = Path(tempfile.mkdtemp(prefix="monstack-clone-"))
            except OSError as exc:
                raise MigrationError(f"creating staging directory: {exc}") from exc
            stack.callback(shutil.rmtree, stage_dir, ignore_errors=True)

        config_path, target_mounts = _stage(opts, stage_dir, target_groups, names, report)
        report.details["target_files"] = len(target_groups)

        report.details["containers"] = _deploy(
            runtime, opts, names, config_path, target_mounts
        )
        _wait(runtime, opts)

        if target_grafana is None:
            target_grafana = stack.enter_context(
                GrafanaClient(
                    f"http://localhost:{opts.grafana_port}",
                    opts.source_grafana.user,
                    opts.source_grafana.password,
                    opts.source_grafana.timeout_seconds,
                )
            )

        def rewrite(ds: APIDatasource) -> Optional[str]:
            if ds.type == PROMETHEUS_TYPE:
                return names.prometheus_url
            if ds.type == ALERTMANAGER_TYPE:
                return names.alertmanager_url
            return None

        upload_datasources(target_grafana, datasources, report, rewrite)
        upload_dashboards(target_grafana, dashboards, report)
        logger.info("migrate.clone.imported_dashboards", extra={"count": report.dashboards})

    report.details["endpoints"] = {
        "grafana": f"http://localhost:{opts.grafana_port}",
        "prometheus": f"http://localhost:{opts.prometheus_port}",
        "alertmanager": f"http://localhost:{opts.alertmanager_port}",
    }
    logger.info("migrate.clone.running", extra=report.details["endpoints"])
    return report
