"""Option models and environment settings.

Every command builds one immutable options value per invocation and hands it
to the orchestrator; nothing reads ambient global state. Defaults mirror the
command-line defaults so library callers and the CLI behave the same.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROMETHEUS_IMAGE = "prom/prometheus:v3.9.1"
DEFAULT_GRAFANA_IMAGE = "grafana/grafana:12.3.2"
DEFAULT_ALERTMANAGER_IMAGE = "prom/alertmanager:v0.30.1"


class _Options(BaseModel):
    model_config = ConfigDict(frozen=True)


class GrafanaConnection(_Options):
    """Connection settings for a single Grafana instance.

    Attributes
    ----------
    url: str
        Base URL (e.g., "http://localhost:3000"). Empty means "not given".
    user: str
        Basic-auth user; empty disables authentication.
    password: str
        Basic-auth password.
    timeout_seconds: float
        Per-request timeout.
    """

    url: str = ""
    user: str = "admin"
    password: str = "admin"
    timeout_seconds: float = Field(30.0, gt=0)


class CheckOptions(_Options):
    """Endpoints probed by ``monstack check``."""

    grafana: GrafanaConnection = Field(
        default_factory=lambda: GrafanaConnection(url="http://localhost:3000")
    )
    prometheus_url: str = "http://localhost:9090"
    alertmanager_url: str = "http://localhost:9093"
    health_timeout_seconds: float = Field(5.0, gt=0)
    proxy_timeout_seconds: float = Field(10.0, gt=0)


class ExportOptions(_Options):
    """Inputs for building a stack export archive.

    Local config paths are copied verbatim when non-empty and present.
    """

    grafana: GrafanaConnection = Field(default_factory=GrafanaConnection)
    prometheus_url: str = ""
    output_path: Path = Path("stack-export.tar.gz")
    prometheus_config: str = "prometheus/build/prometheus.yml"
    alert_rules_dir: str = "prometheus/prom_rules"
    alertmanager_config: str = "prometheus/rule_config.yml"
    loki_config: str = ""
    target_files: List[str] = Field(default_factory=list)


class ImportOptions(_Options):
    """Inputs for restoring an export archive or unpacked export directory.

    Attributes
    ----------
    archive_path: Path
        A ``.tar.gz`` produced by export, or a directory holding its contents.
    base_dir: Path
        Root under which config and target files are restored.
    prometheus_url: str
        When set, Prometheus datasource URLs are rewritten to this address.
    """

    archive_path: Path
    base_dir: Path = Path(".")
    grafana: GrafanaConnection = Field(default_factory=GrafanaConnection)
    prometheus_url: str = ""


class CloneOptions(_Options):
    """Inputs for cloning a running stack onto new ports."""

    source_grafana: GrafanaConnection = Field(
        default_factory=lambda: GrafanaConnection(url="http://localhost:3000")
    )
    source_prometheus_url: str = "http://localhost:9090"

    prometheus_port: int = Field(9091, ge=1, le=65535)
    grafana_port: int = Field(3001, ge=1, le=65535)
    alertmanager_port: int = Field(9095, ge=1, le=65535)
    stack_id: int = Field(1, ge=0)

    prometheus_image: str = DEFAULT_PROMETHEUS_IMAGE
    grafana_image: str = DEFAULT_GRAFANA_IMAGE
    alertmanager_image: str = DEFAULT_ALERTMANAGER_IMAGE

    base_dir: Path = Path(".")
    state_dir: Optional[Path] = Field(
        None,
        description="Keep staged mounts here instead of a temporary directory",
    )
    readiness_attempts: int = Field(35, ge=1)
    readiness_interval_seconds: float = Field(1.0, ge=0)


class CopyOptions(_Options):
    """Inputs for a live Grafana-to-Grafana copy."""

    source: GrafanaConnection
    target: GrafanaConnection
    include_dashboards: bool = True
    include_datasources: bool = True


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    grafana_user: str
        Default Grafana user when no flag is given.
    grafana_password: str
        Default Grafana password when no flag is given.
    http_timeout_seconds: float
        Timeout for Grafana/Prometheus API calls.
    health_timeout_seconds: float
        Timeout for single health probes.
    readiness_attempts: int
        Poll attempts when waiting for a freshly deployed service.
    readiness_interval_seconds: float
        Fixed delay between readiness polls.
    container_runtime: Optional[str]
        Force "docker" or "podman" instead of auto-detection.
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="MONSTACK_")

    log_level: str = Field("INFO")
    grafana_user: str = Field("admin")
    grafana_password: str = Field("admin")
    http_timeout_seconds: float = Field(30.0, gt=0)
    health_timeout_seconds: float = Field(5.0, gt=0)
    readiness_attempts: int = Field(35, ge=1)
    readiness_interval_seconds: float = Field(1.0, ge=0)
    container_runtime: Optional[str] = Field(
        None,
        description="Container runtime override: docker or podman",
    )
