"""Collaborator interfaces consumed by the migration engine.

Orchestrators depend only on these protocols; the concrete HTTP clients and
the container runtime live in the sibling modules, and tests substitute
in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, Union

from .grafana import APIDatasource, DashboardSearchResult
from .prometheus import Alert, TargetGroup
from .runtime import ContainerConfig


class DashboardServer(Protocol):
    """Protocol for Grafana-like dashboard servers."""

    base_url: str

    def health(self) -> None:
        """Raise ``ConnectivityError`` unless the server answers its health probe."""
        raise NotImplementedError

    def search_dashboards(self) -> List[DashboardSearchResult]:
        """List every dashboard (uid and title)."""
        raise NotImplementedError

    def download_dashboard(self, uid: str) -> bytes:
        """Return the raw JSON envelope (with a ``dashboard`` field) for ``uid``."""
        raise NotImplementedError

    def list_datasources(self) -> List[APIDatasource]:
        """List every datasource."""
        raise NotImplementedError

    def upsert_datasource(self, ds: APIDatasource) -> None:
        """Create the datasource, or update the one with the same name."""
        raise NotImplementedError

    def upload_dashboard(
        self,
        dashboard: Union[bytes, str, Dict[str, Any]],
        folder_id: int = 0,
        overwrite: bool = True,
    ) -> None:
        """Upload a bare dashboard object."""
        raise NotImplementedError

    def list_folders(self) -> List[Dict[str, Any]]:
        """List dashboard folders."""
        raise NotImplementedError

    def check_datasource_health(self, ds_id: int) -> None:
        """Raise if the server reports the datasource as unhealthy."""
        raise NotImplementedError


class MetricsStore(Protocol):
    """Protocol for Prometheus-like metrics stores."""

    base_url: str

    def health(self) -> None:
        raise NotImplementedError

    def query_instant(self, query: str) -> Dict[str, Any]:
        raise NotImplementedError

    def query_alerts(self) -> List[Alert]:
        raise NotImplementedError

    def query_target_groups(self) -> Dict[str, List[TargetGroup]]:
        raise NotImplementedError

    def create_snapshot(self) -> str:
        raise NotImplementedError

    def reload(self) -> None:
        raise NotImplementedError


class ContainerRuntime(Protocol):
    """Protocol for the container runtime used by clone deployments."""

    def create_network(self, stack_id: int) -> str:
        """Create (or reuse) the isolated network for ``stack_id``; return its name."""
        raise NotImplementedError

    def start_container(self, cfg: ContainerConfig) -> str:
        """Start a detached container and return its id."""
        raise NotImplementedError

    def wait_for_health(
        self, url: str, max_attempts: int, interval: float
    ) -> None:
        """Poll ``url`` until it answers 200 or the attempt budget is spent."""
        raise NotImplementedError


__all__ = [
    "APIDatasource",
    "Alert",
    "ContainerConfig",
    "ContainerRuntime",
    "DashboardSearchResult",
    "DashboardServer",
    "MetricsStore",
    "TargetGroup",
]
