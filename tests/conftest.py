"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like ``import monstack``
resolve correctly regardless of the working directory pytest chooses, and
provides in-memory stand-ins for Grafana, Prometheus and the container
runtime so orchestrators can be exercised without live services.
"""

from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()

from monstack.adapters.grafana import APIDatasource, DashboardSearchResult  # noqa: E402
from monstack.adapters.prometheus import Alert  # noqa: E402
from monstack.adapters.runtime import ContainerConfig  # noqa: E402
from monstack.errors import ConnectivityError, RuntimeCommandError  # noqa: E402
from monstack.migrate.targets import TargetGroup  # noqa: E402


class FakeGrafana:
    """Dict-backed Grafana with failure switches and call recording."""

    def __init__(
        self,
        base_url: str = "http://grafana:3000",
        dashboards: Optional[Dict[str, Dict[str, Any]]] = None,
        datasources: Optional[List[APIDatasource]] = None,
        folders: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.base_url = base_url
        self.healthy = True
        self.dashboards = dashboards or {}
        self.datasources = datasources or []
        self.folders = folders or []
        self.fail_search = False
        self.fail_list_datasources = False
        self.fail_download: Set[str] = set()
        self.fail_upsert: Set[str] = set()
        self.fail_upload: Set[str] = set()
        self.unhealthy_datasources: Set[int] = set()
        self.proxy_ok: Set[int] = set()
        self.upserted: List[APIDatasource] = []
        self.uploaded: List[Dict[str, Any]] = []
        self.health_calls = 0

    def health(self) -> None:
        self.health_calls += 1
        if not self.healthy:
            raise ConnectivityError(f"{self.base_url} unreachable")

    def search_dashboards(self) -> List[DashboardSearchResult]:
        if self.fail_search:
            raise ConnectivityError("search failed")
        return [
            DashboardSearchResult(uid=uid, title=env["dashboard"].get("title", ""))
            for uid, env in self.dashboards.items()
        ]

    def download_dashboard(self, uid: str) -> bytes:
        if uid in self.fail_download:
            raise ConnectivityError(f"download {uid} failed")
        return json.dumps(self.dashboards[uid]).encode()

    def list_datasources(self) -> List[APIDatasource]:
        if self.fail_list_datasources:
            raise ConnectivityError("listing datasources failed")
        return [ds.model_copy(deep=True) for ds in self.datasources]

    def upsert_datasource(self, ds: APIDatasource) -> None:
        if ds.name in self.fail_upsert:
            raise ConnectivityError(f"upsert {ds.name} failed")
        self.upserted.append(ds)

    def upload_dashboard(self, dashboard, folder_id: int = 0, overwrite: bool = True) -> None:
        if dashboard.get("uid") in self.fail_upload:
            raise ConnectivityError(f"upload {dashboard.get('uid')} failed")
        self.uploaded.append(copy.deepcopy(dashboard))

    def list_folders(self) -> List[Dict[str, Any]]:
        return list(self.folders)

    def check_datasource_health(self, ds_id: int) -> None:
        if ds_id in self.unhealthy_datasources:
            raise ConnectivityError(f"datasource {ds_id} unhealthy")

    def proxy_query(self, ds_id: int, query: str, timeout: float = 10.0) -> None:
        if ds_id not in self.proxy_ok:
            raise ConnectivityError("proxy query returned status 502")


class FakePrometheus:
    """Prometheus stand-in returning canned data."""

    def __init__(self, base_url: str = "http://prometheus:9090") -> None:
        self.base_url = base_url
        self.healthy = True
        self.target_groups: Dict[str, List[TargetGroup]] = {}
        self.snapshot_name = "20260101T000000Z-abc"
        self.snapshot_error: Optional[Exception] = None
        self.alerts: List[Alert] = []
        self.instant: Dict[str, Any] = {"resultType": "vector", "result": []}
        self.snapshots = 0

    def health(self) -> None:
        if not self.healthy:
            raise ConnectivityError(f"{self.base_url} unreachable")

    def query_instant(self, query: str) -> Dict[str, Any]:
        return self.instant

    def query_alerts(self) -> List[Alert]:
        return list(self.alerts)

    def query_target_groups(self) -> Dict[str, List[TargetGroup]]:
        return self.target_groups

    def create_snapshot(self) -> str:
        self.snapshots += 1
        if self.snapshot_error is not None:
            raise self.snapshot_error
        return self.snapshot_name

    def reload(self) -> None:
        return None


class FakeRuntime:
    """Container runtime that records what it was asked to do."""

    def __init__(self) -> None:
        self.networks: List[int] = []
        self.started: List[ContainerConfig] = []
        self.health_urls: List[str] = []
        self.fail_start: Set[str] = set()
        self.unhealthy: Set[str] = set()

    def create_network(self, stack_id: int) -> str:
        self.networks.append(stack_id)
        return f"monstack-net-{stack_id}"

    def start_container(self, cfg: ContainerConfig) -> str:
        if cfg.name in self.fail_start:
            raise RuntimeCommandError(f"starting container {cfg.name}: exit 125: port in use")
        self.started.append(cfg)
        return f"id-{cfg.name}"

    def wait_for_health(self, url: str, max_attempts: int, interval: float) -> None:
        self.health_urls.append(url)
        if url in self.unhealthy:
            raise ConnectivityError(f"{url} not healthy after {max_attempts} attempts")


@pytest.fixture
def fake_grafana() -> FakeGrafana:
    return FakeGrafana()


@pytest.fixture
def fake_prometheus() -> FakePrometheus:
    return FakePrometheus()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def populated_grafana() -> FakeGrafana:
    """Grafana with two dashboards, two datasources and one folder."""
    return FakeGrafana(
        dashboards={
            "overview": {
                "dashboard": {"id": 11, "uid": "overview", "title": "Overview", "panels": []},
                "meta": {"slug": "overview"},
            },
            "detailed": {
                "dashboard": {"id": 12, "uid": "detailed", "title": "Detailed", "panels": [{"id": 1}]},
                "meta": {"slug": "detailed"},
            },
        },
        datasources=[
            APIDatasource(
                id=1,
                uid="prom",
                name="prometheus",
                type="prometheus",
                url="http://aprom:9090",
                access="proxy",
                isDefault=True,
            ),
            APIDatasource(
                id=2, uid="am", name="alertmanager", type="alertmanager", url="http://aalert:9093"
            ),
        ],
        folders=[{"id": 1, "uid": "f1", "title": "Scylla"}],
    )
