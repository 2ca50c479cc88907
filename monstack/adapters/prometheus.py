"""Prometheus HTTP API client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx
from pydantic import BaseModel, Field

from ..errors import ConnectivityError
from ..migrate.targets import ActiveTarget, TargetGroup, reconstruct_target_groups
from .grafana import raise_for_status

logger = logging.getLogger(__name__)


class Alert(BaseModel):
    """A rule alert as reported by ``/api/v1/alerts``."""

    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    state: str = "inactive"  # "firing", "pending", "inactive"
    active_at: str = Field("", alias="activeAt")
    value: str = ""


class PrometheusClient:
    """Client for one Prometheus instance.

    Parameters
    ----------
    base_url: str
        Prometheus base URL (e.g., "http://localhost:9090").
    timeout: float
        Request timeout in seconds.
    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout)

    def inject_http_client_for_testing(self, client: httpx.Client) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PrometheusClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def health(self) -> None:
        """Raise ``ConnectivityError`` unless ``/-/ready`` answers 200."""
        try:
            resp = self._client.get("/-/ready")
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"prometheus health check: {exc}") from exc
        if resp.status_code != 200:
            raise ConnectivityError(f"prometheus not ready: status {resp.status_code}")

    def reload(self) -> None:
        """Hot-reload the configuration. Requires ``--web.enable-lifecycle``."""
        resp = self._client.post("/-/reload")
        raise_for_status(resp, "prometheus reload")

    def query_alerts(self) -> List[Alert]:
        resp = self._client.get("/api/v1/alerts")
        raise_for_status(resp, "alerts query")
        alerts = resp.json().get("data", {}).get("alerts", [])
        return [Alert.model_validate(a) for a in alerts]

    def query_instant(self, query: str) -> Dict[str, Any]:
        """Run an instant PromQL query and return the ``data`` document."""
        resp = self._client.get("/api/v1/query", params={"query": query})
        raise_for_status(resp, "instant query")
        body = resp.json()
        if body.get("status") != "success":
            raise ValueError(f"query returned status: {body.get('status')}")
        return body.get("data", {})

    def query_target_groups(self) -> Dict[str, List[TargetGroup]]:
        """Rebuild ``file_sd`` groups keyed by origin file from active targets."""
        resp = self._client.get("/api/v1/targets")
        raise_for_status(resp, "targets query")
        raw = resp.json().get("data", {}).get("activeTargets", [])
        groups = reconstruct_target_groups(ActiveTarget.model_validate(t) for t in raw)
        logger.debug(
            "prometheus.targets.reconstructed",
            extra={"active_targets": len(raw), "files": len(groups)},
        )
        return groups

    def create_snapshot(self) -> str:
        """Create a TSDB snapshot and return its name.

        Requires ``--web.enable-admin-api``. The snapshot is written inside the
        Prometheus data directory; this call does not transfer it anywhere.
        """
        resp = self._client.post("/api/v1/admin/tsdb/snapshot")
        raise_for_status(resp, "snapshot")
        body = resp.json()
        if body.get("status") != "success":
            raise ValueError(f"snapshot returned status: {body.get('status')}")
        return body.get("data", {}).get("name", "")
