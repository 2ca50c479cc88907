"""Grafana HTTP API client.

Thin synchronous wrapper over the handful of Grafana endpoints the migration
engine and the health check need. Every call is a blocking request bounded by
the client timeout; non-2xx responses raise ``httpx.HTTPStatusError`` whose
message names the operation and carries a preview of the response body.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict

from ..errors import ConnectivityError

logger = logging.getLogger(__name__)

_BODY_PREVIEW = 500


class DashboardSearchResult(BaseModel):
    """One hit from ``/api/search``."""

    model_config = ConfigDict(extra="ignore")

    uid: str
    title: str = ""


class APIDatasource(BaseModel):
    """A Grafana datasource as returned by ``/api/datasources``.

    Only the fields the engine reads are declared; every other field Grafana
    returns (``access``, ``jsonData``, ``isDefault``, ...) is kept as an extra
    so that export/import round-trips do not lose settings.
    """

    model_config = ConfigDict(extra="allow")

    id: int = 0
    uid: Optional[str] = None
    name: str
    type: str = ""
    url: str = ""

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for POST/PUT, dropping an unset ``id``."""
        data = self.model_dump(mode="json", exclude_none=True)
        if not data.get("id"):
            data.pop("id", None)
        return data


def raise_for_status(resp: httpx.Response, what: str) -> None:
    """Raise ``httpx.HTTPStatusError`` with operation context on non-2xx."""
    if resp.is_success:
        return
    body = resp.text or ""
    if len(body) > _BODY_PREVIEW:
        body = body[:_BODY_PREVIEW] + "..."
    raise httpx.HTTPStatusError(
        f"{what} failed (status {resp.status_code}): {body}",
        request=resp.request,
        response=resp,
    )


class GrafanaClient:
    """Client for one Grafana instance.

    Parameters
    ----------
    base_url: str
        Grafana base URL (e.g., "http://localhost:3000").
    user: str
        Basic-auth user. Empty disables authentication.
    password: str
        Basic-auth password.
    timeout: float
        Request timeout in seconds for all HTTP operations.
    """

    def __init__(
        self,
        base_url: str,
        user: str = "",
        password: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user = user
        self.password = password
        auth = httpx.BasicAuth(user, password) if user else None
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, auth=auth)

    def inject_http_client_for_testing(self, client: httpx.Client) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GrafanaClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---------------- health ----------------

    def health(self) -> None:
        """Raise ``ConnectivityError`` unless ``/api/health`` answers 200."""
        try:
            resp = self._client.get("/api/health")
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"grafana health check: {exc}") from exc
        if resp.status_code != 200:
            raise ConnectivityError(f"grafana not ready: status {resp.status_code}")

    # ---------------- dashboards ----------------

    def search_dashboards(self) -> List[DashboardSearchResult]:
        resp = self._client.get("/api/search", params={"type": "dash-db"})
        raise_for_status(resp, "searching dashboards")
        return [DashboardSearchResult.model_validate(item) for item in resp.json()]

    def download_dashboard(self, uid: str) -> bytes:
        """Return the raw ``{"dashboard": ..., "meta": ...}`` envelope."""
        resp = self._client.get(f"/api/dashboards/uid/{quote(uid, safe='')}")
        raise_for_status(resp, f"downloading dashboard {uid}")
        return resp.content

    def upload_dashboard(
        self,
        dashboard: Union[bytes, str, Dict[str, Any]],
        folder_id: int = 0,
        overwrite: bool = True,
    ) -> None:
        """Create or replace a dashboard from its bare JSON model."""
        if isinstance(dashboard, (bytes, str)):
            dashboard = json.loads(dashboard)
        payload = {"dashboard": dashboard, "folderId": folder_id, "overwrite": overwrite}
        resp = self._client.post("/api/dashboards/db", json=payload)
        title = dashboard.get("title") or dashboard.get("uid") or "<untitled>"
        raise_for_status(resp, f"uploading dashboard {title}")

    def list_folders(self) -> List[Dict[str, Any]]:
        resp = self._client.get("/api/folders")
        raise_for_status(resp, "listing folders")
        return resp.json()

    # ---------------- datasources ----------------

    def list_datasources(self) -> List[APIDatasource]:
        resp = self._client.get("/api/datasources")
        raise_for_status(resp, "listing datasources")
        return [APIDatasource.model_validate(item) for item in resp.json()]

    def upsert_datasource(self, ds: APIDatasource) -> None:
        """Create ``ds``, or update the existing datasource with the same name."""
        existing = self._client.get(f"/api/datasources/name/{quote(ds.name, safe='')}")
        if existing.status_code == 200:
            existing_id = existing.json().get("id")
            payload = ds.to_payload()
            payload["id"] = existing_id
            resp = self._client.put(f"/api/datasources/{existing_id}", json=payload)
            raise_for_status(resp, f"updating datasource {ds.name}")
            logger.debug(
                "grafana.datasource.updated", extra={"datasource": ds.name}
            )
            return
        if existing.status_code != 404:
            raise_for_status(existing, f"looking up datasource {ds.name}")
        resp = self._client.post("/api/datasources", json=ds.to_payload())
        raise_for_status(resp, f"creating datasource {ds.name}")
        logger.debug("grafana.datasource.created", extra={"datasource": ds.name})

    def check_datasource_health(self, ds_id: int) -> None:
        resp = self._client.get(f"/api/datasources/{ds_id}/health")
        raise_for_status(resp, f"datasource {ds_id} health")

    def proxy_query(self, ds_id: int, query: str, timeout: float = 10.0) -> None:
        """Run ``query`` through Grafana's datasource proxy; raise unless 200."""
        try:
            resp = self._client.get(
                f"/api/datasources/proxy/{ds_id}/api/v1/query",
                params={"query": query},
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"proxy query failed: {exc}") from exc
        if resp.status_code != 200:
            raise ConnectivityError(f"proxy query returned status {resp.status_code}")
