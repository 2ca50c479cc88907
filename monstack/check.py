"""API-level health checks for a running monitoring stack.

Unlike container status, these checks confirm that each service actually
answers and is doing useful work: Grafana has dashboards, Prometheus scrapes
targets, Alertmanager is healthy, every Grafana datasource reaches its
backend, and no alerts are firing.
"""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import ExitStack
from dataclasses import dataclass
from typing import List, Optional

import httpx

from .adapters.grafana import GrafanaClient
from .adapters.prometheus import PrometheusClient
from .config.models import CheckOptions
from .errors import MonstackError

logger = logging.getLogger(__name__)

OK = "ok"
WARN = "warn"
FAIL = "fail"

_MARKERS = {OK: "OK", WARN: "!!", FAIL: "XX"}

_CALL_ERRORS = (httpx.HTTPError, MonstackError, ValueError)


@dataclass
class CheckResult:
    """Outcome of a single check.

    Attributes
    ----------
    component : str
        Service the check belongs to ("Grafana", "Prometheus", ...).
    check : str
        What was checked; the datasource name for datasource checks.
    status : str
        One of "ok", "warn", "fail".
    detail : str
        Human-readable detail (URL, counts or error).
    """

    component: str
    check: str
    status: str
    detail: str


def check_grafana(grafana: GrafanaClient) -> List[CheckResult]:
    try:
        grafana.health()
    except _CALL_ERRORS as exc:
        return [CheckResult("Grafana", "API Health", FAIL, str(exc))]
    results = [CheckResult("Grafana", "API Health", OK, grafana.base_url)]

    try:
        dashboards = grafana.search_dashboards()
    except _CALL_ERRORS as exc:
        results.append(
            CheckResult("Grafana", "Dashboards", WARN, f"could not list dashboards: {exc}")
        )
    else:
        if not dashboards:
            results.append(CheckResult("Grafana", "Dashboards", WARN, "no dashboards found"))
        else:
            results.append(
                CheckResult("Grafana", "Dashboards", OK, f"{len(dashboards)} dashboards loaded")
            )
    return results


def check_prometheus(prometheus: PrometheusClient) -> List[CheckResult]:
    try:
        prometheus.health()
    except _CALL_ERRORS as exc:
        return [CheckResult("Prometheus", "API Health", FAIL, str(exc))]
    results = [CheckResult("Prometheus", "API Health", OK, prometheus.base_url)]

    try:
        data = prometheus.query_instant("up")
    except _CALL_ERRORS as exc:
        results.append(
            CheckResult("Prometheus", "Scrape targets", WARN, f"could not query targets: {exc}")
        )
        return results

    up = down = 0
    for sample in data.get("result", []):
        value = sample.get("value") or []
        if len(value) != 2:
            continue
        if value[1] == "1":
            up += 1
        else:
            down += 1
    status = OK
    if down > 0 and up == 0:
        status = FAIL
    elif down > 0:
        status = WARN
    results.append(CheckResult("Prometheus", "Scrape targets", status, f"{up} up, {down} down"))
    return results


def check_alertmanager(
    url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None
) -> List[CheckResult]:
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.get(url.rstrip("/") + "/-/healthy")
    except httpx.HTTPError as exc:
        return [CheckResult("AlertManager", "API Health", FAIL, str(exc) or type(exc).__name__)]
    if resp.status_code != 200:
        return [CheckResult("AlertManager", "API Health", FAIL, f"status {resp.status_code}")]
    return [CheckResult("AlertManager", "API Health", OK, url)]


def check_datasources(grafana: GrafanaClient, proxy_timeout: float = 10.0) -> List[CheckResult]:
    """Probe every datasource, falling back to a proxied ``up`` query for Prometheus."""
    try:
        datasources = grafana.list_datasources()
    except _CALL_ERRORS as exc:
        return [
            CheckResult("Grafana", "Datasources", WARN, f"could not list datasources: {exc}")
        ]

    results: List[CheckResult] = []
    for ds in datasources:
        error: Optional[Exception] = None
        try:
            grafana.check_datasource_health(ds.id)
        except _CALL_ERRORS as exc:
            error = exc
            if ds.type == "prometheus":
                try:
                    grafana.proxy_query(ds.id, "up", timeout=proxy_timeout)
                    error = None
                except _CALL_ERRORS as proxy_exc:
                    error = proxy_exc
        detail = f"{ds.type} -> {ds.url}"
        if error is None:
            results.append(CheckResult("Datasource", ds.name, OK, detail))
        else:
            results.append(CheckResult("Datasource", ds.name, FAIL, f"{detail} ({error})"))
    return results


def check_alerts(prometheus: PrometheusClient) -> List[CheckResult]:
    try:
        alerts = prometheus.query_alerts()
    except _CALL_ERRORS as exc:
        return [CheckResult("Prometheus", "Alerts", WARN, f"could not query alerts: {exc}")]

    firing = [a for a in alerts if a.state == "firing"]
    pending = sum(1 for a in alerts if a.state == "pending")
    if not firing and not pending:
        return [CheckResult("Prometheus", "Alerts", OK, "no alerts firing")]

    results = [
        CheckResult(
            "Prometheus",
            "Alerts",
            WARN if firing else OK,
            f"{len(firing)} firing, {pending} pending",
        )
    ]
    if firing:
        counts = Counter(a.labels.get("alertname") or "unnamed" for a in firing)
        summary = [name if n == 1 else f"{name} (x{n})" for name, n in counts.items()]
        results.append(CheckResult("Prometheus", "Firing alerts", WARN, ", ".join(summary)))
    return results


def run_checks(
    opts: CheckOptions,
    *,
    grafana: Optional[GrafanaClient] = None,
    prometheus: Optional[PrometheusClient] = None,
    alertmanager_transport: Optional[httpx.BaseTransport] = None,
) -> List[CheckResult]:
    """Run every check in a fixed order and return all results."""
    with ExitStack() as stack:
        if grafana is None:
            grafana = stack.enter_context(
                GrafanaClient(
                    opts.grafana.url,
                    opts.grafana.user,
                    opts.grafana.password,
                    opts.health_timeout_seconds,
                )
            )
        if prometheus is None:
            prometheus = stack.enter_context(
                PrometheusClient(opts.prometheus_url, opts.health_timeout_seconds)
            )

        results: List[CheckResult] = []
        results += check_grafana(grafana)
        results += check_prometheus(prometheus)
        results += check_alertmanager(
            opts.alertmanager_url, opts.health_timeout_seconds, alertmanager_transport
        )
        results += check_datasources(grafana, opts.proxy_timeout_seconds)
        results += check_alerts(prometheus)

    for r in results:
        if r.status != OK:
            logger.debug(
                "check.result",
                extra={"component": r.component, "check": r.check, "status": r.status},
            )
    return results


def has_failures(results: List[CheckResult]) -> bool:
    return any(r.status == FAIL for r in results)


def format_results(results: List[CheckResult]) -> str:
    """Render results as a fixed-width table."""
    lines = [f"{'COMPONENT':<14} {'CHECK':<20} {'STATUS':<6} DETAIL", "-" * 80]
    for r in results:
        marker = _MARKERS.get(r.status, "  ")
        lines.append(f"{r.component:<14} {r.check:<20} [{marker}]   {r.detail}")
    return "\n".join(lines) + "\n"
