"""Stack health checks with fake clients and a mocked Alertmanager."""

from __future__ import annotations

from typing import List

import httpx

from conftest import FakeGrafana, FakePrometheus
from monstack.adapters.prometheus import Alert
from monstack.check import (
    CheckResult,
    check_alerts,
    check_datasources,
    check_prometheus,
    format_results,
    has_failures,
    run_checks,
)
from monstack.config.models import CheckOptions


def _alertmanager(status: int) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/-/healthy"
        return httpx.Response(status)

    return httpx.MockTransport(handler)


def _vector(*values: str) -> dict:
    return {
        "resultType": "vector",
        "result": [{"metric": {"instance": f"i{n}"}, "value": [1.0, v]} for n, v in enumerate(values)],
    }


def _by_check(results: List[CheckResult]) -> dict:
    return {(r.component, r.check): r for r in results}


def test_healthy_stack(populated_grafana: FakeGrafana) -> None:
    prom = FakePrometheus()
    prom.instant = _vector("1", "1")
    results = run_checks(
        CheckOptions(),
        grafana=populated_grafana,
        prometheus=prom,
        alertmanager_transport=_alertmanager(200),
    )

    checks = _by_check(results)
    assert checks[("Grafana", "Dashboards")].detail == "2 dashboards loaded"
    assert checks[("Prometheus", "Scrape targets")].detail == "2 up, 0 down"
    assert checks[("AlertManager", "API Health")].status == "ok"
    assert checks[("Datasource", "prometheus")].detail == "prometheus -> http://aprom:9090"
    assert checks[("Prometheus", "Alerts")].detail == "no alerts firing"
    assert not has_failures(results)
    assert [r.component for r in results][:2] == ["Grafana", "Grafana"]


def test_grafana_down_yields_single_failure() -> None:
    grafana = FakeGrafana()
    grafana.healthy = False
    results = run_checks(
        CheckOptions(),
        grafana=grafana,
        prometheus=FakePrometheus(),
        alertmanager_transport=_alertmanager(200),
    )
    grafana_results = [r for r in results if r.component == "Grafana" and r.check != "Datasources"]
    assert [(r.check, r.status) for r in grafana_results] == [("API Health", "fail")]
    assert has_failures(results)


def test_empty_grafana_warns(fake_grafana: FakeGrafana) -> None:
    results = run_checks(
        CheckOptions(),
        grafana=fake_grafana,
        prometheus=FakePrometheus(),
        alertmanager_transport=_alertmanager(200),
    )
    assert _by_check(results)[("Grafana", "Dashboards")].status == "warn"


def test_alertmanager_failures() -> None:
    results = run_checks(
        CheckOptions(),
        grafana=FakeGrafana(),
        prometheus=FakePrometheus(),
        alertmanager_transport=_alertmanager(503),
    )
    am = _by_check(results)[("AlertManager", "API Health")]
    assert (am.status, am.detail) == ("fail", "status 503")


def test_scrape_target_status() -> None:
    prom = FakePrometheus()
    prom.instant = _vector("1", "0")
    assert check_prometheus(prom)[1].status == "warn"
    prom.instant = _vector("0", "0")
    assert check_prometheus(prom)[1].status == "fail"
    assert check_prometheus(prom)[1].detail == "0 up, 2 down"


def test_datasource_proxy_fallback(populated_grafana: FakeGrafana) -> None:
    populated_grafana.unhealthy_datasources.update({1, 2})
    populated_grafana.proxy_ok.add(1)

    checks = _by_check(check_datasources(populated_grafana))
    assert checks[("Datasource", "prometheus")].status == "ok"
    am = checks[("Datasource", "alertmanager")]
    assert am.status == "fail"
    assert am.detail.startswith("alertmanager -> http://aalert:9093 (")


def test_datasource_listing_failure_warns(fake_grafana: FakeGrafana) -> None:
    fake_grafana.fail_list_datasources = True
    (result,) = check_datasources(fake_grafana)
    assert (result.component, result.check, result.status) == ("Grafana", "Datasources", "warn")


def test_firing_alerts_are_summarised() -> None:
    prom = FakePrometheus()
    prom.alerts = [
        Alert(labels={"alertname": "InstanceDown"}, state="firing"),
        Alert(labels={"alertname": "InstanceDown"}, state="firing"),
        Alert(labels={}, state="firing"),
        Alert(labels={"alertname": "DiskFull"}, state="pending"),
    ]
    alerts, firing = check_alerts(prom)
    assert (alerts.status, alerts.detail) == ("warn", "3 firing, 1 pending")
    assert firing.check == "Firing alerts"
    assert firing.detail == "InstanceDown (x2), unnamed"


def test_pending_only_is_ok() -> None:
    prom = FakePrometheus()
    prom.alerts = [Alert(labels={"alertname": "DiskFull"}, state="pending")]
    (result,) = check_alerts(prom)
    assert (result.status, result.detail) == ("ok", "0 firing, 1 pending")


def test_format_results_table() -> None:
    text = format_results(
        [
            CheckResult("Grafana", "API Health", "ok", "http://localhost:3000"),
            CheckResult("AlertManager", "API Health", "fail", "status 503"),
            CheckResult("Prometheus", "Alerts", "warn", "1 firing, 0 pending"),
        ]
    )
    lines = text.splitlines()
    assert lines[0].startswith("COMPONENT")
    assert set(lines[1]) == {"-"}
    assert "[OK]" in lines[2]
    assert "[XX]" in lines[3]
    assert "[!!]" in lines[4]
