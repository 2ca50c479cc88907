"""Text-level prometheus.yml rewriting."""

from __future__ import annotations

from monstack.migrate.rewrite import (
    replace_alertmanager_target,
    replace_static_target,
    rewrite_scrape_config,
)

CONFIG = """\
global:
  scrape_interval: 20s # every 20s

alerting:
  alertmanagers:
  - static_configs:
    - targets:
      - aalert:9093

scrape_configs:
- job_name: scylla
  file_sd_configs:
    - files:
      - /etc/scylla.d/prometheus/scylla_servers.yml
- job_name: grafana
  honor_labels: false
  static_configs:
    - targets:
      - old:3000
- job_name: 'prometheus'
  static_configs:
    - targets:
      - aprom:9090
"""


def _changed_lines(before: str, after: str):
    a, b = before.splitlines(), after.splitlines()
    assert len(a) == len(b)
    return [(x, y) for x, y in zip(a, b) if x != y]


def test_replace_static_target_changes_only_that_job() -> None:
    out = replace_static_target(CONFIG, "grafana", "new:3000")
    assert _changed_lines(CONFIG, out) == [("      - old:3000", "      - new:3000")]


def test_replace_static_target_quoted_job_name() -> None:
    out = replace_static_target(CONFIG, "prometheus", "localhost:9090")
    assert _changed_lines(CONFIG, out) == [("      - aprom:9090", "      - localhost:9090")]


def test_replace_static_target_unknown_job_leaves_text_unchanged() -> None:
    assert replace_static_target(CONFIG, "loki", "loki:3100") == CONFIG


def test_replace_alertmanager_target() -> None:
    out = replace_alertmanager_target(CONFIG, "aalert-9095-s1:9093")
    assert _changed_lines(CONFIG, out) == [
        ("      - aalert:9093", "      - aalert-9095-s1:9093")
    ]


def test_inline_target_list_does_not_match() -> None:
    inline = "alerting:\n  alertmanagers:\n  - static_configs:\n    - targets: ['am:9093']\n"
    assert replace_alertmanager_target(inline, "x:9093") == inline


def test_rewrite_scrape_config_reports_misses() -> None:
    out, missed = rewrite_scrape_config(
        CONFIG,
        {"grafana": "agraf-3001-s1:3000", "node_exporter": "n:9100"},
        alertmanager_target="aalert-9095-s1:9093",
    )
    assert missed == ["job:node_exporter"]
    assert "      - agraf-3001-s1:3000" in out
    assert "      - aalert-9095-s1:9093" in out
    assert "# every 20s" in out


def test_rewrite_scrape_config_without_alerting_block() -> None:
    text = "scrape_configs:\n- job_name: grafana\n  static_configs:\n    - targets:\n      - g:3000\n"
    out, missed = rewrite_scrape_config(text, {"grafana": "n:3000"}, alertmanager_target="a:9093")
    assert missed == ["alertmanager"]
    assert out.endswith("      - n:3000\n")


def test_job_without_static_targets_is_a_miss() -> None:
    text = (
        "scrape_configs:\n"
        "- job_name: grafana\n"
        "  file_sd_configs:\n"
        "    - files: [grafana.yml]\n"
        "- job_name: prometheus\n"
        "  static_configs:\n"
        "    - targets:\n"
        "      - aprom:9090\n"
    )
    out, missed = rewrite_scrape_config(text, {"grafana": "agraf-3001-s1:3000"})
    assert missed == ["job:grafana"]
    assert out == text
