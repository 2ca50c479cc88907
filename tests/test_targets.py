"""Target-group reconstruction from active targets."""

from __future__ import annotations

from pathlib import Path

import yaml

from monstack.migrate.targets import (
    ActiveTarget,
    TargetGroup,
    dump_target_file,
    reconstruct_target_groups,
    write_target_files,
)


def _target(address: str = "", filepath: str = "", **labels: str) -> ActiveTarget:
    discovered = dict(labels)
    if address:
        discovered["__address__"] = address
    if filepath:
        discovered["__meta_filepath"] = filepath
    return ActiveTarget.model_validate({"discoveredLabels": discovered, "labels": {}})


def test_groups_targets_by_origin_file() -> None:
    groups = reconstruct_target_groups(
        [
            _target("10.0.0.1:9180", "/etc/targets/A.yml", job="scylla"),
            _target("10.0.0.2:9180", "/etc/targets/A.yml", job="scylla"),
            _target("10.0.0.3:9100", "/etc/targets/B.yml", job="node"),
            _target("localhost:9090", job="prometheus"),
        ]
    )

    assert set(groups) == {"/etc/targets/A.yml", "/etc/targets/B.yml"}
    assert len(groups["/etc/targets/A.yml"]) == 2
    assert len(groups["/etc/targets/B.yml"]) == 1
    all_addresses = [t for gs in groups.values() for g in gs for t in g.targets]
    assert "localhost:9090" not in all_addresses
    assert [g.targets for g in groups["/etc/targets/A.yml"]] == [
        ["10.0.0.1:9180"],
        ["10.0.0.2:9180"],
    ]


def test_internal_labels_are_stripped() -> None:
    groups = reconstruct_target_groups(
        [_target("h:1", "/f", __scheme__="http", job="x")]
    )
    assert groups["/f"] == [TargetGroup(targets=["h:1"], labels={"job": "x"})]


def test_every_internal_label_is_dropped_but_others_kept() -> None:
    groups = reconstruct_target_groups(
        [
            _target(
                "h:1",
                "/f",
                __metrics_path__="/metrics",
                __scrape_interval__="20s",
                __scrape_timeout__="15s",
                __meta_custom="kept",
                dc="dc1",
                cluster="c1",
            )
        ]
    )
    assert groups["/f"][0].labels == {"__meta_custom": "kept", "dc": "dc1", "cluster": "c1"}


def test_target_without_address_is_skipped() -> None:
    assert reconstruct_target_groups([_target("", "/f", job="x")]) == {}


def test_active_target_ignores_unknown_fields() -> None:
    target = ActiveTarget.model_validate(
        {
            "discoveredLabels": {"__address__": "h:1"},
            "labels": {"instance": "h:1"},
            "scrapePool": "scylla",
            "health": "up",
            "lastError": "",
        }
    )
    assert target.scrape_pool == "scylla"


def test_dump_target_file_is_file_sd_yaml() -> None:
    text = dump_target_file(
        [
            TargetGroup(targets=["h:1"], labels={"job": "x"}),
            TargetGroup(targets=["h:2"]),
        ]
    )
    assert yaml.safe_load(text) == [
        {"targets": ["h:1"], "labels": {"job": "x"}},
        {"targets": ["h:2"]},
    ]


def test_write_target_files_groups_by_directory(tmp_path: Path) -> None:
    mounts = write_target_files(
        tmp_path,
        {
            "/etc/scylla.d/prometheus/targets/scylla_servers.yml": [
                TargetGroup(targets=["10.0.0.1:9180"], labels={"dc": "dc1"})
            ],
            "/etc/scylla.d/prometheus/targets/node_exporter_servers.yml": [
                TargetGroup(targets=["10.0.0.1:9100"])
            ],
            "/other/manager.yml": [TargetGroup(targets=["10.0.0.9:5090"])],
        },
    )

    scylla_dir = tmp_path / "targets" / "_etc_scylla.d_prometheus_targets"
    other_dir = tmp_path / "targets" / "_other"
    assert mounts == {
        scylla_dir: "/etc/scylla.d/prometheus/targets",
        other_dir: "/other",
    }
    assert sorted(p.name for p in scylla_dir.iterdir()) == [
        "node_exporter_servers.yml",
        "scylla_servers.yml",
    ]
    assert yaml.safe_load((scylla_dir / "scylla_servers.yml").read_text()) == [
        {"targets": ["10.0.0.1:9180"], "labels": {"dc": "dc1"}}
    ]
