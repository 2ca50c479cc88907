"""Container runtime CLI driver and readiness polling."""

from __future__ import annotations

import subprocess
from typing import List

import httpx
import pytest

from monstack.adapters import runtime as runtime_mod
from monstack.adapters.runtime import (
    CLIContainerRuntime,
    ContainerConfig,
    MountConfig,
    container_name,
    detect_runtime,
    network_name,
)
from monstack.errors import ConnectivityError, RuntimeCommandError


class _Recorder:
    """``subprocess.run`` stand-in returning queued results."""

    def __init__(self, *results: subprocess.CompletedProcess) -> None:
        self.calls: List[List[str]] = []
        self._results = list(results)

    def __call__(self, cmd, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(list(cmd))
        if self._results:
            return self._results.pop(0)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def _done(rc: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess([], rc, stdout=stdout, stderr=stderr)


def test_names_are_deterministic() -> None:
    assert network_name(2) == "monstack-net-2"
    assert container_name("aprom", 9090, 9090, 1) == "aprom-s1"
    assert container_name("aprom", 9091, 9090, 1) == "aprom-9091-s1"
    assert container_name("agraf", 3001, 3000, 0) == "agraf-3001-s0"


def test_create_network_reuses_existing() -> None:
    runner = _Recorder(_done(0, "[{}]"))
    rt = CLIContainerRuntime("docker", runner=runner)
    assert rt.create_network(1) == "monstack-net-1"
    assert runner.calls == [["docker", "network", "inspect", "monstack-net-1"]]


def test_create_network_creates_when_missing() -> None:
    runner = _Recorder(_done(1, stderr="no such network"), _done(0, "abc"))
    rt = CLIContainerRuntime("podman", runner=runner)
    rt.create_network(3)
    assert runner.calls[1] == ["podman", "network", "create", "monstack-net-3"]


def test_start_container_builds_run_command() -> None:
    runner = _Recorder(_done(0, "0123456789abcdef\n"))
    rt = CLIContainerRuntime("docker", runner=runner)
    cfg = ContainerConfig(
        name="aprom-9091-s1",
        image="prom/prometheus:v3.9.1",
        network="monstack-net-1",
        port_bindings={"9090/tcp": "9091"},
        command=["--config.file=/etc/prometheus/prometheus.yml"],
        env=["A=1"],
        mounts=[
            MountConfig(source="/host/prometheus.yml", target="/etc/prometheus/prometheus.yml", read_only=True),
            MountConfig(source="/host/data", target="/prometheus"),
        ],
    )
    assert rt.start_container(cfg) == "0123456789abcdef"
    assert runner.calls[0] == [
        "docker", "run", "-d",
        "--name", "aprom-9091-s1",
        "--network", "monstack-net-1",
        "-p", "9091:9090/tcp",
        "-e", "A=1",
        "-v", "/host/prometheus.yml:/etc/prometheus/prometheus.yml:ro",
        "-v", "/host/data:/prometheus",
        "prom/prometheus:v3.9.1",
        "--config.file=/etc/prometheus/prometheus.yml",
    ]


def test_command_failure_raises_with_stderr() -> None:
    runner = _Recorder(_done(125, stderr="port is already allocated"))
    rt = CLIContainerRuntime("docker", runner=runner)
    with pytest.raises(RuntimeCommandError, match="port is already allocated"):
        rt.start_container(ContainerConfig(name="x", image="busybox"))


def test_command_timeout_raises() -> None:
    def runner(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    rt = CLIContainerRuntime("docker", timeout=1.0, runner=runner)
    with pytest.raises(RuntimeCommandError):
        rt.start_container(ContainerConfig(name="x", image="busybox"))


def test_wait_for_health_polls_until_ready() -> None:
    statuses = [503, 503, 200]
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(statuses.pop(0))

    rt = CLIContainerRuntime(
        "docker", sleep=sleeps.append, transport=httpx.MockTransport(handler)
    )
    rt.wait_for_health("http://localhost:9091/-/ready", 35, 1.0)
    assert sleeps == [1.0, 1.0]


def test_wait_for_health_gives_up_after_budget() -> None:
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    rt = CLIContainerRuntime(
        "docker", sleep=sleeps.append, transport=httpx.MockTransport(handler)
    )
    with pytest.raises(ConnectivityError, match="not healthy after 3 attempts"):
        rt.wait_for_health("http://localhost:3001/api/health", 3, 0.5)
    assert sleeps == [0.5, 0.5]


def test_detect_runtime_prefers_docker(monkeypatch: pytest.MonkeyPatch) -> None:
    available = {"docker": "/usr/bin/docker", "podman": "/usr/bin/podman"}
    monkeypatch.setattr(runtime_mod.shutil, "which", available.get)
    assert detect_runtime() == "docker"
    assert detect_runtime("podman") == "podman"


def test_detect_runtime_falls_back_and_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(runtime_mod.shutil, "which", {"podman": "/bin/podman"}.get)
    assert detect_runtime() == "podman"

    monkeypatch.setattr(runtime_mod.shutil, "which", lambda name: None)
    with pytest.raises(RuntimeCommandError, match="no container runtime found"):
        detect_runtime()
    with pytest.raises(RuntimeCommandError, match="unsupported"):
        detect_runtime("lxc")
