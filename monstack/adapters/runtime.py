"""Container runtime collaborator (docker or podman CLI).

The clone flow needs only a narrow slice of a container runtime: create a
network, start detached containers, and poll a freshly started service until
it is ready. This module drives the ``docker``/``podman`` command line through
``subprocess`` so no daemon SDK is required; both CLIs accept the same flags
for these operations.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from typing import Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..errors import ConnectivityError, RuntimeCommandError

logger = logging.getLogger(__name__)

SUPPORTED_RUNTIMES = ("docker", "podman")


class MountConfig(BaseModel):
    """Bind mount of a host path into a container."""

    source: str
    target: str
    read_only: bool = False

    def as_flag(self) -> str:
        spec = f"{self.source}:{self.target}"
        return f"{spec}:ro" if self.read_only else spec


class ContainerConfig(BaseModel):
    """Everything needed to ``run -d`` one service container.

    Attributes
    ----------
    port_bindings: Dict[str, str]
        Container port spec (e.g., "9090/tcp") to host port.
    command: List[str]
        Arguments appended after the image name.
    env: List[str]
        ``KEY=VALUE`` environment entries.
    """

    name: str
    image: str
    network: str = ""
    port_bindings: Dict[str, str] = Field(default_factory=dict)
    command: List[str] = Field(default_factory=list)
    env: List[str] = Field(default_factory=list)
    mounts: List[MountConfig] = Field(default_factory=list)


def network_name(stack_id: int) -> str:
    """Network shared by the containers of one stack."""
    return f"monstack-net-{stack_id}"


def container_name(role: str, port: int, default_port: int, stack_id: int) -> str:
    """Deterministic container name for ``role`` published on ``port``.

    The stack id is always part of the name so two stacks never collide; the
    port is added only when it differs from the service's default port.
    """
    name = role if port == default_port else f"{role}-{port}"
    return f"{name}-s{stack_id}"


def detect_runtime(override: Optional[str] = None) -> str:
    """Return the runtime binary to use: the override, else docker, else podman."""
    if override:
        if override not in SUPPORTED_RUNTIMES:
            raise RuntimeCommandError(
                f"unsupported container runtime {override!r}; "
                f"expected one of {', '.join(SUPPORTED_RUNTIMES)}"
            )
        if shutil.which(override) is None:
            raise RuntimeCommandError(f"container runtime {override!r} not found on PATH")
        return override
    for candidate in SUPPORTED_RUNTIMES:
        if shutil.which(candidate) is not None:
            return candidate
    raise RuntimeCommandError("no container runtime found (install docker or podman)")


Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class CLIContainerRuntime:
    """Container runtime backed by the docker/podman CLI.

    Parameters
    ----------
    binary: str
        "docker" or "podman".
    timeout: float
        Timeout in seconds for each CLI invocation.
    runner: Callable
        ``subprocess.run``-compatible callable (tests inject a recorder).
    sleep: Callable[[float], None]
        Delay function used between readiness polls.
    transport: Optional[httpx.BaseTransport]
        Transport for readiness probes (tests inject ``httpx.MockTransport``).
    """

    def __init__(
        self,
        binary: str,
        timeout: float = 30.0,
        *,
        runner: Runner = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
        probe_timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.binary = binary
        self._timeout = timeout
        self._run_cmd = runner
        self._sleep = sleep
        self._probe_timeout = probe_timeout
        self._transport = transport

    @classmethod
    def detect(cls, override: Optional[str] = None, **kwargs) -> "CLIContainerRuntime":
        return cls(detect_runtime(override), **kwargs)

    def _run(self, args: List[str], what: str) -> str:
        cmd = [self.binary, *args]
        logger.debug("runtime.exec", extra={"cmd": cmd})
        try:
            proc = self._run_cmd(
                cmd, capture_output=True, text=True, timeout=self._timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RuntimeCommandError(f"{what}: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise RuntimeCommandError(f"{what}: exit {proc.returncode}: {stderr}")
        return (proc.stdout or "").strip()

    def create_network(self, stack_id: int) -> str:
        """Create the stack network, reusing it if it already exists."""
        name = network_name(stack_id)
        try:
            self._run(["network", "inspect", name], f"inspecting network {name}")
            logger.info("runtime.network.reused", extra={"network": name})
            return name
        except RuntimeCommandError:
            pass
        self._run(["network", "create", name], f"creating network {name}")
        logger.info("runtime.network.created", extra={"network": name})
        return name

    def start_container(self, cfg: ContainerConfig) -> str:
        """Start ``cfg`` detached and return the container id."""
        args = ["run", "-d", "--name", cfg.name]
        if cfg.network:
            args += ["--network", cfg.network]
        for container_port, host_port in cfg.port_bindings.items():
            args += ["-p", f"{host_port}:{container_port}"]
        for entry in cfg.env:
            args += ["-e", entry]
        for mount in cfg.mounts:
            args += ["-v", mount.as_flag()]
        args.append(cfg.image)
        args += cfg.command
        container_id = self._run(args, f"starting container {cfg.name}")
        logger.info(
            "runtime.container.started",
            extra={"container": cfg.name, "image": cfg.image, "id": container_id[:12]},
        )
        return container_id

    def wait_for_health(self, url: str, max_attempts: int, interval: float) -> None:
        """Poll ``url`` with a fixed delay until it answers 200.

        Raises
        ------
        ConnectivityError
            If every attempt failed.
        """
        last_error = "no attempts made"
        with httpx.Client(timeout=self._probe_timeout, transport=self._transport) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    resp = client.get(url)
                    if resp.status_code == 200:
                        logger.debug(
                            "runtime.health.ready", extra={"url": url, "attempt": attempt}
                        )
                        return
                    last_error = f"status {resp.status_code}"
                except httpx.HTTPError as exc:
                    last_error = str(exc) or type(exc).__name__
                if attempt < max_attempts:
                    self._sleep(interval)
        raise ConnectivityError(
            f"{url} not healthy after {max_attempts} attempts: {last_error}"
        )
