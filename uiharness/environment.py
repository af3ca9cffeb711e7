"""
Provisioning of the isolated desktop environment and the build image.

Provides:
- A thin wrapper over the docker CLI
- Container descriptions and explicit environment handles
- Idempotent setup, reuse and forced teardown of environments
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from uiharness.framework import (
    CommandResult,
    HarnessConfig,
    ProvisioningError,
    Runner,
    run_command,
)
from uiharness.readiness import (
    DEFAULT_ATTEMPTS,
    DEFAULT_INTERVAL,
    CommandReadinessProbe,
    ReadinessMonitor,
)

# Display port inside the runtime image (tigervncserver :1)
CONTAINER_VNC_PORT = 5901
PANEL_CONFIG_TARGET = (
    "/root/.config/xfce4/xfconf/xfce-perchannel-xml/xfce4-panel.xml"
)


@dataclass
class ContainerSpec:
    """How to start one container."""

    name: str
    image: str
    mounts: List[Tuple[Path, str]] = field(default_factory=list)
    ports: List[Tuple[int, int]] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    command: List[str] = field(default_factory=list)

    def run_args(self, detach: bool = False, remove: bool = False) -> List[str]:
        args = ["docker", "run"]
        if detach:
            args.append("--detach")
        if remove:
            args.append("--rm")
        if self.name:
            args.extend(["--name", self.name])
        for source, target in self.mounts:
            args.extend(["--mount", f"type=bind,source={source},target={target}"])
        for host_port, container_port in self.ports:
            args.extend(["--publish", f"{host_port}:{container_port}"])
        for key, value in self.env.items():
            args.extend(["--env", f"{key}={value}"])
        args.append(self.image)
        args.extend(self.command)
        return args


class DockerCLI:
    """Run docker commands and turn failures into ProvisioningError."""

    def __init__(self, runner: Runner = run_command, verbose: bool = False):
        self.runner = runner
        self.verbose = verbose

    def _run(self, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        return self.runner(list(args), timeout=timeout, verbose=self.verbose)

    def _check(self, result: CommandResult, what: str) -> CommandResult:
        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            raise ProvisioningError(
                f"Failed to {what} (exit code {result.returncode}): {detail}\n"
                f"Command: {result.command_line}"
            )
        return result

    def image_exists(self, tag: str) -> bool:
        result = self._run(["docker", "images", "-q", tag], timeout=30.0)
        return result.ok and bool(result.stdout.strip())

    def build_image(self, tag: str, dockerfile: Path, context: Path) -> None:
        print(f"Building image {tag} from {dockerfile.name}...")
        result = self._run(
            ["docker", "build", "--file", str(dockerfile), "--tag", tag, str(context)]
        )
        self._check(result, f"build image {tag}")
        print(f"✓ Image {tag} built")

    def is_running(self, name: str) -> bool:
        result = self._run(["docker", "ps", "-q", "-f", f"name=^{name}$"], timeout=30.0)
        return result.ok and bool(result.stdout.strip())

    def remove(self, name: str) -> None:
        """Force-remove a container; a missing container is not an error."""
        result = self._run(["docker", "rm", "--force", name], timeout=60.0)
        if not result.ok and "no such container" not in result.stderr.lower():
            self._check(result, f"remove container {name}")

    def start(self, spec: ContainerSpec) -> None:
        self._check(self._run(spec.run_args(detach=True), timeout=120.0), f"start container {spec.name}")

    def run(self, spec: ContainerSpec, timeout: Optional[float] = None) -> CommandResult:
        """Run a one-off container to completion."""
        return self._run(spec.run_args(remove=True), timeout=timeout)

    def exec(
        self,
        name: str,
        cmd: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        detach: bool = False,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        args = ["docker", "exec"]
        if detach:
            args.append("--detach")
        for key, value in (env or {}).items():
            args.extend(["--env", f"{key}={value}"])
        args.append(name)
        args.extend(cmd)
        return self._run(args, timeout=timeout)


class EnvironmentHandle:
    """A started runtime environment.

    Handles are passed explicitly to whatever needs the environment; two
    handles with different names are independent environments.
    """

    def __init__(self, docker: DockerCLI, spec: ContainerSpec, env: Optional[Dict[str, str]] = None):
        self.docker = docker
        self.spec = spec
        self.env = dict(env or {})

    @property
    def name(self) -> str:
        return self.spec.name

    def exec(self, cmd: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        return self.docker.exec(self.name, cmd, env=self.env, timeout=timeout)

    def spawn(self, cmd: Sequence[str]) -> CommandResult:
        return self.docker.exec(self.name, cmd, env=self.env, detach=True, timeout=30.0)

    def is_running(self) -> bool:
        return self.docker.is_running(self.name)

    def readiness_probe(self) -> CommandReadinessProbe:
        return CommandReadinessProbe(
            execute=lambda cmd: self.exec(cmd, timeout=10.0),
            spawn=self.spawn,
        )


class Orchestrator:
    """Provision, reuse and tear down environments for one harness config."""

    def __init__(
        self,
        config: HarnessConfig,
        docker: Optional[DockerCLI] = None,
        attempts: int = DEFAULT_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        verbose: bool = False,
    ):
        self.config = config
        self.docker = docker or DockerCLI(verbose=verbose)
        self.attempts = attempts
        self.interval = interval
        self.sleep = sleep
        self.verbose = verbose

    # Images

    def ensure_builder_image(self, force: bool = False) -> None:
        """Build the image used for delegated builds (not needed under CI)."""
        if self.config.ci:
            return
        tag = self.config.builder_image
        if not force and self.docker.image_exists(tag):
            return
        # Empty build context so the working tree is not sent to the daemon
        context = self.config.project_root / "target" / ".empty"
        context.mkdir(parents=True, exist_ok=True)
        self.docker.build_image(tag, self.config.docker_path / "builder.Dockerfile", context)

    def ensure_runtime_image(self, force: bool = False) -> None:
        tag = self.config.runtime_image
        if not force and self.docker.image_exists(tag):
            return
        docker_path = self.config.docker_path
        self.docker.build_image(tag, docker_path / "xfce.Dockerfile", docker_path)

    # Environments

    def runtime_spec(
        self,
        name: Optional[str] = None,
        vnc_port: Optional[int] = None,
        extra_mounts: Sequence[Tuple[Path, str]] = (),
    ) -> ContainerSpec:
        return ContainerSpec(
            name=name or self.config.runtime_name,
            image=self.config.runtime_image,
            mounts=[(self.config.project_root, self.config.mount_target), *extra_mounts],
            ports=[(vnc_port or self.config.vnc_port, CONTAINER_VNC_PORT)],
            command=["sleep", "infinity"],
        )

    def handle_for(self, spec: ContainerSpec) -> EnvironmentHandle:
        return EnvironmentHandle(self.docker, spec, env=self.config.forwarded_env)

    def wait_ready(self, handle: EnvironmentHandle) -> int:
        monitor = ReadinessMonitor(
            handle.readiness_probe(),
            name=handle.name,
            attempts=self.attempts,
            interval=self.interval,
            sleep=self.sleep,
            verbose=self.verbose,
        )
        return monitor.wait()

    def start(self, spec: ContainerSpec) -> EnvironmentHandle:
        """Start ``spec`` from scratch and wait until it is interactive."""
        self.docker.remove(spec.name)
        print(f"Starting environment {spec.name} from image {spec.image}...")
        self.docker.start(spec)
        handle = self.handle_for(spec)
        self.wait_ready(handle)
        return handle

    def setup(self) -> EnvironmentHandle:
        """Rebuild both images and restart the runtime environment."""
        self.ensure_builder_image(force=True)
        self.ensure_runtime_image(force=True)
        return self.start(self.runtime_spec())

    def ensure_runtime(self) -> EnvironmentHandle:
        """Reuse the runtime environment if it is running, else set it up."""
        spec = self.runtime_spec()
        if self.docker.is_running(spec.name):
            print(f"✓ Reusing running environment {spec.name}")
            handle = self.handle_for(spec)
            self.wait_ready(handle)
            return handle
        self.ensure_builder_image()
        self.ensure_runtime_image()
        return self.start(spec)

    def teardown(self, name: Optional[str] = None) -> None:
        name = name or self.config.runtime_name
        self.docker.remove(name)
        if self.verbose:
            print(f"✓ Removed environment {name}")

    @contextlib.contextmanager
    def temporary_environment(self, spec: ContainerSpec) -> Iterator[EnvironmentHandle]:
        """Start ``spec`` for the duration of a block, then remove it."""
        try:
            yield self.start(spec)
        finally:
            self.teardown(spec.name)
