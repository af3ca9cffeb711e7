"""Build backends for the native test binaries.

The host may not be able to produce binaries that run inside the runtime
image, so by default compilation is delegated to a builder container that
shares the working tree. When the host runs the same OS as the runtime
image (CI), the binaries are built directly on the host instead. Either
way the result is a directory path as seen from inside the runtime
environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from uiharness.environment import ContainerSpec, DockerCLI
from uiharness.framework import BuildError, HarnessConfig, Runner, run_command

RUST_TOOLCHAIN = "1.87.0"
RUSTUP_BOOTSTRAP = (
    "command -v rustup || "
    "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | "
    f"sh -s -- --default-toolchain {RUST_TOOLCHAIN} --profile minimal -y"
)


def cargo_build_args(package: str, release: bool) -> List[str]:
    args = ["cargo", "build", "--package", package, "--locked"]
    if release:
        args.append("--release")
    return args


@dataclass(frozen=True)
class BuiltBinary:
    """Compiled package, located by its directory inside the environment."""

    package: str
    bin_dir: str

    def path(self, binary: Optional[str] = None) -> str:
        return f"{self.bin_dir}/{binary or self.package}"


class BuildBackend:
    name = "abstract"

    def __init__(self, config: HarnessConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose

    def build(self, package: Optional[str] = None) -> BuiltBinary:
        raise NotImplementedError

    def _failed(self, package: str, stdout: str, stderr: str) -> BuildError:
        diagnostics = "\n".join(s for s in (stdout.rstrip(), stderr.rstrip()) if s)
        return BuildError(f"Building {package} failed ({self.name} build)", diagnostics)


class HostBuild(BuildBackend):
    """Compile on the host with cargo."""

    name = "host"

    def __init__(self, config: HarnessConfig, runner: Runner = run_command, verbose: bool = False):
        super().__init__(config, verbose)
        self.runner = runner

    def build(self, package: Optional[str] = None) -> BuiltBinary:
        package = package or self.config.test_package
        print(f"Building {package} on the host ({self.config.build_mode})...")
        result = self.runner(
            cargo_build_args(package, self.config.release),
            cwd=self.config.project_root,
            verbose=self.verbose,
        )
        if not result.ok:
            raise self._failed(package, result.stdout, result.stderr)
        print(f"✓ Built {package}")
        return BuiltBinary(
            package, f"{self.config.mount_target}/target/{self.config.build_mode}"
        )


class DockerBuild(BuildBackend):
    """Compile inside the builder image, caching under target/docker."""

    name = "docker"

    def __init__(self, config: HarnessConfig, docker: DockerCLI, verbose: bool = False):
        super().__init__(config, verbose)
        self.docker = docker

    def script(self, package: str) -> str:
        return RUSTUP_BOOTSTRAP + "\n" + " ".join(
            cargo_build_args(package, self.config.release)
        )

    def build(self, package: Optional[str] = None) -> BuiltBinary:
        package = package or self.config.test_package
        print(f"Building {package} in {self.config.builder_image} ({self.config.build_mode})...")
        spec = ContainerSpec(
            name="",
            image=self.config.builder_image,
            mounts=[(self.config.project_root, self.config.mount_target)],
            env=self.config.forwarded_env,
            command=[self.script(package)],
        )
        result = self.docker.run(spec)
        if not result.ok:
            raise self._failed(package, result.stdout, result.stderr)
        print(f"✓ Built {package}")
        return BuiltBinary(
            package,
            f"{self.config.mount_target}/target/docker/target/{self.config.build_mode}",
        )


def select_build_backend(
    config: HarnessConfig,
    docker: DockerCLI,
    native: Optional[bool] = None,
    runner: Runner = run_command,
    verbose: bool = False,
) -> BuildBackend:
    """Pick the build strategy once, at startup.

    ``native`` forces a choice; otherwise a CI host (same OS as the
    runtime image) builds natively and everything else delegates.
    """
    if native is None:
        native = config.ci
    if native:
        return HostBuild(config, runner=runner, verbose=verbose)
    return DockerBuild(config, docker, verbose=verbose)
