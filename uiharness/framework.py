"""
Framework for the UI test orchestration harness.

Provides:
- Error types shared by provisioning, readiness, build and dispatch steps
- Harness configuration from environment variables
- Subprocess execution with captured streams
- Environment preflight checks
- Failure artifact directory management
"""

from __future__ import annotations

import json
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

# Project root detection
PROJECT_ROOT = Path(
    os.environ.get("UIHARNESS_PROJECT_ROOT", Path.cwd())
).resolve()


class PreflightError(Exception):
    """Raised when preflight checks fail."""
    pass


class ProvisioningError(PreflightError):
    """Raised when the build backend or runtime environment cannot be started."""
    pass


class ReadinessTimeout(PreflightError):
    """Raised when the runtime environment never became interactive."""

    def __init__(self, name: str, attempts: int, interval: float):
        self.name = name
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            f"Environment {name!r} not ready after {attempts} attempts "
            f"({attempts * interval:.1f}s)"
        )


class BuildError(PreflightError):
    """Raised when compiling the test binary fails.

    ``diagnostics`` holds the compiler output exactly as produced.
    """

    def __init__(self, message: str, diagnostics: str = ""):
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostics:
            return f"{base}\n{self.diagnostics}"
        return base


class GeometryMismatch(PreflightError):
    """Raised when a work-area check prints something other than expected."""

    def __init__(self, config: str, expected: str, actual: str):
        self.config = config
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Geometry check {config!r}: expected '{expected}', got '{actual}'"
        )


class WorkAreaError(ValueError):
    """Raised when panel reservations exceed the monitor bounds."""
    pass


@dataclass(frozen=True)
class HarnessConfig:
    """Settings for one orchestration run.

    Defaults come from environment variables; CLI flags override them via
    :meth:`with_overrides`.
    """

    project_root: Path = PROJECT_ROOT
    build_mode: str = "debug"
    ci: bool = False
    runtime_name: str = "widgem_xfce"
    runtime_image: str = "widgem_xfce"
    builder_image: str = "widgem_builder"
    test_package: str = "widgem_tests"
    work_area_binary: str = "work_area"
    vnc_port: int = 25901
    geometry_vnc_port: int = 25902
    mount_target: str = "/app"
    docker_dir: str = ""
    fixtures_dir: str = "tests/xfce"
    snapshots_dir: str = "tests/snapshots"
    forwarded_env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "HarnessConfig":
        env = os.environ if environ is None else environ
        build_mode = env.get("BUILD_MODE", "debug")
        if build_mode != "release":
            build_mode = "debug"
        try:
            vnc_port = int(env.get("UIHARNESS_VNC_PORT", cls.vnc_port))
        except ValueError:
            raise PreflightError(
                f"UIHARNESS_VNC_PORT must be an integer, got {env['UIHARNESS_VNC_PORT']!r}"
            ) from None
        forwarded = {
            key: env[key]
            for key in ("NO_COLOR", "CARGO_TERM_COLOR")
            if key in env
        }
        return cls(
            project_root=Path(env.get("UIHARNESS_PROJECT_ROOT", PROJECT_ROOT)).resolve(),
            build_mode=build_mode,
            ci=bool(env.get("CI")),
            runtime_name=env.get("UIHARNESS_RUNTIME_NAME", cls.runtime_name),
            runtime_image=env.get("UIHARNESS_RUNTIME_IMAGE", cls.runtime_image),
            builder_image=env.get("UIHARNESS_BUILDER_IMAGE", cls.builder_image),
            test_package=env.get("UIHARNESS_TEST_PACKAGE", cls.test_package),
            vnc_port=vnc_port,
            forwarded_env=forwarded,
        )

    def with_overrides(self, **kwargs) -> "HarnessConfig":
        """Return a copy with every non-None keyword applied."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **changes)

    @property
    def release(self) -> bool:
        return self.build_mode == "release"

    @property
    def docker_path(self) -> Path:
        """Directory holding the runtime and builder Dockerfiles."""
        if self.docker_dir:
            return self.project_root / self.docker_dir
        return Path(__file__).resolve().parent / "docker"

    @property
    def snapshots_path(self) -> Path:
        return self.project_root / self.snapshots_dir

    @property
    def fixtures_path(self) -> Path:
        return self.project_root / self.fixtures_dir

    def fixture_file(self, config_name: str) -> Path:
        return self.fixtures_path / f"xfce4-panel-{config_name}.xml"


@dataclass
class CommandResult:
    """Exit status and captured streams of one command."""

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(shlex.quote(a) for a in self.args)

    def last_line(self) -> str:
        """Return the last non-empty stdout line (like ``| tail -1``)."""
        lines = [l for l in self.stdout.splitlines() if l.strip()]
        return lines[-1].strip() if lines else ""


Runner = Callable[..., CommandResult]


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    capture: bool = True,
    verbose: bool = False,
) -> CommandResult:
    """Run a command to completion and return its result.

    A missing executable or a timeout is reported as a non-zero result
    with the reason on stderr, so callers only ever branch on the exit
    code.
    """
    args = [str(a) for a in cmd]
    if verbose:
        print(f"+ {' '.join(shlex.quote(a) for a in args)}")
    try:
        proc = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        return CommandResult(args, 127, "", f"command not found: {exc.filename}")
    except subprocess.TimeoutExpired:
        return CommandResult(args, 124, "", f"timed out after {timeout}s")
    return CommandResult(args, proc.returncode, proc.stdout or "", proc.stderr or "")


def check_binary(name: str, required: bool = True) -> Optional[str]:
    """Check if a binary exists in PATH."""
    path = shutil.which(name)
    if required and path is None:
        raise PreflightError(f"Required binary not found: {name}")
    return path


def preflight_check(native_build: bool, verbose: bool = False) -> Dict[str, str]:
    """
    Run preflight checks for required host tools.

    Returns dict of binary paths.
    Raises PreflightError if critical requirements missing.
    """
    binaries = {}

    required = [
        ('docker', 'Container runtime (install docker)'),
    ]
    if native_build:
        required.append(('cargo', 'Rust toolchain (install rustup)'))

    missing = []
    for binary, description in required:
        try:
            binaries[binary] = check_binary(binary, required=True)
            if verbose:
                print(f"✓ Found {binary}: {binaries[binary]}")
        except PreflightError:
            missing.append(f"  - {binary}: {description}")

    if missing:
        msg = "Missing required binaries:\n" + "\n".join(missing)
        raise PreflightError(msg)

    return binaries


class ArtifactManager:
    """Persist failure artifacts under the fixed snapshots directory.

    Snapshot ``.new.png`` files are already written there by the test
    binary; this class adds run logs and reports next to them so the
    whole directory can be collected in one go.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.reports_dir = self.base_dir / "_reports"
        self.logs_dir = self.reports_dir / "logs"

    def create(self):
        """Create artifact directory structure."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def write_log(self, name: str, result: CommandResult) -> Path:
        """Save a command's streams for later inspection."""
        self.create()
        path = self.logs_dir / f"{name}.log"
        path.write_text(
            f"$ {result.command_line}\n"
            f"exit code: {result.returncode}\n"
            f"--- stdout ---\n{result.stdout}\n"
            f"--- stderr ---\n{result.stderr}\n",
            encoding="utf-8",
        )
        return path

    def write_report(self, name: str, payload: Dict) -> Path:
        self.create()
        path = self.reports_dir / f"{name}.json"
        payload = {"written_at": datetime.now().isoformat(timespec="seconds"), **payload}
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    def unconfirmed_snapshots(self) -> List[Path]:
        """Snapshots the test binary left behind for review."""
        if not self.base_dir.is_dir():
            return []
        return sorted(self.base_dir.rglob("*.new.png"))


def fail(message: str) -> None:
    print(f"ERROR: {message}", file=sys.stderr)
