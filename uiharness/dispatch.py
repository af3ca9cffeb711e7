"""Remote test dispatch: build, run the suite in the environment, check geometry.

Runs the UI test binary inside the runtime environment, then (for
full-suite runs) verifies the work area reported under a series of panel
configurations. Failure artifacts are kept under the snapshots directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from uiharness.build import BuildBackend, BuiltBinary
from uiharness.environment import (
    PANEL_CONFIG_TARGET,
    EnvironmentHandle,
    Orchestrator,
)
from uiharness.framework import (
    ArtifactManager,
    CommandResult,
    GeometryMismatch,
    HarnessConfig,
    PreflightError,
    ProvisioningError,
)
from uiharness.work_area import Edge, Panel, Rect, compute_work_area, format_work_areas

DEFAULT_MONITOR = Rect(0, 0, 1600, 900)


@dataclass(frozen=True)
class GeometryCheck:
    """Expected work area under one panel configuration.

    ``config`` names the panel fixture; None means the runtime image's
    stock configuration (one 26px top panel).
    """

    config: Optional[str]
    panels: Tuple[Panel, ...]
    expected: str
    monitor: Rect = DEFAULT_MONITOR

    @property
    def label(self) -> str:
        return self.config or "default"

    def oracle(self) -> str:
        return format_work_areas([compute_work_area(self.monitor, self.panels)])


GEOMETRY_CHECKS: Tuple[GeometryCheck, ...] = (
    GeometryCheck(None, (Panel(Edge.TOP, 26, 1600),), "[(0, 27, 1600, 873)]"),
    GeometryCheck("top50", (Panel(Edge.TOP, 50, 1600),), "[(0, 51, 1600, 849)]"),
    # 900 - 51 - 26 = 823
    GeometryCheck(
        "top50-bottom25",
        (Panel(Edge.TOP, 50, 1600), Panel(Edge.BOTTOM, 25, 1600)),
        "[(0, 51, 1600, 823)]",
    ),
    GeometryCheck(
        "left26-bottom48",
        (Panel(Edge.LEFT, 26, 900), Panel(Edge.BOTTOM, 48, 1600)),
        "[(27, 0, 1573, 851)]",
    ),
    GeometryCheck(
        "right26-bottom48",
        (Panel(Edge.RIGHT, 26, 900), Panel(Edge.BOTTOM, 48, 1600)),
        "[(0, 0, 1573, 851)]",
    ),
    GeometryCheck(
        "middle-vertical-bottom48",
        (Panel(Edge.NONE, 26, 900), Panel(Edge.BOTTOM, 48, 1600)),
        "[(0, 0, 1600, 851)]",
    ),
)


@dataclass
class GeometryResult:
    config: str
    expected: str
    actual: str

    @property
    def passed(self) -> bool:
        return self.expected == self.actual


@dataclass
class RunResult:
    """Everything one dispatch produced."""

    binary_args: List[str]
    tests: Optional[CommandResult] = None
    geometry: List[GeometryResult] = field(default_factory=list)
    error: Optional[str] = None
    failure_artifacts: List[Path] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        tests_ok = self.tests is not None and self.tests.ok
        return tests_ok and self.error is None and all(g.passed for g in self.geometry)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1


class Dispatcher:
    """Drive one test run against an explicitly provisioned environment."""

    def __init__(
        self,
        config: HarnessConfig,
        orchestrator: Orchestrator,
        backend: BuildBackend,
        artifacts: Optional[ArtifactManager] = None,
        checks: Sequence[GeometryCheck] = GEOMETRY_CHECKS,
        verbose: bool = False,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.backend = backend
        self.artifacts = artifacts or ArtifactManager(config.snapshots_path)
        self.checks = tuple(checks)
        self.verbose = verbose

    def run(self, binary_args: Sequence[str] = ()) -> RunResult:
        """Build, run and check; returns once everything has been recorded.

        Provisioning, readiness and build failures propagate to the caller.
        """
        result = RunResult(list(binary_args))
        full_suite = not binary_args
        steps = 4 if full_suite else 3

        print(f"[1/{steps}] Provisioning runtime environment...")
        env = self.orchestrator.ensure_runtime()

        print(f"\n[2/{steps}] Building test binaries...")
        built = self.backend.build()

        try:
            print(f"\n[3/{steps}] Running tests in {env.name}...")
            result.tests = self.run_tests(env, built, binary_args)

            if full_suite:
                print(f"\n[4/{steps}] Running geometry checks...")
                try:
                    self.run_geometry_checks(env, built, result)
                except GeometryMismatch as exc:
                    print(f"Expected '{exc.expected}', got '{exc.actual}'")
                    result.error = str(exc)
                else:
                    print("✓ extra tests succeeded")
        except PreflightError as exc:
            # Keep what was collected so far, then abort.
            result.error = str(exc)
            self.persist_failures(result)
            raise

        if not result.passed:
            self.persist_failures(result)
        return result

    def run_tests(
        self, env: EnvironmentHandle, built: BuiltBinary, binary_args: Sequence[str]
    ) -> CommandResult:
        """Invoke the suite; an empty argument list runs every test."""
        args = list(binary_args) or ["test"]
        result = env.exec([built.path(), *args])
        if result.stdout:
            print(result.stdout, end="" if result.stdout.endswith("\n") else "\n")
        if result.stderr:
            print(result.stderr, end="" if result.stderr.endswith("\n") else "\n")
        if result.ok:
            print("✓ Test binary exited successfully")
        else:
            print(f"✗ Test binary exited with code {result.returncode}")
        return result

    def check_work_area(self, env: EnvironmentHandle, built: BuiltBinary, check: GeometryCheck) -> GeometryResult:
        res = env.exec([built.path(self.config.work_area_binary)], timeout=120.0)
        if self.verbose or not res.ok:
            self.artifacts.write_log(f"work_area-{check.label}", res)
        actual = res.last_line() if res.ok else f"<exit code {res.returncode}> {res.last_line()}".strip()
        return GeometryResult(check.label, check.expected, actual)

    def run_geometry_checks(
        self, env: EnvironmentHandle, built: BuiltBinary, result: RunResult
    ) -> None:
        """Run every geometry check in order, stopping at the first mismatch."""
        for check in self.checks:
            if check.config is None:
                outcome = self.check_work_area(env, built, check)
            else:
                fixture = self.config.fixture_file(check.config)
                if not fixture.is_file():
                    raise ProvisioningError(f"Panel configuration fixture not found: {fixture}")
                spec = self.orchestrator.runtime_spec(
                    name=f"{self.config.runtime_name}2",
                    vnc_port=self.config.geometry_vnc_port,
                    extra_mounts=[(fixture, PANEL_CONFIG_TARGET)],
                )
                with self.orchestrator.temporary_environment(spec) as geometry_env:
                    outcome = self.check_work_area(geometry_env, built, check)

            result.geometry.append(outcome)
            if not outcome.passed:
                raise GeometryMismatch(outcome.config, outcome.expected, outcome.actual)
            print(f"✓ work area [{outcome.config}]: {outcome.actual}")

    def persist_failures(self, result: RunResult) -> None:
        """Keep logs, reports and unconfirmed snapshots for later collection."""
        self.artifacts.create()
        if result.tests is not None:
            self.artifacts.write_log("tests", result.tests)
        result.failure_artifacts = self.artifacts.unconfirmed_snapshots()
        report = self.artifacts.write_report(
            "run",
            {
                "binary_args": result.binary_args,
                "tests_exit_code": result.tests.returncode if result.tests else None,
                "geometry": [
                    {"config": g.config, "expected": g.expected, "actual": g.actual, "passed": g.passed}
                    for g in result.geometry
                ],
                "error": result.error,
                "unconfirmed_snapshots": [str(p) for p in result.failure_artifacts],
            },
        )
        print(f"Failure artifacts saved under {self.artifacts.base_dir} (report: {report.name})")
