"""Dispatcher: test binary invocation, geometry checks, failure artifacts."""

import json

import pytest

from uiharness.build import BuildBackend, BuiltBinary
from uiharness.dispatch import GEOMETRY_CHECKS, Dispatcher
from uiharness.environment import DockerCLI, Orchestrator
from uiharness.framework import BuildError, ProvisioningError, ReadinessTimeout

WORK_AREA = "/app/target/debug/work_area"
TESTS_BIN = "/app/target/debug/widgem_tests"


class StubBackend(BuildBackend):
    name = "stub"

    def __init__(self, config, error=None):
        super().__init__(config)
        self.error = error
        self.builds = 0

    def build(self, package=None):
        self.builds += 1
        if self.error is not None:
            raise self.error
        return BuiltBinary(package or self.config.test_package, "/app/target/debug")


@pytest.fixture
def fixtures(config):
    config.fixtures_path.mkdir(parents=True)
    for check in GEOMETRY_CHECKS:
        if check.config:
            config.fixture_file(check.config).write_text("<channel name=\"xfce4-panel\"/>\n")
    return config.fixtures_path


@pytest.fixture
def healthy(runner):
    """A running environment whose work areas match every expectation."""
    runner.on(["docker", "ps"], stdout="3f2a\n")
    runner.on(["widgem_xfce", WORK_AREA], stdout="[(0, 27, 1600, 873)]\n")
    runner.on_sequence(
        ["widgem_xfce2", WORK_AREA],
        [(0, f"starting\n{c.expected}\n", "") for c in GEOMETRY_CHECKS if c.config],
    )
    return runner


def _dispatcher(config, runner, backend=None):
    orchestrator = Orchestrator(config, docker=DockerCLI(runner), sleep=lambda s: None)
    return Dispatcher(config, orchestrator, backend or StubBackend(config))


def test_every_expected_literal_matches_the_oracle():
    for check in GEOMETRY_CHECKS:
        assert check.oracle() == check.expected, check.label


def test_checks_cover_every_panel_layout():
    assert [c.label for c in GEOMETRY_CHECKS] == [
        "default",
        "top50",
        "top50-bottom25",
        "left26-bottom48",
        "right26-bottom48",
        "middle-vertical-bottom48",
    ]


def test_full_run_passes(config, healthy, fixtures, capsys):
    result = _dispatcher(config, healthy).run()

    assert result.exit_code == 0
    assert healthy.matching(["widgem_xfce", TESTS_BIN, "test"])
    assert [g.config for g in result.geometry] == [c.label for c in GEOMETRY_CHECKS]
    assert all(g.passed for g in result.geometry)
    assert "extra tests succeeded" in capsys.readouterr().out
    assert not (config.snapshots_path / "_reports").exists()


def test_geometry_environments_use_fixture_and_second_port(config, healthy, fixtures):
    _dispatcher(config, healthy).run()

    runs = healthy.matching(["docker", "run"])
    assert len(runs) == 5
    for run, check in zip(runs, [c for c in GEOMETRY_CHECKS if c.config]):
        assert "widgem_xfce2" in run
        assert "25902:5901" in run
        source = config.fixture_file(check.config)
        assert any(arg.startswith(f"type=bind,source={source},") for arg in run)
    assert len(healthy.matching(["docker", "rm", "--force", "widgem_xfce2"])) == 10


def test_selection_skips_geometry_checks(config, healthy, fixtures):
    result = _dispatcher(config, healthy).run(["test", "button"])
    assert result.exit_code == 0
    assert result.geometry == []
    assert healthy.matching(["widgem_xfce", TESTS_BIN, "test", "button"])
    assert not healthy.matching([WORK_AREA])


def test_failed_tests_persist_artifacts(config, healthy, fixtures):
    healthy.on([TESTS_BIN], 1, stdout="found issues:\n\nsnapshot mismatch\n")
    unconfirmed = config.snapshots_path / "button" / "01 - initial.new.png"
    unconfirmed.parent.mkdir(parents=True)
    unconfirmed.write_bytes(b"png")

    result = _dispatcher(config, healthy).run()

    assert result.exit_code == 1
    assert len(result.geometry) == len(GEOMETRY_CHECKS)
    assert result.failure_artifacts == [unconfirmed]
    report = json.loads((config.snapshots_path / "_reports" / "run.json").read_text())
    assert report["tests_exit_code"] == 1
    assert report["unconfirmed_snapshots"] == [str(unconfirmed)]
    log = (config.snapshots_path / "_reports" / "logs" / "tests.log").read_text()
    assert "snapshot mismatch" in log


def test_geometry_environment_timeout_still_persists_artifacts(config, healthy, fixtures):
    healthy.on([TESTS_BIN], 1, stdout="found issues:\n\nsnapshot mismatch\n")
    healthy.on(["widgem_xfce2", "xdotool", "getactivewindow"], 1)

    with pytest.raises(ReadinessTimeout):
        _dispatcher(config, healthy).run()

    reports = config.snapshots_path / "_reports"
    assert "snapshot mismatch" in (reports / "logs" / "tests.log").read_text()
    report = json.loads((reports / "run.json").read_text())
    assert report["tests_exit_code"] == 1
    assert "not ready" in report["error"]
    assert [g["config"] for g in report["geometry"]] == ["default"]
    assert healthy.calls[-1] == ["docker", "rm", "--force", "widgem_xfce2"]


def test_missing_fixture_persists_artifacts(config, healthy):
    with pytest.raises(ProvisioningError):
        _dispatcher(config, healthy).run()
    report = json.loads((config.snapshots_path / "_reports" / "run.json").read_text())
    assert "xfce4-panel-top50.xml" in report["error"]


def test_geometry_mismatch_aborts_remaining_checks(config, healthy, fixtures, capsys):
    healthy.on_sequence(
        ["widgem_xfce2", WORK_AREA],
        [(0, "[(0, 51, 1600, 849)]\n", ""), (0, "[(0, 51, 1600, 849)]\n", "")],
    )

    result = _dispatcher(config, healthy).run()

    assert result.exit_code == 1
    assert [g.config for g in result.geometry] == ["default", "top50", "top50-bottom25"]
    assert not result.geometry[-1].passed
    assert "'[(0, 51, 1600, 823)]'" in result.error
    assert "'[(0, 51, 1600, 849)]'" in result.error
    out = capsys.readouterr().out
    assert "Expected '[(0, 51, 1600, 823)]', got '[(0, 51, 1600, 849)]'" in out
    assert "extra tests succeeded" not in out
    assert len(healthy.matching(["docker", "run"])) == 2
    assert healthy.calls[-1] == ["docker", "rm", "--force", "widgem_xfce2"]
    report = json.loads((config.snapshots_path / "_reports" / "run.json").read_text())
    assert report["geometry"][-1]["passed"] is False


def test_failing_work_area_binary_is_a_mismatch(config, healthy, fixtures):
    healthy.on(["widgem_xfce", WORK_AREA], 101, stderr="panicked")
    result = _dispatcher(config, healthy).run()
    assert result.exit_code == 1
    assert result.geometry[0].actual.startswith("<exit code 101>")
    assert (config.snapshots_path / "_reports" / "logs" / "work_area-default.log").is_file()


def test_missing_fixture_is_a_provisioning_error(config, healthy):
    with pytest.raises(ProvisioningError, match="xfce4-panel-top50.xml"):
        _dispatcher(config, healthy).run()


def test_build_failure_stops_before_running(config, healthy):
    backend = StubBackend(config, error=BuildError("Building widgem_tests failed", "error[E0425]"))
    with pytest.raises(BuildError):
        _dispatcher(config, healthy, backend).run()
    assert not healthy.matching([TESTS_BIN])
