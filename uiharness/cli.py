#!/usr/bin/env python3
"""
Command line entry point for the UI test orchestration harness.

Usage:
    uiharness run [--release] [--native | --docker] [-- BINARY_ARGS...]
    uiharness setup
    uiharness teardown [--name NAME]
    uiharness test MODULE [FILTER] [--check | --record]
    uiharness approve PATH | --all DIR
    uiharness compare BASELINE FRESH [--diff-out PATH] [--json-out PATH] [--out-dir DIR]
    uiharness work-area --monitor 1600x900 --panel top:26 [--panel ...]
"""

from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path
from typing import List, Optional

from uiharness.build import select_build_backend
from uiharness.dispatch import Dispatcher
from uiharness.environment import DockerCLI, Orchestrator
from uiharness.framework import (
    ArtifactManager,
    HarnessConfig,
    PreflightError,
    WorkAreaError,
    fail,
    preflight_check,
)
from uiharness.snapshot_compare import compare_image_files, compare_images, format_diff_result
from uiharness.snapshots import SnapshotMode, SnapshotStore, approve_all, approve_snapshot
from uiharness.suite import Registry, run_suite
from uiharness.work_area import parse_monitor, parse_panel_spec, work_area_lines


def _config_from_args(args) -> HarnessConfig:
    config = HarnessConfig.from_env()
    build_mode = "release" if getattr(args, "release", False) else None
    project_root = Path(args.project_root).resolve() if args.project_root else None
    return config.with_overrides(build_mode=build_mode, project_root=project_root)


def _orchestrator(config: HarnessConfig, verbose: bool) -> Orchestrator:
    return Orchestrator(config, docker=DockerCLI(verbose=verbose), verbose=verbose)


def cmd_run(args) -> int:
    config = _config_from_args(args)
    native = args.native

    print("=" * 70)
    print("UI tests in isolated desktop environment")
    print("=" * 70)
    print(f"Project root: {config.project_root}")
    print(f"Build mode:   {config.build_mode}")
    print()

    preflight_check(native_build=config.ci if native is None else native, verbose=args.verbose)
    orchestrator = _orchestrator(config, args.verbose)
    backend = select_build_backend(
        config, orchestrator.docker, native=native, verbose=args.verbose
    )
    dispatcher = Dispatcher(
        config,
        orchestrator,
        backend,
        artifacts=ArtifactManager(config.snapshots_path),
        verbose=args.verbose,
    )
    binary_args = list(args.binary_args)
    if binary_args[:1] == ["--"]:
        binary_args = binary_args[1:]
    result = dispatcher.run(binary_args)

    print()
    print("=" * 70)
    print("SUMMARY")
    print("=" * 70)
    if result.tests is not None:
        print(f"Test binary exit code: {result.tests.returncode}")
    for check in result.geometry:
        mark = "✓" if check.passed else "✗"
        print(f"{mark} work area [{check.config}]: {check.actual}")
    if result.failure_artifacts:
        print("Unconfirmed snapshots:")
        for path in result.failure_artifacts:
            print(f"  {path}")
    if result.passed:
        print("\n✓ PASS")
    else:
        print(f"\n✗ FAIL: {result.error or 'test run reported failures'}")
    return result.exit_code


def cmd_setup(args) -> int:
    config = _config_from_args(args)
    preflight_check(native_build=False, verbose=args.verbose)
    handle = _orchestrator(config, args.verbose).setup()
    print(f"✓ Environment {handle.name} is running (VNC on port {config.vnc_port})")
    return 0


def cmd_teardown(args) -> int:
    config = _config_from_args(args)
    _orchestrator(config, args.verbose).teardown(args.name)
    print(f"✓ Environment {args.name or config.runtime_name} removed")
    return 0


def load_registry(module_name: str) -> Registry:
    """Import ``module_name`` and return its module-level ``registry``."""
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise PreflightError(f"Cannot import test module {module_name!r}: {exc}") from exc
    registry = getattr(module, "registry", None)
    if not isinstance(registry, Registry):
        raise PreflightError(f"Module {module_name!r} has no Registry named 'registry'")
    return registry


def cmd_test(args) -> int:
    config = _config_from_args(args)
    registry = load_registry(args.module)
    snapshots_dir = Path(args.snapshots_dir) if args.snapshots_dir else config.snapshots_path
    mode = SnapshotMode.RECORD if args.record else SnapshotMode.CHECK
    result = run_suite(registry, SnapshotStore(snapshots_dir, mode), args.filter)
    return result.exit_code


def cmd_approve(args) -> int:
    if args.all:
        approved = approve_all(Path(args.all))
        for path in approved:
            print(f"✓ Approved {path}")
        print(f"{len(approved)} snapshot(s) approved")
        return 0
    if not args.path:
        fail("approve needs a snapshot path or --all DIR")
        return 1
    print(f"✓ Approved {approve_snapshot(Path(args.path))}")
    return 0


def cmd_compare(args) -> int:
    if args.out_dir:
        result = compare_image_files(Path(args.baseline), Path(args.fresh), out_dir=Path(args.out_dir))
    else:
        result = compare_images(
            Path(args.baseline),
            Path(args.fresh),
            diff_out=Path(args.diff_out) if args.diff_out else None,
            json_out=Path(args.json_out) if args.json_out else None,
        )
    print(format_diff_result(result))
    return 0 if result.identical else 1


def cmd_work_area(args) -> int:
    try:
        monitors = [parse_monitor(m) for m in (args.monitor or ["1600x900"])]
        panels = [parse_panel_spec(p) for p in args.panel]
        print(work_area_lines(monitors, panels))
    except (ValueError, WorkAreaError) as exc:
        fail(str(exc))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uiharness",
        description="Run snapshot-based UI tests in an isolated desktop environment",
    )
    parser.add_argument('--project-root',
                        help='Project working tree (default: $UIHARNESS_PROJECT_ROOT or cwd)')
    parser.add_argument('--verbose', action='store_true',
                        help='Verbose output')
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Build and run the UI test binary, then the geometry checks")
    p.add_argument('--release', action='store_true',
                   help='Build in release mode (default: $BUILD_MODE or debug)')
    group = p.add_mutually_exclusive_group()
    group.add_argument('--native', dest='native', action='store_true', default=None,
                       help='Build on the host (default under CI)')
    group.add_argument('--docker', dest='native', action='store_false',
                       help='Build in the builder container (default outside CI)')
    p.add_argument('binary_args', nargs=argparse.REMAINDER,
                   help='Arguments for the test binary (default: "test", plus geometry checks)')
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("setup", help="Build images and (re)start the runtime environment")
    p.set_defaults(func=cmd_setup)

    p = sub.add_parser("teardown", help="Force-remove a runtime environment")
    p.add_argument('--name', help='Container name (default: the runtime environment)')
    p.set_defaults(func=cmd_teardown)

    p = sub.add_parser("test", help="Run registered snapshot tests in this process")
    p.add_argument('module', help='Importable module exposing a Registry named "registry"')
    p.add_argument('filter', nargs='?', default=None,
                   help='Only run tests whose name contains this text')
    mode = p.add_mutually_exclusive_group()
    mode.add_argument('--check', action='store_true',
                      help='Missing baselines are failures (default)')
    mode.add_argument('--record', action='store_true',
                      help='Write missing baselines from the fresh capture')
    p.add_argument('--snapshots-dir', help='Baseline directory (default: tests/snapshots)')
    p.set_defaults(func=cmd_test)

    p = sub.add_parser("approve", help="Promote unconfirmed snapshots to baselines")
    p.add_argument('path', nargs='?', help='A "*.new.png" file')
    p.add_argument('--all', metavar='DIR', help='Approve every unconfirmed snapshot under DIR')
    p.set_defaults(func=cmd_approve)

    p = sub.add_parser("compare", help="Compare two images exactly")
    p.add_argument('baseline')
    p.add_argument('fresh')
    p.add_argument('--diff-out', help='Write a diff image (differing pixels red)')
    p.add_argument('--json-out', help='Write a JSON summary')
    p.add_argument('--out-dir',
                   help='Write <fresh>.diff.png and <fresh>.json into this directory')
    p.set_defaults(func=cmd_compare)

    p = sub.add_parser("work-area", help="Print the expected work area for a panel layout")
    p.add_argument('--monitor', action='append',
                   help='Monitor geometry WxH[+X+Y], repeatable (default: 1600x900)')
    p.add_argument('--panel', action='append', default=[],
                   help='Panel as edge:thickness[:length][:autohide], repeatable')
    p.set_defaults(func=cmd_work_area)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except PreflightError as e:
        print(f"\n✗ FAIL: {args.command} failed")
        print(f"\n{e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
