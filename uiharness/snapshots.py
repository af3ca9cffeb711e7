"""Snapshot regression engine.

Baselines are PNG files stored per test case::

    tests/snapshots/<test name, "::" as "/">/NN - <text>.png

A fresh capture that does not match is written next to its baseline as
``NN - <text>.new.png`` (plus a ``.diff.png`` highlight image) and the
comparison fails. Baselines only change through :func:`approve_snapshot`
or when the store runs in record mode and no baseline exists yet.
"""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from uiharness.framework import PreflightError
from uiharness.snapshot_compare import ImageSource, compare_images, load_rgba

NEW_SUFFIX = ".new.png"
DIFF_SUFFIX = ".diff.png"
DEFAULT_SNAPSHOT = "01 - snapshot"

_SNAPSHOT_TEXT_RE = re.compile(r"[A-Za-z0-9 _-]*")


class SnapshotMode(enum.Enum):
    # Missing baseline is a failure.
    CHECK = "check"
    # Missing baseline is written from the fresh capture.
    RECORD = "record"


@dataclass
class Outcome:
    """Result of comparing one capture against its baseline."""

    test_name: str
    snapshot: str
    passed: bool
    reason: str = ""
    note: str = ""
    fresh_path: Optional[Path] = None
    diff_path: Optional[Path] = None


@dataclass
class SnapshotFile:
    full_name: str
    description: str


@dataclass
class SnapshotFiles:
    confirmed: Optional[SnapshotFile] = None
    unconfirmed: Optional[SnapshotFile] = None


def snapshot_dir_for(snapshots_dir: Path, test_name: str) -> Path:
    return Path(snapshots_dir).joinpath(*test_name.split("::"))


def discover_snapshots(case_dir: Path) -> Dict[int, SnapshotFiles]:
    """Index the snapshot files of one test case by step number.

    Raises PreflightError for names that do not follow the
    ``NN - text.png`` scheme or for two files claiming the same step.
    """
    found: Dict[int, SnapshotFiles] = {}
    if not case_dir.is_dir():
        return found
    for entry in sorted(case_dir.iterdir()):
        full_name = entry.name
        if not entry.is_file() or not full_name.endswith(".png"):
            continue
        if full_name.endswith(DIFF_SUFFIX):
            continue
        stem = full_name[: -len(".png")]
        step_text, sep, rest = stem.partition(" - ")
        if not sep:
            raise PreflightError(f"invalid snapshot name: {entry}")
        try:
            step = int(step_text)
        except ValueError:
            raise PreflightError(f"invalid snapshot name: {entry}") from None

        files = found.setdefault(step, SnapshotFiles())
        if rest.endswith(".new"):
            if files.unconfirmed is not None:
                raise PreflightError(
                    "duplicate unconfirmed files: "
                    f"{case_dir / files.unconfirmed.full_name}, {entry}"
                )
            files.unconfirmed = SnapshotFile(full_name, rest[: -len(".new")])
        else:
            if files.confirmed is not None:
                raise PreflightError(
                    "duplicate confirmed files: "
                    f"{case_dir / files.confirmed.full_name}, {entry}"
                )
            files.confirmed = SnapshotFile(full_name, rest)
    return found


def _remove_if_exists(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def approve_snapshot(path: Path) -> Path:
    """Promote an unconfirmed ``.new.png`` capture to baseline."""
    path = Path(path)
    if not path.name.endswith(NEW_SUFFIX):
        raise PreflightError(
            f'expected a path that ends with "{NEW_SUFFIX}", got {str(path)!r}'
        )
    if not path.is_file():
        raise PreflightError(f"unconfirmed snapshot not found: {path}")
    stem = path.name[: -len(NEW_SUFFIX)]
    target = path.with_name(stem + ".png")
    os.replace(path, target)
    _remove_if_exists(path.with_name(stem + DIFF_SUFFIX))
    return target


def approve_all(directory: Path) -> List[Path]:
    """Approve every unconfirmed capture below ``directory``."""
    return [approve_snapshot(p) for p in sorted(Path(directory).rglob("*" + NEW_SUFFIX))]


class SnapshotStore:
    """Baseline storage and comparison for a whole suite.

    Holds no per-test state, so one store can serve any number of test
    cases as long as each uses its own baseline key.
    """

    def __init__(self, snapshots_dir: Path, mode: SnapshotMode = SnapshotMode.CHECK):
        if not isinstance(mode, SnapshotMode):
            raise TypeError(f"mode must be a SnapshotMode, got {mode!r}")
        self.snapshots_dir = Path(snapshots_dir)
        self.mode = mode

    def case_dir(self, test_name: str) -> Path:
        return snapshot_dir_for(self.snapshots_dir, test_name)

    def evaluate(
        self,
        test_name: str,
        fresh_artifact: ImageSource,
        snapshot: str = DEFAULT_SNAPSHOT,
        baseline_name: Optional[str] = None,
    ) -> Outcome:
        """Compare ``fresh_artifact`` with the baseline ``snapshot`` of ``test_name``.

        ``baseline_name`` selects a differently named baseline file to
        compare against; the fresh capture is still saved under
        ``snapshot``.
        """
        case_dir = self.case_dir(test_name)
        case_dir.mkdir(parents=True, exist_ok=True)
        fresh = load_rgba(fresh_artifact)

        baseline_path = case_dir / (baseline_name or f"{snapshot}.png")
        new_path = case_dir / f"{snapshot}{NEW_SUFFIX}"
        diff_path = case_dir / f"{snapshot}{DIFF_SUFFIX}"
        _remove_if_exists(new_path)
        _remove_if_exists(diff_path)

        if not baseline_path.is_file():
            if self.mode is SnapshotMode.RECORD:
                fresh.save(baseline_path)
                return Outcome(
                    test_name,
                    snapshot,
                    passed=True,
                    note=f"baseline created at {baseline_path.name!r}",
                    fresh_path=baseline_path,
                )
            fresh.save(new_path)
            return Outcome(
                test_name,
                snapshot,
                passed=False,
                reason=f"missing snapshot at {baseline_path.name!r} "
                f"(fresh capture {fresh.size[0]}x{fresh.size[1]} saved as {new_path.name!r})",
                fresh_path=new_path,
            )

        diff = compare_images(baseline_path, fresh, diff_out=diff_path)
        if diff.identical:
            return Outcome(test_name, snapshot, passed=True)

        fresh.save(new_path)
        return Outcome(
            test_name,
            snapshot,
            passed=False,
            reason=f"snapshot mismatch at {new_path.name!r}: {diff.describe()}",
            fresh_path=new_path,
            diff_path=diff_path if diff_path.is_file() else None,
        )

    def approve(self, path: Path) -> Path:
        return approve_snapshot(path)


@dataclass
class SnapshotSession:
    """Sequential snapshots of a single test case."""

    store: SnapshotStore
    test_name: str
    last_index: int = 0
    outcomes: List[Outcome] = field(default_factory=list)
    fails: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.case_dir = self.store.case_dir(self.test_name)
        self._unverified = discover_snapshots(self.case_dir)

    def _record_fail(self, fail: str) -> None:
        print(fail)
        self.fails.append(fail)

    def snapshot(self, image: ImageSource, text: str) -> Outcome:
        """Compare the next step's capture against its baseline."""
        if not _SNAPSHOT_TEXT_RE.fullmatch(text):
            raise PreflightError(f"disallowed char in snapshot text: {text!r}")
        self.last_index += 1
        name = f"{self.last_index:02} - {text}"

        files = self._unverified.pop(self.last_index, SnapshotFiles())
        if files.unconfirmed is not None:
            _remove_if_exists(self.case_dir / files.unconfirmed.full_name)
            if self.store.mode is SnapshotMode.CHECK:
                self._record_fail(
                    f"unexpected unconfirmed snapshot: {files.unconfirmed.full_name!r}"
                )

        baseline_name = None
        if files.confirmed is not None and files.confirmed.full_name != f"{name}.png":
            self._record_fail(
                "confirmed snapshot name mismatch: expected "
                f"{name + '.png'!r}, got {files.confirmed.full_name!r}"
            )
            baseline_name = files.confirmed.full_name

        outcome = self.store.evaluate(
            self.test_name, image, snapshot=name, baseline_name=baseline_name
        )
        self.outcomes.append(outcome)
        if not outcome.passed:
            self._record_fail(outcome.reason)
        elif outcome.note:
            print(f"{self.test_name}: {outcome.note}")
        return outcome

    def finish(self) -> List[str]:
        """Report baselines the test never reached and return all failures."""
        extraneous = []
        for files in self._unverified.values():
            for f in (files.confirmed, files.unconfirmed):
                if f is not None:
                    extraneous.append(repr(f.full_name))
        self._unverified = {}
        if extraneous:
            self._record_fail(
                f"extraneous snapshot files found: {', '.join(extraneous)}"
            )
        fails, self.fails = self.fails, []
        return fails
