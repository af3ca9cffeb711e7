"""Registry and runner for snapshot-based UI test cases.

A test case is a callable taking a :class:`SnapshotSession`. The runner
executes every selected case, keeps going past failures and aggregates
them into one exit code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from uiharness.snapshots import Outcome, SnapshotSession, SnapshotStore

CaseFunc = Callable[[SnapshotSession], None]


class Registry:
    """Named test cases, iterated in name order."""

    def __init__(self):
        self._tests: Dict[str, CaseFunc] = {}

    def add_test(self, name: str, func: CaseFunc) -> None:
        if name in self._tests:
            raise ValueError(f"duplicate test name: {name!r}")
        self._tests[name] = func

    def register(self, name: Optional[str] = None) -> Callable[[CaseFunc], CaseFunc]:
        """Decorator form of :meth:`add_test`; defaults to the function name."""

        def decorator(func: CaseFunc) -> CaseFunc:
            self.add_test(name or func.__name__, func)
            return func

        return decorator

    def tests(self) -> Iterator[str]:
        return iter(sorted(self._tests))

    def has_test(self, name: str) -> bool:
        return name in self._tests

    def get(self, name: str) -> CaseFunc:
        return self._tests[name]

    def __len__(self) -> int:
        return len(self._tests)


@dataclass
class CaseResult:
    name: str
    fails: List[str] = field(default_factory=list)
    outcomes: List[Outcome] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.fails


@dataclass
class SuiteResult:
    cases: List[CaseResult] = field(default_factory=list)

    @property
    def num_total(self) -> int:
        return len(self.cases)

    @property
    def num_failed(self) -> int:
        return sum(1 for c in self.cases if not c.passed)

    @property
    def all_fails(self) -> List[str]:
        return [f for c in self.cases for f in c.fails]

    @property
    def failure_artifacts(self) -> List[Path]:
        return [
            o.fresh_path
            for c in self.cases
            for o in c.outcomes
            if not o.passed and o.fresh_path is not None
        ]

    @property
    def exit_code(self) -> int:
        return 1 if self.all_fails else 0


def run_case(registry: Registry, name: str, store: SnapshotStore) -> CaseResult:
    session = SnapshotSession(store, name)
    try:
        registry.get(name)(session)
    except Exception as exc:
        # A crashing case is one more failure; the suite carries on.
        fail = f"test {name!r} failed: {exc!r}"
        print(fail)
        return CaseResult(name, [fail], session.outcomes)
    return CaseResult(name, session.finish(), session.outcomes)


def run_suite(
    registry: Registry,
    store: SnapshotStore,
    name_filter: Optional[str] = None,
) -> SuiteResult:
    """Run every test whose name contains ``name_filter`` (all when empty)."""
    result = SuiteResult()
    for name in registry.tests():
        if name_filter and name_filter not in name:
            continue
        print(f"running test: {name}")
        result.cases.append(run_case(registry, name, store))

    print("-----------")
    print(f"total tests: {result.num_total}")
    if result.num_failed:
        print(f"failed tests: {result.num_failed}")
    else:
        print("all tests succeeded")
    if result.all_fails:
        print("found issues:\n")
        for fail in result.all_fails:
            print(fail)
    if result.failure_artifacts:
        print("\nunconfirmed snapshots:")
        for path in result.failure_artifacts:
            print(f"  {path}")
    return result
