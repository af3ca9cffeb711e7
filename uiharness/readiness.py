"""Readiness polling for a freshly started desktop environment.

The window manager inside the environment comes up asynchronously and
offers no "ready" signal, so readiness is inferred from behaviour: once a
synthesized click leaves some window active, input and window queries
work. The loop is bounded; running out of attempts is fatal.
"""

from __future__ import annotations

import enum
import time
from typing import Callable, List

from uiharness.framework import CommandResult, ReadinessTimeout

DEFAULT_ATTEMPTS = 20
DEFAULT_INTERVAL = 0.3


class ReadinessState(enum.Enum):
    STARTING = "starting"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"


class ReadinessProbe:
    """Black-box liveness probe for one environment."""

    def poke(self) -> None:
        """Synthesize an input event. Failures are tolerated."""
        raise NotImplementedError

    def is_ready(self) -> bool:
        """Return True when some window holds focus."""
        raise NotImplementedError

    def dependency_running(self) -> bool:
        """Return True when the window manager process exists."""
        raise NotImplementedError

    def restart_dependency(self) -> None:
        """Start the window manager in the background."""
        raise NotImplementedError


class CommandReadinessProbe(ReadinessProbe):
    """Probe an X11 session with xdotool and pidof.

    ``execute`` runs a command to completion inside the environment and
    ``spawn`` starts one detached; both return a CommandResult.
    """

    def __init__(
        self,
        execute: Callable[[List[str]], CommandResult],
        spawn: Callable[[List[str]], CommandResult],
        window_manager: str = "xfwm4",
    ):
        self.execute = execute
        self.spawn = spawn
        self.window_manager = window_manager

    def poke(self) -> None:
        self.execute(["xdotool", "click", "1"])

    def is_ready(self) -> bool:
        return self.execute(["xdotool", "getactivewindow"]).ok

    def dependency_running(self) -> bool:
        return self.execute(["pidof", self.window_manager]).ok

    def restart_dependency(self) -> None:
        self.spawn([self.window_manager])


class ReadinessMonitor:
    """Bounded retry loop over a :class:`ReadinessProbe`."""

    def __init__(
        self,
        probe: ReadinessProbe,
        name: str = "environment",
        attempts: int = DEFAULT_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        verbose: bool = False,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.probe = probe
        self.name = name
        self.attempts = attempts
        self.interval = interval
        self.sleep = sleep
        self.verbose = verbose
        self.state = ReadinessState.STARTING
        self.attempts_used = 0

    def wait(self) -> int:
        """Poll until ready; return the number of attempts used.

        Raises ReadinessTimeout after ``attempts`` unsuccessful cycles.
        """
        self.state = ReadinessState.POLLING
        for attempt in range(1, self.attempts + 1):
            self.attempts_used = attempt
            self.sleep(self.interval)
            if self.verbose:
                print(f"Testing {self.name} status (attempt {attempt}/{self.attempts})")

            try:
                self.probe.poke()
            except Exception as exc:
                # Input synthesis routinely fails before the display is up.
                if self.verbose:
                    print(f"⚠ Input probe failed: {exc}")

            if self.probe.is_ready():
                self.state = ReadinessState.READY
                print(f"✓ {self.name} is ready")
                return attempt

            if not self.probe.dependency_running():
                print(f"⚠ Window manager is not running in {self.name}, starting it")
                self.probe.restart_dependency()

        self.state = ReadinessState.FAILED
        raise ReadinessTimeout(self.name, self.attempts, self.interval)
