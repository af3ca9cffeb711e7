"""Shared fixtures: synthetic images and a recording command runner."""

from __future__ import annotations

from typing import List, Sequence, Tuple

import pytest
from PIL import Image, ImageDraw

from uiharness.framework import CommandResult, HarnessConfig


def _contains(args: Sequence[str], seq: Sequence[str]) -> bool:
    n = len(seq)
    return any(list(args[i:i + n]) == list(seq) for i in range(len(args) - n + 1))


class FakeRunner:
    """Stands in for run_command and records every command it is given.

    Responses are keyed on a run of consecutive arguments; the most
    recently added matching rule wins. Unmatched commands succeed silently.
    A rule's result may also be a list, consumed one entry per call.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.kwargs: List[dict] = []
        self._rules: List[Tuple[List[str], object]] = []

    def on(self, seq: Sequence[str], returncode: int = 0, stdout: str = "", stderr: str = ""):
        self._rules.append((list(seq), (returncode, stdout, stderr)))

    def on_sequence(self, seq: Sequence[str], responses: List[Tuple[int, str, str]]):
        self._rules.append((list(seq), list(responses)))

    def __call__(self, cmd, cwd=None, timeout=None, capture=True, verbose=False):
        args = [str(a) for a in cmd]
        self.calls.append(args)
        self.kwargs.append({"cwd": cwd, "timeout": timeout})
        for seq, response in reversed(self._rules):
            if not _contains(args, seq):
                continue
            if isinstance(response, list):
                rc, out, err = response.pop(0) if len(response) > 1 else response[0]
            else:
                rc, out, err = response
            return CommandResult(args, rc, out, err)
        return CommandResult(args, 0, "", "")

    def matching(self, seq: Sequence[str]) -> List[List[str]]:
        return [c for c in self.calls if _contains(c, seq)]


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def config(tmp_path):
    return HarnessConfig(project_root=tmp_path)


def make_image(size=(32, 24), rgba=(200, 200, 200, 255)) -> Image.Image:
    return Image.new("RGBA", size, rgba)


def with_patch(img: Image.Image, rect, rgba=(0, 255, 255, 255)) -> Image.Image:
    out = img.copy()
    ImageDraw.Draw(out).rectangle(rect, fill=rgba)
    return out
