"""Work-area computation for docked desktop panels.

The work area is the part of a monitor left over after screen-edge panels
(taskbars, docks) have reserved their strips. The same function serves as
product logic and as the oracle for the geometry checks run against a
live window manager.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from uiharness.framework import WorkAreaError

# The window manager reserves one pixel more than the panel's configured
# size on every occupied edge. Observed on xfwm4; do not round this away.
BORDER_ALLOWANCE = 1


class Edge(enum.Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    NONE = "none"


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def contains(self, other: "Rect") -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.x + other.width <= self.x + self.width
            and other.y + other.height <= self.y + self.height
        )


@dataclass(frozen=True)
class Panel:
    """A desktop panel.

    ``edge`` is NONE for floating panels, including ones that sit in the
    middle of the screen; those never reserve space.
    """

    edge: Edge
    thickness: int
    length: int = 0
    autohide: bool = False


def reserved_thickness(panels: Iterable[Panel]) -> Dict[Edge, int]:
    """Space reserved on each physical edge by the given panels."""
    reserved = {Edge.TOP: 0, Edge.BOTTOM: 0, Edge.LEFT: 0, Edge.RIGHT: 0}
    for panel in panels:
        if panel.edge is Edge.NONE:
            continue
        if panel.thickness < 0:
            raise WorkAreaError(f"negative panel thickness: {panel}")
        reserved[panel.edge] = max(
            reserved[panel.edge], panel.thickness + BORDER_ALLOWANCE
        )
    return reserved


def compute_work_area(monitor: Rect, panels: Iterable[Panel]) -> Rect:
    """Return the usable rectangle of ``monitor`` after panel reservations.

    Raises WorkAreaError when the reservations leave a negative width or
    height, since that means the panel configuration is wrong.
    """
    reserved = reserved_thickness(panels)
    left = reserved[Edge.LEFT]
    right = reserved[Edge.RIGHT]
    top = reserved[Edge.TOP]
    bottom = reserved[Edge.BOTTOM]

    width = monitor.width - left - right
    height = monitor.height - top - bottom
    if width < 0 or height < 0:
        raise WorkAreaError(
            f"panels reserve more than the monitor provides: monitor="
            f"{monitor.as_tuple()}, reserved left={left} right={right} "
            f"top={top} bottom={bottom}"
        )
    return Rect(monitor.x + left, monitor.y + top, width, height)


def format_work_areas(rects: Iterable[Rect]) -> str:
    """Render rectangles in the verification entry point's output format.

    >>> format_work_areas([Rect(0, 27, 1600, 873)])
    '[(0, 27, 1600, 873)]'
    """
    return repr([r.as_tuple() for r in rects])


def parse_monitor(text: str) -> Rect:
    """Parse ``WIDTHxHEIGHT`` or ``WIDTHxHEIGHT+X+Y``."""
    size, _, offset = text.partition("+")
    try:
        width, height = (int(v) for v in size.lower().split("x"))
        if offset:
            x, y = (int(v) for v in offset.split("+"))
        else:
            x, y = 0, 0
    except ValueError:
        raise ValueError(f"invalid monitor geometry: {text!r}") from None
    return Rect(x, y, width, height)


def parse_panel_spec(text: str) -> Panel:
    """Parse ``edge:thickness[:length][:autohide]``, e.g. ``bottom:48``."""
    parts = text.split(":")
    if len(parts) < 2:
        raise ValueError(f"invalid panel spec (expected edge:thickness): {text!r}")
    try:
        edge = Edge(parts[0].lower())
    except ValueError:
        choices = ", ".join(e.value for e in Edge)
        raise ValueError(f"invalid panel edge {parts[0]!r} (choose from {choices})") from None
    thickness = int(parts[1])
    length = int(parts[2]) if len(parts) > 2 and parts[2] else 0
    autohide = len(parts) > 3 and parts[3].lower() in ("1", "true", "autohide", "yes")
    return Panel(edge, thickness, length, autohide)


def work_area_lines(monitors: List[Rect], panels: List[Panel]) -> str:
    return format_work_areas(compute_work_area(m, panels) for m in monitors)
