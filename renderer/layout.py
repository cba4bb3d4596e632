"""
Layout Geometry
===============
Pure geometry and arithmetic behind the visual block renderers.

Every function here is side-effect free and returns plain values, so the
drawing code in ``visual.py`` stays a thin translation to markup and the
numbers can be checked directly:

    - Fraction wedges / bar segments
    - Number-line ticks and positions
    - Grid cells with Cartesian marker matching
    - Bar heights and dot-plot stacks
    - Clock hand angles
    - Tally (quinary) decomposition
    - Money formatting
    - LaTeX-subset to inline markup
"""

from __future__ import annotations

import html
import math
import re
from dataclasses import dataclass
from typing import Optional

from .models import GridBlock, GridMarker

# Fraction circle geometry (60x60 viewBox)
CIRCLE_CENTER = 30.0
CIRCLE_RADIUS = 25.0

# Clock face geometry (100x100 viewBox)
CLOCK_CENTER = 50.0
CLOCK_RADIUS = 45.0
CLOCK_DOT_RADIUS = 38.0
HOUR_HAND_LENGTH = 20.0
MINUTE_HAND_LENGTH = 30.0

TALLY_GROUP_SIZE = 5

CURRENCY_SYMBOLS = {
    "AUD": "$",
    "USD": "$",
}


def format_number(value: float) -> str:
    """Render a number the way authors write it: ``5`` not ``5.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ─── Fractions ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Wedge:
    """One angular sector of a fraction circle (angles in degrees)."""
    index: int
    start_angle: float
    end_angle: float
    filled: bool
    large_arc: bool

    def svg_path(
        self,
        cx: float = CIRCLE_CENTER,
        cy: float = CIRCLE_CENTER,
        r: float = CIRCLE_RADIUS,
    ) -> str:
        x1, y1 = polar_point(self.start_angle, r, cx, cy)
        x2, y2 = polar_point(self.end_angle, r, cx, cy)
        large = 1 if self.large_arc else 0
        return (
            f"M{_fmt(cx)},{_fmt(cy)} L{_fmt(x1)},{_fmt(y1)} "
            f"A{_fmt(r)},{_fmt(r)} 0 {large},1 {_fmt(x2)},{_fmt(y2)} Z"
        )


def fraction_wedges(numerator: int, denominator: int) -> list[Wedge]:
    """
    Split a circle into ``denominator`` equal wedges from 12 o'clock.

    Wedge ``i`` spans ``[i*360/d - 90, (i+1)*360/d - 90]`` and is filled
    iff ``i < numerator``. One- and two-wedge circles need the large-arc
    flag, a minor arc cannot sweep 180 degrees or more.
    """
    if denominator < 1:
        return []

    large_arc = denominator <= 2
    wedges = []
    for i in range(denominator):
        wedges.append(Wedge(
            index=i,
            start_angle=i * 360 / denominator - 90,
            end_angle=(i + 1) * 360 / denominator - 90,
            filled=i < numerator,
            large_arc=large_arc,
        ))
    return wedges


def fraction_bar(numerator: int, denominator: int) -> list[bool]:
    """Fill flags for ``denominator`` adjacent segments, first ``numerator`` filled."""
    return [i < numerator for i in range(max(denominator, 0))]


# ─── Number Line ──────────────────────────────────────────────────────────────


def number_line_ticks(
    minimum: float,
    maximum: float,
    step: Optional[float] = None,
) -> list[float]:
    """
    Tick values from ``minimum`` to ``maximum`` inclusive.

    Step defaults to a quarter of the range. Ticks are computed by index
    rather than accumulation so ``0..10`` yields exactly 2.5-spaced values.
    """
    span = maximum - minimum
    step = step or span / 4
    if span <= 0 or step <= 0:
        return [minimum, maximum] if span > 0 else [minimum]

    count = int(math.floor(span / step + 1e-9))
    return [minimum + i * step for i in range(count + 1)]


def number_line_position(value: float, minimum: float, maximum: float) -> float:
    """Horizontal position of ``value`` as a percentage of the line length."""
    span = maximum - minimum
    if span == 0:
        return 0.0
    return (value - minimum) / span * 100


# ─── Grid ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GridCellView:
    row: int
    col: int
    filled: bool
    color: Optional[str] = None
    marker: Optional[GridMarker] = None


def grid_cells(block: GridBlock) -> list[list[GridCellView]]:
    """
    Build the ``rows x cols`` cell matrix in screen (top-down) row order.

    Filled cells are addressed by screen row. Markers use map coordinates
    with ``y`` counted from the bottom, so a marker sits in the cell where
    ``marker.y == rows - row - 1``.
    """
    filled = {(c.row, c.col): c for c in block.filled_cells}
    matrix = []
    for row in range(block.rows):
        line = []
        for col in range(block.cols):
            cell = filled.get((row, col))
            marker = next(
                (
                    m for m in block.markers
                    if m.x == col and m.y == block.rows - row - 1
                ),
                None,
            )
            line.append(GridCellView(
                row=row,
                col=col,
                filled=cell is not None,
                color=cell.color if cell else None,
                marker=marker,
            ))
        matrix.append(line)
    return matrix


# ─── Charts ───────────────────────────────────────────────────────────────────


def bar_heights(values: list[float]) -> list[float]:
    """
    Bar heights as a fraction of the tallest bar.

    An all-zero (or empty/negative) series has no tallest bar; every bar
    gets height 0 rather than NaN. Negative values in a mixed series are
    drawn as empty bars.
    """
    peak = max(values, default=0)
    if peak <= 0:
        return [0.0 for _ in values]
    return [max(v, 0) / peak for v in values]


def dot_stacks(values: list[float]) -> list[int]:
    """Number of dot markers per category (one per whole unit)."""
    return [max(int(v), 0) for v in values]


# ─── Clock ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClockHands:
    """Hand angles in degrees, measured clockwise from the 3 o'clock axis."""
    hour_angle: float
    minute_angle: float


def clock_hands(hours: int, minutes: int) -> ClockHands:
    return ClockHands(
        hour_angle=((hours % 12) + minutes / 60) * 30 - 90,
        minute_angle=minutes * 6 - 90,
    )


def digital_readout(hours: int, minutes: int) -> str:
    return f"{hours:02d}:{minutes:02d}"


def polar_point(
    angle: float,
    length: float,
    cx: float = CLOCK_CENTER,
    cy: float = CLOCK_CENTER,
) -> tuple[float, float]:
    """Screen point at ``angle`` degrees and distance ``length`` from centre."""
    rad = math.radians(angle)
    return cx + length * math.cos(rad), cy + length * math.sin(rad)


# ─── Tally ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TallyMarks:
    """Quinary decomposition: full gates of five plus loose strokes."""
    groups: int
    singles: int

    @property
    def strokes(self) -> int:
        return self.groups * TALLY_GROUP_SIZE + self.singles


def tally_marks(count: int) -> TallyMarks:
    count = max(int(count), 0)
    groups, singles = divmod(count, TALLY_GROUP_SIZE)
    return TallyMarks(groups=groups, singles=singles)


# ─── Money ────────────────────────────────────────────────────────────────────


def format_amount(amount: float, currency: str = "AUD") -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, "$")
    return f"{symbol}{amount:.2f}"


# ─── Math ─────────────────────────────────────────────────────────────────────

_FRACTION_MARKUP = (
    r'<span class="math-frac">'
    r'<span class="math-num">\1</span>'
    r'<span class="math-den">\2</span>'
    r"</span>"
)

# Applied in order; anything unmatched passes through untouched.
MATH_MARKUP_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\\frac\{([^{}]+)\}\{([^{}]+)\}"), _FRACTION_MARKUP),
    (re.compile(r"\\times"), "\u00d7"),
    (re.compile(r"\\div"), "\u00f7"),
    (re.compile(r"\\pm"), "\u00b1"),
    (re.compile(r"\\sqrt\{([^{}]+)\}"), "\u221a\\1"),
    (re.compile(r"\^\{?(\d+)\}?"), r"<sup>\1</sup>"),
    (re.compile(r"_\{?(\d+)\}?"), r"<sub>\1</sub>"),
]


def math_to_markup(latex: str) -> str:
    """Rewrite the supported LaTeX subset into inline HTML."""
    markup = html.escape(latex, quote=False)
    for pattern, replacement in MATH_MARKUP_RULES:
        markup = pattern.sub(replacement, markup)
    return markup


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _fmt(value: float) -> str:
    """Compact coordinate formatting for SVG attributes."""
    return f"{round(value, 3):g}"
