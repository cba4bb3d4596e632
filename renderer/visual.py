"""
Visual Renderer
===============
Turns content blocks into HTML fragments (inline SVG for diagrams).

Dispatch is one handler per ``BlockType``; anything without a handler
renders as an empty string. Geometry comes from ``layout.py``, so handlers
here only translate numbers into markup.

Image blocks are asynchronous: ``ImageLoader`` resolves their URLs through
the ``MediaResolver`` and records a per-block view state (loading, ready,
unavailable) that the image handler reads when drawing.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from . import layout
from .media import MediaResolver, RequestSequencer
from .models import (
    BlockType,
    ChartBlock,
    ChartType,
    ClockBlock,
    FractionBlock,
    FractionDisplay,
    GridBlock,
    ImageBlock,
    MathBlock,
    MoneyBlock,
    NumberLineBlock,
    QuestionOption,
    ShapeBlock,
    SpacerBlock,
    TableBlock,
    TallyBlock,
    TallyData,
    TextBlock,
    block_type_of,
    load_block,
)

logger = logging.getLogger(__name__)

# Palette
FILL_COLOR = "#6366f1"
EMPTY_COLOR = "#e5e7eb"
STROKE_COLOR = "#374151"
BAR_COLOR = "#06b6d4"
SHAPE_COLOR = "#e5e7eb"

DEFAULT_MARKER_ICON = "\U0001f4cd"
PLACEHOLDER_WIDTH = 200
PLACEHOLDER_HEIGHT = 150
DEFAULT_SPACER_HEIGHT = 16

# Lucide-style "image off" glyph for the unavailable placeholder
_IMAGE_OFF_ICON = (
    '<svg class="icon icon-image-off" width="32" height="32" viewBox="0 0 24 24" '
    'fill="none" stroke="currentColor" stroke-width="2" aria-hidden="true">'
    '<line x1="2" y1="2" x2="22" y2="22"/>'
    '<path d="M10.41 10.41a2 2 0 1 1-2.83-2.83"/>'
    '<line x1="13.5" y1="13.5" x2="6" y2="21"/>'
    '<line x1="18" y1="12" x2="21" y2="15"/>'
    '<path d="M3.59 3.59A1.99 1.99 0 0 0 3 5v14a2 2 0 0 0 2 2h14'
    'c.55 0 1.052-.22 1.41-.59"/>'
    '<path d="M21 15V5a2 2 0 0 0-2-2H9"/>'
    "</svg>"
)


def _esc(text: Any) -> str:
    """HTML-escape text for safe injection into markup."""
    return html.escape(str(text)) if text is not None else ""


def _num(value: float) -> str:
    return f"{round(value, 3):g}"


# ─── Image Loading ────────────────────────────────────────────────────────────


class ImageState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ImageView:
    state: ImageState
    url: Optional[str] = None


_LOADING = ImageView(ImageState.LOADING)
_UNAVAILABLE = ImageView(ImageState.UNAVAILABLE)


def image_key(block: ImageBlock) -> str:
    """Render key for an image block: its id, else its media reference."""
    if block.id:
        return block.id
    ref = block.media_ref
    return ref.url or ref.cache_key


class ImageLoader:
    """
    Tracks URL resolution for image blocks.

    Every ``load`` is tagged with a sequence number; when the inputs change
    and a newer load starts, the older response is dropped on arrival
    instead of overwriting the newer state.
    """

    def __init__(self, resolver: MediaResolver):
        self.resolver = resolver
        self._sequencer = RequestSequencer()
        self._views: dict[str, ImageView] = {}

    def view(self, block: ImageBlock) -> ImageView:
        return self._views.get(image_key(block), _LOADING)

    async def load(self, block: ImageBlock) -> ImageView:
        key = image_key(block)
        seq = self._sequencer.issue(key)
        self._views[key] = _LOADING

        try:
            url = await self.resolver.resolve(block.media_ref)
        except Exception as e:
            logger.error(f"Error loading image {key!r}: {e}")
            url = None

        if not self._sequencer.is_latest(key, seq):
            logger.debug(f"Discarding stale image result for {key!r} (seq {seq})")
            return self._views.get(key, _LOADING)

        view = ImageView(ImageState.READY, url) if url else _UNAVAILABLE
        if not url:
            logger.warning(f"Image unavailable: {key!r}")
        self._views[key] = view
        return view

    async def load_all(self, blocks: list) -> None:
        images = [b for b in blocks if isinstance(b, ImageBlock)]
        if images:
            await asyncio.gather(*(self.load(b) for b in images))

    def mark_failed(self, block: ImageBlock) -> None:
        """Record a load error reported by the display (broken image)."""
        key = image_key(block)
        self._sequencer.invalidate(key)
        self._views[key] = _UNAVAILABLE

    @property
    def unavailable(self) -> list[str]:
        """Keys of images whose URL could not be resolved."""
        return [k for k, v in self._views.items() if v.state == ImageState.UNAVAILABLE]

    def reset(self) -> None:
        self._views.clear()


# ─── Renderer ─────────────────────────────────────────────────────────────────


class VisualRenderer:
    """
    Renders content blocks to HTML.

    Usage:
        renderer = VisualRenderer(resolver)
        html = await renderer.render_document(blocks)
    """

    def __init__(self, resolver: Optional[MediaResolver] = None):
        self.resolver = resolver or MediaResolver()
        self.images = ImageLoader(self.resolver)
        self._dispatch: dict[BlockType, Callable[[Any], str]] = {
            BlockType.TEXT: self._render_text,
            BlockType.IMAGE: self._render_image,
            BlockType.TABLE: self._render_table,
            BlockType.MATH: self._render_math,
            BlockType.GRID: self._render_grid,
            BlockType.NUMBER_LINE: self._render_number_line,
            BlockType.CHART: self._render_chart,
            BlockType.SHAPE: self._render_shape,
            BlockType.TALLY: self._render_tally,
            BlockType.CLOCK: self._render_clock,
            BlockType.MONEY: self._render_money,
            BlockType.FRACTION: self._render_fraction,
            BlockType.SPACER: self._render_spacer,
        }

    @property
    def handled_types(self) -> set[BlockType]:
        return set(self._dispatch)

    async def render_document(
        self,
        blocks: list,
        options: Optional[list[QuestionOption]] = None,
    ) -> str:
        """Resolve every image (cache prewarmed first), then render."""
        blocks = [b for b in (load_block(b) for b in blocks) if b is not None]
        nested = [b for opt in options or [] for b in opt.content or []]

        images = [b for b in blocks + nested if isinstance(b, ImageBlock)]
        await self.resolver.prewarm(
            b.media_ref for b in images if b.media_ref.is_stored
        )
        await self.images.load_all(images)

        markup = self.render(blocks)
        if options is not None:
            markup += self.render_options(options)
        return markup

    def render(self, blocks: list) -> str:
        inner = "".join(self.render_block(b) for b in blocks)
        return f'<div class="question-content">{inner}</div>'

    def render_block(self, block: Any) -> str:
        if isinstance(block, dict):
            block = load_block(block)
            if block is None:
                return ""

        block_type = block_type_of(block)
        handler = self._dispatch.get(block_type) if block_type else None
        if handler is None:
            logger.debug(f"No renderer for block type {getattr(block, 'type', None)!r}")
            return ""
        return handler(block)

    def render_options(self, options: list[QuestionOption]) -> str:
        items = []
        for option in options:
            if option.text:
                body = f'<span class="option-text">{_esc(option.text)}</span>'
            elif option.content:
                body = "".join(self.render_block(b) for b in option.content)
            elif option.image_url:
                body = (
                    f'<img class="option-image" src="{_esc(option.image_url)}" '
                    f'alt="Option {_esc(option.id)}" loading="lazy">'
                )
            else:
                body = ""
            items.append(
                f'<li class="question-option" data-option="{_esc(option.id)}">'
                f'<span class="option-id">{_esc(option.id)}</span>{body}</li>'
            )
        return f'<ol class="question-options">{"".join(items)}</ol>'

    # ─── Text & Media ─────────────────────────────────────────────────────

    def _render_text(self, block: TextBlock) -> str:
        return (
            f'<p class="text-block text-{block.style} align-{block.alignment}">'
            f"{_esc(block.content)}</p>"
        )

    def _render_image(self, block: ImageBlock) -> str:
        view = self.images.view(block)
        width = block.width or PLACEHOLDER_WIDTH
        height = block.height or PLACEHOLDER_HEIGHT
        box = f"width:{width}px;height:{height}px"
        align = f"align-{block.alignment}"

        if view.state == ImageState.LOADING:
            return (
                f'<div class="image-placeholder image-loading {align}" '
                f'style="{box}" role="status" aria-label="Loading image">'
                f'<span class="spinner" aria-hidden="true"></span></div>'
            )

        if view.state == ImageState.UNAVAILABLE or not view.url:
            return (
                f'<div class="image-placeholder image-unavailable {align}" style="{box}">'
                f"{_IMAGE_OFF_ICON}"
                f'<span class="image-unavailable-text">Image unavailable</span></div>'
            )

        style = [
            f"width:{block.width}px" if block.width else "width:auto",
            f"height:{block.height}px" if block.height else "height:auto",
            "max-width:100%",
            "max-height:400px",
            "object-fit:contain",
        ]
        caption = (
            f'<figcaption class="image-caption">{_esc(block.caption)}</figcaption>'
            if block.caption else ""
        )
        return (
            f'<figure class="image-block {align}">'
            f'<img src="{_esc(view.url)}" alt="{_esc(block.alt or "Question image")}" '
            f'style="{";".join(style)}" loading="lazy">'
            f"{caption}</figure>"
        )

    def _render_table(self, block: TableBlock) -> str:
        head = ""
        if block.headers:
            cells = "".join(
                f'<th class="header-{block.header_style}">{_esc(h)}</th>'
                for h in block.headers
            )
            head = f"<thead><tr>{cells}</tr></thead>"

        body_rows = []
        for row in block.rows:
            cells = "".join(f"<td>{self._table_cell(cell)}</td>" for cell in row)
            body_rows.append(f"<tr>{cells}</tr>")

        caption = (
            f'<p class="table-caption">{_esc(block.caption)}</p>'
            if block.caption else ""
        )
        return (
            f'<div class="table-block"><table>{head}'
            f'<tbody>{"".join(body_rows)}</tbody></table>{caption}</div>'
        )

    def _table_cell(self, cell) -> str:
        if isinstance(cell, TallyData):
            return self._tally_markup(cell.count)
        if isinstance(cell, (int, float)) and not isinstance(cell, bool):
            return _esc(layout.format_number(cell))
        return _esc(cell)

    def _render_math(self, block: MathBlock) -> str:
        markup = layout.math_to_markup(block.latex)
        if block.display == "block":
            return f'<div class="math-block">{markup}</div>'
        return f'<span class="math-inline">{markup}</span>'

    # ─── Fractions ────────────────────────────────────────────────────────

    def _render_fraction(self, block: FractionBlock) -> str:
        if block.display == FractionDisplay.VISUAL_CIRCLE:
            paths = "".join(
                f'<path class="wedge{" filled" if w.filled else ""}" d="{w.svg_path()}" '
                f'fill="{FILL_COLOR if w.filled else EMPTY_COLOR}" '
                f'stroke="{STROKE_COLOR}" stroke-width="1"/>'
                for w in layout.fraction_wedges(block.numerator, block.denominator)
            )
            return (
                f'<svg class="fraction-circle" width="60" height="60" '
                f'viewBox="0 0 60 60">{paths}</svg>'
            )

        if block.display == FractionDisplay.VISUAL_BAR:
            segments = "".join(
                f'<div class="bar-segment{" filled" if filled else ""}"></div>'
                for filled in layout.fraction_bar(block.numerator, block.denominator)
            )
            return f'<div class="fraction-bar">{segments}</div>'

        return (
            f'<span class="fraction">'
            f'<span class="fraction-num">{block.numerator}</span>'
            f'<span class="fraction-den">{block.denominator}</span></span>'
        )

    # ─── Number Line & Grid ───────────────────────────────────────────────

    def _render_number_line(self, block: NumberLineBlock) -> str:
        lo, hi = block.min, block.max
        parts = []

        if block.show_ticks:
            for tick in layout.number_line_ticks(lo, hi, block.step):
                unit = " km" if lo == 0 and tick == hi else ""
                pos = layout.number_line_position(tick, lo, hi)
                parts.append(
                    f'<div class="tick" style="left:{_num(pos)}%">'
                    f'<span class="tick-label">{layout.format_number(tick)}{unit}</span></div>'
                )

        for marker in block.markers:
            pos = layout.number_line_position(marker.value, lo, hi)
            label = (
                f'<span class="marker-label">{_esc(marker.label)}</span>'
                if marker.label else ""
            )
            parts.append(
                f'<div class="marker" style="left:{_num(pos)}%">'
                f'<span class="marker-icon">{_esc(marker.icon or DEFAULT_MARKER_ICON)}</span>'
                f"{label}</div>"
            )

        return (
            f'<div class="number-line"><div class="number-line-axis">'
            f'{"".join(parts)}</div></div>'
        )

    def _render_grid(self, block: GridBlock) -> str:
        size = block.cell_size
        labels = block.labels
        cell_box = f"width:{size}px;height:{size}px"
        lines = []

        if labels and labels.x:
            heads = "".join(
                f'<div class="grid-label" style="width:{size}px">{_esc(x)}</div>'
                for x in labels.x
            )
            lines.append(
                f'<div class="grid-row grid-x-labels">'
                f'<div style="width:{size}px"></div>{heads}</div>'
            )

        for row_index, row in enumerate(layout.grid_cells(block)):
            cells = []
            if labels and labels.y:
                y_label = labels.y[row_index] if row_index < len(labels.y) else ""
                cells.append(
                    f'<div class="grid-label" style="width:{size}px">{_esc(y_label)}</div>'
                )
            for cell in row:
                style = cell_box
                if cell.filled and cell.color:
                    style += f";background:{_esc(cell.color)}"
                marker = ""
                if cell.marker:
                    title = f' title="{_esc(cell.marker.label)}"' if cell.marker.label else ""
                    marker = (
                        f'<span class="grid-marker"{title}>'
                        f"{_esc(cell.marker.icon or DEFAULT_MARKER_ICON)}</span>"
                    )
                cells.append(
                    f'<div class="grid-cell{" filled" if cell.filled else ""}" '
                    f'style="{style}">{marker}</div>'
                )
            lines.append(f'<div class="grid-row">{"".join(cells)}</div>')

        return f'<div class="grid-block">{"".join(lines)}</div>'

    # ─── Charts ───────────────────────────────────────────────────────────

    def _render_chart(self, block: ChartBlock) -> str:
        title = (
            f'<h4 class="chart-title">{_esc(block.title)}</h4>'
            if block.title else ""
        )

        if block.chart_type == ChartType.BAR:
            return self._bar_chart(block, title)
        if block.chart_type == ChartType.DOT_PLOT:
            return self._dot_plot(block, title)

        return (
            f'<div class="chart-unsupported">Chart type not supported: '
            f"{_esc(block.chart_type.value)}</div>"
        )

    def _bar_chart(self, block: ChartBlock, title: str) -> str:
        data = block.data
        heights = layout.bar_heights(data.values)
        colors = data.colors or []
        bars = []
        for i, label in enumerate(data.labels):
            height = heights[i] if i < len(heights) else 0.0
            color = colors[i] if i < len(colors) else BAR_COLOR
            bars.append(
                f'<div class="bar-column">'
                f'<div class="bar" style="height:{_num(height * 100)}%;'
                f'background:{_esc(color)}"></div>'
                f'<span class="bar-label">{_esc(label)}</span></div>'
            )
        y_label = (
            f'<span class="axis-label y-label">{_esc(block.y_label)}</span>'
            if block.y_label else ""
        )
        x_label = (
            f'<p class="axis-label x-label">{_esc(block.x_label)}</p>'
            if block.x_label else ""
        )
        return (
            f'<div class="chart bar-chart">{title}'
            f'<div class="chart-area">{y_label}{"".join(bars)}</div>{x_label}</div>'
        )

    def _dot_plot(self, block: ChartBlock, title: str) -> str:
        data = block.data
        stacks = layout.dot_stacks(data.values)
        columns = []
        for i, label in enumerate(data.labels):
            dots = '<span class="dot"></span>' * (stacks[i] if i < len(stacks) else 0)
            columns.append(
                f'<div class="dot-column"><div class="dot-stack">{dots}</div>'
                f'<span class="dot-label">{_esc(label)}</span></div>'
            )
        return f'<div class="chart dot-plot">{title}{"".join(columns)}</div>'

    # ─── Shapes ───────────────────────────────────────────────────────────

    def _render_shape(self, block: ShapeBlock) -> str:
        if block.svg:
            # Author-supplied SVG is trusted content
            return f'<div class="shape-block">{block.svg}</div>'

        fill = _esc(block.color or SHAPE_COLOR)
        stroke = f'stroke="{STROKE_COLOR}" stroke-width="2"'
        labels = block.labels or {}

        if block.shape_type in ("rectangle", "square"):
            w, h = (60, 60) if block.shape_type == "square" else (100, 60)
            label = (
                f'<text x="{10 + w // 2}" y="{h + 22}" text-anchor="middle" '
                f'font-size="12">{_esc(labels["width"])}</text>'
                if labels.get("width") else ""
            )
            return (
                f'<svg class="shape" width="{w + 20}" height="{h + 30}">'
                f'<rect x="10" y="10" width="{w}" height="{h}" fill="{fill}" {stroke}/>'
                f"{label}</svg>"
            )
        if block.shape_type == "triangle":
            return (
                f'<svg class="shape" width="100" height="100">'
                f'<polygon points="50,10 90,90 10,90" fill="{fill}" {stroke}/></svg>'
            )
        if block.shape_type == "circle":
            return (
                f'<svg class="shape" width="100" height="100">'
                f'<circle cx="50" cy="50" r="40" fill="{fill}" {stroke}/></svg>'
            )

        return f'<div class="shape-unsupported">Shape: {_esc(block.shape_type)}</div>'

    # ─── Tally, Clock, Money ──────────────────────────────────────────────

    def _render_tally(self, block: TallyBlock) -> str:
        return self._tally_markup(block.count)

    def _tally_markup(self, count: int) -> str:
        marks = layout.tally_marks(count)
        stroke = f'class="tally-stroke" stroke="{STROKE_COLOR}" stroke-width="2"'

        group = (
            '<svg class="tally-group" width="22" height="20">'
            + "".join(
                f'<line {stroke} x1="{3 + 4 * j}" y1="0" x2="{3 + 4 * j}" y2="20"/>'
                for j in range(4)
            )
            + f'<line {stroke} x1="0" y1="18" x2="20" y2="2"/></svg>'
        )
        parts = [group] * marks.groups

        if marks.singles:
            parts.append(
                f'<svg class="tally-singles" width="{4 * marks.singles}" height="20">'
                + "".join(
                    f'<line {stroke} x1="{2 + 4 * j}" y1="0" x2="{2 + 4 * j}" y2="20"/>'
                    for j in range(marks.singles)
                )
                + "</svg>"
            )
        return (
            f'<span class="tally" aria-label="{marks.strokes} tally marks">'
            f'{"".join(parts)}</span>'
        )

    def _render_clock(self, block: ClockBlock) -> str:
        c = layout.CLOCK_CENTER
        hands = layout.clock_hands(block.hours, block.minutes)

        dots = []
        for i in range(12):
            x, y = layout.polar_point(i * 30 - 90, layout.CLOCK_DOT_RADIUS)
            dots.append(f'<circle cx="{_num(x)}" cy="{_num(y)}" r="2" fill="{STROKE_COLOR}"/>')

        hx, hy = layout.polar_point(hands.hour_angle, layout.HOUR_HAND_LENGTH)
        mx, my = layout.polar_point(hands.minute_angle, layout.MINUTE_HAND_LENGTH)

        face = (
            f'<svg class="clock" width="100" height="100">'
            f'<circle cx="{_num(c)}" cy="{_num(c)}" r="{_num(layout.CLOCK_RADIUS)}" '
            f'fill="white" stroke="{STROKE_COLOR}" stroke-width="2"/>'
            f'{"".join(dots)}'
            f'<line class="hour-hand" x1="{_num(c)}" y1="{_num(c)}" x2="{_num(hx)}" '
            f'y2="{_num(hy)}" stroke="{STROKE_COLOR}" stroke-width="3" stroke-linecap="round"/>'
            f'<line class="minute-hand" x1="{_num(c)}" y1="{_num(c)}" x2="{_num(mx)}" '
            f'y2="{_num(my)}" stroke="{FILL_COLOR}" stroke-width="2" stroke-linecap="round"/>'
            f'<circle cx="{_num(c)}" cy="{_num(c)}" r="3" fill="{STROKE_COLOR}"/></svg>'
        )
        digital = (
            f'<span class="clock-digital">'
            f"{layout.digital_readout(block.hours, block.minutes)}</span>"
            if block.show_digital else ""
        )
        return f'<div class="clock-block">{face}{digital}</div>'

    def _render_money(self, block: MoneyBlock) -> str:
        if block.show_coins and block.coins:
            groups = []
            for coin in block.coins:
                glyph = f'<span class="coin">{coin.denomination}c</span>'
                groups.append(f'<div class="coin-group">{glyph * max(coin.count, 0)}</div>')
            return f'<div class="money-coins">{"".join(groups)}</div>'

        return (
            f'<span class="money-amount">'
            f"{_esc(layout.format_amount(block.amount, block.currency))}</span>"
        )

    def _render_spacer(self, block: SpacerBlock) -> str:
        height = block.height or DEFAULT_SPACER_HEIGHT
        return f'<div class="spacer" style="height:{height}px"></div>'
