"""
Speech Linearizer
=================
Flattens a block list (plus optional answer options) into one speakable
string for read-aloud.

Each block maps to a short phrase; phrases are joined with ". ", doubled
periods are collapsed and the result is trimmed. The mapping is purely
lexical and shares nothing with the visual renderer.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from .layout import format_number
from .models import (
    BlockType,
    ChartBlock,
    ClockBlock,
    FractionBlock,
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
    TextBlock,
    block_type_of,
    load_block,
)

logger = logging.getLogger(__name__)

# Alt text the authoring tool fills in when nobody wrote a description
DEFAULT_ALT_TEXTS = {"question illustration", "question image"}

# Applied in this order: the 2/3 exponent rules must run before the
# generic exponent rule would swallow them.
LATEX_SPEECH_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\\frac\{([^{}]+)\}\{([^{}]+)\}"), r"\1 over \2"),
    (re.compile(r"\\times"), " times "),
    (re.compile(r"\\div"), " divided by "),
    (re.compile(r"\\pm"), " plus or minus "),
    (re.compile(r"\\sqrt\{([^{}]+)\}"), r"square root of \1"),
    (re.compile(r"\^\{?2\}?(?!\d)"), " squared"),
    (re.compile(r"\^\{?3\}?(?!\d)"), " cubed"),
    (re.compile(r"\^\{?(\d+)\}?"), r" to the power of \1"),
    (re.compile(r"[{}\\]"), " "),
    (re.compile(r"\s+"), " "),
]


def latex_to_speech(latex: str) -> str:
    """
    Read a LaTeX fragment aloud.

    >>> latex_to_speech(r"\\frac{1}{2}")
    '1 over 2'
    >>> latex_to_speech("x^2")
    'x squared'
    """
    text = latex
    for pattern, replacement in LATEX_SPEECH_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


# ─── Block Phrases ────────────────────────────────────────────────────────────


def _text(block: TextBlock) -> Optional[str]:
    return block.content


def _image(block: ImageBlock) -> Optional[str]:
    if block.caption:
        return block.caption
    alt = (block.alt or "").strip()
    if alt and alt.lower() not in DEFAULT_ALT_TEXTS:
        return f"Image showing {alt}"
    return None


def _table(block: TableBlock) -> Optional[str]:
    return block.caption or "A table is shown"


def _math(block: MathBlock) -> Optional[str]:
    return latex_to_speech(block.latex)


def _grid(block: GridBlock) -> Optional[str]:
    return "A grid is shown"


def _number_line(block: NumberLineBlock) -> Optional[str]:
    return (
        f"A number line from {format_number(block.min)} "
        f"to {format_number(block.max)}"
    )


def _chart(block: ChartBlock) -> Optional[str]:
    return block.title or f"A {block.chart_type.value} chart is shown"


def _shape(block: ShapeBlock) -> Optional[str]:
    return f"A {block.shape_type} shape"


def _tally(block: TallyBlock) -> Optional[str]:
    return f"{block.count} tally marks"


def _clock(block: ClockBlock) -> Optional[str]:
    return f"A clock showing {block.hours}:{block.minutes:02d}"


def _money(block: MoneyBlock) -> Optional[str]:
    return f"{format_number(block.amount)} dollars"


def _fraction(block: FractionBlock) -> Optional[str]:
    return f"{block.numerator} over {block.denominator}"


def _spacer(block: SpacerBlock) -> Optional[str]:
    return None


PHRASES: dict[BlockType, Callable[[Any], Optional[str]]] = {
    BlockType.TEXT: _text,
    BlockType.IMAGE: _image,
    BlockType.TABLE: _table,
    BlockType.MATH: _math,
    BlockType.GRID: _grid,
    BlockType.NUMBER_LINE: _number_line,
    BlockType.CHART: _chart,
    BlockType.SHAPE: _shape,
    BlockType.TALLY: _tally,
    BlockType.CLOCK: _clock,
    BlockType.MONEY: _money,
    BlockType.FRACTION: _fraction,
    BlockType.SPACER: _spacer,
}


def block_phrase(block: Any) -> Optional[str]:
    """Spoken phrase for one block, or ``None`` when it has nothing to say."""
    if isinstance(block, dict):
        block = load_block(block)
        if block is None:
            return None

    block_type = block_type_of(block)
    phrase_for = PHRASES.get(block_type) if block_type else None
    if phrase_for is None:
        return None
    return phrase_for(block) or None


def option_phrase(option: QuestionOption) -> Optional[str]:
    """Text first, then nested content, then a generic image mention."""
    if option.text:
        return option.text
    if option.content:
        spoken = linearize(option.content)
        if spoken:
            return spoken
    if option.image_url:
        return "An image"
    return None


# ─── Linearization ────────────────────────────────────────────────────────────


def linearize(
    blocks: Optional[list],
    options: Optional[list[QuestionOption]] = None,
) -> str:
    """
    Build the read-aloud transcript for a question.

    >>> linearize([{"id": "1", "type": "text", "content": "Hello"}])
    'Hello'
    """
    parts: list[str] = []

    for block in blocks or []:
        phrase = block_phrase(block)
        if phrase:
            parts.append(phrase)

    if options is not None:
        parts.append("The options are:")
        for option in options:
            phrase = option_phrase(option)
            if phrase:
                parts.append(f"Option {option.id}: {phrase}")

    return ". ".join(parts).replace("..", ".").strip()
