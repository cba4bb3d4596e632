"""
Data Models
===========
Pydantic models for rich question content.

A question document is an ordered list of content blocks. Each block is a
tagged variant selected by its ``type`` field. JSON keys are camelCase
(``filledCells``, ``chartType``...) while Python attributes are snake_case.
Blocks are frozen: renderers read them and never mutate them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockType(str, Enum):
    """Type tag of a content block."""
    TEXT = "text"
    IMAGE = "image"
    TABLE = "table"
    MATH = "math"
    GRID = "grid"
    NUMBER_LINE = "number-line"
    CHART = "chart"
    SHAPE = "shape"
    TALLY = "tally"
    CLOCK = "clock"
    MONEY = "money"
    FRACTION = "fraction"
    SPACER = "spacer"


class FractionDisplay(str, Enum):
    NUMERIC = "numeric"
    VISUAL_CIRCLE = "visual-circle"
    VISUAL_BAR = "visual-bar"


class ChartType(str, Enum):
    BAR = "bar"
    PIE = "pie"
    LINE = "line"
    DOT_PLOT = "dot-plot"
    PICTOGRAPH = "pictograph"


# ─── Base ─────────────────────────────────────────────────────────────────────


class _ContentModel(BaseModel):
    """Shared config: camelCase JSON, snake_case attributes, immutable."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class MediaRef(_ContentModel):
    """
    Reference to a media asset.

    Either a direct ``url`` (used as-is) or a ``bucket``/``path`` pair in
    private object storage that must be exchanged for a signed URL.
    """
    url: Optional[str] = None
    bucket: Optional[str] = None
    path: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return bool(self.url)

    @property
    def is_stored(self) -> bool:
        return not self.url and bool(self.bucket and self.path)

    @property
    def cache_key(self) -> str:
        return f"{self.bucket}:{self.path}"


# ─── Block Variants ───────────────────────────────────────────────────────────


class TextBlock(_ContentModel):
    """Paragraph, heading or emphasised line."""
    id: str = ""
    type: Literal["text"] = "text"
    content: str = ""
    style: Literal["normal", "bold", "italic", "heading"] = "normal"
    alignment: Literal["left", "center", "right"] = "left"


class ImageBlock(_ContentModel):
    """Photo, diagram or illustration, public or in private storage."""
    id: str = ""
    type: Literal["image"] = "image"
    url: Optional[str] = None
    bucket: Optional[str] = None
    path: Optional[str] = None
    alt: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    caption: Optional[str] = None
    alignment: Literal["left", "center", "right"] = "center"

    @property
    def media_ref(self) -> MediaRef:
        return MediaRef(url=self.url, bucket=self.bucket, path=self.path)


class TallyData(_ContentModel):
    """Tally value embedded in a table cell."""
    type: Literal["tally"] = "tally"
    count: int = 0


TableCell = Union[TallyData, int, float, str]


class TableBlock(_ContentModel):
    id: str = ""
    type: Literal["table"] = "table"
    headers: Optional[list[str]] = None
    rows: list[list[TableCell]] = Field(default_factory=list)
    caption: Optional[str] = None
    header_style: Literal["blue", "gray", "none"] = "blue"


class MathBlock(_ContentModel):
    id: str = ""
    type: Literal["math"] = "math"
    latex: str = ""
    display: Literal["inline", "block"] = "inline"


class GridCell(_ContentModel):
    """Highlighted cell, addressed in screen (top-down) row order."""
    row: int
    col: int
    color: Optional[str] = None


class GridMarker(_ContentModel):
    """Map marker, addressed in Cartesian (bottom-up) coordinates."""
    x: int
    y: int
    label: Optional[str] = None
    icon: Optional[str] = None


class GridLabels(_ContentModel):
    x: Optional[list[str]] = None
    y: Optional[list[str]] = None


class GridBlock(_ContentModel):
    """Coordinate grid or map for area and position problems."""
    id: str = ""
    type: Literal["grid"] = "grid"
    rows: int = 1
    cols: int = 1
    cell_size: int = 30
    filled_cells: list[GridCell] = Field(default_factory=list)
    show_axes: bool = False
    labels: Optional[GridLabels] = None
    markers: list[GridMarker] = Field(default_factory=list)


class NumberLineMarker(_ContentModel):
    value: float
    label: Optional[str] = None
    icon: Optional[str] = None


class NumberLineBlock(_ContentModel):
    id: str = ""
    type: Literal["number-line"] = "number-line"
    min: float = 0
    max: float = 1
    step: Optional[float] = None
    markers: list[NumberLineMarker] = Field(default_factory=list)
    show_ticks: bool = True


class ChartData(_ContentModel):
    labels: list[str] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)
    colors: Optional[list[str]] = None


class ChartBlock(_ContentModel):
    """Bar graph, dot plot and friends."""
    id: str = ""
    type: Literal["chart"] = "chart"
    chart_type: ChartType = ChartType.BAR
    data: ChartData = Field(default_factory=ChartData)
    title: Optional[str] = None
    x_label: Optional[str] = None
    y_label: Optional[str] = None


class ShapeBlock(_ContentModel):
    id: str = ""
    type: Literal["shape"] = "shape"
    shape_type: str = "rectangle"
    dimensions: Optional[dict[str, float]] = None
    labels: Optional[dict[str, str]] = None
    svg: Optional[str] = None
    color: Optional[str] = None
    show_grid: bool = False


class TallyBlock(_ContentModel):
    id: str = ""
    type: Literal["tally"] = "tally"
    count: int = 0


class ClockBlock(_ContentModel):
    """Analogue clock face; hours 0-23, minutes 0-59."""
    id: str = ""
    type: Literal["clock"] = "clock"
    hours: int = 0
    minutes: int = 0
    show_digital: bool = False


class Coin(_ContentModel):
    denomination: int = Field(
        validation_alias=AliasChoices("denomination", "value"),
        description="Coin value in cents",
    )
    count: int = 1


class MoneyBlock(_ContentModel):
    id: str = ""
    type: Literal["money"] = "money"
    amount: float = 0
    currency: Literal["AUD", "USD"] = "AUD"
    show_coins: bool = False
    coins: Optional[list[Coin]] = None


class FractionBlock(_ContentModel):
    """
    Fraction shown as numbers or as a shaded circle/bar.
    The numerator may exceed the denominator (improper fractions).
    """
    id: str = ""
    type: Literal["fraction"] = "fraction"
    numerator: int = 0
    denominator: int = 1
    display: FractionDisplay = FractionDisplay.NUMERIC
    shaded: Optional[int] = None


class SpacerBlock(_ContentModel):
    id: str = ""
    type: Literal["spacer"] = "spacer"
    height: Optional[int] = None


ContentBlock = Annotated[
    Union[
        TextBlock,
        ImageBlock,
        TableBlock,
        MathBlock,
        GridBlock,
        NumberLineBlock,
        ChartBlock,
        ShapeBlock,
        TallyBlock,
        ClockBlock,
        MoneyBlock,
        FractionBlock,
        SpacerBlock,
    ],
    Field(discriminator="type"),
]

BLOCK_MODELS: dict[BlockType, type[BaseModel]] = {
    BlockType.TEXT: TextBlock,
    BlockType.IMAGE: ImageBlock,
    BlockType.TABLE: TableBlock,
    BlockType.MATH: MathBlock,
    BlockType.GRID: GridBlock,
    BlockType.NUMBER_LINE: NumberLineBlock,
    BlockType.CHART: ChartBlock,
    BlockType.SHAPE: ShapeBlock,
    BlockType.TALLY: TallyBlock,
    BlockType.CLOCK: ClockBlock,
    BlockType.MONEY: MoneyBlock,
    BlockType.FRACTION: FractionBlock,
    BlockType.SPACER: SpacerBlock,
}

_block_adapter = TypeAdapter(ContentBlock)
_block_classes = tuple(BLOCK_MODELS.values())


def block_type_of(block: Any) -> Optional[BlockType]:
    """Type tag of a block as a ``BlockType``, or ``None`` if unrecognised."""
    tag = block.get("type") if isinstance(block, dict) else getattr(block, "type", None)
    try:
        return BlockType(tag)
    except ValueError:
        return None


# ─── Lenient Loading ──────────────────────────────────────────────────────────


def load_block(raw: Any) -> Optional[ContentBlock]:
    """
    Build a typed block from raw JSON data.

    Unknown type tags and malformed blocks yield ``None`` (they render as
    nothing) instead of raising.
    """
    if isinstance(raw, _block_classes):
        return raw

    if not isinstance(raw, dict):
        logger.warning(f"Skipping non-object block: {raw!r}")
        return None

    tag = raw.get("type")
    if block_type_of(raw) is None:
        logger.debug(f"Skipping block {raw.get('id')!r}: unknown type {tag!r}")
        return None

    try:
        return _block_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            f"Skipping malformed {tag} block {raw.get('id')!r}: "
            f"{e.error_count()} error(s)"
        )
        return None


def load_blocks(raw_blocks: Optional[list]) -> list[ContentBlock]:
    """Load a block list, dropping anything that cannot be rendered."""
    if not raw_blocks:
        return []
    blocks = []
    for raw in raw_blocks:
        block = load_block(raw)
        if block is not None:
            blocks.append(block)
    return blocks


# ─── Question Models ─────────────────────────────────────────────────────────


class QuestionOption(_ContentModel):
    """
    One answer option: plain text, an image, or nested rich content.
    ``is_correct`` is only populated in answer-review contexts.
    """
    id: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    content: Optional[list[ContentBlock]] = None
    is_correct: Optional[bool] = None

    @field_validator("content", mode="before")
    @classmethod
    def _load_content(cls, v):
        if v is None:
            return None
        return load_blocks(v)


class QuestionDocument(_ContentModel):
    """A renderable question: content blocks, options and optional audio."""
    id: str = ""
    question_number: Optional[int] = None
    content: list[ContentBlock] = Field(
        default_factory=list,
        validation_alias=AliasChoices("content", "blocks"),
    )
    options: Optional[list[QuestionOption]] = None
    audio_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("audio_path", "audioPath"),
    )
    audio_bucket: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("audio_bucket", "audioBucket"),
    )

    @field_validator("content", mode="before")
    @classmethod
    def _load_content(cls, v):
        return load_blocks(v)

    @computed_field
    @property
    def block_count(self) -> int:
        return len(self.content)

    @property
    def image_refs(self) -> list[MediaRef]:
        """Storage references of every image block, for cache prewarming."""
        refs = []
        for block in self.content:
            if isinstance(block, ImageBlock) and block.media_ref.is_stored:
                refs.append(block.media_ref)
        return refs

    @classmethod
    def from_json_data(cls, data: Any) -> "QuestionDocument":
        """Accept either a question object or a bare list of blocks."""
        if isinstance(data, list):
            return cls(content=data)
        if not isinstance(data, dict):
            raise ValueError("Question document must be an object or a list of blocks")
        return cls.model_validate(data)


# ─── Render Output ────────────────────────────────────────────────────────────


class RenderResult(BaseModel):
    """Both renditions of one question, as returned by the engine."""
    document_id: str = ""
    html: str
    transcript: str
    block_count: int = 0
    option_count: int = 0
    unavailable_images: list[str] = Field(default_factory=list)
    audio_url: Optional[str] = None
    rendered_at: str = ""
    renderer_version: str = ""
