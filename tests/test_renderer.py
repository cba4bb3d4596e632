"""
Test Suite for Question Content Renderer
=========================================
Unit tests for the content model, layout geometry, visual renderer and
speech linearizer.
"""

from __future__ import annotations

import asyncio

import pytest

from renderer import layout
from renderer.media import MediaResolver
from renderer.models import (
    BlockType,
    ChartBlock,
    ClockBlock,
    Coin,
    FractionBlock,
    GridBlock,
    GridMarker,
    ImageBlock,
    MathBlock,
    MoneyBlock,
    NumberLineBlock,
    QuestionDocument,
    QuestionOption,
    TableBlock,
    TallyBlock,
    TallyData,
    TextBlock,
    block_type_of,
    load_block,
    load_blocks,
)
from renderer.speech import (
    PHRASES,
    block_phrase,
    latex_to_speech,
    linearize,
    option_phrase,
)
from renderer.visual import ImageLoader, ImageState, VisualRenderer


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBlockLoading:
    """Test lenient loading of raw JSON blocks."""

    def test_text_block_from_dict(self):
        block = load_block({"id": "t1", "type": "text", "content": "Hello", "style": "bold"})
        assert isinstance(block, TextBlock)
        assert block.content == "Hello"
        assert block.style == "bold"

    def test_camel_case_keys(self):
        block = load_block({
            "type": "grid",
            "rows": 2,
            "cols": 3,
            "cellSize": 40,
            "filledCells": [{"row": 0, "col": 1, "color": "#f00"}],
        })
        assert isinstance(block, GridBlock)
        assert block.cell_size == 40
        assert block.filled_cells[0].col == 1

    def test_chart_type_tag(self):
        block = load_block({
            "type": "chart",
            "chartType": "dot-plot",
            "data": {"labels": ["a"], "values": [3]},
        })
        assert isinstance(block, ChartBlock)
        assert block.chart_type.value == "dot-plot"

    def test_unknown_type_is_skipped(self):
        assert load_block({"id": "v1", "type": "video", "src": "x.mp4"}) is None

    def test_missing_type_is_skipped(self):
        assert load_block({"content": "orphan"}) is None

    def test_malformed_block_is_skipped(self):
        assert load_block({"type": "clock", "hours": "half past"}) is None

    def test_non_dict_is_skipped(self):
        assert load_block("text") is None

    def test_model_instance_passes_through(self):
        block = TallyBlock(count=3)
        assert load_block(block) is block

    def test_load_blocks_drops_bad_entries(self):
        blocks = load_blocks([
            {"type": "text", "content": "a"},
            {"type": "hologram"},
            {"type": "spacer"},
        ])
        assert [block_type_of(b) for b in blocks] == [BlockType.TEXT, BlockType.SPACER]

    def test_coin_accepts_value_alias(self):
        block = load_block({
            "type": "money",
            "amount": 0.4,
            "showCoins": True,
            "coins": [{"value": 20, "count": 2}],
        })
        assert block.coins[0].denomination == 20

    def test_table_cells_keep_tally_data(self):
        block = load_block({
            "type": "table",
            "headers": ["Fruit", "Votes"],
            "rows": [["Apple", {"type": "tally", "count": 7}]],
        })
        assert isinstance(block.rows[0][1], TallyData)
        assert block.rows[0][1].count == 7

    def test_block_type_of(self):
        assert block_type_of({"type": "number-line"}) == BlockType.NUMBER_LINE
        assert block_type_of({"type": "nope"}) is None
        assert block_type_of(ClockBlock()) == BlockType.CLOCK


class TestQuestionDocument:
    """Test the document wrapper."""

    def test_from_dict(self):
        doc = QuestionDocument.from_json_data({
            "id": "q1",
            "content": [{"type": "text", "content": "Hi"}, {"type": "unknown"}],
            "options": [{"id": "A", "text": "yes"}],
            "audioPath": "q1.mp3",
        })
        assert doc.id == "q1"
        assert doc.block_count == 1
        assert doc.options[0].id == "A"
        assert doc.audio_path == "q1.mp3"

    def test_from_bare_list(self):
        doc = QuestionDocument.from_json_data([{"type": "tally", "count": 2}])
        assert doc.block_count == 1

    def test_blocks_alias(self):
        doc = QuestionDocument.from_json_data({"blocks": [{"type": "spacer"}]})
        assert doc.block_count == 1

    def test_rejects_scalar(self):
        with pytest.raises(ValueError):
            QuestionDocument.from_json_data(42)

    def test_image_refs_only_stored(self):
        doc = QuestionDocument.from_json_data([
            {"type": "image", "url": "https://cdn.example.com/a.png"},
            {"type": "image", "bucket": "question-media", "path": "q1/b.png"},
        ])
        refs = doc.image_refs
        assert len(refs) == 1
        assert refs[0].cache_key == "question-media:q1/b.png"

    def test_option_nested_content(self):
        option = QuestionOption(id="B", content=[{"type": "clock", "hours": 3}])
        assert isinstance(option.content[0], ClockBlock)


# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFractionGeometry:
    """Test wedge and bar decomposition."""

    @pytest.mark.parametrize("d", [1, 2, 3, 4, 6, 8, 12])
    def test_wedge_count_and_fill(self, d):
        for n in range(d + 1):
            wedges = layout.fraction_wedges(n, d)
            assert len(wedges) == d
            assert [w.filled for w in wedges] == [i < n for i in range(d)]

    def test_first_wedge_starts_at_twelve(self):
        wedges = layout.fraction_wedges(1, 4)
        assert wedges[0].start_angle == -90
        assert wedges[0].end_angle == 0

    def test_large_arc_for_halves(self):
        assert all(w.large_arc for w in layout.fraction_wedges(1, 2))
        assert not any(w.large_arc for w in layout.fraction_wedges(1, 3))

    def test_zero_denominator(self):
        assert layout.fraction_wedges(1, 0) == []

    def test_fraction_bar(self):
        assert layout.fraction_bar(2, 4) == [True, True, False, False]

    def test_wedge_path_closes(self):
        path = layout.fraction_wedges(1, 4)[0].svg_path()
        assert path.startswith("M30,30 L30,5")
        assert path.endswith("Z")


class TestNumberLine:
    """Test tick generation and positioning."""

    def test_default_step_quarters(self):
        assert layout.number_line_ticks(0, 10) == [0, 2.5, 5, 7.5, 10]

    def test_explicit_step(self):
        assert layout.number_line_ticks(0, 1, 0.25) == [0, 0.25, 0.5, 0.75, 1]

    def test_step_not_dividing_range(self):
        assert layout.number_line_ticks(0, 10, 3) == [0, 3, 6, 9]

    def test_degenerate_range(self):
        assert layout.number_line_ticks(5, 5) == [5]

    def test_position(self):
        assert layout.number_line_position(5, 0, 10) == 50
        assert layout.number_line_position(3, 3, 3) == 0


class TestGridCells:
    """Test grid matrix construction."""

    def test_marker_uses_bottom_up_rows(self):
        block = GridBlock(rows=3, cols=3, markers=[GridMarker(x=1, y=0, label="Home")])
        cells = layout.grid_cells(block)
        assert cells[2][1].marker is not None
        assert cells[2][1].marker.label == "Home"
        assert cells[0][1].marker is None

    def test_filled_cells_use_screen_rows(self):
        block = GridBlock(rows=2, cols=2, filled_cells=[{"row": 0, "col": 1, "color": "#abc"}])
        cells = layout.grid_cells(block)
        assert cells[0][1].filled
        assert cells[0][1].color == "#abc"
        assert not cells[1][1].filled

    def test_dimensions(self):
        cells = layout.grid_cells(GridBlock(rows=4, cols=5))
        assert len(cells) == 4
        assert all(len(row) == 5 for row in cells)


class TestChartGeometry:
    """Test bar normalisation."""

    def test_bar_heights(self):
        assert layout.bar_heights([10, 20, 5]) == [0.5, 1.0, 0.25]

    def test_all_zero_bars(self):
        assert layout.bar_heights([0, 0, 0]) == [0, 0, 0]

    def test_empty_series(self):
        assert layout.bar_heights([]) == []

    def test_negative_values_clamped(self):
        assert layout.bar_heights([10, -5, 5]) == [1.0, 0.0, 0.5]

    def test_dot_stacks(self):
        assert layout.dot_stacks([3, 0, 2.7, -1]) == [3, 0, 2, 0]


class TestClockGeometry:
    """Test clock hand angles."""

    def test_three_oclock(self):
        assert layout.clock_hands(3, 0).hour_angle == 0

    def test_six_oclock(self):
        assert layout.clock_hands(6, 0).hour_angle == 90

    def test_half_past_moves_hour_hand(self):
        hands = layout.clock_hands(3, 30)
        assert hands.hour_angle == 15
        assert hands.minute_angle == 90

    def test_afternoon_wraps(self):
        assert layout.clock_hands(15, 0).hour_angle == 0

    def test_digital_readout(self):
        assert layout.digital_readout(9, 5) == "09:05"


class TestTallyMarks:
    """Test quinary decomposition."""

    @pytest.mark.parametrize("count", [0, 1, 4, 5, 6, 10, 22, 37])
    def test_strokes_total_count(self, count):
        marks = layout.tally_marks(count)
        assert marks.groups == count // 5
        assert marks.singles == count % 5
        assert marks.strokes == count

    def test_negative_count(self):
        assert layout.tally_marks(-3).strokes == 0


class TestMoneyAndMath:
    """Test money formatting and math markup."""

    def test_format_amount(self):
        assert layout.format_amount(2.5) == "$2.50"
        assert layout.format_amount(12, "USD") == "$12.00"

    def test_format_number(self):
        assert layout.format_number(5.0) == "5"
        assert layout.format_number(2.5) == "2.5"

    def test_fraction_markup(self):
        markup = layout.math_to_markup(r"\frac{3}{4}")
        assert '<span class="math-num">3</span>' in markup
        assert '<span class="math-den">4</span>' in markup

    def test_operators(self):
        assert layout.math_to_markup(r"6 \times 7") == "6 × 7"
        assert layout.math_to_markup(r"8 \div 2") == "8 ÷ 2"

    def test_superscript_and_subscript(self):
        assert layout.math_to_markup("x^2") == "x<sup>2</sup>"
        assert layout.math_to_markup("a_1") == "a<sub>1</sub>"

    def test_escapes_input(self):
        assert layout.math_to_markup("a<b") == "a&lt;b"


# ═══════════════════════════════════════════════════════════════════════════════
# VISUAL RENDERER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestVisualDispatch:
    """Test block type dispatch."""

    def test_every_block_type_has_a_renderer(self):
        assert VisualRenderer().handled_types == set(BlockType)

    def test_unknown_block_renders_nothing(self):
        assert VisualRenderer().render_block({"type": "video"}) == ""

    def test_render_wraps_content(self):
        html = VisualRenderer().render([TextBlock(content="Hi")])
        assert html.startswith('<div class="question-content">')
        assert "Hi" in html

    def test_text_is_escaped(self):
        html = VisualRenderer().render_block(TextBlock(content="<b>1 < 2</b>"))
        assert "&lt;b&gt;1 &lt; 2&lt;/b&gt;" in html


class TestVisualBlocks:
    """Test per-type markup."""

    def setup_method(self):
        self.renderer = VisualRenderer()

    @pytest.mark.parametrize("n,d", [(0, 1), (1, 1), (1, 2), (3, 4), (5, 8)])
    def test_fraction_circle_wedges(self, n, d):
        html = self.renderer.render_block(
            FractionBlock(numerator=n, denominator=d, display="visual-circle")
        )
        assert html.count('<path class="wedge') == d
        assert html.count('class="wedge filled"') == n

    def test_fraction_bar(self):
        html = self.renderer.render_block(
            FractionBlock(numerator=1, denominator=3, display="visual-bar")
        )
        assert html.count('class="bar-segment') == 3
        assert html.count('class="bar-segment filled"') == 1

    def test_fraction_numeric(self):
        html = self.renderer.render_block(FractionBlock(numerator=2, denominator=5))
        assert '<span class="fraction-num">2</span>' in html

    @pytest.mark.parametrize("count", [0, 3, 5, 22])
    def test_tally_stroke_count(self, count):
        html = self.renderer.render_block(TallyBlock(count=count))
        assert html.count('class="tally-stroke"') == count
        assert html.count('class="tally-group"') == count // 5

    def test_table_tally_cell(self):
        block = TableBlock(
            headers=["Pet", "Votes"],
            rows=[["Cat", {"type": "tally", "count": 3}], ["Dog", 5]],
        )
        html = self.renderer.render_block(block)
        assert '<th class="header-blue">Pet</th>' in html
        assert 'aria-label="3 tally marks"' in html
        assert "<td>5</td>" in html

    def test_number_line_ticks_and_unit(self):
        html = self.renderer.render_block(NumberLineBlock(min=0, max=10))
        assert html.count('class="tick"') == 5
        assert "10 km" in html

    def test_number_line_marker(self):
        html = self.renderer.render_block(
            NumberLineBlock(min=0, max=10, markers=[{"value": 5, "label": "Shop"}])
        )
        assert 'class="marker" style="left:50%"' in html
        assert "Shop" in html

    def test_grid_marker_placement(self):
        block = GridBlock(rows=2, cols=2, markers=[GridMarker(x=0, y=1, icon="X")])
        html = self.renderer.render_block(block)
        rows = html.split('<div class="grid-row">')[1:]
        assert "grid-marker" in rows[0]
        assert "grid-marker" not in rows[1]

    def test_bar_chart_heights(self):
        block = ChartBlock(data={"labels": ["a", "b", "c"], "values": [10, 20, 5]})
        html = self.renderer.render_block(block)
        assert "height:50%" in html
        assert "height:100%" in html
        assert "height:25%" in html

    def test_bar_chart_all_zero(self):
        block = ChartBlock(data={"labels": ["a", "b"], "values": [0, 0]})
        html = self.renderer.render_block(block)
        assert html.count("height:0%") == 2
        assert "nan" not in html.lower()

    def test_bar_chart_negative_value(self):
        block = ChartBlock(data={"labels": ["a", "b"], "values": [10, -5]})
        html = self.renderer.render_block(block)
        assert "height:100%" in html
        assert "height:0%" in html
        assert "height:-" not in html

    def test_dot_plot(self):
        block = ChartBlock(chart_type="dot-plot", data={"labels": ["x", "y"], "values": [2, 1]})
        html = self.renderer.render_block(block)
        assert html.count('<span class="dot">') == 3

    def test_unsupported_chart(self):
        html = self.renderer.render_block(ChartBlock(chart_type="pie"))
        assert "Chart type not supported: pie" in html

    def test_clock(self):
        html = self.renderer.render_block(ClockBlock(hours=3, minutes=0, show_digital=True))
        assert 'class="hour-hand" x1="50" y1="50" x2="70" y2="50"' in html
        assert "03:00" in html

    def test_money_amount(self):
        html = self.renderer.render_block(MoneyBlock(amount=3.5))
        assert "$3.50" in html

    def test_money_coins(self):
        block = MoneyBlock(amount=0.4, show_coins=True, coins=[Coin(denomination=20, count=2)])
        html = self.renderer.render_block(block)
        assert html.count('<span class="coin">20c</span>') == 2

    def test_math_display(self):
        html = self.renderer.render_block(MathBlock(latex="x^2", display="block"))
        assert html == '<div class="math-block">x<sup>2</sup></div>'

    def test_shape_fallback(self):
        html = self.renderer.render_block({"type": "shape", "shapeType": "hexagon"})
        assert "Shape: hexagon" in html

    def test_spacer_default_height(self):
        html = self.renderer.render_block({"type": "spacer"})
        assert "height:16px" in html


class TestImageRendering:
    """Test image resolution states."""

    def test_loading_placeholder_before_resolution(self):
        html = VisualRenderer().render_block(ImageBlock(id="i1", url="https://a/x.png"))
        assert "image-loading" in html

    def test_direct_url_renders_image(self):
        renderer = VisualRenderer()
        block = ImageBlock(id="i1", url="https://a/x.png", caption="A cat")
        html = asyncio.run(renderer.render_document([block]))
        assert 'src="https://a/x.png"' in html
        assert "A cat" in html

    def test_unresolvable_image_shows_unavailable(self):
        renderer = VisualRenderer(MediaResolver())
        block = ImageBlock(id="i2", bucket="question-media", path="q/x.png")
        html = asyncio.run(renderer.render_document([block]))
        assert "Image unavailable" in html
        assert renderer.images.unavailable == ["i2"]

    def test_render_document_with_options(self):
        renderer = VisualRenderer()
        options = [QuestionOption(id="A", text="Four"), QuestionOption(id="B", text="Five")]
        html = asyncio.run(renderer.render_document([{"type": "text", "content": "2+2?"}], options))
        assert '<ol class="question-options">' in html
        assert html.count('class="question-option"') == 2


class _GatedResolver:
    """Resolver whose first call blocks until released."""

    def __init__(self):
        self.calls = 0
        self.gate = None

    async def resolve(self, ref):
        self.calls += 1
        if self.calls == 1:
            await self.gate.wait()
            return "https://cdn/old.png"
        return "https://cdn/new.png"


class TestImageLoader:
    """Test sequence-guarded image loading."""

    def test_stale_result_is_discarded(self):
        resolver = _GatedResolver()
        block = ImageBlock(id="img", bucket="b", path="p.png")

        async def scenario():
            resolver.gate = asyncio.Event()
            loader = ImageLoader(resolver)
            first = asyncio.create_task(loader.load(block))
            await asyncio.sleep(0)
            await loader.load(block)
            resolver.gate.set()
            await first
            return loader.view(block)

        view = asyncio.run(scenario())
        assert view.state == ImageState.READY
        assert view.url == "https://cdn/new.png"

    def test_mark_failed(self):
        loader = ImageLoader(MediaResolver())
        block = ImageBlock(id="img", url="https://cdn/x.png")
        asyncio.run(loader.load(block))
        assert loader.view(block).state == ImageState.READY

        loader.mark_failed(block)
        assert loader.view(block).state == ImageState.UNAVAILABLE


# ═══════════════════════════════════════════════════════════════════════════════
# SPEECH TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLatexToSpeech:
    """Test spoken LaTeX."""

    def test_fraction(self):
        assert latex_to_speech(r"\frac{1}{2}") == "1 over 2"

    def test_squared(self):
        assert latex_to_speech("x^2") == "x squared"

    def test_cubed(self):
        assert latex_to_speech("y^{3}") == "y cubed"

    def test_higher_power(self):
        assert latex_to_speech("2^5") == "2 to the power of 5"

    def test_two_digit_power_starting_with_two(self):
        assert latex_to_speech("2^23") == "2 to the power of 23"

    def test_square_root(self):
        assert latex_to_speech(r"\sqrt{9}") == "square root of 9"

    def test_operators(self):
        assert latex_to_speech(r"6 \times 7") == "6 times 7"
        assert latex_to_speech(r"8 \div 2") == "8 divided by 2"


class TestBlockPhrases:
    """Test per-type spoken phrases."""

    def test_every_block_type_has_a_phrase(self):
        assert set(PHRASES) == set(BlockType)

    def test_image_caption(self):
        assert block_phrase(ImageBlock(caption="A map", alt="map")) == "A map"

    def test_image_meaningful_alt(self):
        assert block_phrase(ImageBlock(alt="a red apple")) == "Image showing a red apple"

    def test_image_default_alt_is_silent(self):
        assert block_phrase(ImageBlock(alt="Question illustration")) is None
        assert block_phrase(ImageBlock()) is None

    def test_table(self):
        assert block_phrase(TableBlock()) == "A table is shown"
        assert block_phrase(TableBlock(caption="Votes")) == "Votes"

    def test_chart(self):
        assert block_phrase(ChartBlock()) == "A bar chart is shown"
        assert block_phrase(ChartBlock(title="Pets")) == "Pets"

    def test_clock(self):
        assert block_phrase(ClockBlock(hours=3, minutes=5)) == "A clock showing 3:05"

    def test_money(self):
        assert block_phrase(MoneyBlock(amount=5)) == "5 dollars"
        assert block_phrase(MoneyBlock(amount=2.5)) == "2.5 dollars"

    def test_number_line(self):
        assert block_phrase(NumberLineBlock(min=0, max=10)) == "A number line from 0 to 10"

    def test_tally_and_fraction(self):
        assert block_phrase(TallyBlock(count=7)) == "7 tally marks"
        assert block_phrase(FractionBlock(numerator=3, denominator=4)) == "3 over 4"

    def test_spacer_is_silent(self):
        assert block_phrase({"type": "spacer"}) is None

    def test_unknown_is_silent(self):
        assert block_phrase({"type": "video"}) is None


class TestLinearize:
    """Test transcript assembly."""

    def test_single_text(self):
        assert linearize([{"type": "text", "content": "Hello"}]) == "Hello"

    def test_empty(self):
        assert linearize([]) == ""
        assert linearize(None) == ""

    def test_joins_and_collapses_periods(self):
        text = linearize([
            {"type": "text", "content": "Look at the clock."},
            {"type": "clock", "hours": 9, "minutes": 30},
        ])
        assert text == "Look at the clock. A clock showing 9:30"

    def test_silent_blocks_are_skipped(self):
        text = linearize([
            {"type": "text", "content": "One"},
            {"type": "spacer"},
            {"type": "text", "content": "Two"},
        ])
        assert text == "One. Two"

    def test_options(self):
        text = linearize(
            [{"type": "text", "content": "Pick one"}],
            [QuestionOption(id="A", text="3"), QuestionOption(id="B", text="4")],
        )
        assert text == "Pick one. The options are:. Option A: 3. Option B: 4"

    def test_option_phrase_fallbacks(self):
        assert option_phrase(QuestionOption(id="A", text="Red")) == "Red"
        assert option_phrase(
            QuestionOption(id="B", content=[{"type": "tally", "count": 2}])
        ) == "2 tally marks"
        assert option_phrase(QuestionOption(id="C", image_url="https://a/c.png")) == "An image"
        assert option_phrase(QuestionOption(id="D")) is None
