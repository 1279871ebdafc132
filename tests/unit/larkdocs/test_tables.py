"""Tests for column width calculation and table structure building."""

import logging

import pytest
from markdown_it.tree import SyntaxTreeNode

from larkdocs.blocks import BLOCK_TYPE_TABLE, BLOCK_TYPE_TEXT, block_plain_text
from larkdocs.converter import create_markdown_parser
from larkdocs.tables import (
    DEFAULT_TABLE_WIDTH,
    MIN_COLUMN_WIDTH,
    TableStructureBuilder,
    calculate_column_widths,
    measure_text_width,
)


def parse_table(markdown):
    root = SyntaxTreeNode(create_markdown_parser().parse(markdown))
    return next(node for node in root.children if node.type == "table")


class TestMeasureTextWidth:
    def test_ascii(self):
        assert measure_text_width("abcd") == 32

    def test_wide_characters_count_double(self):
        assert measure_text_width("名前") == 32
        assert measure_text_width("ａ") == 16  # full-width latin

    def test_empty(self):
        assert measure_text_width("") == 0


class TestCalculateColumnWidths:
    """Tests for the width allocation algorithm."""

    @pytest.mark.parametrize(
        "header,rows,total",
        [
            (["Name", "Age"], [["Alice", "30"]], 720),
            (["a", "b", "c"], [["x" * 90, "y", "z" * 7]], 720),
            (["id", "description", "状态"], [["1", "long text " * 5, "完成"]], 1000),
            (["p", "q", "r", "s", "t", "u", "v"], [], 721),
        ],
    )
    def test_widths_sum_exactly_to_total(self, header, rows, total):
        widths = calculate_column_widths(header, rows, total)
        assert len(widths) == len(header)
        assert sum(widths) == total

    def test_short_columns_get_minimum_then_scale(self):
        # Name/Age/Alice/30 are all narrower than the 60px minimum.
        assert calculate_column_widths(["Name", "Age"], [["Alice", "30"]]) == [360, 360]

    def test_single_column_takes_whole_budget(self):
        assert calculate_column_widths(["Only"], [["x" * 500]], 720) == [720]

    def test_no_columns(self):
        assert calculate_column_widths([], []) == []

    def test_all_empty_distributes_equally(self):
        assert calculate_column_widths(["", "", ""], [["", "", ""]], 100) == [33, 33, 34]

    def test_wide_column_clamped_to_ratio(self):
        widths = calculate_column_widths(["long", "s"], [["x" * 200, ""]], 720)
        assert widths[0] > widths[1]
        assert sum(widths) == 720
        # Clamped 432 vs 60 before scaling to the budget.
        assert widths == [632, 88]

    def test_narrow_budget_warns_about_last_column(self, caplog):
        with caplog.at_level(logging.WARNING, logger="larkdocs.tables"):
            widths = calculate_column_widths(["a"] * 6, [], 9)

        assert sum(widths) == 9
        assert widths[-1] < 1
        assert "too narrow" in caplog.text

    def test_normal_budget_does_not_warn(self, caplog):
        with caplog.at_level(logging.WARNING, logger="larkdocs.tables"):
            calculate_column_widths(["Name", "Age"], [["Alice", "30"]], 720)
        assert caplog.text == ""

    def test_body_cells_widen_columns(self):
        widths = calculate_column_widths(["a", "b"], [["x" * 30, "y" * 10]], 720)
        assert widths[0] > widths[1]


class TestTableStructureBuilder:
    """Tests for the three-layer table plan."""

    def test_name_age_table(self):
        table = parse_table("| Name | Age |\n|------|-----|\n| Alice | 30 |")
        structure = TableStructureBuilder().build(table)

        assert structure.shell_block["block_type"] == BLOCK_TYPE_TABLE
        assert structure.row_count == 2
        assert structure.column_count == 2
        assert sum(structure.column_widths) == DEFAULT_TABLE_WIDTH
        assert len(structure.cell_contents) == 4
        texts = [block_plain_text(cell[0]) for cell in structure.cell_contents]
        assert texts == ["Name", "Age", "Alice", "30"]

    def test_every_cell_is_one_text_block(self):
        table = parse_table("| A | B | C |\n|---|---|---|\n| 1 | | 3 |\n| 4 | 5 | 6 |")
        structure = TableStructureBuilder().build(table)

        assert len(structure.cell_contents) == structure.row_count * structure.column_count == 9
        for cell in structure.cell_contents:
            assert len(cell) == 1
            assert cell[0]["block_type"] == BLOCK_TYPE_TEXT
        assert structure.cell_contents[4][0]["text"]["elements"] == []

    def test_short_body_rows_are_padded(self):
        table = parse_table("| A | B | C |\n|---|---|---|\n| 1 |")
        structure = TableStructureBuilder().build(table)
        assert len(structure.cell_contents) == 6

    def test_cell_inline_styles_kept(self):
        table = parse_table("| **H** | `c` |\n|---|---|\n| [l](https://x.io) | _i_ |")
        structure = TableStructureBuilder().build(table)
        first = structure.cell_contents[0][0]["text"]["elements"][0]["text_run"]
        assert first["text_element_style"] == {"bold": True}
        link = structure.cell_contents[2][0]["text"]["elements"][0]["text_run"]
        assert link["text_element_style"]["link"] == {"url": "https://x.io"}

    def test_custom_minimum_width(self):
        table = parse_table("| a | b |\n|---|---|\n| 1 | 2 |")
        structure = TableStructureBuilder(min_column_width=MIN_COLUMN_WIDTH * 2).build(table, total_width=300)
        assert structure.column_widths == [150, 150]
