"""
Table structure builder for the Lark DocX Block API.

Lark tables use a three-layer hierarchy:

    Table (block_type=31) -> TableCell (block_type=32) -> content blocks

The platform creates the cells itself when the table shell is inserted, so a
table cannot be written in one call. This module only computes the plan:
the shell block with its dimensions and column widths, plus the content
blocks for every cell in row-major order (header row first). It makes no API
calls; see ``larkdocs.document_service`` for the protocol that submits it.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from larkdocs.blocks import make_table_block, make_text_block
from larkdocs.inline import flatten_inline_text, parse_inline

if TYPE_CHECKING:
    from markdown_it.tree import SyntaxTreeNode

logger = logging.getLogger(__name__)

# Default total table width in pixels for a Lark document.
DEFAULT_TABLE_WIDTH = 720

# Minimum width for any column in pixels.
MIN_COLUMN_WIDTH = 60

# No single column may take more than this share of the total width.
MAX_COLUMN_RATIO = 0.6

# Approximate pixels per narrow character.
PIXELS_PER_UNIT = 8


@dataclass
class TableStructure:
    """
    Persistence plan for one table.

    Attributes:
        shell_block: The table block to create first (block_type=31).
        cell_contents: Content blocks per cell in row-major order,
            ``[row0col0, row0col1, ..., row1col0, ...]``.
    """

    shell_block: dict[str, Any]
    cell_contents: list[list[dict[str, Any]]]

    @property
    def row_count(self) -> int:
        return self.shell_block["table"]["property"]["row_size"]

    @property
    def column_count(self) -> int:
        return self.shell_block["table"]["property"]["column_size"]

    @property
    def column_widths(self) -> list[int]:
        return self.shell_block["table"]["property"]["column_width"]


def measure_text_width(text: str) -> int:
    """
    Approximate rendered pixel width of a cell's text.

    East Asian wide and full-width characters count double.
    """
    units = 0
    for ch in text:
        units += 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    return units * PIXELS_PER_UNIT


def calculate_column_widths(
    header_texts: list[str],
    body_rows: list[list[str]],
    total_width: int = DEFAULT_TABLE_WIDTH,
    min_column_width: int = MIN_COLUMN_WIDTH,
    max_column_ratio: float = MAX_COLUMN_RATIO,
) -> list[int]:
    """
    Compute integer pixel widths per column that sum exactly to ``total_width``.

    Each column's width is the widest of its header and body cells, clamped
    to ``[min_column_width, total_width * max_column_ratio]``, then scaled
    proportionally. Rounding residue is pushed onto the last column.

    Args:
        header_texts: Plain text of each header cell; defines the column count.
        body_rows: Plain text of each body row's cells.
        total_width: Width budget the columns must add up to.

    Returns:
        One width per column.
    """
    column_count = len(header_texts)
    if column_count == 0:
        return []
    if column_count == 1:
        return [total_width]

    raw_widths = [0] * column_count
    for col in range(column_count):
        raw_widths[col] = measure_text_width(header_texts[col])
        for row in body_rows:
            cell_text = row[col] if col < len(row) else ""
            raw_widths[col] = max(raw_widths[col], measure_text_width(cell_text))

    if sum(raw_widths) == 0:
        # Nothing to measure: equal distribution, remainder on the last column.
        equal = total_width // column_count
        widths = [equal] * column_count
        widths[-1] = total_width - equal * (column_count - 1)
        return widths

    max_width = total_width * max_column_ratio
    clamped = [max(min_column_width, min(w, max_width)) for w in raw_widths]

    scale = total_width / sum(clamped)
    widths = [int(round(w * scale)) for w in clamped]

    diff = total_width - sum(widths)
    if diff:
        widths[-1] += diff
    if widths[-1] < 1:
        logger.warning(
            f"Table width {total_width} is too narrow for {column_count} columns; last column width is {widths[-1]}"
        )
    return widths


class TableStructureBuilder:
    """
    Builds a ``TableStructure`` from a markdown-it ``table`` syntax-tree node.

    Column count comes from the header row; body rows are padded or
    truncated to match, so every table has exactly
    ``row_count * column_count`` cells.
    """

    def __init__(
        self,
        min_column_width: int = MIN_COLUMN_WIDTH,
        max_column_ratio: float = MAX_COLUMN_RATIO,
    ) -> None:
        self.min_column_width = min_column_width
        self.max_column_ratio = max_column_ratio

    def build(self, table_node: SyntaxTreeNode, total_width: int = DEFAULT_TABLE_WIDTH) -> TableStructure:
        header_cells, body_rows = _split_table_rows(table_node)
        column_count = len(header_cells)

        normalized_rows: list[list[SyntaxTreeNode | None]] = []
        for row in body_rows:
            cells: list[SyntaxTreeNode | None] = list(row[:column_count])
            cells.extend([None] * (column_count - len(cells)))
            normalized_rows.append(cells)

        widths = calculate_column_widths(
            [_cell_text(cell) for cell in header_cells],
            [[_cell_text(cell) for cell in row] for row in normalized_rows],
            total_width,
            self.min_column_width,
            self.max_column_ratio,
        )

        cell_contents: list[list[dict[str, Any]]] = [self.build_cell_content(cell) for cell in header_cells]
        for row in normalized_rows:
            cell_contents.extend(self.build_cell_content(cell) for cell in row)

        row_count = 1 + len(normalized_rows)
        logger.debug(f"Built table structure: {row_count}x{column_count}, widths={widths}")
        return TableStructure(
            shell_block=make_table_block(row_count, column_count, widths),
            cell_contents=cell_contents,
        )

    def build_cell_content(self, cell: SyntaxTreeNode | None) -> list[dict[str, Any]]:
        """Each cell becomes exactly one text block of its flattened inline elements."""
        return [make_text_block(parse_inline(_cell_inline(cell)))]


def _split_table_rows(table_node: SyntaxTreeNode) -> tuple[list[SyntaxTreeNode], list[list[SyntaxTreeNode]]]:
    """Return (header cells, body rows of cells) from a table node."""
    header: list[SyntaxTreeNode] = []
    body: list[list[SyntaxTreeNode]] = []
    for section in table_node.children:
        rows = [row for row in section.children if row.type == "tr"]
        if section.type == "thead":
            if rows and not header:
                header = [cell for cell in rows[0].children if cell.type in ("th", "td")]
        elif section.type == "tbody":
            for row in rows:
                body.append([cell for cell in row.children if cell.type in ("th", "td")])
    return header, body


def _cell_inline(cell: SyntaxTreeNode | None) -> SyntaxTreeNode | None:
    if cell is None:
        return None
    for child in cell.children:
        if child.type == "inline":
            return child
    return None


def _cell_text(cell: SyntaxTreeNode | None) -> str:
    return flatten_inline_text(_cell_inline(cell))
