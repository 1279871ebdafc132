"""
Markdown to Lark DocX Block Converter

This module provides the `BlockConverter` class that translates a markdown-it
syntax tree into an ordered list of Lark DocX blocks ready for the Block API.
It handles headings, paragraphs, code blocks, blockquotes, lists, dividers
and tables.

The converter walks the tree depth-first with one production rule per node
type. Unsupported nodes (raw HTML blocks, anything unknown) are dropped
without error; conversion never produces a partial block.

Tables are delegated to `TableStructureBuilder`. The resulting shell block is
placed in the block sequence where the table appeared, and the per-cell
content is returned separately in `ConversionResult.table_structures`,
correlated to the shell by object identity.

Example:
    >>> converter = BlockConverter()
    >>> result = converter.convert_markdown("# Hello\n\nThis is **bold** text.")
    >>> [b["block_type"] for b in result.blocks]
    [3, 2]
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from markdown_it import MarkdownIt
from markdown_it.token import Token
from markdown_it.tree import SyntaxTreeNode
from mdit_py_plugins.tasklists import tasklists_plugin

from larkdocs.blocks import (
    make_code_block,
    make_divider_block,
    make_heading_block,
    make_list_item_block,
    make_quote_block,
    make_text_block,
    make_text_element,
)
from larkdocs.inline import parse_inline
from larkdocs.tables import DEFAULT_TABLE_WIDTH, TableStructure, TableStructureBuilder

logger = logging.getLogger(__name__)


def create_markdown_parser() -> MarkdownIt:
    """CommonMark base with GFM tables, strikethrough and task lists."""
    return MarkdownIt("commonmark").enable("table").enable("strikethrough").use(tasklists_plugin)


@dataclass
class ConversionResult:
    """
    Output of a conversion.

    Attributes:
        blocks: Ordered top-level blocks, table shells included in place.
        table_structures: One entry per table shell in ``blocks``, in the same order.
    """

    blocks: list[dict[str, Any]] = field(default_factory=list)
    table_structures: list[TableStructure] = field(default_factory=list)

    def extend(self, other: ConversionResult) -> None:
        self.blocks.extend(other.blocks)
        self.table_structures.extend(other.table_structures)


class BlockConverter:
    """
    Converts a markdown-it syntax tree into Lark DocX blocks.

    Attributes:
        md: The markdown-it parser used by `convert_markdown`.
        table_builder: Builds three-layer table plans.
        table_width: Total pixel width budget handed to the table builder.
    """

    def __init__(
        self,
        table_builder: TableStructureBuilder | None = None,
        table_width: int = DEFAULT_TABLE_WIDTH,
        md: MarkdownIt | None = None,
    ) -> None:
        self.md = md or create_markdown_parser()
        self.table_builder = table_builder or TableStructureBuilder()
        self.table_width = table_width

    def convert_markdown(self, markdown_text: str) -> ConversionResult:
        """Tokenize markdown text and convert the resulting tree."""
        return self.convert(self.md.parse(markdown_text))

    def convert(self, tokens: SyntaxTreeNode | Sequence[Token]) -> ConversionResult:
        """
        Convert a syntax tree (or a flat markdown-it token stream) into blocks.

        Args:
            tokens: A root `SyntaxTreeNode`, or the token list from `MarkdownIt.parse`.

        Returns:
            A `ConversionResult` with the ordered blocks and table structures.
        """
        root = tokens if isinstance(tokens, SyntaxTreeNode) else SyntaxTreeNode(tokens)
        result = ConversionResult()
        for node in root.children:
            result.extend(self._convert_node(node))
        logger.debug(f"Converted markdown into {len(result.blocks)} blocks, {len(result.table_structures)} tables")
        return result

    def _convert_node(self, node: SyntaxTreeNode) -> ConversionResult:
        """Dispatch one block-level node to its production rule."""
        node_type = node.type

        if node_type == "heading":
            return ConversionResult(blocks=[self._convert_heading(node)])
        elif node_type == "paragraph":
            return ConversionResult(blocks=[make_text_block(parse_inline(_first_inline(node)))])
        elif node_type in ("fence", "code_block"):
            return ConversionResult(blocks=[self._convert_code(node)])
        elif node_type == "blockquote":
            return ConversionResult(blocks=[make_quote_block(self._collect_quote_elements(node))])
        elif node_type in ("bullet_list", "ordered_list"):
            return self._convert_list(node)
        elif node_type == "hr":
            return ConversionResult(blocks=[make_divider_block()])
        elif node_type == "table":
            return self._convert_table(node)
        else:
            # TODO: surface dropped nodes through a lossy-conversion warning channel.
            logger.debug(f"Dropping unsupported block node: {node_type}")
            return ConversionResult()

    def _convert_heading(self, node: SyntaxTreeNode) -> dict[str, Any]:
        tag = node.tag or "h1"
        try:
            depth = int(tag.lstrip("h"))
        except ValueError:
            depth = 1
        return make_heading_block(depth, parse_inline(_first_inline(node)))

    def _convert_code(self, node: SyntaxTreeNode) -> dict[str, Any]:
        content = node.content
        if content.endswith("\n"):
            content = content[:-1]
        info = (node.info or "").strip()
        language = info.split()[0] if info else None
        return make_code_block(content, language)

    def _collect_quote_elements(self, node: SyntaxTreeNode) -> list[dict[str, Any]]:
        """
        Flatten a blockquote into one element list.

        Paragraphs (including those of nested quotes and lists) are joined by
        a newline element.
        """
        elements: list[dict[str, Any]] = []
        for inline in _iter_inline_descendants(node):
            if elements:
                elements.append(make_text_element("\n"))
            elements.extend(parse_inline(inline))
        return elements

    def _convert_list(self, node: SyntaxTreeNode) -> ConversionResult:
        """One block per item; nested lists and blocks follow their parent item depth-first."""
        ordered = node.type == "ordered_list"
        result = ConversionResult()
        for item in node.children:
            if item.type != "list_item":
                continue
            elements: list[dict[str, Any]] = []
            nested = ConversionResult()
            for child in item.children:
                if child.type == "paragraph":
                    if elements:
                        elements.append(make_text_element("\n"))
                    elements.extend(parse_inline(_first_inline(child)))
                else:
                    nested.extend(self._convert_node(child))
            result.blocks.append(make_list_item_block(ordered, elements))
            result.extend(nested)
        return result

    def _convert_table(self, node: SyntaxTreeNode) -> ConversionResult:
        structure = self.table_builder.build(node, self.table_width)
        if structure.column_count == 0:
            logger.debug("Dropping table without header cells")
            return ConversionResult()
        return ConversionResult(blocks=[structure.shell_block], table_structures=[structure])


def _first_inline(node: SyntaxTreeNode) -> SyntaxTreeNode | None:
    for child in node.children:
        if child.type == "inline":
            return child
    return None


def _iter_inline_descendants(node: SyntaxTreeNode):
    for child in node.children:
        if child.type == "inline":
            yield child
        else:
            yield from _iter_inline_descendants(child)


def convert_markdown(markdown_text: str, table_width: int = DEFAULT_TABLE_WIDTH) -> ConversionResult:
    """Convert a markdown string using a default converter."""
    return BlockConverter(table_width=table_width).convert_markdown(markdown_text)
