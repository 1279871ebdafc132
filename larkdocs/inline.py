"""
Inline token flattening for Lark DocX blocks.

Shared by the block converter and the table builder. Walks the children of
an ``inline`` syntax-tree node and produces a flat list of text runs. Style
flags accumulate down the ancestor chain: bold text inside a link yields a
single run with both ``bold`` and ``link`` set.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from larkdocs.blocks import make_text_element

if TYPE_CHECKING:
    from markdown_it.tree import SyntaxTreeNode

logger = logging.getLogger(__name__)

# Task list checkbox characters (Unicode ballot box symbols)
CHECKBOX_UNCHECKED = "☐"  # U+2610 BALLOT BOX
CHECKBOX_CHECKED = "☑"  # U+2611 BALLOT BOX WITH CHECK

# Container inline nodes -> style flag they add
_STYLE_CONTAINERS: dict[str, dict[str, Any]] = {
    "strong": {"bold": True},
    "em": {"italic": True},
    "s": {"strikethrough": True},
}


def parse_inline(node: SyntaxTreeNode | None, parent_style: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """
    Flatten an inline node (or any node with inline children) into text runs.

    Args:
        node: Usually an ``inline`` node; ``None`` yields no elements.
        parent_style: Style inherited from enclosing inline containers.

    Returns:
        List of text element dicts in document order.
    """
    if node is None:
        return []
    style = dict(parent_style or {})
    elements: list[dict[str, Any]] = []
    for child in node.children:
        elements.extend(_parse_inline_node(child, style))
    return elements


def _parse_inline_node(node: SyntaxTreeNode, style: dict[str, Any]) -> list[dict[str, Any]]:
    node_type = node.type

    if node_type == "text":
        return [make_text_element(node.content, style)] if node.content else []
    if node_type in _STYLE_CONTAINERS:
        return parse_inline(node, {**style, **_STYLE_CONTAINERS[node_type]})
    if node_type == "link":
        href = node.attrGet("href") or ""
        return parse_inline(node, {**style, "link": {"url": str(href)}})
    if node_type == "code_inline":
        return [make_text_element(node.content, {**style, "inline_code": True})]
    if node_type == "softbreak":
        # Soft line breaks become spaces
        return [make_text_element(" ", style)]
    if node_type == "hardbreak":
        return [make_text_element("\n", style)]
    if node_type == "image":
        alt = flatten_inline_text(node) or node.content
        return [make_text_element(alt, style)] if alt else []
    if node_type == "html_inline":
        return _parse_html_inline(node, style)

    # Unknown inline node: keep its children if it has any, else its raw text.
    if node.children:
        return parse_inline(node, style)
    if node.content:
        logger.debug(f"Rendering unknown inline node {node_type!r} as plain text")
        return [make_text_element(node.content, style)]
    return []


def _parse_html_inline(node: SyntaxTreeNode, style: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Task list checkboxes arrive as ``<input class="task-list-item-checkbox">``
    html_inline tokens from mdit_py_plugins.tasklists; render them as ballot
    box glyphs. Other inline HTML is kept as plain text.
    """
    content = node.content
    if not content:
        return []
    if 'class="task-list-item-checkbox"' in content:
        glyph = CHECKBOX_CHECKED if 'checked="checked"' in content else CHECKBOX_UNCHECKED
        return [make_text_element(glyph, style)]
    return [make_text_element(content, style)]


def flatten_inline_text(node: SyntaxTreeNode | None) -> str:
    """Flatten a node's inline content into plain text (no styles)."""
    if node is None:
        return ""
    parts: list[str] = []
    for child in node.children:
        if child.type in ("text", "code_inline"):
            parts.append(child.content)
        elif child.type == "softbreak":
            parts.append(" ")
        elif child.type == "hardbreak":
            parts.append("\n")
        elif child.children:
            parts.append(flatten_inline_text(child))
        elif child.type == "html_inline":
            parts.append(child.content)
    return "".join(parts)
