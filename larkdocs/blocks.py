"""
Lark DocX block model.

Blocks are plain JSON-ready dicts in the shape the Block API expects:
``{"block_type": <int>, <field>: {...}}`` with exactly one content field that
matches the discriminant. Build them through the constructors below rather
than by hand so the discriminant and field always agree.

Block type ids are fixed by the platform and must not change.
"""

from typing import Any

# Block type discriminants (Lark DocX Block API)
BLOCK_TYPE_PAGE = 1
BLOCK_TYPE_TEXT = 2
BLOCK_TYPE_HEADING1 = 3
BLOCK_TYPE_HEADING2 = 4
BLOCK_TYPE_HEADING3 = 5
BLOCK_TYPE_HEADING4 = 6
BLOCK_TYPE_HEADING5 = 7
BLOCK_TYPE_HEADING6 = 8
BLOCK_TYPE_BULLET = 12
BLOCK_TYPE_ORDERED = 13
BLOCK_TYPE_QUOTE = 14
BLOCK_TYPE_CODE = 15
BLOCK_TYPE_DIVIDER = 22
BLOCK_TYPE_TABLE = 31
BLOCK_TYPE_TABLE_CELL = 32

# Heading depth -> (block_type, content field)
HEADING_BLOCK_TYPES: dict[int, tuple[int, str]] = {
    1: (BLOCK_TYPE_HEADING1, "heading1"),
    2: (BLOCK_TYPE_HEADING2, "heading2"),
    3: (BLOCK_TYPE_HEADING3, "heading3"),
    4: (BLOCK_TYPE_HEADING4, "heading4"),
    5: (BLOCK_TYPE_HEADING5, "heading5"),
    6: (BLOCK_TYPE_HEADING6, "heading6"),
}

# Code block language ids. Keys are lower-case.
CODE_LANGUAGE_PLAINTEXT = 1
CODE_LANGUAGE_IDS: dict[str, int] = {
    "plaintext": 1,
    "bash": 3,
    "shell": 3,
    "sh": 3,
    "c": 6,
    "cpp": 7,
    "c++": 7,
    "csharp": 8,
    "c#": 8,
    "cs": 8,
    "css": 10,
    "go": 14,
    "golang": 14,
    "html": 16,
    "java": 18,
    "javascript": 19,
    "js": 19,
    "json": 21,
    "kotlin": 24,
    "kt": 24,
    "markdown": 35,
    "md": 35,
    "php": 48,
    "python": 49,
    "py": 49,
    "ruby": 54,
    "rb": 54,
    "rust": 55,
    "rs": 55,
    "sql": 62,
    "swift": 65,
    "typescript": 69,
    "ts": 69,
    "yaml": 80,
    "yml": 80,
}

# Style keys that may appear in text_element_style, in output order.
STYLE_FLAGS = ("bold", "italic", "strikethrough", "inline_code")


def get_code_language_id(language: str | None) -> int:
    """Map a language name (case-insensitive) to its Lark id, defaulting to plaintext."""
    if not language:
        return CODE_LANGUAGE_PLAINTEXT
    return CODE_LANGUAGE_IDS.get(language.strip().lower(), CODE_LANGUAGE_PLAINTEXT)


def make_text_element(content: str, style: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a single text run.

    Only truthy style flags are emitted; an empty style is omitted entirely.
    """
    element: dict[str, Any] = {"text_run": {"content": content}}
    applied: dict[str, Any] = {}
    if style:
        for flag in STYLE_FLAGS:
            if style.get(flag):
                applied[flag] = True
        link = style.get("link")
        if link and link.get("url"):
            applied["link"] = {"url": link["url"]}
    if applied:
        element["text_run"]["text_element_style"] = applied
    return element


def make_text_block(elements: list[dict[str, Any]]) -> dict[str, Any]:
    return {"block_type": BLOCK_TYPE_TEXT, "text": {"elements": elements}}


def make_heading_block(depth: int, elements: list[dict[str, Any]]) -> dict[str, Any]:
    """Heading block; depth is clamped to 1..6."""
    depth = min(max(depth, 1), 6)
    block_type, field = HEADING_BLOCK_TYPES[depth]
    return {"block_type": block_type, field: {"elements": elements}}


def make_code_block(content: str, language: str | None = None) -> dict[str, Any]:
    return {
        "block_type": BLOCK_TYPE_CODE,
        "code": {
            "elements": [make_text_element(content)],
            "style": {"language": get_code_language_id(language)},
        },
    }


def make_quote_block(elements: list[dict[str, Any]]) -> dict[str, Any]:
    return {"block_type": BLOCK_TYPE_QUOTE, "quote": {"elements": elements}}


def make_list_item_block(ordered: bool, elements: list[dict[str, Any]]) -> dict[str, Any]:
    if ordered:
        return {"block_type": BLOCK_TYPE_ORDERED, "ordered": {"elements": elements}}
    return {"block_type": BLOCK_TYPE_BULLET, "bullet": {"elements": elements}}


def make_divider_block() -> dict[str, Any]:
    return {"block_type": BLOCK_TYPE_DIVIDER, "divider": {}}


def make_table_block(row_size: int, column_size: int, column_width: list[int]) -> dict[str, Any]:
    return {
        "block_type": BLOCK_TYPE_TABLE,
        "table": {
            "property": {
                "row_size": row_size,
                "column_size": column_size,
                "column_width": column_width,
            }
        },
    }


def block_plain_text(block: dict[str, Any]) -> str:
    """Concatenate the text runs of a block (used in logs and tests)."""
    for key, value in block.items():
        if key != "block_type" and isinstance(value, dict) and "elements" in value:
            return "".join(el.get("text_run", {}).get("content", "") for el in value["elements"])
    return ""
