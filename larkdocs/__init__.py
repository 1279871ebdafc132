"""
Lark Docs Package

This package converts markdown into Lark DocX blocks and persists them
through the Lark Open Platform API. MCP tools live in ``larkdocs.writing``.
"""

from larkdocs.client import LarkApiClient
from larkdocs.converter import BlockConverter, ConversionResult, convert_markdown
from larkdocs.document_service import (
    DocumentCreationProgress,
    DocumentCreationResult,
    DocumentSyncService,
)
from larkdocs.tables import TableStructure, TableStructureBuilder, calculate_column_widths

__all__ = [
    "BlockConverter",
    "ConversionResult",
    "convert_markdown",
    "TableStructure",
    "TableStructureBuilder",
    "calculate_column_widths",
    "LarkApiClient",
    "DocumentSyncService",
    "DocumentCreationProgress",
    "DocumentCreationResult",
]
