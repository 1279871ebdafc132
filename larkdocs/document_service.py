"""
Document persistence for the Lark DocX API.

Creates a document and writes converted blocks into it. The ordered block
sequence is split into segments:

- runs of plain blocks, appended in batches of at most ``batch_size``
- table shells, each written with the three-layer table protocol:
  1. insert the empty shell and learn its block id
  2. fetch the shell to learn the platform-assigned cell ids
  3. append each cell's content under its cell id, row-major, with at most
     ``cell_concurrency`` calls in flight

Segments run strictly in document order; concurrency only exists inside one
table's cell population. A failing segment aborts the whole operation and
nothing already written is cleaned up.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from core.errors import SyncError, format_error
from larkdocs.client import LarkApiClient
from larkdocs.converter import BlockConverter
from larkdocs.tables import TableStructure

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_CELL_CONCURRENCY = 5

SyncPhase = Literal["creating-document", "creating-blocks", "creating-table", "done", "error"]


@dataclass
class DocumentCreationProgress:
    """Progress information emitted during document creation."""

    phase: SyncPhase
    current: int
    total: int
    message: str


@dataclass
class DocumentCreationResult:
    """Result of a successful document creation."""

    document_id: str
    document_url: str


ProgressCallback = Callable[[DocumentCreationProgress], None]


@dataclass
class _BatchSegment:
    blocks: list[dict[str, Any]]


@dataclass
class _TableSegment:
    structure: TableStructure


class DocumentSyncService:
    """
    Persists converted blocks as a new Lark document.

    Args:
        client: Authenticated API client.
        batch_size: Maximum children per append call.
        cell_concurrency: Maximum simultaneous cell-content calls per table.
        on_progress: Optional progress callback.
    """

    def __init__(
        self,
        client: LarkApiClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cell_concurrency: int = DEFAULT_CELL_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if cell_concurrency < 1:
            raise ValueError("cell_concurrency must be at least 1")
        self.client = client
        self.batch_size = batch_size
        self.cell_concurrency = cell_concurrency
        self.on_progress = on_progress

    def _emit(self, phase: SyncPhase, current: int, total: int, message: str) -> None:
        logger.debug(f"[{phase}] {current}/{total} {message}")
        if self.on_progress is not None:
            self.on_progress(DocumentCreationProgress(phase=phase, current=current, total=total, message=message))

    async def persist(
        self,
        title: str,
        blocks: list[dict[str, Any]],
        table_structures: list[TableStructure] | None = None,
        folder_token: str | None = None,
    ) -> DocumentCreationResult:
        """
        Create a document titled ``title`` and write ``blocks`` into it.

        Args:
            title: Document title.
            blocks: Ordered blocks; table shells must be the ``shell_block``
                objects of entries in ``table_structures``.
            table_structures: Cell plans for the table shells in ``blocks``.
            folder_token: Optional folder to create the document in.

        Returns:
            The new document's id and URL.
        """
        try:
            self._emit("creating-document", 0, 1, f'Creating document "{title}"')
            envelope = await self.client.create_document(title, folder_token)
            document_id = _extract_document_id(envelope)
            logger.info(f"Created Lark document {document_id} ({title!r})")

            # The document id doubles as the id of its root page block.
            await self.insert_blocks(document_id, document_id, blocks, table_structures)

            document_url = self.client.document_url(document_id)
            self._emit("done", 1, 1, "Document created successfully")
            logger.info(f"Finished writing {len(blocks)} blocks to {document_url}")
            return DocumentCreationResult(document_id=document_id, document_url=document_url)
        except Exception as e:
            self._emit("error", 0, 1, format_error("Document creation", e))
            raise

    async def markdown_to_document(
        self,
        title: str,
        markdown_text: str,
        converter: BlockConverter | None = None,
        folder_token: str | None = None,
    ) -> DocumentCreationResult:
        """Convert markdown and persist it as a new document."""
        result = (converter or BlockConverter()).convert_markdown(markdown_text)
        return await self.persist(title, result.blocks, result.table_structures, folder_token)

    async def insert_blocks(
        self,
        document_id: str,
        parent_block_id: str,
        blocks: list[dict[str, Any]],
        table_structures: list[TableStructure] | None = None,
    ) -> None:
        """Write ``blocks`` under ``parent_block_id``, segment by segment, in order."""
        segments = self._build_segments(blocks, table_structures or [])
        total = len(segments)
        for i, segment in enumerate(segments, start=1):
            if isinstance(segment, _TableSegment):
                self._emit("creating-table", i, total, "Creating table structure")
                await self.create_table(document_id, parent_block_id, segment.structure)
            else:
                await self.add_blocks_in_batches(document_id, parent_block_id, segment.blocks)

    @staticmethod
    def _build_segments(
        blocks: list[dict[str, Any]],
        table_structures: list[TableStructure],
    ) -> list[_BatchSegment | _TableSegment]:
        """Split blocks into contiguous plain runs and table segments, preserving order."""
        by_shell = {id(ts.shell_block): ts for ts in table_structures}
        segments: list[_BatchSegment | _TableSegment] = []
        current: list[dict[str, Any]] = []
        for block in blocks:
            structure = by_shell.get(id(block))
            if structure is not None and structure.shell_block is block:
                if current:
                    segments.append(_BatchSegment(current))
                    current = []
                segments.append(_TableSegment(structure))
            else:
                current.append(block)
        if current:
            segments.append(_BatchSegment(current))
        return segments

    async def add_blocks_in_batches(
        self,
        document_id: str,
        parent_block_id: str,
        blocks: list[dict[str, Any]],
    ) -> None:
        """Append plain blocks in chunks of at most ``batch_size``, in order."""
        total_batches = (len(blocks) + self.batch_size - 1) // self.batch_size
        for i in range(total_batches):
            batch = blocks[i * self.batch_size : (i + 1) * self.batch_size]
            self._emit(
                "creating-blocks",
                i + 1,
                total_batches,
                f"Adding blocks batch {i + 1}/{total_batches} ({len(batch)} blocks)",
            )
            await self.client.create_blocks(document_id, parent_block_id, batch)

    async def create_table(self, document_id: str, parent_block_id: str, structure: TableStructure) -> str:
        """
        Write one table with the three-layer protocol.

        Returns:
            The block id of the created table.
        """
        # Step 1: insert the empty shell
        envelope = await self.client.create_blocks(document_id, parent_block_id, [structure.shell_block])
        children = (envelope.get("data") or {}).get("children") or []
        if not children or not children[0].get("block_id"):
            raise SyncError("Failed to create table block: no children in response")
        table_block_id = children[0]["block_id"]

        # Step 2: read back the platform-assigned cell ids
        envelope = await self.client.get_block(document_id, table_block_id)
        cell_ids = ((envelope.get("data") or {}).get("block") or {}).get("children")
        if not cell_ids:
            raise SyncError(f"Failed to get cells of table {table_block_id}: no children in response")

        # Cell ids are assumed to come back in the same row-major order used to build the plan.
        if len(cell_ids) != len(structure.cell_contents):
            logger.warning(
                f"Table {table_block_id} has {len(cell_ids)} cells but {len(structure.cell_contents)} "
                "cell contents were planned; populating the overlap only"
            )

        # Step 3: populate cells with bounded concurrency
        pairs = [
            (cell_id, content) for cell_id, content in zip(cell_ids, structure.cell_contents, strict=False) if content
        ]
        await self._populate_cells(document_id, pairs)
        logger.debug(f"Populated {len(pairs)} cells of table {table_block_id}")
        return table_block_id

    async def _populate_cells(
        self,
        document_id: str,
        pairs: list[tuple[str, list[dict[str, Any]]]],
    ) -> None:
        semaphore = asyncio.Semaphore(self.cell_concurrency)

        async def write_cell(cell_id: str, content: list[dict[str, Any]]) -> None:
            async with semaphore:
                await self.client.create_blocks(document_id, cell_id, content)

        tasks = [asyncio.ensure_future(write_cell(cell_id, content)) for cell_id, content in pairs]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


def _extract_document_id(envelope: dict[str, Any]) -> str:
    document = (envelope.get("data") or {}).get("document") or {}
    document_id = document.get("document_id")
    if not document_id:
        raise SyncError("Failed to create document: no document id in response")
    return document_id
