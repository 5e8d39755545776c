"""
Keyword search over long documents.
"""
from __future__ import annotations

from pathlib import Path

from loguru import logger

from ..core.tools import Tool, ToolFailure
from .chunking import ChunkingService
from .readers import DOCUMENT_EXTENSIONS, extension_of, read_document

NOT_FOUND_MESSAGE = "Not found specific information about that topic. try using different words."


class DocumentAnalystTool(Tool):
    """
    Find the fragments of a PDF or TXT file that best match a query.

    Fragments are scored by how many query words they contain and the
    best `top_k` are returned, labeled `[RESULTADO i]`.
    """

    name = "document_deep_analyst"
    description = (
        "Deep analysis of PDF and TXT files. Searches and extracts specific paragraphs "
        "based on a query. Use for long documents where file_inspector does not show "
        "all the information."
    )
    inputs = {
        "filePath": {
            "type": "string",
            "description": "Path of the PDF or TXT file",
        },
        "query": {
            "type": "string",
            "description": "The question or keywords to search for",
        },
    }
    output_type = "string"

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200, top_k: int = 4):
        self.top_k = top_k
        self._chunker = ChunkingService(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

    def forward(self, filePath: str, query: str) -> str:
        ext = extension_of(filePath)
        if ext not in DOCUMENT_EXTENSIONS:
            return ToolFailure(
                "ERROR: document_deep_analyst only supports documents (PDF or TXT). "
                f"File \"{Path(filePath).name}\" is {ext or 'without extension'}."
            )

        try:
            text = read_document(filePath)
        except Exception as e:
            logger.opt(exception=e).warning(f"document_deep_analyst could not read {filePath}")
            return ToolFailure(f"Error when analyzing document: {e}")

        hits = self._chunker.search(text, query, top_k=self.top_k)
        if not hits:
            return NOT_FOUND_MESSAGE

        output = "\n\n".join(f"[RESULTADO {i}]: {hit.text}" for i, hit in enumerate(hits, 1))
        return f"I found this fragments in the file: \n\n{output}"
