"""
File Analyst Tools

The three data-inspection tools and the registry they are loaded into.
"""
from __future__ import annotations

from typing import Optional

from analyst_core.config import Settings, settings as default_settings

from ..core.tools import ToolRegistry
from .data_query import DataQueryTool
from .document_analyst import DocumentAnalystTool
from .file_inspector import FileInspectorTool


def build_default_registry(config: Optional[Settings] = None) -> ToolRegistry:
    """Registry with file_inspector, data_query_engine and document_deep_analyst."""
    config = config or default_settings
    return ToolRegistry([
        FileInspectorTool(),
        DataQueryTool(),
        DocumentAnalystTool(
            chunk_size=config.DOCUMENT_CHUNK_SIZE,
            chunk_overlap=config.DOCUMENT_CHUNK_OVERLAP,
            top_k=config.DOCUMENT_TOP_K,
        ),
    ])


__all__ = [
    "FileInspectorTool",
    "DataQueryTool",
    "DocumentAnalystTool",
    "build_default_registry",
]
