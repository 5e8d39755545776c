"""
File inspection tool.

Returns the contents of a file so the backend can see column names and
values before querying.
"""
from __future__ import annotations

import json

from loguru import logger

from ..core.tools import Tool, ToolFailure
from .readers import (
    TEXT_EXTENSIONS,
    UnsupportedFileType,
    extension_of,
    read_csv_records,
    read_json,
    read_pdf,
    read_text,
)


class FileInspectorTool(Tool):
    """
    Read a file and return its contents.

    CSV rows come back as a JSON list of `{"pageContent": "col: value, ..."}`
    records; text and PDF files as plain text; JSON files pretty-printed.

    Example:
        tool = FileInspectorTool()
        result = tool(filePath="data-test/employees.csv")
    """

    name = "file_inspector"
    description = (
        "It parses files and returns their contents. If it's CSV, it returns a list of "
        "structured rows. If it's PDF or TXT, it returns the plain text."
    )
    inputs = {
        "filePath": {
            "type": "string",
            "description": "Path of the file to inspect",
        }
    }
    output_type = "string"

    SUPPORTED = TEXT_EXTENSIONS | {".pdf", ".csv", ".json"}

    def forward(self, filePath: str) -> str:
        try:
            ext = extension_of(filePath)
            if ext in TEXT_EXTENSIONS:
                return read_text(filePath)
            if ext == ".pdf":
                return read_pdf(filePath)
            if ext == ".csv":
                documents = [
                    {"pageContent": ", ".join(f"{k}: {v}" for k, v in row.items())}
                    for row in read_csv_records(filePath)
                ]
                return json.dumps(documents, ensure_ascii=False)
            if ext == ".json":
                return json.dumps(read_json(filePath), indent=2, ensure_ascii=False)
            raise UnsupportedFileType(filePath, self.SUPPORTED)
        except FileNotFoundError:
            logger.warning(f"file_inspector: file not found: {filePath}")
            return ToolFailure(f"ERROR: File not found: {filePath}. Use one of the paths listed in FILES.")
        except Exception as e:
            logger.opt(exception=e).error(f"file_inspector failed for {filePath}")
            return ToolFailure(f"ERROR: Could not read \"{filePath}\": {e}")
