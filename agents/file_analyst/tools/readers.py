"""
File readers shared by the tools.

Each reader raises on failure (missing file, unreadable content); the
tools decide how to report it.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Union

import fitz  # PyMuPDF
import pandas as pd

PathLike = Union[str, Path]

TEXT_EXTENSIONS = {".txt", ".md"}
DOCUMENT_EXTENSIONS = {".txt", ".pdf"}
TABLE_EXTENSIONS = {".csv", ".json"}


class UnsupportedFileType(ValueError):
    """The file extension has no reader."""

    def __init__(self, path: PathLike, supported):
        self.extension = extension_of(path) or "(no extension)"
        self.supported = sorted(supported)
        super().__init__(
            f"Unsupported file type {self.extension} for \"{Path(path).name}\". "
            f"Supported: {', '.join(self.supported)}"
        )


def extension_of(path: PathLike) -> str:
    return Path(path).suffix.lower()


def read_text(path: PathLike) -> str:
    return Path(path).read_text(encoding="utf-8")


def read_pdf(path: PathLike) -> str:
    """Extract the text of every page, pages separated by a blank line."""
    with fitz.open(str(path)) as doc:
        return "\n\n".join(page.get_text() for page in doc)


def read_document(path: PathLike) -> str:
    """Plain text of a .txt, .md or .pdf file."""
    ext = extension_of(path)
    if ext == ".pdf":
        return read_pdf(path)
    if ext in TEXT_EXTENSIONS:
        return read_text(path)
    raise UnsupportedFileType(path, TEXT_EXTENSIONS | {".pdf"})


def read_csv_records(path: PathLike) -> list[dict[str, str]]:
    """CSV rows as dicts with every cell kept as the original string."""
    frame = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    return frame.to_dict(orient="records")


def read_json(path: PathLike):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def read_table(path: PathLike) -> pd.DataFrame:
    """
    Load a CSV or JSON file as a DataFrame with inferred column types.

    JSON may be a list of records or a mapping of column name to values.
    """
    ext = extension_of(path)
    if ext == ".csv":
        return pd.read_csv(path, skip_blank_lines=True)
    if ext == ".json":
        data = read_json(path)
        if isinstance(data, list):
            return pd.DataFrame.from_records(data)
        if isinstance(data, dict):
            return pd.DataFrame(data)
        raise ValueError("JSON must be a list of records or an object of columns")
    raise UnsupportedFileType(path, TABLE_EXTENSIONS)
