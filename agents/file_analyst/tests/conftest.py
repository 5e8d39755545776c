"""Shared fixtures for file analyst tests."""

import json

import pytest

from agents.file_analyst.core.tools import ToolFailure, ToolRegistry, tool
from agents.file_analyst.tools import DataQueryTool, DocumentAnalystTool, FileInspectorTool


@pytest.fixture
def employees_csv(tmp_path):
    """A 3-row CSV file."""
    path = tmp_path / "employees.csv"
    path.write_text(
        "Name,Position,Salary\n"
        "Ana,Developer,5000\n"
        "Luis,Developer,7000\n"
        "Eva,Manager,9000\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def employees_json(tmp_path):
    """The same data as a JSON list of records."""
    path = tmp_path / "employees.json"
    path.write_text(
        json.dumps([
            {"Name": "Ana", "Position": "Developer", "Salary": 5000},
            {"Name": "Luis", "Position": "Developer", "Salary": 7000},
            {"Name": "Eva", "Position": "Manager", "Salary": 9000},
        ]),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def report_txt(tmp_path):
    """A short multi-paragraph text document."""
    path = tmp_path / "report.txt"
    path.write_text(
        "Annual report 2023.\n\n"
        "Revenue grew by 12 percent compared to the previous year.\n\n"
        "The company opened three new offices in Lima, Quito and Bogota.\n\n"
        "Employee satisfaction remained stable.",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def echo_registry():
    """Registry with simple in-memory tools."""

    @tool
    def echo(text: str) -> str:
        """Return the text unchanged."""
        return text

    @tool
    def explode(text: str) -> str:
        """Always raises."""
        raise RuntimeError(f"cannot handle {text}")

    @tool
    def complain(text: str) -> str:
        """Always reports an error."""
        return ToolFailure(f"ERROR: could not process {text}")

    return ToolRegistry([echo, explode, complain])


@pytest.fixture
def file_registry():
    """Registry with the three file tools."""
    return ToolRegistry([FileInspectorTool(), DataQueryTool(), DocumentAnalystTool()])
