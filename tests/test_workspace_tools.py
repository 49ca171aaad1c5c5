"""Tests for the built-in workspace tools."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from threadweaver.ai.tools.errors import (
    BinaryFileError,
    ErrorCode,
    FileNotFoundToolError,
    InvalidParameterError,
    MissingParameterError,
    NotADirectoryToolError,
    OutsideWorkspaceError,
    PatternInvalidError,
)
from threadweaver.ai.tools.registry import ToolRegistry
from threadweaver.ai.tools.workspace import (
    WorkspaceTools,
    list_dir_result_to_string,
    pathname_search_result_to_string,
    register_workspace_tools,
    search_result_to_string,
)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("def main():\n    return 'needle'\n", encoding="utf-8")
    (root / "src" / "util.py").write_text("VALUE = 1\n", encoding="utf-8")
    (root / "README.md").write_text("# Project\nFind the needle here.\n", encoding="utf-8")
    (root / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")
    (root / ".git").mkdir()
    (root / ".git" / "config").write_text("needle in git\n", encoding="utf-8")
    return root


@pytest.fixture
def tools(workspace: Path) -> WorkspaceTools:
    return WorkspaceTools([workspace])


def _params(**values: object) -> str:
    return json.dumps(values)


class TestReadFile:
    @pytest.mark.asyncio
    async def test_reads_relative_path(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.read_file(_params(path="src/util.py"))
        assert result == {"path": "src/util.py", "content": "VALUE = 1\n", "truncated": False}

    @pytest.mark.asyncio
    async def test_reads_file_uri(self, tools: WorkspaceTools, workspace: Path) -> None:
        (result,) = await tools.read_file(_params(path=(workspace / "README.md").as_uri()))
        assert result["path"] == "README.md"

    @pytest.mark.asyncio
    async def test_missing_file(self, tools: WorkspaceTools) -> None:
        with pytest.raises(FileNotFoundToolError) as excinfo:
            await tools.read_file(_params(path="nope.py"))
        assert excinfo.value.to_dict()["path"] == "nope.py"

    @pytest.mark.asyncio
    async def test_path_outside_workspace(self, tools: WorkspaceTools) -> None:
        with pytest.raises(OutsideWorkspaceError):
            await tools.read_file(_params(path="../secrets.txt"))

    @pytest.mark.asyncio
    async def test_binary_file(self, tools: WorkspaceTools) -> None:
        with pytest.raises(BinaryFileError):
            await tools.read_file(_params(path="blob.bin"))

    @pytest.mark.asyncio
    async def test_directory_is_rejected(self, tools: WorkspaceTools) -> None:
        with pytest.raises(InvalidParameterError):
            await tools.read_file(_params(path="src"))

    @pytest.mark.asyncio
    async def test_bad_json_parameters(self, tools: WorkspaceTools) -> None:
        with pytest.raises(InvalidParameterError) as excinfo:
            await tools.read_file("{path:")
        assert excinfo.value.error_code == ErrorCode.INVALID_PARAMETER

    @pytest.mark.asyncio
    async def test_missing_parameter(self, tools: WorkspaceTools) -> None:
        with pytest.raises(MissingParameterError) as excinfo:
            await tools.read_file("{}")
        assert excinfo.value.to_dict()["parameter"] == "path"


class TestListDir:
    @pytest.mark.asyncio
    async def test_lists_root_with_directories_first(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.list_dir("")

        names = [entry["name"] for entry in result["entries"]]
        assert result["path"] == "."
        assert names[:2] == [".git", "src"]
        assert set(names[2:]) == {"README.md", "blob.bin"}
        assert result["has_more"] is False

    @pytest.mark.asyncio
    async def test_file_is_not_a_directory(self, tools: WorkspaceTools) -> None:
        with pytest.raises(NotADirectoryToolError):
            await tools.list_dir(_params(path="README.md"))

    def test_formatter(self) -> None:
        text = list_dir_result_to_string(
            {"path": "src", "entries": [{"name": "pkg", "is_dir": True}, {"name": "a.py", "is_dir": False}]}
        )
        assert text == "src:\npkg/\na.py"
        assert list_dir_result_to_string({"path": "empty", "entries": []}) == "empty is empty"


class TestSearch:
    @pytest.mark.asyncio
    async def test_pathname_glob(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.pathname_search(_params(query="*.py"))
        assert result["paths"] == ["src/app.py", "src/util.py"]

    @pytest.mark.asyncio
    async def test_pathname_substring(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.pathname_search(_params(query="READ"))
        assert result["paths"] == ["README.md"]

    @pytest.mark.asyncio
    async def test_content_search_skips_vcs_directories(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.search(_params(query="needle"))

        assert [(m["path"], m["line"]) for m in result["matches"]] == [("README.md", 2), ("src/app.py", 2)]
        assert result["matches"][1]["text"] == "return 'needle'"

    @pytest.mark.asyncio
    async def test_regex_search(self, tools: WorkspaceTools) -> None:
        (result,) = await tools.search(_params(query=r"^VALUE\s*=", is_regex=True))
        assert [m["path"] for m in result["matches"]] == ["src/util.py"]

    @pytest.mark.asyncio
    async def test_invalid_regex(self, tools: WorkspaceTools) -> None:
        with pytest.raises(PatternInvalidError):
            await tools.search(_params(query="(", is_regex=True))

    def test_formatters_report_empty_results(self) -> None:
        assert search_result_to_string({"query": "x", "matches": []}) == "No matches for 'x'"
        assert pathname_search_result_to_string({"query": "*.rs", "paths": []}) == "No files match '*.rs'"


@pytest.mark.asyncio
async def test_registered_tools_run_through_registry(tools: WorkspaceTools) -> None:
    registry = register_workspace_tools(ToolRegistry(), tools)

    assert registry.list_names() == ["read_file", "list_dir", "pathname_search", "search"]
    (result,) = await registry.call("read_file", _params(path="src/util.py"))
    text = registry.result_to_string("read_file", result)

    assert text == "src/util.py\n```\nVALUE = 1\n\n```"


def test_workspace_without_roots_rejects_paths() -> None:
    with pytest.raises(OutsideWorkspaceError):
        WorkspaceTools([]).resolve("a.txt")
