"""Read-only repository tools exposed to analysis agents."""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..cache.scanner import DEFAULT_IGNORE_PATTERNS, SNIFF_BYTES, should_ignore
from ..errors import ToolError
from ..llm.types import ToolDefinition

MAX_LINE_LENGTH = 10_000
MAX_TOTAL_CHARS = 50_000
DEFAULT_LINE_COUNT = 200


class Tool(ABC):
    """A function the model can call during an agent run."""

    name: str = ""
    description: str = ""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the tool arguments."""
        ...

    @abstractmethod
    def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run the tool.

        Raises:
            ToolError: On invalid arguments or unreadable paths
        """
        ...

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def resolve(self, relative: str) -> Path:
        """Resolve a model-supplied path, refusing anything outside the repository."""
        if not isinstance(relative, str):
            raise ToolError("path must be a string")
        path = (self.root / relative).resolve()
        if path != self.root and self.root not in path.parents:
            raise ToolError(f"'{relative}' is outside the repository")
        return path


class ListFilesTool(Tool):
    name = "list_files"
    description = "List all files in a directory recursively, relative to the repository root."

    def __init__(self, root: Path, max_files: int = 2000):
        super().__init__(root)
        self.max_files = max_files

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "directory": {
                    "type": "string",
                    "description": "Directory to list, relative to the repository root. Default: '.'",
                },
            },
        }

    def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        directory = self.resolve(arguments.get("directory") or ".")
        if not directory.is_dir():
            raise ToolError(f"'{arguments.get('directory')}' is not a directory")

        files: list[str] = []
        truncated = False
        for dirpath, dirnames, filenames in os.walk(directory):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir
            dirnames[:] = sorted(
                d for d in dirnames
                if not should_ignore(f"{rel_dir}/{d}" if rel_dir else d, d, DEFAULT_IGNORE_PATTERNS)
            )
            for name in sorted(filenames):
                files.append(f"{rel_dir}/{name}" if rel_dir else name)
                if len(files) >= self.max_files:
                    truncated = True
                    break
            if truncated:
                break

        return {"files": files, "count": len(files), "truncated": truncated}


class ReadFileTool(Tool):
    name = "read_file"
    description = (
        "Read contents of a source file. By default reads the first 200 lines. "
        "Binary files are rejected. Use line_number and line_count for pagination."
    )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Path to the file, relative to the repository root",
                },
                "line_number": {
                    "type": "integer",
                    "description": "Starting line number (1-indexed). Default: 1",
                },
                "line_count": {
                    "type": "integer",
                    "description": f"Number of lines to read. Default: {DEFAULT_LINE_COUNT}",
                },
            },
            "required": ["file_path"],
        }

    def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        if "file_path" not in arguments:
            raise ToolError("file_path is required")
        path = self.resolve(arguments["file_path"])
        if not path.is_file():
            raise ToolError(f"File '{arguments['file_path']}' does not exist")

        try:
            start = max(int(arguments.get("line_number") or 1), 1)
            count = max(int(arguments.get("line_count") or DEFAULT_LINE_COUNT), 1)
        except (TypeError, ValueError):
            raise ToolError("line_number and line_count must be integers")

        try:
            with open(path, "rb") as f:
                if b"\x00" in f.read(SNIFF_BYTES):
                    raise ToolError(f"'{arguments['file_path']}' is a binary file")
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ToolError(f"Failed to read '{arguments['file_path']}': {e}") from e

        lines = text.splitlines()
        selected: list[str] = []
        total_chars = 0
        for line in lines[start - 1 : start - 1 + count]:
            if len(line) > MAX_LINE_LENGTH:
                line = line[:MAX_LINE_LENGTH] + "... [line truncated]"
            total_chars += len(line) + 1
            if total_chars > MAX_TOTAL_CHARS:
                break
            selected.append(line)

        end = start + len(selected) - 1
        return {
            "file_path": arguments["file_path"],
            "content": "\n".join(selected),
            "start_line": start,
            "end_line": end,
            "total_lines": len(lines),
            "has_more": end < len(lines),
        }


def default_tools(root: Path) -> list[Tool]:
    return [ListFilesTool(root), ReadFileTool(root)]
