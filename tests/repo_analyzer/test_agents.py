"""Tests for analysis agents and their repository tools."""

import json
from pathlib import Path

import pytest

from repo_analyzer.agents import (
    AGENT_FACTORIES,
    AgentDeps,
    ListFilesTool,
    ReadFileTool,
    StructureAnalyzer,
    clean_markdown,
    create_agent,
)
from repo_analyzer.agents.tools import MAX_LINE_LENGTH
from repo_analyzer.cache import AGENT_NAMES
from repo_analyzer.config import AgentConfig, LLMConfig
from repo_analyzer.errors import AgentTaskError, CancellationError, ToolError
from repo_analyzer.llm.types import CompletionRequest, CompletionResponse, Message, ToolCall
from repo_analyzer.worker_pool import CancelContext


def make_deps(repo: Path, invoker, **agent_overrides) -> AgentDeps:
    return AgentDeps(
        repo_path=repo,
        invoker=invoker,
        agent_config=AgentConfig(**agent_overrides),
        llm_config=LLMConfig(),
    )


# =============================================================================
# Tool Tests
# =============================================================================


class TestReadFileTool:
    """Tests for the read_file tool."""

    def test_reads_whole_small_file(self, sample_repo: Path):
        """Test reading a file with default pagination."""
        result = ReadFileTool(sample_repo).execute({"file_path": "main.py"})

        assert result["content"] == "from app import run\n\nrun()"
        assert result["start_line"] == 1
        assert result["end_line"] == 3
        assert result["total_lines"] == 3
        assert result["has_more"] is False

    def test_pagination(self, temp_dir: Path):
        """Test line_number and line_count."""
        (temp_dir / "long.txt").write_text("\n".join(f"line {i}" for i in range(1, 11)))

        result = ReadFileTool(temp_dir).execute(
            {"file_path": "long.txt", "line_number": 4, "line_count": 3}
        )

        assert result["content"] == "line 4\nline 5\nline 6"
        assert result["end_line"] == 6
        assert result["has_more"] is True

    def test_long_lines_are_truncated(self, temp_dir: Path):
        """Test that a single huge line is cut."""
        (temp_dir / "min.js").write_text("x" * (MAX_LINE_LENGTH + 50))

        result = ReadFileTool(temp_dir).execute({"file_path": "min.js"})

        assert result["content"].endswith("... [line truncated]")

    def test_rejects_binary(self, sample_repo: Path):
        """Test that binary content is refused."""
        with pytest.raises(ToolError, match="binary"):
            ReadFileTool(sample_repo).execute({"file_path": "assets/blob.dat"})

    def test_rejects_missing_file(self, sample_repo: Path):
        """Test that a missing file is a tool error."""
        with pytest.raises(ToolError, match="does not exist"):
            ReadFileTool(sample_repo).execute({"file_path": "nope.py"})

    @pytest.mark.parametrize("path", ["../secret.txt", "/etc/passwd", "app/../../x"])
    def test_confines_paths_to_repository(self, sample_repo: Path, path: str):
        """Test that paths escaping the root are refused."""
        with pytest.raises(ToolError, match="outside the repository"):
            ReadFileTool(sample_repo).execute({"file_path": path})

    def test_requires_file_path(self, sample_repo: Path):
        """Test that a missing argument is a tool error."""
        with pytest.raises(ToolError):
            ReadFileTool(sample_repo).execute({})


class TestListFilesTool:
    """Tests for the list_files tool."""

    def test_lists_repository(self, sample_repo: Path):
        """Test that ignored directories are not listed."""
        result = ListFilesTool(sample_repo).execute({})

        assert "main.py" in result["files"]
        assert "app/handlers/user_handler.py" in result["files"]
        assert not any(f.startswith("node_modules/") for f in result["files"])
        assert not any(f.startswith(".git/") for f in result["files"])
        assert result["count"] == len(result["files"])
        assert result["truncated"] is False

    def test_lists_subdirectory(self, sample_repo: Path):
        """Test listing below the root keeps root-relative paths."""
        result = ListFilesTool(sample_repo).execute({"directory": "app"})

        assert set(result["files"]) == {
            "app/__init__.py",
            "app/handlers/user_handler.py",
            "app/models/user.py",
        }

    def test_truncates(self, sample_repo: Path):
        """Test the file limit."""
        result = ListFilesTool(sample_repo, max_files=2).execute({})

        assert result["count"] == 2
        assert result["truncated"] is True

    def test_rejects_non_directory(self, sample_repo: Path):
        """Test that a file path is not listable."""
        with pytest.raises(ToolError):
            ListFilesTool(sample_repo).execute({"directory": "main.py"})

    def test_definition(self, sample_repo: Path):
        """Test the schema handed to the model."""
        definition = ListFilesTool(sample_repo).definition()

        assert definition.name == "list_files"
        assert definition.parameters["type"] == "object"


# =============================================================================
# Helper Tests
# =============================================================================


class TestCleanMarkdown:
    """Tests for clean_markdown."""

    def test_strips_code_fence(self):
        """Test that a fenced answer is unwrapped."""
        assert clean_markdown("```markdown\n# Title\n\nBody\n```") == "# Title\n\nBody"

    def test_strips_preamble(self):
        """Test that chatter before the first heading is dropped."""
        assert clean_markdown("Sure! Here is the report.\n\n# Title\nBody") == "# Title\nBody"

    def test_plain_text_is_kept(self):
        """Test that text without headings is returned trimmed."""
        assert clean_markdown("  just text \n") == "just text"


# =============================================================================
# ToolCallingAgent Tests
# =============================================================================


class TestToolCallingAgent:
    """Tests for the tool loop."""

    def test_tool_loop_then_final_answer(self, sample_repo: Path, invoker_factory):
        """Test that tool calls are executed and their results sent back."""

        def respond(request: CompletionRequest) -> CompletionResponse:
            if len(request.messages) == 1:
                return CompletionResponse(
                    content="",
                    tool_calls=[
                        ToolCall(id="c1", name="read_file", arguments={"file_path": "main.py"})
                    ],
                )
            return CompletionResponse(content="Here you go:\n# Structure\n\nOne module.")

        invoker = invoker_factory(respond)
        agent = StructureAnalyzer(make_deps(sample_repo, invoker))

        report = agent.run(CancelContext())

        assert report == "# Structure\n\nOne module."
        assert len(invoker.requests) == 2
        first, second = invoker.requests
        assert "'repo'" in first.messages[0].content
        assert {tool.name for tool in first.tools} == {"list_files", "read_file"}
        tool_message = second.messages[-1]
        assert tool_message.role == "tool"
        assert tool_message.tool_call_id == "c1"
        assert json.loads(tool_message.content)["content"].startswith("from app import run")

    def test_tool_errors_are_reported_to_model(self, sample_repo: Path, invoker_factory):
        """Test that a failing tool call becomes an error payload, not an exception."""

        def respond(request: CompletionRequest) -> CompletionResponse:
            if len(request.messages) == 1:
                return CompletionResponse(
                    content="",
                    tool_calls=[
                        ToolCall(id="c1", name="read_file", arguments={"file_path": "../x"}),
                        ToolCall(id="c2", name="delete_everything", arguments={}),
                    ],
                )
            return CompletionResponse(content="# Done")

        invoker = invoker_factory(respond)
        StructureAnalyzer(make_deps(sample_repo, invoker)).run(CancelContext())

        results = [json.loads(m.content) for m in invoker.requests[1].messages if m.role == "tool"]
        assert "outside the repository" in results[0]["error"]
        assert "Unknown tool" in results[1]["error"]

    def test_iteration_limit(self, sample_repo: Path, invoker_factory):
        """Test that an agent that never answers fails."""
        invoker = invoker_factory(
            lambda request: CompletionResponse(
                content="", tool_calls=[ToolCall(id="c", name="list_files", arguments={})]
            )
        )
        agent = StructureAnalyzer(make_deps(sample_repo, invoker, max_iterations=3))

        with pytest.raises(AgentTaskError, match="3 iterations"):
            agent.run(CancelContext())
        assert len(invoker.requests) == 3

    def test_empty_report_fails(self, sample_repo: Path, invoker_factory):
        """Test that an empty final answer is an agent failure."""
        invoker = invoker_factory(lambda request: CompletionResponse(content="   "))

        with pytest.raises(AgentTaskError, match="empty report"):
            StructureAnalyzer(make_deps(sample_repo, invoker)).run(CancelContext())

    def test_cancelled_before_first_call(self, sample_repo: Path, scripted_invoker):
        """Test that a cancelled context stops the agent."""
        ctx = CancelContext()
        ctx.cancel()

        with pytest.raises(CancellationError):
            StructureAnalyzer(make_deps(sample_repo, scripted_invoker)).run(ctx)
        assert scripted_invoker.requests == []

    def test_tool_response_truncation(self, sample_repo: Path, scripted_invoker):
        """Test that oversized tool output is cut to the token budget."""
        agent = StructureAnalyzer(
            make_deps(sample_repo, scripted_invoker, max_tool_response_tokens=5, chars_per_token=4)
        )
        tools = {tool.name: tool for tool in agent.tools}

        text = agent.call_tool(tools, ToolCall(id="c", name="list_files", arguments={}))

        assert text.endswith("... [truncated]")
        assert len(text) == 20 + len("\n... [truncated]")

    def test_trim_history_keeps_prompt_and_latest_exchange(self, sample_repo: Path, scripted_invoker):
        """Test that old exchanges are dropped once over budget."""
        agent = StructureAnalyzer(
            make_deps(sample_repo, scripted_invoker, max_conversation_tokens=10, chars_per_token=1)
        )
        agent.system_prompt = ""
        messages = [Message(role="user", content="go")]
        for i in range(3):
            messages.append(
                Message(role="assistant", content="", tool_calls=[ToolCall(id=str(i), name="t")])
            )
            messages.append(Message(role="tool", content="x" * 20, tool_call_id=str(i)))

        agent.trim_history(messages)

        assert messages[0].content == "go"
        assert [m.tool_call_id for m in messages if m.role == "tool"] == ["2"]

    def test_save_output(self, sample_repo: Path, scripted_invoker):
        """Test that reports are written with a trailing newline."""
        agent = StructureAnalyzer(make_deps(sample_repo, scripted_invoker))
        path = sample_repo / ".ai" / "docs" / agent.output_file

        agent.save_output("# Report", path)

        assert path.read_text() == "# Report\n"


# =============================================================================
# Factory Tests
# =============================================================================


class TestAgentFactories:
    """Tests for the agent registry."""

    def test_five_agents_registered(self):
        """Test that the registry matches the change cache's agent list."""
        assert tuple(AGENT_FACTORIES) == AGENT_NAMES
        assert len(AGENT_FACTORIES) == 5

    def test_output_files_are_unique(self, sample_repo: Path, scripted_invoker):
        """Test that every agent writes its own report file."""
        deps = make_deps(sample_repo, scripted_invoker)
        agents = [create_agent(name, deps) for name in AGENT_FACTORIES]

        assert [agent.name for agent in agents] == list(AGENT_FACTORIES)
        assert len({agent.output_file for agent in agents}) == 5
        assert all(agent.output_file.endswith(".md") for agent in agents)

    def test_unknown_agent(self, sample_repo: Path, scripted_invoker):
        """Test that an unregistered name is rejected."""
        with pytest.raises(KeyError, match="Unknown agent"):
            create_agent("security_analyzer", make_deps(sample_repo, scripted_invoker))
