"""Base classes for analysis agents."""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from ..config import AgentConfig, LLMConfig
from ..errors import AgentTaskError, ToolError
from ..llm.invoker import ModelInvoker
from ..llm.types import CompletionRequest, Message, ToolCall
from ..utils.logging import get_logger
from ..utils.metrics import estimate_tokens
from ..worker_pool import CancelContext
from .tools import Tool, default_tools

logger = get_logger("agents")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\n(.*?)\n?```$", re.DOTALL)
_HEADING_RE = re.compile(r"^#{1,6}\s", re.MULTILINE)


@dataclass
class AgentDeps:
    """What every agent needs to run, built once per orchestrator run."""

    repo_path: Path
    invoker: ModelInvoker
    agent_config: AgentConfig
    llm_config: LLMConfig


class Agent(ABC):
    """One analysis aspect of the repository."""

    name: str = ""
    output_file: str = ""

    @abstractmethod
    def run(self, ctx: CancelContext) -> str:
        """Produce the agent's markdown report.

        Raises:
            AgentTaskError: If the agent cannot produce a report
            CancellationError: If ``ctx`` is cancelled
        """
        ...

    def save_output(self, output: str, path: Path) -> None:
        """Write the report to ``path``, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(output if output.endswith("\n") else output + "\n", encoding="utf-8")


def clean_markdown(text: str) -> str:
    """Strip code fences and any chatter before the first heading."""
    text = text.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    heading = _HEADING_RE.search(text)
    if heading and heading.start() > 0:
        text = text[heading.start():]
    return text.strip()


class ToolCallingAgent(Agent):
    """Agent that lets the model explore the repository through tools.

    Each iteration sends the conversation so far; tool calls are executed
    and their results appended until the model answers without calling a
    tool. Old tool exchanges are dropped once the conversation outgrows
    its token budget.
    """

    system_prompt: str = ""
    user_prompt: str = ""

    def __init__(self, deps: AgentDeps, tools: list[Tool] | None = None):
        self.deps = deps
        self.config = deps.agent_config
        self.invoker = deps.invoker
        self.tools = tools if tools is not None else default_tools(deps.repo_path)

    def render_user_prompt(self) -> str:
        return self.user_prompt.format(repo_name=self.deps.repo_path.name)

    def run(self, ctx: CancelContext) -> str:
        tools = {tool.name: tool for tool in self.tools}
        definitions = [tool.definition() for tool in self.tools]
        messages = [Message(role="user", content=self.render_user_prompt())]

        for iteration in range(1, self.config.max_iterations + 1):
            ctx.check()
            self.trim_history(messages)
            request = CompletionRequest(
                system_prompt=self.system_prompt,
                messages=list(messages),
                tools=definitions,
                max_tokens=self.deps.llm_config.max_tokens,
                temperature=self.deps.llm_config.temperature,
            )
            response = self.invoker.complete(ctx, request)

            if not response.tool_calls:
                report = clean_markdown(response.content)
                if not report:
                    raise AgentTaskError(self.name, "model returned an empty report")
                logger.debug(f"{self.name} finished after {iteration} iterations")
                return report

            messages.append(
                Message(role="assistant", content=response.content, tool_calls=response.tool_calls)
            )
            for call in response.tool_calls:
                messages.append(
                    Message(role="tool", content=self.call_tool(tools, call), tool_call_id=call.id)
                )

        raise AgentTaskError(
            self.name, f"no final answer after {self.config.max_iterations} iterations"
        )

    def call_tool(self, tools: dict[str, Tool], call: ToolCall) -> str:
        """Execute a tool call and render its result for the model."""
        tool = tools.get(call.name)
        if tool is None:
            result = {"error": f"Unknown tool '{call.name}'"}
        else:
            try:
                result = tool.execute(call.arguments)
            except ToolError as e:
                logger.debug(f"{self.name}: tool {call.name} failed: {e}")
                result = {"error": str(e)}

        text = json.dumps(result, ensure_ascii=False)
        limit = self.config.max_tool_response_tokens * self.config.chars_per_token
        if len(text) > limit:
            text = text[:limit] + "\n... [truncated]"
        return text

    def trim_history(self, messages: list[Message]) -> None:
        """Drop the oldest assistant/tool exchanges until the budget fits.

        The initial user prompt and the latest exchange are always kept.
        """
        while self._estimate(messages) > self.config.max_conversation_tokens:
            exchanges = [i for i, msg in enumerate(messages) if msg.role == "assistant"]
            if len(exchanges) < 2:
                return
            start, end = exchanges[0], exchanges[1]
            del messages[start:end]
            logger.debug(f"{self.name}: trimmed {end - start} messages from history")

    def _estimate(self, messages: list[Message]) -> int:
        chars_per_token = self.config.chars_per_token
        total = estimate_tokens(self.system_prompt, chars_per_token)
        for msg in messages:
            total += estimate_tokens(msg.content, chars_per_token)
            for call in msg.tool_calls:
                total += estimate_tokens(json.dumps(call.arguments), chars_per_token)
        return total
