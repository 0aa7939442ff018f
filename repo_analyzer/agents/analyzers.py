"""The five analysis agents and their factory table."""

from typing import Callable

from .base import Agent, AgentDeps, ToolCallingAgent

_SYSTEM_PREAMBLE = (
    "You are a senior engineer documenting an unfamiliar code repository. "
    "Use the list_files and read_file tools to inspect the code before answering. "
    "Base every statement on files you have read and cite file paths. "
    "When you are done, reply with the final report in Markdown, starting with a "
    "level-1 heading, and call no more tools."
)


class StructureAnalyzer(ToolCallingAgent):
    name = "structure_analyzer"
    output_file = "structure_analysis.md"
    system_prompt = (
        f"{_SYSTEM_PREAMBLE}\n\nFocus: code structure. Describe the directory layout, "
        "modules and packages, their responsibilities, main abstractions and entry points."
    )
    user_prompt = "Analyze the code structure of the repository '{repo_name}'."


class DependencyAnalyzer(ToolCallingAgent):
    name = "dependency_analyzer"
    output_file = "dependency_analysis.md"
    system_prompt = (
        f"{_SYSTEM_PREAMBLE}\n\nFocus: dependencies. Read the manifest and lock files, "
        "list external dependencies with their purpose, and map internal module dependencies."
    )
    user_prompt = "Analyze the external and internal dependencies of the repository '{repo_name}'."


class DataFlowAnalyzer(ToolCallingAgent):
    name = "data_flow_analyzer"
    output_file = "data_flow_analysis.md"
    system_prompt = (
        f"{_SYSTEM_PREAMBLE}\n\nFocus: data flow. Describe the core data models, how data "
        "enters the system, how it is transformed and validated, and where it is persisted."
    )
    user_prompt = "Analyze how data flows through the repository '{repo_name}'."


class RequestFlowAnalyzer(ToolCallingAgent):
    name = "request_flow_analyzer"
    output_file = "request_flow_analysis.md"
    system_prompt = (
        f"{_SYSTEM_PREAMBLE}\n\nFocus: request flow. Trace how an incoming request or "
        "command is routed, which middleware and handlers it passes through, and how the "
        "response is produced."
    )
    user_prompt = "Trace the request processing flow of the repository '{repo_name}'."


class ApiAnalyzer(ToolCallingAgent):
    name = "api_analyzer"
    output_file = "api_analysis.md"
    system_prompt = (
        f"{_SYSTEM_PREAMBLE}\n\nFocus: API surface. Document public endpoints, commands or "
        "exported functions with their inputs, outputs, errors and authentication."
    )
    user_prompt = "Document the public API surface of the repository '{repo_name}'."


AGENT_FACTORIES: dict[str, Callable[[AgentDeps], Agent]] = {
    StructureAnalyzer.name: StructureAnalyzer,
    DependencyAnalyzer.name: DependencyAnalyzer,
    DataFlowAnalyzer.name: DataFlowAnalyzer,
    RequestFlowAnalyzer.name: RequestFlowAnalyzer,
    ApiAnalyzer.name: ApiAnalyzer,
}


def create_agent(name: str, deps: AgentDeps) -> Agent:
    """Construct the agent registered under ``name``.

    Raises:
        KeyError: If no agent has that name
    """
    try:
        factory = AGENT_FACTORIES[name]
    except KeyError:
        raise KeyError(f"Unknown agent '{name}'. Known agents: {', '.join(AGENT_FACTORIES)}")
    return factory(deps)

