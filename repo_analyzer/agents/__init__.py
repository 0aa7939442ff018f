"""Tool-calling analysis agents."""

from .analyzers import (
    AGENT_FACTORIES,
    ApiAnalyzer,
    DataFlowAnalyzer,
    DependencyAnalyzer,
    RequestFlowAnalyzer,
    StructureAnalyzer,
    create_agent,
)
from .base import Agent, AgentDeps, ToolCallingAgent, clean_markdown
from .tools import ListFilesTool, ReadFileTool, Tool

__all__ = [
    "AGENT_FACTORIES",
    "Agent",
    "AgentDeps",
    "ApiAnalyzer",
    "DataFlowAnalyzer",
    "DependencyAnalyzer",
    "ListFilesTool",
    "ReadFileTool",
    "RequestFlowAnalyzer",
    "StructureAnalyzer",
    "Tool",
    "ToolCallingAgent",
    "clean_markdown",
    "create_agent",
]
