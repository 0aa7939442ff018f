"""Configuration system for Repo Analyzer using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hashing more than this many files at once stops paying off on typical disks
MAX_HASH_WORKERS_CAP = 8


class ScannerConfig(BaseSettings):
    """File scanning configuration."""

    model_config = SettingsConfigDict(env_prefix="SCAN_")

    ignore_patterns: list[str] = Field(
        default_factory=list,
        description="Extra names or relative path prefixes to skip (defaults always apply)",
    )
    max_hash_workers: int = Field(
        default=0,
        ge=0,
        description="Parallel hash workers (0 = CPU count, capped at 8)",
    )


class CacheConfig(BaseSettings):
    """Change cache and LLM response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    change_cache_file: str = Field(
        default=".ai/analysis_cache.json",
        description="Change cache location, relative to the analyzed repository",
    )
    response_cache_enabled: bool = Field(default=True)
    response_cache_file: str = Field(
        default=".ai/llm_cache.json",
        description="LLM response cache location, relative to the analyzed repository",
    )
    ttl_days: float = Field(
        default=7.0,
        ge=0.0,
        description="Response cache entry lifetime in days (0 = never expire)",
    )
    max_memory_entries: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of response cache entries kept before LRU eviction",
    )

    @property
    def ttl_seconds(self) -> float | None:
        if self.ttl_days <= 0:
            return None
        return self.ttl_days * 24 * 3600


class LLMConfig(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    provider: Literal["openai"] = Field(
        default="openai",
        description="Provider protocol (OpenAI-compatible chat completions)",
    )
    model_name: str = Field(default="gpt-4o-mini")
    api_base: str = Field(
        default="https://api.openai.com/v1",
        description="Chat completions API base URL",
    )
    api_key: str = Field(default="EMPTY", description="API key (EMPTY for local servers)")
    timeout: float = Field(default=300.0, description="Request timeout in seconds")

    # Generation settings
    max_tokens: int = Field(default=8192, description="Max tokens per completion")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)

    # Retry settings
    max_retries: int = Field(default=5, ge=1, description="Attempts per request, first one included")
    retry_min_wait: float = Field(default=1.0, ge=0.0)
    retry_max_wait: float = Field(default=30.0, ge=0.0)


class AgentConfig(BaseSettings):
    """Settings shared by the tool-calling analysis agents."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    max_iterations: int = Field(
        default=100,
        ge=1,
        description="Maximum model round-trips per agent run",
    )
    max_conversation_tokens: int = Field(
        default=100_000,
        description="Estimated token budget before old tool exchanges are trimmed",
    )
    max_tool_response_tokens: int = Field(
        default=15_000,
        description="Estimated token budget for a single tool response",
    )
    chars_per_token: int = Field(default=4, ge=1)
    docs_dir: str = Field(
        default=".ai/docs",
        description="Report directory, relative to the analyzed repository",
    )


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Sub-configurations
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    # Paths
    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Root directory of the repository to analyze",
    )

    # Processing
    max_workers: int = Field(
        default=0,
        ge=0,
        description="Concurrent analysis agents (0 = available parallelism)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_file: Path | None = Field(default=None)

    @field_validator("project_root", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path) -> Path:
        """Resolve paths to absolute."""
        return Path(v).resolve()

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file."""
        import yaml

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                allow_unicode=True,
            )


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file or create default.

    A new instance is returned on every call; callers hand it to
    ``RunContext`` instead of reaching for shared state.
    """
    if path and path.exists():
        return AppConfig.from_yaml(path)
    return AppConfig()
