"""Pydantic models for agentrun.yaml configuration."""

from typing import Literal

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Completion endpoint configuration."""

    provider: Literal["anthropic", "openai"] | None = Field(
        default=None,
        description="Provider to use; inferred from model and api_base when unset",
    )
    compatible: Literal["openai"] | None = Field(
        default=None,
        description="Treat the endpoint as OpenAI-compatible regardless of model name",
    )
    model: str = Field(default="gpt-4o-mini", description="Model name")
    api_key: str | None = Field(
        default=None,
        description="API key; falls back to ANTHROPIC_API_KEY or OPENAI_API_KEY",
    )
    api_base: str | None = Field(default=None, description="Endpoint base URL")
    temperature: float = Field(default=0.7, description="Sampling temperature", ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, description="Nucleus sampling", ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, description="Maximum completion tokens", ge=1)
    timeout: float = Field(default=60.0, description="Request timeout in seconds", gt=0)
    thinking_budget: int | None = Field(
        default=None,
        description="Extended thinking token budget (Anthropic, minimum 1024)",
        ge=1,
    )


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    name: str = Field(default="agent", description="Agent name used in traces")
    instructions: str | None = Field(
        default="You are a helpful assistant. Use the available tools when they help.",
        description="System prompt for the agent",
    )
    max_iterations: int = Field(default=10, description="Maximum ReACT iterations", ge=1)
    stream: bool = Field(default=False, description="Use streaming completions")
    parallel_tool_calls: bool = Field(
        default=True,
        description="Run the tool calls of one response concurrently",
    )


class PoolConfig(BaseModel):
    """HTTP connection pool configuration."""

    max_connections: int = Field(default=10, description="Pool size", ge=1)
    acquire_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for a free connection",
        gt=0,
    )


class TraceConfig(BaseModel):
    """Run tracing configuration."""

    enabled: bool = Field(default=False, description="Write one JSON trace file per run")
    output_dir: str = Field(default="./traces", description="Directory for trace files")
    pretty: bool = Field(default=True, description="Indent trace JSON")
    console: bool = Field(default=False, description="Print trace events to stderr")


class AgentRunConfig(BaseModel):
    """Root configuration model."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    trace: TraceConfig = Field(default_factory=TraceConfig)
