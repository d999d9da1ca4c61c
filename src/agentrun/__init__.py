"""agentrun - a runtime for tool-calling LLM agents.

agentrun sends a conversation to a completion endpoint, reassembles the
(optionally streamed) reply, dispatches the tool calls it requests and loops
until the model answers or an iteration bound is hit.

Key modules:

- :mod:`agentrun.agent` - ReAct agent loop
- :mod:`agentrun.llm` - Completion clients (Anthropic, OpenAI-compatible), SSE decoding, transport
- :mod:`agentrun.tools` - Tool registry and built-in demo tools
- :mod:`agentrun.observability` - Lifecycle hooks, trace context and exporters
- :mod:`agentrun.config` - YAML configuration
"""

__version__ = "0.1.0"
