"""ReAct agent loop.

An :class:`Agent` alternates completion requests and tool dispatch until the
model answers without tool calls or ``max_iterations`` is reached::

    agent = Agent(llm, builtin_registry(), instructions="Be brief.")
    result = await agent.run("What is 2+2?")
    print(result.status, result.content)
"""

from .loop import Agent, AgentResult, AgentState, RunStatus

__all__ = ["Agent", "AgentResult", "AgentState", "RunStatus"]
