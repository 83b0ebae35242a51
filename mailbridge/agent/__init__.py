"""Agent executor boundary for MailBridge."""

from mailbridge.agent.executor import (
    AgentExecutionError,
    AgentExecutor,
    AgentInvocation,
    AgentOutcome,
    AgentStatus,
    CommandAgentExecutor,
    invoke_with_deadline,
)

__all__ = [
    "AgentExecutionError",
    "AgentExecutor",
    "AgentInvocation",
    "AgentOutcome",
    "AgentStatus",
    "CommandAgentExecutor",
    "invoke_with_deadline",
]
