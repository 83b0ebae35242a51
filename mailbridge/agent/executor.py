"""Agent executor boundary.

The email channel does not run agents itself. It hands an AgentInvocation to
an AgentExecutor and gets back an AgentOutcome. Any failure on the way,
including a missed deadline, is folded into an error outcome so the channel
has a single code path for "the agent did not produce a reply".

CommandAgentExecutor protocol (JSON over stdio):
    stdin:  {"conversation_identity": ..., "workspace_folder": ...,
             "workspace_path": ..., "prompt": ..., "session_handle": ...}
    stdout: {"status": "success"|"error", "result": ..., "error": ...,
             "new_session_handle": ...}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AgentExecutionError(Exception):
    """Raised when the executor itself fails (crash, bad output)."""
    pass


class AgentStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class AgentInvocation(BaseModel):
    """Everything the executor needs for one run."""

    conversation_identity: str = Field(..., description="e.g. email:alice@example.com")
    workspace_folder: str = Field(..., description="Per-sender workspace folder name")
    workspace_path: str = Field(..., description="Absolute workspace path")
    prompt: str = Field(..., description="Structured prompt for the agent")
    session_handle: Optional[str] = Field(None, description="Prior session handle")


class AgentOutcome(BaseModel):
    """Structured result of an agent run."""

    status: AgentStatus
    result: Optional[str] = None
    error: Optional[str] = None
    new_session_handle: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == AgentStatus.SUCCESS

    @classmethod
    def failure(cls, error: str) -> "AgentOutcome":
        return cls(status=AgentStatus.ERROR, error=error)


class AgentExecutor(Protocol):
    """Anything that can run the agent for one invocation."""

    async def invoke(self, invocation: AgentInvocation) -> AgentOutcome:
        ...


async def invoke_with_deadline(
    executor: AgentExecutor,
    invocation: AgentInvocation,
    timeout_seconds: Optional[float],
) -> AgentOutcome:
    """Run the executor under a deadline.

    Timeouts and executor exceptions come back as error outcomes; nothing
    raised by the executor escapes this function.
    """
    try:
        if timeout_seconds is None:
            return await executor.invoke(invocation)
        return await asyncio.wait_for(executor.invoke(invocation), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(
            f"Agent timed out after {timeout_seconds}s for {invocation.conversation_identity}"
        )
        return AgentOutcome.failure(f"Agent timed out after {timeout_seconds}s")
    except AgentExecutionError as e:
        return AgentOutcome.failure(str(e))
    except Exception as e:
        logger.exception(f"Agent executor raised for {invocation.conversation_identity}")
        return AgentOutcome.failure(f"Executor error: {e}")


class CommandAgentExecutor:
    """Runs an external command per invocation, JSON in and JSON out.

    The command runs with the sender's workspace as its working directory.

    Example:
        executor = CommandAgentExecutor(["python", "-m", "my_agent"])
        outcome = await executor.invoke(invocation)
    """

    def __init__(self, command: Sequence[str], env: Optional[Dict[str, str]] = None):
        if not command:
            raise ValueError("Agent command cannot be empty")
        self.command: List[str] = list(command)
        self.env = env or {}

    async def invoke(self, invocation: AgentInvocation) -> AgentOutcome:
        payload = invocation.model_dump_json().encode("utf-8")
        cwd = Path(invocation.workspace_path)

        # Inherit parent environment
        env = {**os.environ, **self.env}

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd.is_dir() else None,
                env=env,
            )
        except OSError as e:
            raise AgentExecutionError(f"Failed to start agent command: {e}") from e

        try:
            stdout, stderr = await process.communicate(payload)
        except asyncio.CancelledError:
            # Deadline hit: do not leave the agent running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if stderr:
            logger.debug(f"Agent stderr: {stderr.decode('utf-8', errors='replace')[:2000]}")

        if process.returncode != 0:
            raise AgentExecutionError(
                f"Agent command exited with code {process.returncode}"
            )

        try:
            data = json.loads(stdout.decode("utf-8"))
            return AgentOutcome.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise AgentExecutionError(f"Invalid agent output: {e}") from e
