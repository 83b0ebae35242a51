"""Email channel: Gmail label polling bridged to an agent executor.

Usage:
    from mailbridge.channels.email import create_email_channel
    from mailbridge.core.config import get_config

    channel = create_email_channel(get_config())
    channel.start()
"""

from __future__ import annotations

from typing import Optional

from mailbridge.agent.executor import AgentExecutor, CommandAgentExecutor
from mailbridge.channels.email.adapter import EmailChannel, build_prompt, escape_xml
from mailbridge.core.config import MailBridgeConfig
from mailbridge.dedupe import DedupGate, IdempotencyStore
from mailbridge.providers.email.credentials import CredentialManager
from mailbridge.providers.email.gmail_provider import GmailProvider
from mailbridge.session_router import SenderRouter
from mailbridge.session_store import SessionStore


def create_email_channel(
    config: MailBridgeConfig,
    executor: Optional[AgentExecutor] = None,
) -> EmailChannel:
    """Wire an EmailChannel from configuration.

    The provider is None when the OAuth artifacts are missing; the returned
    channel then refuses to start instead of raising.

    Raises:
        ValueError: If no executor is given and agent_command is empty
    """
    if executor is None:
        executor = CommandAgentExecutor(config.agent_argv)

    client = CredentialManager(config.credentials_dir).build_client()
    provider = GmailProvider(client) if client is not None else None

    db_path = config.resolved_database_path
    return EmailChannel(
        provider=provider,
        gate=DedupGate(IdempotencyStore(db_path)),
        router=SenderRouter(config.workspaces_dir, SessionStore(db_path)),
        executor=executor,
        label_name=config.email_label,
        poll_interval_seconds=config.poll_interval_seconds,
        agent_timeout_seconds=config.agent_timeout_seconds,
    )


__all__ = [
    "EmailChannel",
    "build_prompt",
    "create_email_channel",
    "escape_xml",
]
