"""Email Channel with Polling Mode.

This module runs the inbox-to-agent loop: every poll interval it fetches
unread messages under the watched Gmail label, claims each one exactly once,
routes it to the sender's conversation, runs the agent and replies in-thread.

Architecture:
    - EmailChannel: service object owning the loop and its running state
    - GmailProvider: label, poll, mark-read and reply operations
    - DedupGate: at-most-once claim per Gmail message id
    - SenderRouter: per-sender workspace and session handle
    - AgentExecutor: external agent, invoked under a deadline

Delivery guarantee:
    At most once. A message is claimed before it is marked read and before
    the agent runs. If the process dies after the claim, or the agent fails,
    or the reply cannot be sent, the message is not retried and the
    correspondent gets no answer. Unanswered claims can be listed with
    `mailbridge status`.

Key Features:
    - Configurable polling interval (default: 60 seconds, min: 30s, max: 3600s)
    - Cycles never overlap; messages in a cycle are processed in order
    - Label verified lazily on the first cycle
    - One message's failure never aborts the batch or the loop
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Optional, TypeVar

from mailbridge.agent.executor import (
    AgentExecutor,
    AgentInvocation,
    invoke_with_deadline,
)
from mailbridge.dedupe import DedupGate
from mailbridge.providers.email.gmail_client import GmailAPIError
from mailbridge.providers.email.gmail_provider import GmailProvider
from mailbridge.providers.email.models import ParsedMessage
from mailbridge.session_router import SenderConversation, SenderRouter

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_POLL_INTERVAL = 30
MAX_POLL_INTERVAL = 3600


def escape_xml(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def build_prompt(message: ParsedMessage) -> str:
    """Wrap the message in an <email> element with escaped fields."""
    return (
        f'<email from="{escape_xml(message.sender_display)}" '
        f'subject="{escape_xml(message.subject)}">\n'
        f"{escape_xml(message.body)}\n"
        f"</email>"
    )


class EmailChannel:
    """Polling service bridging a Gmail label to an agent executor.

    Attributes:
        provider: GmailProvider, or None when credentials are unavailable
        gate: DedupGate guarding each message id
        router: SenderRouter for per-sender conversations
        executor: Agent executor
        label_name: Watched Gmail label
        poll_interval_seconds: Delay between the end of a cycle and the next one
        agent_timeout_seconds: Deadline for each agent invocation
    """

    def __init__(
        self,
        provider: Optional[GmailProvider],
        gate: DedupGate,
        router: SenderRouter,
        executor: AgentExecutor,
        label_name: str,
        poll_interval_seconds: int = 60,
        agent_timeout_seconds: Optional[float] = 600.0,
    ):
        self.provider = provider
        self.gate = gate
        self.router = router
        self.executor = executor
        self.label_name = label_name
        self.agent_timeout_seconds = agent_timeout_seconds

        if poll_interval_seconds < MIN_POLL_INTERVAL:
            logger.warning(
                f"Poll interval {poll_interval_seconds}s too low, using minimum {MIN_POLL_INTERVAL}s"
            )
            poll_interval_seconds = MIN_POLL_INTERVAL
        elif poll_interval_seconds > MAX_POLL_INTERVAL:
            logger.warning(
                f"Poll interval {poll_interval_seconds}s too high, using maximum {MAX_POLL_INTERVAL}s"
            )
            poll_interval_seconds = MAX_POLL_INTERVAL

        self.poll_interval_seconds = poll_interval_seconds

        self._label_verified = False
        self._running = False
        self._stop_event = asyncio.Event()
        self._polling_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_blocking(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking Gmail call without stalling the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def start(self) -> bool:
        """Start the polling loop as a task on the running event loop.

        Returns:
            True if a loop was started by this call
        """
        if self._running:
            logger.debug("Email loop already running, skipping duplicate start")
            return False

        if self.provider is None:
            logger.info("Gmail client not available, email channel not started")
            return False

        self._stop_event = asyncio.Event()
        self._running = True
        self._polling_task = asyncio.get_running_loop().create_task(self._polling_loop())
        logger.info(
            f"Email channel started (label: {self.label_name}, "
            f"interval: {self.poll_interval_seconds}s)"
        )
        return True

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight cycle finish first."""
        if not self._running:
            logger.debug("Email loop not running")
            return

        logger.info("Stopping email channel")
        self._stop_event.set()

        task = self._polling_task
        if task is not None and not task.done():
            await task

        self._polling_task = None
        self._running = False
        logger.info("Email channel stopped")

    async def wait(self) -> None:
        """Block until the polling loop exits."""
        if self._polling_task is not None:
            await self._polling_task

    async def _polling_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception(f"Error in email loop: {e}")

            # Next cycle is scheduled only after this one completed
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> int:
        """Run one poll cycle.

        Returns:
            Number of messages fetched this cycle

        Raises:
            GmailAPIError / TokenRefreshError: If the label or list step fails
        """
        if self.provider is None:
            return 0

        if not self._label_verified:
            await self._run_blocking(self.provider.ensure_label, self.label_name)
            self._label_verified = True

        messages = await self._run_blocking(self.provider.poll, self.label_name)
        if messages:
            logger.info(f"New emails found: {len(messages)}")

        for message in messages:
            try:
                await self.process_message(message)
            except Exception as e:
                logger.exception(
                    f"Failed to process email {message.message_id} "
                    f"from {message.sender_address}: {e}"
                )

        return len(messages)

    async def process_message(self, message: ParsedMessage) -> bool:
        """Claim, route, invoke and reply for one message.

        Returns:
            True if a reply was sent
        """
        if not self.gate.should_process(message.message_id):
            return False

        if not self.gate.claim(
            message.message_id,
            message.thread_id,
            message.sender_address,
            message.subject,
        ):
            return False

        try:
            await self._run_blocking(self.provider.mark_as_read, message.message_id)
        except GmailAPIError as e:
            # Already claimed; the unread flag only matters for the next query
            logger.warning(f"Failed to mark {message.message_id} as read: {e}")

        conversation = self.router.route(message.sender_address)

        logger.info(
            f"Processing email: from={message.sender_address}, "
            f"subject={message.subject}, workspace={conversation.workspace_folder}"
        )

        outcome = await invoke_with_deadline(
            self.executor,
            AgentInvocation(
                conversation_identity=conversation.conversation_identity,
                workspace_folder=conversation.workspace_folder,
                workspace_path=str(conversation.workspace_path),
                prompt=build_prompt(message),
                session_handle=conversation.session_handle,
            ),
            self.agent_timeout_seconds,
        )

        if not outcome.succeeded:
            logger.error(
                f"Email agent error: from={message.sender_address}, error={outcome.error}"
            )
            return False

        if outcome.new_session_handle:
            self.router.save_session_handle(conversation, outcome.new_session_handle)

        if not outcome.result:
            logger.info(f"Agent returned no reply text for {message.message_id}")
            return False

        return await self._send_reply(message, conversation, outcome.result)

    async def _send_reply(
        self,
        message: ParsedMessage,
        conversation: SenderConversation,
        text: str,
    ) -> bool:
        try:
            await self._run_blocking(
                self.provider.reply,
                thread_id=message.thread_id,
                to_address=message.sender_address,
                subject=message.subject,
                body=text,
                original_message_id=message.rfc_message_id,
            )
        except GmailAPIError as e:
            logger.error(
                f"Failed to send email reply to {conversation.sender_address}: {e}"
            )
            return False

        self.gate.mark_responded(message.message_id)
        logger.info(
            f"Email reply sent: to={message.sender_address}, subject={message.subject}"
        )
        return True


__all__ = [
    "EmailChannel",
    "build_prompt",
    "escape_xml",
]
