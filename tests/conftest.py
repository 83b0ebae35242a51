"""Shared fixtures: an in-memory Gmail client and scripted agent executors."""

from __future__ import annotations

import base64
from email import message_from_string
from typing import Any, Dict, List, Optional

import pytest

from mailbridge.agent.executor import AgentInvocation, AgentOutcome, AgentStatus
from mailbridge.providers.email.gmail_client import GmailAPIError


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_raw_message(
    message_id: str,
    thread_id: str,
    sender: str,
    subject: str,
    body: str,
    rfc_message_id: Optional[str] = None,
) -> Dict[str, Any]:
    headers = [
        {"name": "From", "value": sender},
        {"name": "Subject", "value": subject},
    ]
    if rfc_message_id:
        headers.append({"name": "Message-ID", "value": rfc_message_id})
    return {
        "id": message_id,
        "threadId": thread_id,
        "payload": {
            "mimeType": "text/plain",
            "headers": headers,
            "body": {"data": b64url(body)},
        },
    }


class FakeGmailClient:
    """Stands in for GmailClient; records every call."""

    def __init__(self):
        self.labels: List[Dict[str, Any]] = [{"id": "INBOX", "name": "INBOX"}]
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.unread: List[str] = []
        self.failing_gets: set = set()
        self.fail_send = False
        self.sent: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.list_queries: List[Dict[str, Any]] = []

    def add_message(self, raw: Dict[str, Any]) -> None:
        self.messages[raw["id"]] = raw
        self.unread.append(raw["id"])

    def get_profile(self) -> Dict[str, Any]:
        self.calls.append("get_profile")
        return {"emailAddress": "agent@example.com"}

    def list_labels(self) -> List[Dict[str, Any]]:
        self.calls.append("list_labels")
        return list(self.labels)

    def create_label(self, name: str) -> Dict[str, Any]:
        self.calls.append("create_label")
        label = {"id": f"Label_{len(self.labels)}", "name": name}
        self.labels.append(label)
        return label

    def list_messages(self, query: str = "is:unread", max_results: int = 10):
        self.calls.append("list_messages")
        self.list_queries.append({"query": query, "max_results": max_results})
        return [
            {"id": mid, "threadId": self.messages[mid]["threadId"]}
            for mid in self.unread[:max_results]
        ]

    def get_message(self, message_id: str) -> Dict[str, Any]:
        self.calls.append("get_message")
        if message_id in self.failing_gets:
            raise GmailAPIError("boom", "get_failed", 500)
        return self.messages[message_id]

    def modify_message(self, message_id, add_labels=None, remove_labels=None) -> bool:
        self.calls.append("modify_message")
        if remove_labels and "UNREAD" in remove_labels and message_id in self.unread:
            self.unread.remove(message_id)
        return True

    def send_message(self, raw_message: str, thread_id: Optional[str] = None):
        self.calls.append("send_message")
        if self.fail_send:
            raise GmailAPIError("send refused", "send_failed", 400)
        parsed = message_from_string(raw_message)
        self.sent.append({
            "thread_id": thread_id,
            "to": parsed["To"],
            "subject": parsed["Subject"],
            "in_reply_to": parsed["In-Reply-To"],
            "references": parsed["References"],
            "body": parsed.get_payload(decode=True).decode("utf-8"),
        })
        return f"sent-{len(self.sent)}", thread_id


class ScriptedExecutor:
    """Agent executor returning queued outcomes and recording invocations."""

    def __init__(self, outcomes: Optional[List[AgentOutcome]] = None):
        self.outcomes = list(outcomes or [])
        self.invocations: List[AgentInvocation] = []

    async def invoke(self, invocation: AgentInvocation) -> AgentOutcome:
        self.invocations.append(invocation)
        if self.outcomes:
            return self.outcomes.pop(0)
        return AgentOutcome(status=AgentStatus.SUCCESS, result="ok")


@pytest.fixture
def gmail_client() -> FakeGmailClient:
    return FakeGmailClient()


@pytest.fixture
def raw_message_factory():
    return make_raw_message


@pytest.fixture
def scripted_executor_factory():
    return ScriptedExecutor
