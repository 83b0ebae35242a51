"""Tests for GmailProvider: labels, polling and replies."""

import pytest

from mailbridge.providers.email import gmail_provider
from mailbridge.providers.email.gmail_client import GmailAPIError, TokenRefreshError
from mailbridge.providers.email.gmail_provider import (
    POLL_PAGE_SIZE,
    GmailProvider,
    normalize_reply_subject,
)
from mailbridge.providers.email.parser import parse_message


class TestEnsureLabel:

    def test_existing_label_returned_without_create(self, gmail_client):
        gmail_client.labels.append({"id": "Label_7", "name": "agent"})
        provider = GmailProvider(gmail_client)

        first = provider.ensure_label("agent")
        second = provider.ensure_label("agent")

        assert first == second == "Label_7"
        assert "create_label" not in gmail_client.calls

    def test_missing_label_created_once(self, gmail_client):
        provider = GmailProvider(gmail_client)

        first = provider.ensure_label("agent")
        second = provider.ensure_label("agent")

        assert first == second
        assert gmail_client.calls.count("create_label") == 1
        assert gmail_client.calls.count("list_labels") == 1

    def test_list_failure_propagates(self, gmail_client):
        def fail():
            raise GmailAPIError("down", "labels_failed", 500)

        gmail_client.list_labels = fail
        with pytest.raises(GmailAPIError):
            GmailProvider(gmail_client).ensure_label("agent")


class TestPoll:

    def test_query_and_page_size(self, gmail_client):
        GmailProvider(gmail_client).poll("agent")
        assert gmail_client.list_queries == [
            {"query": "label:agent is:unread", "max_results": POLL_PAGE_SIZE}
        ]
        assert POLL_PAGE_SIZE == 10

    def test_messages_parsed(self, gmail_client, raw_message_factory):
        gmail_client.add_message(raw_message_factory(
            "m1", "t1", "Alice <alice@example.com>", "Question", "How do I reset my password?"
        ))

        messages = GmailProvider(gmail_client).poll("agent")

        assert len(messages) == 1
        assert messages[0].sender_address == "alice@example.com"
        assert messages[0].body == "How do I reset my password?"

    def test_single_fetch_failure_skipped(self, gmail_client, raw_message_factory):
        gmail_client.add_message(raw_message_factory("m1", "t1", "a@example.com", "A", "one"))
        gmail_client.add_message(raw_message_factory("m2", "t2", "b@example.com", "B", "two"))
        gmail_client.failing_gets.add("m1")

        messages = GmailProvider(gmail_client).poll("agent")

        assert [m.message_id for m in messages] == ["m2"]

    def test_malformed_message_does_not_abort_poll(self, gmail_client, raw_message_factory):
        gmail_client.add_message({
            "id": "bad",
            "threadId": "tb",
            "payload": {"mimeType": "text/plain", "headers": [], "body": {"data": 123}},
        })
        gmail_client.add_message(raw_message_factory("m2", "t2", "b@example.com", "B", "two"))

        messages = GmailProvider(gmail_client).poll("agent")

        assert [m.message_id for m in messages] == ["bad", "m2"]
        assert messages[0].body == ""
        assert messages[1].body == "two"

    def test_parse_failure_skipped(self, gmail_client, raw_message_factory, monkeypatch):
        def flaky_parse(raw):
            if raw["id"] == "m1":
                raise ValueError("unparseable")
            return parse_message(raw)

        monkeypatch.setattr(gmail_provider, "parse_message", flaky_parse)
        gmail_client.add_message(raw_message_factory("m1", "t1", "a@example.com", "A", "one"))
        gmail_client.add_message(raw_message_factory("m2", "t2", "b@example.com", "B", "two"))

        messages = GmailProvider(gmail_client).poll("agent")

        assert [m.message_id for m in messages] == ["m2"]

    def test_token_failure_propagates(self, gmail_client, raw_message_factory):
        def fail(message_id):
            raise TokenRefreshError("revoked")

        gmail_client.add_message(raw_message_factory("m1", "t1", "a@example.com", "A", "one"))
        gmail_client.get_message = fail

        with pytest.raises(TokenRefreshError):
            GmailProvider(gmail_client).poll("agent")

    def test_backlog_drained_gradually(self, gmail_client, raw_message_factory):
        for i in range(15):
            gmail_client.add_message(raw_message_factory(f"m{i}", f"t{i}", "a@example.com", "S", "b"))

        messages = GmailProvider(gmail_client).poll("agent")

        assert len(messages) == POLL_PAGE_SIZE


class TestReply:

    def test_subject_normalization(self):
        assert normalize_reply_subject("Meeting") == "Re: Meeting"
        assert normalize_reply_subject("Re: Meeting") == "Re: Meeting"

    def test_subject_check_is_case_sensitive(self):
        assert normalize_reply_subject("RE: Meeting") == "Re: RE: Meeting"

    def test_reply_threads_and_sets_headers(self, gmail_client):
        provider = GmailProvider(gmail_client)

        provider.reply(
            thread_id="t1",
            to_address="alice@example.com",
            subject="Question",
            body="Click Forgot Password.",
            original_message_id="<abc@mail.example.com>",
        )

        sent = gmail_client.sent[0]
        assert sent["thread_id"] == "t1"
        assert sent["to"] == "alice@example.com"
        assert sent["subject"] == "Re: Question"
        assert sent["in_reply_to"] == "<abc@mail.example.com>"
        assert sent["references"] == "<abc@mail.example.com>"
        assert sent["body"] == "Click Forgot Password."

    def test_reply_without_original_id_still_threads(self, gmail_client):
        GmailProvider(gmail_client).reply("t9", "bob@example.com", "Hi", "Hello")
        sent = gmail_client.sent[0]
        assert sent["thread_id"] == "t9"
        assert sent["in_reply_to"] is None

    def test_mark_as_read_removes_unread(self, gmail_client, raw_message_factory):
        gmail_client.add_message(raw_message_factory("m1", "t1", "a@example.com", "A", "one"))
        GmailProvider(gmail_client).mark_as_read("m1")
        assert gmail_client.unread == []
