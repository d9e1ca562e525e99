from datetime import datetime, timezone

import pytest

from mailbridge import notifier as notifier_module
from mailbridge.errors import DeliveryError
from mailbridge.models import Attachment, Message
from mailbridge.notifier import TelegramNotifier


def _message(*attachments):
    return Message(
        uid=11,
        sender="alice@example.com",
        recipient="bob@example.com",
        subject="Files",
        date=datetime(2024, 2, 5, tzinfo=timezone.utc),
        text="see files",
        attachments=list(attachments),
    )


def _attachment(name, size, content=b"x"):
    return Attachment(filename=name, content_type="application/octet-stream", size=size, content=content)


@pytest.fixture
def sink(telegram, settings_factory):
    return TelegramNotifier(telegram, settings_factory(max_attachment_size=100))


def test_text_is_sent_before_attachments(sink, telegram):
    result = sink.deliver(_message(_attachment("a.txt", 1)))
    assert result.success
    assert [kind for kind, _ in telegram.events] == ["text", "document"]
    assert "<b>Subject:</b> Files" in telegram.messages[0]
    assert telegram.documents[0][2] == "📎 a.txt"


def test_attachment_at_limit_is_sent_and_over_limit_is_skipped(sink, telegram):
    result = sink.deliver(
        _message(_attachment("exact.bin", 100, b"e" * 100), _attachment("over.bin", 101, b"o" * 101))
    )

    assert [name for name, _, _ in telegram.documents] == ["exact.bin"]
    warning = telegram.messages[-1]
    assert "Skipped attachment" in warning
    assert "over.bin" in warning
    assert "101 bytes" in warning
    assert result.sent_attachments == ["exact.bin"]
    assert result.skipped_attachments == ["over.bin"]
    assert result.success


def test_failed_attachment_warns_and_next_one_is_still_sent(sink, telegram):
    telegram.fail_documents.add("broken.pdf")

    result = sink.deliver(_message(_attachment("broken.pdf", 5), _attachment("fine.pdf", 5)))

    assert result.success
    assert result.failed_attachments == ["broken.pdf"]
    assert result.sent_attachments == ["fine.pdf"]
    kinds = [kind for kind, _ in telegram.events]
    assert kinds == ["text", "text", "document"]
    assert "Failed to send attachment:</b> broken.pdf" in telegram.messages[1]
    assert "Request Entity Too Large" in telegram.messages[1]


def test_attachment_without_content_is_skipped_silently(sink, telegram):
    result = sink.deliver(_message(_attachment("ghost.bin", 0, None), _attachment("real.bin", 2)))
    assert result.skipped_attachments == ["ghost.bin"]
    assert len(telegram.messages) == 1
    assert [name for name, _, _ in telegram.documents] == ["real.bin"]


def test_text_failure_is_a_delivery_error(sink, telegram):
    telegram.fail_text = True
    with pytest.raises(DeliveryError) as excinfo:
        sink.deliver(_message(_attachment("a.txt", 1)))
    assert excinfo.value.uid == 11
    assert telegram.documents == []


def test_warning_failures_do_not_break_delivery(sink, telegram, monkeypatch):
    telegram.fail_documents.add("a.bin")
    original = telegram.send_message

    def send_once(text, **kwargs):
        if "Failed to send attachment" in text:
            telegram.fail_text = True
        try:
            return original(text, **kwargs)
        finally:
            telegram.fail_text = False

    monkeypatch.setattr(telegram, "send_message", send_once)
    result = sink.deliver(_message(_attachment("a.bin", 1), _attachment("b.bin", 1)))
    assert result.success
    assert result.sent_attachments == ["b.bin"]


def test_spacing_between_attachment_transmissions(telegram, settings_factory, monkeypatch):
    pauses = []
    monkeypatch.setattr(notifier_module, "pause", lambda event, ms: pauses.append(ms))
    sink = TelegramNotifier(telegram, settings_factory(attachment_spacing_ms=500))

    sink.deliver(_message(_attachment("1", 1), _attachment("2", 1), _attachment("3", 1)))

    assert pauses == [500, 500]
