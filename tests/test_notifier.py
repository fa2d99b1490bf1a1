"""Tests for confirmation links and notification emails."""

import smtplib
from urllib.parse import parse_qs, urlparse

import pytest

from tracker import emailer
from tracker.models import ChangeReason, Item, Subscription, SubscriptionChanged
from tracker.notifier import NotificationDispatcher, build_confirmation_url


class RecordingSender:
    def __init__(self):
        self.sent = []

    def __call__(self, subject, html_body, text_body, recipients):
        self.sent.append(
            {"subject": subject, "html": html_body, "text": text_body, "to": recipients}
        )
        return True


def _sub(**kw):
    data = dict(item_id="789", user_id=3, verification_code="abc123", email="a@x.com")
    data.update(kw)
    return Subscription(**data)


def test_confirmation_url_for_bare_host():
    url = build_confirmation_url(_sub(), "watch.example.com")
    parsed = urlparse(url)

    assert parsed.scheme == "https"
    assert parsed.netloc == "watch.example.com"
    assert parsed.path == "/subscriptions/confirm"
    assert parse_qs(parsed.query) == {"itemId": ["789"], "userId": ["3"], "code": ["abc123"]}


def test_confirmation_url_keeps_explicit_scheme():
    url = build_confirmation_url(_sub(), "http://localhost:8080/")
    assert url.startswith("http://localhost:8080/subscriptions/confirm?")


def test_created_event_sends_confirmation_email(storage):
    storage.get_or_create_item("789", "https://market/listing_789", 1000)
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(storage, send=sender)
    sub = _sub()

    dispatcher(SubscriptionChanged(sub, "watch.example.com", ChangeReason.CREATED))

    assert len(sender.sent) == 1
    mail = sender.sent[0]
    assert mail["to"] == ["a@x.com"]
    assert "Confirm" in mail["subject"]
    url = build_confirmation_url(sub, "watch.example.com")
    assert url in mail["text"]
    assert "https://market/listing_789" in mail["text"]
    assert "1 000" in mail["text"]
    assert mail["html"] is not None


@pytest.mark.parametrize(
    "reason, word",
    [(ChangeReason.RESUBSCRIBED, "resumed"), (ChangeReason.DEACTIVATED, "stopped")],
)
def test_status_events_send_plain_text(storage, reason, word):
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(storage, send=sender)

    dispatcher(SubscriptionChanged(_sub(), "localhost", reason))

    assert word in sender.sent[0]["subject"]
    assert sender.sent[0]["html"] is None
    assert "789" in sender.sent[0]["text"]


def test_event_without_email_is_dropped(storage):
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(storage, send=sender)

    assert dispatcher.dispatch(SubscriptionChanged(_sub(email=""), "h", ChangeReason.CREATED)) is False
    assert sender.sent == []


def test_price_change_mail_per_subscriber(storage):
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(storage, send=sender)
    item = Item(id="789", url="https://market/listing_789", price=1200)
    subs = [_sub(email="b@x.com"), _sub(email="a@x.com"), _sub(email="a@x.com")]

    sent = dispatcher.send_price_change(item, 1000, 1200, subs)

    assert sent == 2
    assert [m["to"] for m in sender.sent] == [["a@x.com"], ["b@x.com"]]
    assert "(+20.0%)" in sender.sent[0]["text"]


def test_send_email_skips_when_unconfigured(monkeypatch):
    monkeypatch.setattr(emailer, "EMAIL_FROM", "")
    monkeypatch.setattr(emailer, "SMTP_HOST", "")
    assert emailer.send_email("s", None, "t", ["a@x.com"]) is False


def test_send_email_uses_smtp(monkeypatch):
    sent = {}

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            sent["host"] = (host, port)

        def starttls(self):
            sent["tls"] = True

        def login(self, user, password):
            sent["login"] = user

        def sendmail(self, from_addr, to_addrs, msg):
            sent["to"] = to_addrs
            sent["msg"] = msg

        def quit(self):
            sent["quit"] = True

    monkeypatch.setattr(emailer, "EMAIL_FROM", "bot@example.com")
    monkeypatch.setattr(emailer, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(emailer, "SMTP_USER", "")
    monkeypatch.setattr(emailer, "SMTP_USE_SSL", False)
    monkeypatch.setattr(emailer.smtplib, "SMTP", FakeSMTP)

    assert emailer.send_email("Subject", "<p>hi</p>", "hi", ["a@x.com"]) is True
    assert sent["host"] == ("smtp.example.com", emailer.SMTP_PORT)
    assert sent["tls"] is True
    assert sent["to"] == ["a@x.com"]
    assert sent["quit"] is True
    assert "login" not in sent


def test_smtp_failure_is_logged_and_raised(storage, caplog):
    def failing_sender(subject, html_body, text_body, recipients):
        raise smtplib.SMTPServerDisconnected("Connection unexpectedly closed")

    dispatcher = NotificationDispatcher(storage, send=failing_sender)

    with pytest.raises(smtplib.SMTPServerDisconnected):
        dispatcher(SubscriptionChanged(_sub(), "localhost", ChangeReason.CREATED))

    assert any(
        r.levelname == "ERROR" and "Failed to send created notification to a@x.com" in r.getMessage()
        for r in caplog.records
    )
