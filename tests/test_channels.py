"""Tests for the email, SMS and WhatsApp transports."""
import smtplib

import pytest
import requests

from market_alerts.core.errors import DeliveryFailure
from market_alerts.models.datatypes import AlertMessage, Recipient
from market_alerts.providers.channels import (
    EmailChannel, SmsChannel, WhatsAppChannel, channels_from_env,
)
from tests.fakes import FakeHttp, FakeResponse

MESSAGE = AlertMessage(subject="Subj", text="plain", html="<p>rich</p>", short="short", chat="*chat*")

_ENV_KEYS = (
    "SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "SMTP_FROM",
    "SMS_API_URL", "SMS_API_KEY",
    "WHATSAPP_API_URL", "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_ACCESS_TOKEN",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.logins = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        self.logins.append((user, password))

    def sendmail(self, sender, to, body):
        self.sent.append((sender, to, body))


class RefusingSMTP(FakeSMTP):
    def sendmail(self, sender, to, body):
        raise smtplib.SMTPRecipientsRefused({to[0]: (550, b"no such user")})


def test_email_sends_multipart_with_both_bodies():
    FakeSMTP.instances.clear()
    channel = EmailChannel("smtp.test", 587, "user", "pw", "alerts@test", timeout=9, smtp_factory=FakeSMTP)

    channel.send(Recipient("email", "desk@example.com"), MESSAGE)

    [smtp] = FakeSMTP.instances
    assert smtp.timeout == 9
    assert smtp.logins == [("user", "pw")]
    sender, to, body = smtp.sent[0]
    assert (sender, to) == ("alerts@test", ["desk@example.com"])
    assert "Subject: Subj" in body
    assert "text/plain" in body and "text/html" in body


def test_email_refusal_is_delivery_failure():
    channel = EmailChannel("smtp.test", smtp_factory=RefusingSMTP)

    with pytest.raises(DeliveryFailure) as excinfo:
        channel.send(Recipient("email", "nobody@example.com"), MESSAGE)

    assert excinfo.value.channel == "email"
    assert excinfo.value.address == "nobody@example.com"


def test_sms_posts_short_body():
    http = FakeHttp([FakeResponse(200, "{}")])
    channel = SmsChannel("https://sms.test/send", "secret", timeout=5, http=http)

    channel.send(Recipient("sms", "+919800000000"), MESSAGE)

    call = http.calls[0]
    assert call["url"] == "https://sms.test/send"
    assert call["json"] == {"to": "+919800000000", "message": "short", "api_key": "secret"}
    assert call["timeout"] == 5


@pytest.mark.parametrize("response", [FakeResponse(500, "oops"), requests.ConnectionError("down")])
def test_sms_failures_raise_delivery_failure(response):
    channel = SmsChannel("https://sms.test/send", "secret", http=FakeHttp([response]))

    with pytest.raises(DeliveryFailure):
        channel.send(Recipient("sms", "+919800000000"), MESSAGE)


def test_whatsapp_posts_cloud_api_payload():
    http = FakeHttp([FakeResponse(200, '{"messages": [{"id": "wamid"}]}')])
    channel = WhatsAppChannel("https://graph.test/v18.0/", "12345", "token", http=http)

    channel.send(Recipient("whatsapp", "919800000000"), MESSAGE)

    call = http.calls[0]
    assert call["url"] == "https://graph.test/v18.0/12345/messages"
    assert call["headers"] == {"Authorization": "Bearer token"}
    assert call["json"] == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "919800000000",
        "type": "text",
        "text": {"preview_url": False, "body": "*chat*"},
    }


def test_from_env_skips_unconfigured_transports(clean_env):
    assert channels_from_env() == {}

    clean_env.setenv("SMTP_HOST", "smtp.test")
    clean_env.setenv("SMS_API_URL", "https://sms.test")
    clean_env.setenv("SMS_API_KEY", "k")

    channels = channels_from_env(timeout=3)

    assert sorted(channels) == ["email", "sms"]
    assert channels["email"].timeout == 3
    assert channels["email"].port == 587


class NoTlsSMTP(FakeSMTP):
    def __init__(self, host, port, timeout=None):
        super().__init__(host, port, timeout)
        self.closed = False

    def starttls(self, context=None):
        raise smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")

    def close(self):
        self.closed = True


def test_failed_starttls_closes_connection(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr("market_alerts.providers.channels.smtplib.SMTP", NoTlsSMTP)
    channel = EmailChannel("smtp.test", 587, sender="alerts@test")

    with pytest.raises(DeliveryFailure, match="SMTPNotSupportedError"):
        channel.send(Recipient("email", "ops@example.com"), MESSAGE)

    [smtp] = FakeSMTP.instances
    assert smtp.closed is True
    assert smtp.sent == []
