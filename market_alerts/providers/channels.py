"""Delivery transports for rendered alerts: SMTP email, SMS gateway, WhatsApp Cloud API.

Every transport takes its credentials from the environment (see .env.example)
and carries an explicit timeout. Any failure to hand the message over is
raised as DeliveryFailure so the dispatcher can record it per recipient.
"""

import os
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional

import requests

from market_alerts.core.errors import DeliveryFailure
from market_alerts.core.logger import logger
from market_alerts.models.datatypes import AlertMessage, Recipient
from market_alerts.providers.base import NotificationChannel


class EmailChannel(NotificationChannel):
    """Multipart (text + HTML) email over SMTP.

    Port 465 uses implicit SSL; any other port upgrades with STARTTLS when
    ``starttls`` is set.
    """

    name = "email"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 20.0,
        starttls: bool = True,
        smtp_factory=None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.sender = sender or username
        self.timeout = timeout
        self.starttls = starttls
        self._smtp_factory = smtp_factory

    @classmethod
    def from_env(cls, timeout: float = 20.0) -> Optional["EmailChannel"]:
        """Build from SMTP_* variables, or None when SMTP_HOST is unset."""
        host = os.getenv("SMTP_HOST", "")
        if not host:
            return None
        return cls(
            host=host,
            port=int(os.getenv("SMTP_PORT", "587")),
            username=os.getenv("SMTP_USER", ""),
            password=os.getenv("SMTP_PASSWORD", ""),
            sender=os.getenv("SMTP_FROM", ""),
            timeout=timeout,
        )

    def send(self, recipient: Recipient, message: AlertMessage) -> None:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = self.sender
        mime["To"] = recipient.address
        mime.attach(MIMEText(message.text, "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))

        try:
            with self._connect() as smtp:
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.sendmail(self.sender, [recipient.address], mime.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(self.name, recipient.address, f"{type(exc).__name__}: {exc}") from exc
        logger.info(f"EmailChannel: sent '{message.subject}' to {recipient.address}")

    def _connect(self) -> smtplib.SMTP:
        if self._smtp_factory is not None:
            return self._smtp_factory(self.host, self.port, timeout=self.timeout)
        if self.port == 465:
            return smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        if self.starttls:
            try:
                smtp.starttls(context=ssl.create_default_context())
            except (smtplib.SMTPException, OSError):
                smtp.close()
                raise
        return smtp


class SmsChannel(NotificationChannel):
    """Compact alert through an HTTP SMS gateway (JSON ``{to, message, api_key}``)."""

    name = "sms"

    def __init__(self, api_url: str, api_key: str, timeout: float = 20.0, http=None) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._http = http or requests.Session()

    @classmethod
    def from_env(cls, timeout: float = 20.0, http=None) -> Optional["SmsChannel"]:
        api_url = os.getenv("SMS_API_URL", "")
        api_key = os.getenv("SMS_API_KEY", "")
        if not (api_url and api_key):
            return None
        return cls(api_url=api_url, api_key=api_key, timeout=timeout, http=http)

    def body_for(self, message: AlertMessage) -> str:
        return message.short

    def send(self, recipient: Recipient, message: AlertMessage) -> None:
        payload = {"to": recipient.address, "message": self.body_for(message), "api_key": self.api_key}
        _post_json(self._http, self.api_url, payload, {}, self.timeout, self.name, recipient)
        logger.info(f"SmsChannel: sent alert to {recipient.address}")


class WhatsAppChannel(NotificationChannel):
    """Text message through the WhatsApp Cloud (Graph) messages endpoint."""

    name = "whatsapp"

    def __init__(
        self,
        api_url: str,
        phone_number_id: str,
        access_token: str,
        timeout: float = 20.0,
        http=None,
    ) -> None:
        self.endpoint = f"{api_url.rstrip('/')}/{phone_number_id}/messages"
        self.access_token = access_token
        self.timeout = timeout
        self._http = http or requests.Session()

    @classmethod
    def from_env(cls, timeout: float = 20.0, http=None) -> Optional["WhatsAppChannel"]:
        api_url = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0")
        phone_number_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
        access_token = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
        if not (phone_number_id and access_token):
            return None
        return cls(api_url, phone_number_id, access_token, timeout=timeout, http=http)

    def body_for(self, message: AlertMessage) -> str:
        return message.chat

    def send(self, recipient: Recipient, message: AlertMessage) -> None:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient.address,
            "type": "text",
            "text": {"preview_url": False, "body": self.body_for(message)},
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}
        _post_json(self._http, self.endpoint, payload, headers, self.timeout, self.name, recipient)
        logger.info(f"WhatsAppChannel: sent alert to {recipient.address}")


def channels_from_env(timeout: float = 20.0) -> Dict[str, NotificationChannel]:
    """Every transport whose credentials are present, keyed by channel name."""
    channels: Dict[str, NotificationChannel] = {}
    for factory in (EmailChannel, SmsChannel, WhatsAppChannel):
        channel = factory.from_env(timeout=timeout)
        if channel is not None:
            channels[channel.name] = channel
    logger.info(f"channels_from_env: configured transports {sorted(channels) or 'none'}")
    return channels


def _post_json(http, url: str, payload: dict, headers: dict, timeout: float,
               channel: str, recipient: Recipient) -> None:
    try:
        resp = http.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise DeliveryFailure(channel, recipient.address, f"{type(exc).__name__}: {exc}") from exc
    if not 200 <= resp.status_code < 300:
        raise DeliveryFailure(channel, recipient.address, f"HTTP {resp.status_code}: {resp.text[:200]}")
