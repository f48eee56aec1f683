"""Alert rendering and per-recipient fan-out.

Each recipient is delivered to on its own task in a bounded thread pool. A
failure on one recipient is captured into that recipient's attempt and never
affects the others; nothing is retried within the cycle.
"""

import html
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from market_alerts.core.errors import DeliveryFailure
from market_alerts.core.logger import logger
from market_alerts.core.market_hours import to_local
from market_alerts.models.datatypes import (
    AlertMessage, Aggregation, NotificationAttempt, Recipient, Sample,
)
from market_alerts.providers.base import NotificationChannel

DEFAULT_TITLE = "NSE NIFTY 50"

# SMS bodies list at most this many symbols per side
_SHORT_SYMBOLS = 5


def render_alert(
    aggregation: Aggregation,
    generated_at: datetime,
    tz_name: str = "Asia/Kolkata",
    data_source: str = "NSE",
    title: str = DEFAULT_TITLE,
) -> AlertMessage:
    """
    Render one aggregation into every channel variant.

    Args:
        aggregation (Aggregation): Detector output; gainers and losers are
                                   listed in the order given.
        generated_at (datetime): Poll time, shown in the exchange timezone.
        tz_name (str): Exchange timezone for the footer.
        data_source (str): Source label for the footer.
        title (str): Index name used in the subject and header.

    Returns:
        AlertMessage: Subject plus text, HTML, short (SMS) and chat bodies.
    """
    local = to_local(generated_at, tz_name)
    stamp = f"{local.strftime('%d/%m/%Y, %I:%M:%S %p')} {local.strftime('%Z')}".strip()
    t = aggregation.threshold_pct
    gainers, losers = aggregation.gainers, aggregation.losers
    header = f"Total stocks monitored: {aggregation.total}"
    gain_title = f"Top Gainers (above +{t:g}%) - {len(gainers)} stocks"
    loss_title = f"Top Losers (below -{t:g}%) - {len(losers)} stocks"
    footer = [f"Alert generated at {stamp}", f"Data source: {data_source}"]

    subject = f"{title} LIVE Alert - {len(gainers)} Gainers, {len(losers)} Losers"

    # ── plain text ────────────────────────────────────────────────────────────
    text_lines = [f"{title} Market Alert", header, ""]
    for block_title, block in ((gain_title, gainers), (loss_title, losers)):
        if block:
            text_lines.append(f"{block_title}:")
            text_lines.extend(_line(s) for s in block)
            text_lines.append("")
    text_lines.extend(footer)

    # ── HTML ──────────────────────────────────────────────────────────────────
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f'<h2 style="text-align: center;">{html.escape(title)} Market Alert</h2>',
        f'<p style="color: #666; text-align: center; font-size: 14px;">{html.escape(header)}</p>',
    ]
    for block_title, block, colour in ((gain_title, gainers, "#28a745"), (loss_title, losers, "#dc3545")):
        if not block:
            continue
        parts.append(f'<h3 style="color: {colour}; margin-bottom: 10px;">{html.escape(block_title)}</h3>')
        parts.append("<ul>")
        parts.extend(f"<li>{html.escape(_line(s))}</li>" for s in block)
        parts.append("</ul>")
    parts.append(
        '<p style="color: #999; font-size: 12px; text-align: center;">'
        + "<br>".join(html.escape(f) for f in footer)
        + "</p>"
    )
    parts.append("</div>")

    # ── SMS ───────────────────────────────────────────────────────────────────
    short = f"{title}: {len(gainers)} up, {len(losers)} down (±{t:g}%)."
    if gainers:
        short += " Up: " + ", ".join(_compact(s) for s in gainers[:_SHORT_SYMBOLS])
        short += "." if len(gainers) <= _SHORT_SYMBOLS else " ..."
    if losers:
        short += " Down: " + ", ".join(_compact(s) for s in losers[:_SHORT_SYMBOLS])
        short += "." if len(losers) <= _SHORT_SYMBOLS else " ..."
    short += f" {local.strftime('%H:%M')} {local.strftime('%Z')}".rstrip()

    # ── chat ──────────────────────────────────────────────────────────────────
    chat_lines = [f"*{title} Market Alert*", header, ""]
    for block_title, block, arrow in ((gain_title, gainers, "▲"), (loss_title, losers, "▼")):
        if block:
            chat_lines.append(f"*{block_title}*")
            chat_lines.extend(f"- {arrow} {_line(s)}" for s in block)
            chat_lines.append("")
    chat_lines.extend(f"_{f}_" for f in footer)

    return AlertMessage(
        subject=subject,
        text="\n".join(text_lines),
        html="\n".join(parts),
        short=short,
        chat="\n".join(chat_lines),
    )


def _line(sample: Sample) -> str:
    return f"{sample.symbol}: {sample.p_change:+.2f}% (₹{sample.last_price:,.2f})"


def _compact(sample: Sample) -> str:
    return f"{sample.symbol} {sample.p_change:+.2f}%"


class NotificationDispatcher:
    """Fans a rendered alert out to recipients over their channels.

    Args:
        channels: Transport per channel name. Recipients on a channel missing
            from this map get a failed attempt.
        max_workers: Upper bound on concurrent sends.
        tz_name: Exchange timezone for rendering.
        data_source: Source label for rendering.
    """

    def __init__(
        self,
        channels: Dict[str, NotificationChannel],
        max_workers: int = 8,
        tz_name: str = "Asia/Kolkata",
        data_source: str = "NSE",
        title: str = DEFAULT_TITLE,
    ) -> None:
        self.channels = dict(channels)
        self.max_workers = max(1, int(max_workers))
        self.tz_name = tz_name
        self.data_source = data_source
        self.title = title

    @classmethod
    def from_settings(cls, settings, channels: Dict[str, NotificationChannel]) -> "NotificationDispatcher":
        return cls(
            channels=channels,
            max_workers=settings.max_workers,
            tz_name=settings.timezone,
            data_source=settings.data_source,
            title=f"{settings.data_source} {_index_title(settings.query_key)}",
        )

    def dispatch(
        self,
        aggregation: Aggregation,
        recipients: Sequence[Recipient],
        generated_at: datetime,
    ) -> List[NotificationAttempt]:
        """
        Deliver the rendered alert to every recipient independently.

        Returns:
            List[NotificationAttempt]: One attempt per recipient, in recipient
            order. Empty when there are no recipients.
        """
        if not recipients:
            logger.info("NotificationDispatcher: no recipients configured, nothing to send")
            return []

        message = render_alert(
            aggregation, generated_at,
            tz_name=self.tz_name, data_source=self.data_source, title=self.title,
        )
        workers = min(len(recipients), self.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") as pool:
            futures = [pool.submit(self._deliver, r, message) for r in recipients]
            attempts = [f.result() for f in futures]

        delivered = sum(1 for a in attempts if a.delivered)
        logger.info(
            f"NotificationDispatcher: delivered {delivered}/{len(attempts)} "
            f"('{message.subject}')"
        )
        return attempts

    def _deliver(self, recipient: Recipient, message: AlertMessage) -> NotificationAttempt:
        """Send to one recipient. Never raises."""
        channel = self.channels.get(recipient.channel)
        if channel is None:
            reason = f"no transport configured for channel '{recipient.channel}'"
            logger.error(f"NotificationDispatcher: {recipient.address}: {reason}")
            return NotificationAttempt(
                recipient=recipient, channel=recipient.channel,
                message=message.text, delivered=False, reason=reason,
            )

        body = channel.body_for(message)
        reason: Optional[str] = None
        try:
            channel.send(recipient, message)
        except DeliveryFailure as exc:
            reason = exc.reason
            logger.error(f"NotificationDispatcher: {exc}")
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.error(
                f"NotificationDispatcher: {recipient.channel} delivery to "
                f"{recipient.address} raised {reason}"
            )

        return NotificationAttempt(
            recipient=recipient, channel=recipient.channel,
            message=body, delivered=reason is None, reason=reason,
        )


def _index_title(query_key: str) -> str:
    """``NIFTY`` → ``NIFTY 50``; other keys are shown as given."""
    return "NIFTY 50" if query_key.upper() == "NIFTY" else query_key
