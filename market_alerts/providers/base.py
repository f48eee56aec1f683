"""Abstract base classes for data sources and delivery channels."""

from abc import ABC, abstractmethod
from typing import Optional

from market_alerts.models.datatypes import AlertMessage, FetchOutcome, Recipient, SessionContext


class SessionProvider(ABC):
    """Abstract owner of the authentication context for the market-data source."""

    @abstractmethod
    def ensure_valid_session(self) -> SessionContext:
        """
        Return a session presumed valid, acquiring a fresh one if needed.

        Returns:
            SessionContext: Cookies and headers to attach to data requests.

        Raises:
            AuthFailure: If no session could be established within the retry bound.
        """
        pass

    @abstractmethod
    def invalidate(self) -> None:
        """Mark the current session expired so the next call re-acquires it."""
        pass


class MarketDataProvider(ABC):
    """Abstract interface for sampling instrument quotes."""

    @abstractmethod
    def fetch_instruments(self, query: Optional[str] = None) -> FetchOutcome:
        """
        Fetch one snapshot of quotes for the instruments selected by query.

        Args:
            query (Optional[str]): Source-specific selector (e.g. an index key).

        Returns:
            FetchOutcome: Never raises for source failures; they are captured
                          in the outcome.
        """
        pass


class NotificationChannel(ABC):
    """Abstract transport that delivers a rendered alert to one recipient."""

    name: str = ""

    @abstractmethod
    def send(self, recipient: Recipient, message: AlertMessage) -> None:
        """
        Deliver the channel's variant of message to recipient.

        Args:
            recipient (Recipient): Target contact on this channel.
            message (AlertMessage): The rendered alert.

        Raises:
            DeliveryFailure: If the transport rejected or could not reach the recipient.
        """
        pass

    def body_for(self, message: AlertMessage) -> str:
        """The message variant this channel sends."""
        return message.text
