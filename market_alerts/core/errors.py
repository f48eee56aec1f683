"""Failure taxonomy for the monitoring cycle.

An empty payload is not represented here: a reachable source with no rows
is a successful fetch with zero samples.
"""


class MonitorError(Exception):
    """Base class for every failure raised inside a poll cycle."""


class AuthFailure(MonitorError):
    """The source session could not be established or was rejected twice."""


class TransientFetchError(MonitorError):
    """Network, timeout or malformed-response failure on the data call."""


class StorageFailure(MonitorError):
    """A poll record could not be written to the sample store."""


class DeliveryFailure(MonitorError):
    """A single recipient could not be reached on a single channel."""

    def __init__(self, channel: str, address: str, reason: str) -> None:
        super().__init__(f"{channel} delivery to {address} failed: {reason}")
        self.channel = channel
        self.address = address
        self.reason = reason
