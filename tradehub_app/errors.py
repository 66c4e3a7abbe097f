"""Exceptions raised by the link and the trade sequence."""


class TradeHubError(Exception):
    """Base class for trade hub errors."""


class LinkError(TradeHubError):
    """The device connection failed or was lost; it must be reconnected."""


class SequenceTimeout(TradeHubError):
    """A trade step did not reach its expected device state in time."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TradeCancelled(TradeHubError):
    """The cancellation signal of an execution was observed."""
