"""Exceptions raised by the sampling pipeline."""
from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors raised by adsbridge."""


class InvalidChannelError(BridgeError, ValueError):
    """The ADC has no single-ended input for the requested channel."""

    def __init__(self, channel: int):
        super().__init__(f"invalid channel {channel}")
        self.channel = channel


class BusError(BridgeError, OSError):
    """An I2C transaction failed; the current sampling tick is discarded."""


class PublishError(BridgeError):
    """A sink could not deliver a snapshot."""
