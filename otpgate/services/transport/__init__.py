"""Messaging transport contract and adapters."""

from .base import MessagingTransport, TransportEvent
from .bridge import BridgeTransport, parse_event

__all__ = ["MessagingTransport", "TransportEvent", "BridgeTransport", "parse_event"]
