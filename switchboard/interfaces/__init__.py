"""Chat surfaces."""

from switchboard.interfaces.base import Channel, ChannelNotAvailableError, DeliveryResult, Message, MessageType

__all__ = [
    "Channel",
    "ChannelNotAvailableError",
    "DeliveryResult",
    "Message",
    "MessageType",
]
