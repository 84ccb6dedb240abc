"""
Base classes for chat surfaces.

A channel turns platform events into ``Message`` objects for the query
router and delivers answers back to the platform.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MessageType(Enum):
    """Kinds of incoming messages."""
    TEXT = "text"
    POST = "post"
    CARD_ACTION = "card_action"


@dataclass
class Message:
    """Channel-agnostic incoming or outgoing message."""
    content: str
    type: MessageType = MessageType.TEXT
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    root_id: Optional[str] = None
    sender_id: Optional[str] = None
    channel: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of attempting to deliver a message."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class Channel(ABC):
    """
    Abstract base class for chat surfaces.

    Subclasses deliver messages and report whether they are configured;
    the base class tracks whether the channel is running.
    """

    def __init__(self, channel_id: str, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the channel.

        Args:
            channel_id: Unique identifier for this channel instance
            config: Channel-specific configuration
        """
        self.channel_id = channel_id
        self.config = config or {}
        self._is_running = False
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def send(self, message: Message) -> DeliveryResult:
        """
        Send a message through this channel.

        Args:
            message: Message to send; ``chat_id`` or ``message_id`` says where

        Returns:
            DeliveryResult indicating success/failure
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True if the channel is configured and can be used."""
        pass

    async def start(self):
        if not self.is_available():
            raise ChannelNotAvailableError(f"Channel {self.channel_id} is not configured")
        self._is_running = True
        self.logger.info(f"Channel {self.channel_id} started")

    async def stop(self):
        self._is_running = False
        self.logger.info(f"Channel {self.channel_id} stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def __repr__(self):
        return f"<{self.__class__.__name__} id={self.channel_id} running={self._is_running}>"


class ChannelError(Exception):
    """Base exception for channel-related errors."""
    pass


class ChannelNotAvailableError(ChannelError):
    """Raised when trying to use a channel that is not available."""
    pass
