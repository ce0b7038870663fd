"""
Transport-agnostic relay channel.

The core only needs ``send`` and an async iterator of decoded messages.
`WebSocketSignalingChannel` provides both on top of a `websockets`
client connection.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from websockets.exceptions import ConnectionClosedError

from .errors import ProtocolError
from .messages import SignalingMessage

logger = logging.getLogger(__name__)


class SignalingChannel:
    """Bidirectional channel of typed relay messages."""

    async def send(self, message: SignalingMessage) -> None:
        raise NotImplementedError

    def __aiter__(self) -> AsyncIterator[SignalingMessage]:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class WebSocketSignalingChannel(SignalingChannel):
    """
    Relay channel over an open `websockets` connection.

    Frames that fail to decode are logged and skipped; the iterator ends
    when the relay closes the connection.
    """

    def __init__(self, ws):
        self.ws = ws

    async def send(self, message: SignalingMessage) -> None:
        logger.debug("-> %s", message.kind.value)
        await self.ws.send(message.to_json())

    async def __aiter__(self) -> AsyncIterator[SignalingMessage]:
        try:
            async for raw in self.ws:
                try:
                    message = SignalingMessage.from_json(raw)
                except ProtocolError as e:
                    logger.warning("Dropping relay frame: %s", e)
                    continue
                logger.debug("<- %s", message.kind.value)
                yield message
        except ConnectionClosedError as e:
            logger.warning("Relay connection lost: %s", e)

    async def close(self) -> None:
        await self.ws.close()


__all__ = ["SignalingChannel", "WebSocketSignalingChannel"]
