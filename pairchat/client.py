"""
Relay client running on its own asyncio loop.

`PeerClient` connects to the relay with `websockets`, owns the
`SessionCoordinator` for that connection and feeds it relay frames one at
a time. Its public methods are safe to call from any thread (Flask
request handlers, a GUI main loop); UI updates go out through the
``post(kind, data)`` callback.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException
from aiortc import RTCPeerConnection

from .config import ClientConfig
from .coordinator import PairingMode, SessionCoordinator
from .media import MediaBridge
from .signaling import WebSocketSignalingChannel

logger = logging.getLogger(__name__)


class PeerClient:
    def __init__(self, post: Callable[[str, Any], None], config: Optional[ClientConfig] = None):
        self.post = post
        self.config = config or ClientConfig()
        self.username = self.config.username or "User-" + secrets.token_hex(2)
        self.coordinator: Optional[SessionCoordinator] = None
        self.ws = None
        self.closed = False

        self.loop = asyncio.new_event_loop()
        threading.Thread(target=self.loop.run_forever, daemon=True).start()
        self._main = asyncio.run_coroutine_threadsafe(self._run(), self.loop)

    # ------------------------------------------------------------------ user intents

    def call(self, name: str):
        return self._submit(lambda c: c.call(name))

    def next(self):
        return self._submit(lambda c: c.request_next())

    def send_message(self, txt: str):
        if not txt:
            return None
        return self._submit(lambda c: c.send_chat(txt))

    def disconnect(self):
        async def _disc():
            if self.closed:
                return
            self.closed = True
            if self.coordinator:
                await self.coordinator.hang_up()
            if self.ws:
                await self.ws.close()
        return asyncio.run_coroutine_threadsafe(_disc(), self.loop)

    def snapshot(self, timeout: float = 2.0) -> dict:
        async def _snap():
            if self.coordinator is None:
                return {"state": "connecting", "identity": self.username}
            return self.coordinator.snapshot()
        return asyncio.run_coroutine_threadsafe(_snap(), self.loop).result(timeout)

    # ------------------------------------------------------------------ internals

    def _post(self, kind: str, data: Any = "") -> None:
        try:
            self.post(kind, data)
        except Exception:
            logger.exception("UI post of %s failed", kind)

    def _submit(self, action):
        async def _go():
            if self.coordinator is None or self.closed:
                self._post("status", "Not connected to the relay")
                return None
            try:
                return await action(self.coordinator)
            except Exception:
                logger.exception("User action failed")
                self._post("status", "Action failed, see log")
                return None
        return asyncio.run_coroutine_threadsafe(_go(), self.loop)

    def _transport_factory(self):
        return RTCPeerConnection(self.config.rtc_configuration())

    async def _run(self):
        url = self.config.signal_url
        self._post("status", f"Connecting to signalling server – {url}…")
        try:
            async with websockets.connect(url) as ws:
                self.ws = ws
                channel = WebSocketSignalingChannel(ws)
                self.coordinator = SessionCoordinator(
                    channel,
                    MediaBridge(self.config),
                    mode=PairingMode(self.config.mode),
                    identity=self.username,
                    transport_factory=self._transport_factory,
                    negotiation_timeout=self.config.negotiation_timeout,
                    post=self._post,
                )
                await self.coordinator.start()

                async for message in channel:
                    try:
                        await self.coordinator.dispatch(message)
                    except Exception:
                        logger.exception("Error handling relay message %s", message.kind.value)
        except (OSError, WebSocketException) as e:
            logger.warning("Signalling error: %s", e)
            self._post("status", f"Signalling error: {e}")
        finally:
            if self.coordinator is not None:
                await self.coordinator.shutdown()
            else:
                self._post("disconnected", "Signalling connection closed")
            self.ws = None
            logger.info("Relay connection for %s closed", self.username)


__all__ = ["PeerClient"]
