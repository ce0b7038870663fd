"""
Session coordination.

`SessionCoordinator` is the single owner of "who is the current partner".
It turns relay messages and user intents into `NegotiationEngine` calls,
sends whatever the engine asks to send, keeps the chat transcript and
reports progress through a ``post(kind, data)`` callback.

Two pairing policies are supported:

* ``auto-find``: the relay pairs random strangers; whenever a session ends
  the coordinator immediately asks for a new partner.
* ``directory``: users join under a display name and call each other by
  name; a finished session returns to an idle, callable state.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .chatlog import ChatLine, ChatLog
from .engine import NegotiationEngine, NegotiationState, Outcome
from .errors import AlreadyActive, MediaUnavailable
from .media import MediaBridge
from .messages import MessageKind, SignalingMessage
from .signaling import SignalingChannel

logger = logging.getLogger(__name__)


class PairingMode(str, Enum):
    AUTO_FIND = "auto-find"
    DIRECTORY = "directory"


def _noop_post(kind: str, data: Any = "") -> None:
    pass


class SessionCoordinator:
    def __init__(self, channel: SignalingChannel, media: MediaBridge, *,
                 mode: PairingMode = PairingMode.AUTO_FIND,
                 identity: Optional[str] = None,
                 transport_factory: Optional[Callable[[], Any]] = None,
                 negotiation_timeout: Optional[float] = None,
                 post: Optional[Callable[[str, Any], None]] = None):
        self.channel = channel
        self.media = media
        self.mode = PairingMode(mode)
        self.identity = identity
        self.post = post or _noop_post
        self.negotiation_timeout = negotiation_timeout

        self.chat = ChatLog()
        self.source = None
        self.directory: Dict[str, Any] = {}
        self.expected_partner: Optional[str] = None
        self.searching = False
        self.disconnected = False

        self.engine = NegotiationEngine(
            media,
            identity=identity,
            transport_factory=transport_factory,
            on_transport_failure=self._on_transport_failure,
            on_local_candidate=self._on_local_candidate,
        )
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks = set()

    @property
    def partner(self) -> Optional[str]:
        return self.engine.partner

    def snapshot(self) -> dict:
        return {
            "mode": self.mode.value,
            "identity": self.identity,
            "state": self.engine.state.value,
            "partner": self.partner,
            "searching": self.searching,
            "disconnected": self.disconnected,
            "chat": [line.to_dict() for line in self.chat],
            "directory": sorted(self.directory),
        }

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> bool:
        """Acquire local media and announce ourselves to the relay."""
        try:
            self.source = self.media.acquire_local_source()
        except MediaUnavailable as e:
            logger.warning("Local media unavailable: %s", e)
            self.post("status", f"Camera/microphone unavailable: {e}")
            return False
        self.engine.source = self.source

        if self.mode is PairingMode.DIRECTORY:
            await self._send(SignalingMessage(MessageKind.JOIN, username=self.identity))
            self.post("status", f"Joined as {self.identity}")
        else:
            await self._find_partner()
        return True

    async def channel_closed(self) -> None:
        """The relay went away. Terminal until the client reconnects."""
        if self.disconnected:
            return
        self.disconnected = True
        self.searching = False
        self._cancel_timer()
        await self.engine.end()
        self._clear_chat()
        self.post("partner", None)
        self.post("disconnected", "Disconnected from relay")

    async def shutdown(self) -> None:
        await self.channel_closed()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.media.stop(self.source)
        self.source = self.engine.source = None

    # ------------------------------------------------------------------ relay events

    async def dispatch(self, message: SignalingMessage) -> Optional[Outcome]:
        """Handle one inbound relay message."""
        kind = message.kind

        if kind is MessageKind.PAIR_ASSIGNED:
            self.searching = False
            return await self._start_offer(message.target, assigned=True)

        elif kind is MessageKind.WAITING_OFFER:
            self.searching = False
            self.expected_partner = message.sender
            self.post("status", "Partner found, waiting for their offer…")
            self._arm_timer(None)
            return None

        elif kind is MessageKind.OFFER:
            return await self._accept_offer(message)

        elif kind is MessageKind.ANSWER:
            outcome = await self.engine.apply_remote_answer(message.sdp, sender=message.sender)
            if outcome.applied:
                self._cancel_timer()
                self.post("status", f"Connected to {outcome.partner}")
            return await self._apply(outcome)

        elif kind is MessageKind.ICE_CANDIDATE:
            outcome = await self.engine.add_remote_candidate(message.candidate, sender=message.sender)
            return await self._apply(outcome)

        elif kind is MessageKind.PARTNER_LEFT:
            return await self._partner_left(message.target)

        elif kind in (MessageKind.END_CALL, MessageKind.NEXT):
            peer = message.target
            if self.partner is None or (peer is not None and peer not in (self.partner, self.identity)):
                logger.info("Ignoring %s for %s, partner is %s", kind.value, peer, self.partner)
                return None
            if message.sender is not None and message.sender != self.partner:
                logger.info("Discarding stale %s from %s, partner is %s", kind.value, message.sender, self.partner)
                return None
            outcome = await self.engine.end()
            if outcome.applied:
                await self._after_teardown("Partner ended the call")
            return outcome

        elif kind is MessageKind.CALL_BUSY:
            who = message.sender or message.target
            logger.info("%s is busy", who)
            self.post("notice", f"{who} is busy")
            return None

        elif kind is MessageKind.CHAT:
            self._receive_chat(message)
            return None

        elif kind is MessageKind.PRESENCE_LIST:
            self.directory = {name: meta for name, meta in message.users.items() if name != self.identity}
            self.post("presence", sorted(self.directory))
            return None

        logger.debug("Ignoring relay message %s", kind.value)
        return None

    # ------------------------------------------------------------------ user intents

    async def call(self, name: str) -> Optional[Outcome]:
        """Directory mode: call a user by display name."""
        name = (name or "").strip()
        if not name:
            return None
        if name == self.identity:
            self.post("notice", "You cannot call yourself")
            return None
        return await self._start_offer(name)

    async def request_next(self) -> Optional[Outcome]:
        """Leave the current partner (telling them first) and, in auto-find mode, look for another."""
        partner = self.partner
        if partner is None:
            if (self.mode is PairingMode.AUTO_FIND and self.engine.is_idle
                    and not self.searching and not self.disconnected):
                await self._find_partner()
            return None
        await self._send(SignalingMessage.end_call(partner, sender=self.identity))
        outcome = await self.engine.end()
        if outcome.applied:
            await self._after_teardown("You left the call")
        return outcome

    async def hang_up(self) -> Optional[Outcome]:
        """Tell the partner we are leaving and tear down, without looking for another one."""
        partner = self.partner
        if partner is None:
            return None
        await self._send(SignalingMessage.end_call(partner, sender=self.identity))
        self._cancel_timer()
        outcome = await self.engine.end()
        self._clear_chat()
        self.post("partner", None)
        return outcome

    async def send_chat(self, text: str) -> Optional[ChatLine]:
        text = (text or "").strip()
        partner = self.partner
        if not text or partner is None:
            return None
        line = self.chat.append(True, text)
        await self._send(SignalingMessage.chat(partner, text, sender=self.identity))
        self.post("chat", line.to_dict())
        return line

    # ------------------------------------------------------------------ internals

    async def _send(self, message: SignalingMessage) -> None:
        try:
            await self.channel.send(message)
        except Exception as e:
            # relay loss is reported by the receive loop
            logger.warning("Could not send %s: %s", message.kind.value, e)

    async def _apply(self, outcome: Outcome) -> Outcome:
        for message in outcome.outbound:
            await self._send(message)
        if outcome.partner_lost:
            await self._after_teardown(f"Lost connection to {outcome.partner}")
        return outcome

    async def _start_offer(self, partner: Optional[str], assigned: bool = False) -> Optional[Outcome]:
        if not partner:
            logger.warning("Pairing without a partner identity, ignoring")
            return None
        try:
            outcome = await self.engine.begin_as_offerer(partner)
        except AlreadyActive:
            logger.info("Busy with %s, cannot offer to %s", self.partner, partner)
            if assigned:
                await self._send(SignalingMessage.call_busy(partner, sender=self.identity))
            else:
                self.post("notice", f"Already in a call with {self.partner}")
            return None
        except MediaUnavailable as e:
            self.post("status", f"Camera/microphone unavailable: {e}")
            return None

        if outcome.applied:
            self.expected_partner = None
            self.post("partner", partner)
            self.post("status", f"Calling {partner}…")
            if outcome.state is NegotiationState.NEGOTIATING:
                self._arm_timer(self.engine.generation)
        return await self._apply(outcome)

    async def _accept_offer(self, message: SignalingMessage) -> Optional[Outcome]:
        sender = message.sender or self.expected_partner
        if sender is None:
            logger.warning("Offer without sender and no announced partner, dropping")
            return None
        try:
            outcome = await self.engine.begin_as_answerer(sender, message.sdp)
        except AlreadyActive as e:
            logger.info("Busy with %s, rejecting offer from %s", self.partner, sender)
            await self._send(e.reply)
            return None
        except MediaUnavailable as e:
            self.post("status", f"Camera/microphone unavailable: {e}")
            await self._send(SignalingMessage.call_busy(sender, sender=self.identity))
            return None

        if outcome.applied:
            self._cancel_timer()
            self.expected_partner = None
            self.searching = False
            self.post("partner", sender)
            self.post("status", f"Connected to {sender}")
        return await self._apply(outcome)

    async def _partner_left(self, user: Optional[str]) -> Optional[Outcome]:
        partner = self.partner
        if partner is None or (user is not None and user != partner):
            if user is not None and user == self.expected_partner:
                self.expected_partner = None
                self._cancel_timer()
                if self.mode is PairingMode.AUTO_FIND and not self.disconnected:
                    await self._find_partner()
            else:
                logger.info("Ignoring partner-left for %s, partner is %s", user, partner)
            return None
        outcome = await self.engine.end()
        if outcome.applied:
            await self._after_teardown("Partner disconnected")
        return outcome

    def _receive_chat(self, message: SignalingMessage) -> None:
        partner = self.partner
        if partner is None:
            logger.info("Dropping chat with no active partner")
            return
        if message.sender is not None and message.sender == self.identity:
            return
        if message.sender is not None and message.sender != partner:
            logger.info("Dropping chat from %s, partner is %s", message.sender, partner)
            return
        line = self.chat.append(False, message.text or "")
        self.post("chat", line.to_dict())

    async def _find_partner(self) -> None:
        self.searching = True
        self.post("status", "Looking for partner…")
        await self._send(SignalingMessage(MessageKind.FIND_PARTNER))

    async def _after_teardown(self, reason: str) -> None:
        self._cancel_timer()
        self._clear_chat()
        self.post("partner", None)
        self.post("status", reason)
        if self.mode is PairingMode.AUTO_FIND and not self.disconnected:
            await self._find_partner()

    def _clear_chat(self) -> None:
        if len(self.chat):
            self.chat.clear()
        self.post("chat-cleared", None)

    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    # timers ------------------------------------------------------------------

    def _arm_timer(self, generation: Optional[int]) -> None:
        self._cancel_timer()
        if not self.negotiation_timeout:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self.negotiation_timeout, self._on_timeout, generation, self.expected_partner)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self, generation: Optional[int], expected: Optional[str]) -> None:
        self._timer = None
        self._spawn(self._timed_out(generation, expected))

    async def _timed_out(self, generation: Optional[int], expected: Optional[str]) -> None:
        if generation is None:
            # announced partner never sent an offer
            if self.engine.is_idle and expected is not None and self.expected_partner == expected:
                logger.warning("No offer from %s, giving up", expected)
                self.expected_partner = None
                self.post("notice", f"{expected} did not respond")
                if self.mode is PairingMode.AUTO_FIND and not self.disconnected:
                    await self._find_partner()
            return
        if self.engine.generation != generation or self.engine.state is NegotiationState.CONNECTED:
            return
        logger.warning("Negotiation with %s timed out", self.partner)
        await self._apply(await self.engine.fail(generation))

    # transport callbacks -----------------------------------------------------

    def _on_transport_failure(self, generation: int) -> None:
        self._spawn(self._transport_failed(generation))

    async def _transport_failed(self, generation: int) -> None:
        await self._apply(await self.engine.fail(generation))

    def _on_local_candidate(self, message: SignalingMessage) -> None:
        self._spawn(self._send(message))


__all__ = ["PairingMode", "SessionCoordinator"]
