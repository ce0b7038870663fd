"""
Per-partner negotiation state machine.

`NegotiationEngine` drives one offer/answer exchange at a time on top of an
aiortc `RTCPeerConnection`. Every operation returns an `Outcome` describing
the resulting state and the relay messages the caller has to send; the
engine itself never talks to the relay or the UI.

Each negotiation gets a generation number. Async steps re-check it after
every await, so work belonging to a negotiation that was ended in the
meantime is dropped instead of leaking into the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from aiortc import RTCPeerConnection, RTCSessionDescription

from .candidates import CandidateQueue, from_rtc_candidate, is_end_of_candidates, to_rtc_candidate
from .errors import AlreadyActive, MediaUnavailable, PairchatError, StaleSignal, TransportFailure
from .media import LocalSource, MediaBridge
from .messages import SignalingMessage

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFERING = "offering"
    ANSWERING_PENDING = "answering-pending"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    ENDING = "ending"
    CLOSED = "closed"


class Role(str, Enum):
    OFFERER = "offerer"
    ANSWERER = "answerer"


@dataclass
class Outcome:
    """Result of one engine operation."""

    state: NegotiationState
    outbound: List[SignalingMessage] = field(default_factory=list)
    partner: Optional[str] = None
    applied: bool = True
    partner_lost: bool = False
    error: Optional[PairchatError] = None


@dataclass
class _Negotiation:
    generation: int
    partner: str
    role: Role
    candidates: CandidateQueue = field(default_factory=CandidateQueue)
    transport: Any = None
    remote_applied: bool = False
    answer_received: bool = False


class NegotiationEngine:
    """
    Drives a media negotiation with exactly one partner.

    Args:
        media: `MediaBridge` used to attach local tracks and render remote ones.
        source: Local media handle attached to every new transport.
        identity: Local peer identity, put in the ``from`` of outbound messages.
        transport_factory: Zero-arg callable returning a new peer connection.
        on_transport_failure: Called with the generation when the transport
            reports ``failed``/``closed`` on its own.
        on_local_candidate: Called with an outbound ``ice-candidate`` message
            for every locally gathered trickle candidate.
    """

    def __init__(self, media: MediaBridge, source: Optional[LocalSource] = None, *,
                 identity: Optional[str] = None,
                 transport_factory: Optional[Callable[[], Any]] = None,
                 on_transport_failure: Optional[Callable[[int], None]] = None,
                 on_local_candidate: Optional[Callable[[SignalingMessage], None]] = None):
        self.media = media
        self.source = source
        self.identity = identity
        self._transport_factory = transport_factory or RTCPeerConnection
        self.on_transport_failure = on_transport_failure
        self.on_local_candidate = on_local_candidate

        self._state = NegotiationState.IDLE
        self._generation = 0
        self._current: Optional[_Negotiation] = None
        self.history: List[NegotiationState] = [NegotiationState.IDLE]

    # ------------------------------------------------------------------ introspection

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def partner(self) -> Optional[str]:
        return self._current.partner if self._current else None

    @property
    def role(self) -> Optional[Role]:
        return self._current.role if self._current else None

    @property
    def generation(self) -> Optional[int]:
        """Generation of the live negotiation, None when idle."""
        return self._current.generation if self._current else None

    @property
    def transport(self):
        return self._current.transport if self._current else None

    @property
    def pending_candidates(self) -> int:
        return len(self._current.candidates) if self._current else 0

    @property
    def is_idle(self) -> bool:
        return self._state is NegotiationState.IDLE

    # ------------------------------------------------------------------ helpers

    def _enter(self, state: NegotiationState) -> None:
        logger.debug("%s -> %s", self._state.value, state.value)
        self._state = state
        self.history.append(state)

    def _open(self, partner: str, role: Role) -> _Negotiation:
        if self.source is None:
            raise MediaUnavailable("no local media source")
        self._generation += 1
        negotiation = _Negotiation(self._generation, partner, role)
        self._current = negotiation
        return negotiation

    def _check(self, negotiation: _Negotiation) -> None:
        if self._current is not negotiation:
            raise StaleSignal(f"negotiation #{negotiation.generation} with {negotiation.partner} was superseded")

    def _create_transport(self, negotiation: _Negotiation):
        pc = self._transport_factory()
        negotiation.transport = pc

        @pc.on("track")
        async def on_track(track):
            if self._current is negotiation:
                await self.media.set_render_sink(track)

        @pc.on("connectionstatechange")
        def on_connectionstatechange():
            state = pc.connectionState
            logger.debug("Transport #%d connectionState -> %s", negotiation.generation, state)
            if state in ("failed", "closed") and self._current is negotiation:
                logger.warning("Transport to %s %s", negotiation.partner, state)
                if self.on_transport_failure:
                    self.on_transport_failure(negotiation.generation)

        @pc.on("icecandidate")
        def on_icecandidate(candidate):
            if candidate is None or self._current is not negotiation or not self.on_local_candidate:
                return
            self.on_local_candidate(SignalingMessage.ice_candidate(
                negotiation.partner, from_rtc_candidate(candidate), sender=self.identity))

        self.media.attach(pc, self.source)
        return pc

    async def _apply_candidate(self, negotiation: _Negotiation, descriptor) -> bool:
        try:
            await negotiation.transport.addIceCandidate(to_rtc_candidate(descriptor))
        except Exception as e:
            logger.warning("Ignoring unusable ICE candidate from %s: %s", negotiation.partner, e)
            return False
        return True

    async def _flush(self, negotiation: _Negotiation) -> None:
        # candidates may arrive while earlier ones are being applied
        while True:
            batch = negotiation.candidates.flush()
            if not batch:
                break
            logger.debug("Applying %d buffered candidates", len(batch))
            for descriptor in batch:
                await self._apply_candidate(negotiation, descriptor)
                self._check(negotiation)
        negotiation.remote_applied = True

    def _stale(self, reason: str) -> Outcome:
        logger.info("Discarding stale signal: %s", reason)
        return Outcome(self._state, partner=self.partner, applied=False, error=StaleSignal(reason))

    async def _abort(self, negotiation: _Negotiation, exc: Exception) -> Outcome:
        logger.warning("Negotiation with %s failed: %s", negotiation.partner, exc)
        if self._current is not negotiation:
            return self._stale(str(exc))
        outcome = await self.end()
        outcome.applied = False
        outcome.partner_lost = True
        outcome.partner = negotiation.partner
        outcome.error = TransportFailure(str(exc))
        return outcome

    # ------------------------------------------------------------------ operations

    async def begin_as_offerer(self, partner: str) -> Outcome:
        if self._state is not NegotiationState.IDLE:
            raise AlreadyActive(partner)
        negotiation = self._open(partner, Role.OFFERER)
        self._enter(NegotiationState.OFFERING)

        try:
            pc = self._create_transport(negotiation)
            offer = await pc.createOffer()
            self._check(negotiation)
            await pc.setLocalDescription(offer)
            self._check(negotiation)
        except StaleSignal as e:
            return self._stale(str(e))
        except Exception as e:
            return await self._abort(negotiation, e)

        message = SignalingMessage.offer(partner, pc.localDescription.sdp, sender=self.identity)
        self._enter(NegotiationState.NEGOTIATING)
        logger.info("Offer sent to %s", partner)
        return Outcome(self._state, outbound=[message], partner=partner)

    async def begin_as_answerer(self, partner: str, remote_offer: str) -> Outcome:
        if self._state is not NegotiationState.IDLE:
            raise AlreadyActive(partner, reply=SignalingMessage.call_busy(partner, sender=self.identity))
        negotiation = self._open(partner, Role.ANSWERER)
        self._enter(NegotiationState.ANSWERING_PENDING)

        try:
            pc = self._create_transport(negotiation)
            await pc.setRemoteDescription(RTCSessionDescription(sdp=remote_offer, type="offer"))
            self._check(negotiation)
            await self._flush(negotiation)
            answer = await pc.createAnswer()
            self._check(negotiation)
            await pc.setLocalDescription(answer)
            self._check(negotiation)
        except StaleSignal as e:
            return self._stale(str(e))
        except Exception as e:
            return await self._abort(negotiation, e)

        message = SignalingMessage.answer(partner, pc.localDescription.sdp, sender=self.identity)
        self._enter(NegotiationState.CONNECTED)
        logger.info("Answer sent to %s", partner)
        return Outcome(self._state, outbound=[message], partner=partner)

    async def apply_remote_answer(self, remote_answer: str, sender: Optional[str] = None) -> Outcome:
        negotiation = self._current
        if (negotiation is None
                or self._state is not NegotiationState.NEGOTIATING
                or negotiation.role is not Role.OFFERER
                or negotiation.answer_received):
            return self._stale(f"answer from {sender} in state {self._state.value}")
        if sender is not None and sender != negotiation.partner:
            return self._stale(f"answer from {sender}, expecting {negotiation.partner}")

        negotiation.answer_received = True
        try:
            await negotiation.transport.setRemoteDescription(
                RTCSessionDescription(sdp=remote_answer, type="answer"))
            self._check(negotiation)
            await self._flush(negotiation)
        except StaleSignal as e:
            return self._stale(str(e))
        except Exception as e:
            return await self._abort(negotiation, e)

        self._enter(NegotiationState.CONNECTED)
        logger.info("Connected to %s", negotiation.partner)
        return Outcome(self._state, partner=negotiation.partner)

    async def add_remote_candidate(self, candidate, sender: Optional[str] = None) -> Outcome:
        negotiation = self._current
        if negotiation is None or self._state in (NegotiationState.ENDING, NegotiationState.CLOSED):
            return self._stale(f"candidate from {sender} with no negotiation")
        if sender is not None and sender != negotiation.partner:
            return self._stale(f"candidate from {sender}, partner is {negotiation.partner}")
        if is_end_of_candidates(candidate):
            logger.debug("End of candidates from %s", negotiation.partner)
            return Outcome(self._state, partner=negotiation.partner)

        if negotiation.remote_applied:
            applied = await self._apply_candidate(negotiation, candidate)
            return Outcome(self._state, partner=negotiation.partner, applied=applied)
        negotiation.candidates.enqueue(candidate)
        return Outcome(self._state, partner=negotiation.partner)

    async def end(self) -> Outcome:
        """Tear the negotiation down. Safe to call repeatedly and from any state."""
        if self._state in (NegotiationState.IDLE, NegotiationState.ENDING):
            return Outcome(self._state, applied=False)

        negotiation, self._current = self._current, None
        self._enter(NegotiationState.ENDING)
        partner = negotiation.partner if negotiation else None

        if negotiation is not None:
            negotiation.candidates.discard()
            if negotiation.transport is not None:
                self.media.detach(negotiation.transport)
                try:
                    await negotiation.transport.close()
                except Exception:
                    logger.exception("Error closing transport to %s", partner)
        await self.media.clear_render_sinks()

        self._enter(NegotiationState.CLOSED)
        self._enter(NegotiationState.IDLE)
        logger.info("Session with %s ended", partner)
        return Outcome(self._state, partner=partner)

    async def fail(self, generation: int) -> Outcome:
        """Transport-level failure of negotiation ``generation``: end it and report the partner lost."""
        negotiation = self._current
        if negotiation is None or negotiation.generation != generation:
            return self._stale(f"failure of superseded negotiation #{generation}")
        outcome = await self.end()
        outcome.partner_lost = True
        outcome.error = TransportFailure(f"transport to {negotiation.partner} failed")
        return outcome


__all__ = ["NegotiationEngine", "NegotiationState", "Outcome", "Role"]
