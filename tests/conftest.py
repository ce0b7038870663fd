"""Deterministic stand-ins for the peer transport, the relay and local media."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import List, Optional

import pytest
from aiortc import RTCSessionDescription

from pairchat.coordinator import PairingMode, SessionCoordinator
from pairchat.engine import NegotiationEngine
from pairchat.errors import MediaUnavailable
from pairchat.media import LocalSource
from pairchat.messages import MessageKind, SignalingMessage


def candidate(n: int) -> dict:
    return {
        "candidate": f"candidate:{n} 1 udp 2130706431 192.168.1.{n} 5000{n} typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }


class FakeTransport:
    """Just enough of `RTCPeerConnection` for the engine."""

    def __init__(self, remote_gate: Optional[asyncio.Event] = None):
        self.handlers = defaultdict(list)
        self.tracks = []
        self.applied_candidates = []
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.closed = False
        self.remote_gate = remote_gate
        self.close_gate: Optional[asyncio.Event] = None

    def on(self, event, f=None):
        def register(fn):
            self.handlers[event].append(fn)
            return fn
        return register(f) if f else register

    def emit(self, event, *args):
        for fn in self.handlers[event]:
            result = fn(*args)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp="offer-sdp", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="answer-sdp", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.applied_candidates.append(candidate)

    async def close(self):
        if self.closed:
            return
        if self.close_gate is not None:
            await self.close_gate.wait()
        self.closed = True
        self.connectionState = "closed"
        self.emit("connectionstatechange")

    def fail(self):
        self.connectionState = "failed"
        self.emit("connectionstatechange")

    @property
    def applied_ips(self) -> List[str]:
        return [c.ip for c in self.applied_candidates]


class FakeMedia:
    def __init__(self):
        self.attached = {}
        self.detached = []
        self.sinks = []
        self.cleared = 0
        self.stopped = []
        self.fail_acquire = False

    def acquire_local_source(self):
        if self.fail_acquire:
            raise MediaUnavailable("no camera")
        return LocalSource()

    def attach(self, transport, source):
        self.attached[transport] = source

    def detach(self, transport):
        self.detached.append(transport)

    async def set_render_sink(self, track):
        self.sinks.append(track)

    async def clear_render_sinks(self):
        self.cleared += 1

    def stop(self, source):
        if source is not None:
            self.stopped.append(source)
            source.stop()


class FakeChannel:
    def __init__(self):
        self.sent: List[SignalingMessage] = []

    async def send(self, message):
        self.sent.append(message)

    def kinds(self) -> List[MessageKind]:
        return [m.kind for m in self.sent]

    def last(self, kind: MessageKind) -> Optional[SignalingMessage]:
        for message in reversed(self.sent):
            if message.kind is kind:
                return message
        return None


class TransportFactory:
    def __init__(self):
        self.created: List[FakeTransport] = []
        self.gate: Optional[asyncio.Event] = None

    def __call__(self):
        transport = FakeTransport(remote_gate=self.gate)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class Relay:
    """
    In-memory relay between coordinators: stamps ``from`` and forwards in FIFO order.
    """

    def __init__(self):
        self.coordinators = {}
        self.queue = []
        self.log = []

    def channel(self, name: str) -> "RelayChannel":
        return RelayChannel(self, name)

    def submit(self, sender: str, message: SignalingMessage):
        self.log.append((sender, message))
        kind = message.kind
        if kind in (MessageKind.END_CALL, MessageKind.NEXT):
            target = message.target
            forwarded = SignalingMessage(kind, sender=sender, target=target)
        elif kind in (MessageKind.FIND_PARTNER, MessageKind.JOIN):
            return
        else:
            target = message.target
            forwarded = SignalingMessage.from_dict({**message.to_dict(), "from": sender})
        if target in self.coordinators:
            self.queue.append((target, forwarded))

    async def pump(self):
        while self.queue:
            target, message = self.queue.pop(0)
            await self.coordinators[target].dispatch(message)

    def sent_by(self, name: str) -> List[MessageKind]:
        return [m.kind for sender, m in self.log if sender == name]


class RelayChannel:
    def __init__(self, relay: Relay, name: str):
        self.relay = relay
        self.name = name

    async def send(self, message):
        self.relay.submit(self.name, message)


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def transports():
    return TransportFactory()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def engine(media, transports):
    return NegotiationEngine(media, LocalSource(), identity="A", transport_factory=transports)


class Posts(list):
    def __call__(self, kind, data=""):
        self.append((kind, data))

    def __bool__(self):
        return True

    def of(self, kind):
        return [data for k, data in self if k == kind]


@pytest.fixture
def posts():
    return Posts()


@pytest.fixture
def make_coordinator(channel, media, transports, posts):
    def make(mode=PairingMode.AUTO_FIND, identity="A", timeout=None):
        return SessionCoordinator(
            channel, media,
            mode=mode,
            identity=identity,
            transport_factory=transports,
            negotiation_timeout=timeout,
            post=posts,
        )
    return make
