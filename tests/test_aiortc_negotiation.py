"""Two engines negotiating over real aiortc peer connections, no network relay."""

from __future__ import annotations

import pytest
from aiortc import RTCConfiguration, RTCPeerConnection

from pairchat.engine import NegotiationEngine, NegotiationState
from pairchat.media import MediaBridge


def local_only():
    return RTCPeerConnection(RTCConfiguration(iceServers=[]))


def make_engine(identity):
    media = MediaBridge()
    return NegotiationEngine(media, media.acquire_local_source(), identity=identity,
                             transport_factory=local_only)


@pytest.mark.asyncio
async def test_offer_answer_roundtrip_with_aiortc() -> None:
    a, b = make_engine("A"), make_engine("B")
    try:
        offer = (await a.begin_as_offerer("B")).outbound[0]
        assert "m=video" in offer.sdp and "m=audio" in offer.sdp

        answered = await b.begin_as_answerer("A", offer.sdp)
        answer = answered.outbound[0]
        assert answered.state is NegotiationState.CONNECTED

        connected = await a.apply_remote_answer(answer.sdp, sender="B")
        assert connected.applied
        assert a.state is NegotiationState.CONNECTED
        assert a.transport.remoteDescription.type == "answer"
    finally:
        await a.end()
        await b.end()

    assert a.state is NegotiationState.IDLE and b.state is NegotiationState.IDLE
    assert not a.source.stopped


@pytest.mark.asyncio
async def test_second_session_reuses_the_same_source() -> None:
    a, b = make_engine("A"), make_engine("B")
    source = a.source
    for _ in range(2):
        offer = (await a.begin_as_offerer("B")).outbound[0]
        answer = (await b.begin_as_answerer("A", offer.sdp)).outbound[0]
        await a.apply_remote_answer(answer.sdp, sender="B")
        await a.end()
        await b.end()

    assert a.source is source
    assert all(t.readyState == "live" for t in source.tracks)
    a.media.stop(a.source)
    b.media.stop(b.source)
