"""Tests covering remote candidate buffering and conversion."""

import pytest

from pairchat.candidates import (
    CandidateQueue,
    from_rtc_candidate,
    is_end_of_candidates,
    to_rtc_candidate,
)

from .conftest import candidate


def test_flush_returns_arrival_order_exactly_once() -> None:
    queue = CandidateQueue()
    for n in (3, 1, 2):
        queue.enqueue(candidate(n))

    first = queue.flush()
    second = queue.flush()

    assert [c["candidate"] for c in first] == [candidate(n)["candidate"] for n in (3, 1, 2)]
    assert second == []
    assert len(queue) == 0


def test_discarded_queue_stays_empty() -> None:
    queue = CandidateQueue()
    queue.enqueue(candidate(1))

    queue.discard()
    queue.enqueue(candidate(2))

    assert queue.discarded
    assert queue.flush() == []


def test_to_rtc_candidate_strips_prefix_and_keeps_mid() -> None:
    rtc = to_rtc_candidate(candidate(4))

    assert rtc.ip == "192.168.1.4"
    assert rtc.port == 50004
    assert rtc.type == "host"
    assert rtc.sdpMid == "0"
    assert rtc.sdpMLineIndex == 0


def test_to_rtc_candidate_defaults_mline_index() -> None:
    rtc = to_rtc_candidate({"candidate": candidate(1)["candidate"]})

    assert rtc.sdpMLineIndex == 0


def test_to_rtc_candidate_rejects_garbage() -> None:
    with pytest.raises(Exception):
        to_rtc_candidate({"candidate": "candidate:garbage"})


def test_descriptor_survives_conversion_to_the_wire() -> None:
    descriptor = from_rtc_candidate(to_rtc_candidate(candidate(5)))

    assert descriptor["candidate"].startswith("candidate:5 1 udp")
    assert descriptor["sdpMid"] == "0"


@pytest.mark.parametrize("descriptor", [None, {}, {"candidate": ""}])
def test_end_of_candidates(descriptor) -> None:
    assert is_end_of_candidates(descriptor)
    assert not is_end_of_candidates(candidate(1))
