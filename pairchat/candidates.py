"""
Remote ICE candidate buffering.

Candidates are kept as the opaque descriptors received from the relay and
only turned into aiortc objects when they are applied.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from aiortc import RTCIceCandidate
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

CandidateDescriptor = Dict[str, Any]


class CandidateQueue:
    """
    Arrival-ordered buffer of remote candidates for one negotiation.

    `flush` hands back everything buffered so far and empties the queue;
    `discard` drops the contents for good when the negotiation ends.
    """

    def __init__(self):
        self._items: List[CandidateDescriptor] = []
        self._discarded = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def discarded(self) -> bool:
        return self._discarded

    def enqueue(self, candidate: CandidateDescriptor) -> None:
        if self._discarded:
            return
        self._items.append(candidate)

    def flush(self) -> List[CandidateDescriptor]:
        items, self._items = self._items, []
        return items

    def discard(self) -> None:
        self._items = []
        self._discarded = True


def is_end_of_candidates(descriptor: Optional[CandidateDescriptor]) -> bool:
    return not descriptor or not descriptor.get("candidate")


def to_rtc_candidate(descriptor: CandidateDescriptor) -> RTCIceCandidate:
    """
    Build an `RTCIceCandidate` from the browser-shaped descriptor.

    Raises ValueError (or whatever the SDP parser raises) on malformed input.
    """
    line = descriptor["candidate"]
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = descriptor.get("sdpMid")
    candidate.sdpMLineIndex = descriptor.get("sdpMLineIndex")
    if candidate.sdpMid is None and candidate.sdpMLineIndex is None:
        candidate.sdpMLineIndex = 0
    return candidate


def from_rtc_candidate(candidate: RTCIceCandidate) -> CandidateDescriptor:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


__all__ = [
    "CandidateDescriptor",
    "CandidateQueue",
    "from_rtc_candidate",
    "is_end_of_candidates",
    "to_rtc_candidate",
]
