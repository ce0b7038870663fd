"""
Relay message contract.

Every frame on the relay is one JSON object discriminated by ``"type"``.
`SignalingMessage` is the in-process form; `to_json` / `from_json` convert
between the two. Peer identities are opaque strings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import ProtocolError


class MessageKind(str, Enum):
    PAIR_ASSIGNED = "pair-assigned"
    WAITING_OFFER = "waiting-offer"
    FIND_PARTNER = "find-partner"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    PARTNER_LEFT = "partner-left"
    CALL_BUSY = "call-busy"
    END_CALL = "end-call"
    NEXT = "next"
    CHAT = "chat"
    JOIN = "join"
    PRESENCE_LIST = "presence-list"


# Kinds whose peer field is not called "to"/"from" on the wire.
_PEER_KEYS = {
    MessageKind.END_CALL: "peer",
    MessageKind.NEXT: "peer",
    MessageKind.PARTNER_LEFT: "user",
}


@dataclass
class SignalingMessage:
    """
    One relay message.

    ``sender`` / ``target`` map to ``from`` / ``to`` on the wire. End-call,
    next and partner-left name their peer in a ``peer`` / ``user`` field
    instead of ``to``, stored in ``target``.
    """

    kind: MessageKind
    sender: Optional[str] = None
    target: Optional[str] = None
    sdp: Optional[str] = None
    candidate: Optional[Dict[str, Any]] = None
    text: Optional[str] = None
    username: Optional[str] = None
    users: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------ builders

    @classmethod
    def offer(cls, to: str, sdp: str, sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.OFFER, sender=sender, target=to, sdp=sdp)

    @classmethod
    def answer(cls, to: str, sdp: str, sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.ANSWER, sender=sender, target=to, sdp=sdp)

    @classmethod
    def ice_candidate(cls, to: str, candidate: Optional[Dict[str, Any]],
                      sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.ICE_CANDIDATE, sender=sender, target=to, candidate=candidate)

    @classmethod
    def call_busy(cls, to: str, sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.CALL_BUSY, sender=sender, target=to)

    @classmethod
    def end_call(cls, peer: str, sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.END_CALL, sender=sender, target=peer)

    @classmethod
    def chat(cls, to: str, text: str, sender: Optional[str] = None) -> "SignalingMessage":
        return cls(MessageKind.CHAT, sender=sender, target=to, text=text)

    # ------------------------------------------------------------------ codec

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind.value}
        peer_key = _PEER_KEYS.get(self.kind)
        if self.sender is not None:
            data["from"] = self.sender
        if peer_key:
            data[peer_key] = self.target
        elif self.target is not None:
            data["to"] = self.target

        if self.kind in (MessageKind.OFFER, MessageKind.ANSWER):
            data["sdp"] = self.sdp
        elif self.kind is MessageKind.ICE_CANDIDATE:
            data["candidate"] = self.candidate
        elif self.kind is MessageKind.CHAT:
            data["message"] = self.text
        elif self.kind is MessageKind.JOIN:
            data["username"] = self.username
        elif self.kind is MessageKind.PRESENCE_LIST:
            data["users"] = dict(self.users)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalingMessage":
        if not isinstance(data, dict):
            raise ProtocolError(f"expected a JSON object, got {type(data).__name__}")
        try:
            kind = MessageKind(data.get("type"))
        except ValueError:
            raise ProtocolError(f"unknown message type {data.get('type')!r}") from None

        peer_key = _PEER_KEYS.get(kind)
        msg = cls(kind, sender=data.get("from"), target=data.get(peer_key or "to"))

        if kind in (MessageKind.OFFER, MessageKind.ANSWER):
            sdp = data.get("sdp")
            # browsers send the whole RTCSessionDescription
            if isinstance(sdp, dict):
                sdp = sdp.get("sdp")
            if not isinstance(sdp, str) or not sdp:
                raise ProtocolError(f"{kind.value} without sdp")
            msg.sdp = sdp
        elif kind is MessageKind.ICE_CANDIDATE:
            candidate = data.get("candidate")
            if candidate is not None and not isinstance(candidate, dict):
                raise ProtocolError("ice-candidate payload must be an object")
            msg.candidate = candidate
        elif kind is MessageKind.CHAT:
            msg.text = str(data.get("message") or "")
        elif kind is MessageKind.JOIN:
            msg.username = data.get("username")
        elif kind is MessageKind.PRESENCE_LIST:
            users = data.get("users") or {}
            if not isinstance(users, dict):
                raise ProtocolError("presence-list users must be an object")
            msg.users = users
        return msg

    @classmethod
    def from_json(cls, raw) -> "SignalingMessage":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"undecodable frame: {e}") from e
        return cls.from_dict(data)


__all__ = ["MessageKind", "SignalingMessage"]
