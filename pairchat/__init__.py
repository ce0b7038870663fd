"""
Pairing video chat client.

Pairs two participants over a signaling relay and negotiates a direct
aiortc media session between them, with a text chat carried by the relay.
"""

from .coordinator import PairingMode, SessionCoordinator
from .engine import NegotiationEngine, NegotiationState, Outcome
from .errors import AlreadyActive, MediaUnavailable, StaleSignal, TransportFailure
from .messages import MessageKind, SignalingMessage

__version__ = "0.1.0"
__all__ = [
    "AlreadyActive",
    "MediaUnavailable",
    "MessageKind",
    "NegotiationEngine",
    "NegotiationState",
    "Outcome",
    "PairingMode",
    "SessionCoordinator",
    "SignalingMessage",
    "StaleSignal",
    "TransportFailure",
]
