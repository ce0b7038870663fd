"""
Client configuration.

Module constants are the defaults; `ClientConfig` carries the values one
client actually runs with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer

SIGNAL_URL = "ws://localhost:8080"
STUN_URL = "stun:stun.l.google.com:19302"
# seconds before an unanswered negotiation is abandoned
NEGOTIATION_TIMEOUT = 20.0


@dataclass
class ClientConfig:
    signal_url: str = SIGNAL_URL
    ice_servers: List[str] = field(default_factory=lambda: [STUN_URL])
    mode: str = "auto-find"
    username: Optional[str] = None
    negotiation_timeout: Optional[float] = NEGOTIATION_TIMEOUT
    video_device: Optional[str] = None
    video_format: Optional[str] = None
    video_options: Dict[str, str] = field(default_factory=dict)
    audio_device: Optional[str] = None
    audio_format: Optional[str] = None

    def rtc_configuration(self) -> RTCConfiguration:
        return RTCConfiguration([RTCIceServer(url) for url in self.ice_servers])


__all__ = ["ClientConfig", "NEGOTIATION_TIMEOUT", "SIGNAL_URL", "STUN_URL"]
