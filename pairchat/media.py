"""
Local media source and remote playback glue.

The capture device is opened once per client. Each negotiation only gets
relayed copies of its tracks (`MediaRelay.subscribe`), so closing a peer
connection never stops the device; only `MediaBridge.stop` does.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRelay
from aiortc.mediastreams import AudioStreamTrack, MediaStreamTrack, VideoStreamTrack

from .errors import MediaUnavailable

logger = logging.getLogger(__name__)


class LocalSource:
    """Opaque handle on the local capture tracks."""

    def __init__(self, audio: Optional[MediaStreamTrack] = None,
                 video: Optional[MediaStreamTrack] = None, players=()):
        self.audio = audio
        self.video = video
        self._players = list(players)
        self.stopped = False

    @property
    def tracks(self) -> List[MediaStreamTrack]:
        return [t for t in (self.audio, self.video) if t is not None]

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            track.stop()


class MediaBridge:
    """
    Owns the local source and exposes attach/detach per transport.

    Args:
        config: `ClientConfig` (or None) naming capture devices. With no
            device configured a synthetic black/silent source is used.
        player_factory: Callable with the `MediaPlayer` signature.
        sink_factory: Zero-arg callable returning a media sink for remote
            tracks (default discards frames).
    """

    def __init__(self, config=None, player_factory: Callable = MediaPlayer,
                 sink_factory: Callable = MediaBlackhole):
        self.config = config
        self._player_factory = player_factory
        self._sink_factory = sink_factory
        self._relay = MediaRelay()
        self._attached: Dict[object, List[MediaStreamTrack]] = {}
        self._sinks = []

    def acquire_local_source(self) -> LocalSource:
        video_device = getattr(self.config, "video_device", None)
        audio_device = getattr(self.config, "audio_device", None)

        if not video_device and not audio_device:
            logger.info("No capture device configured, using synthetic tracks")
            return LocalSource(audio=AudioStreamTrack(), video=VideoStreamTrack())

        players = []
        audio = video = None
        try:
            if video_device:
                player = self._player_factory(
                    video_device,
                    format=getattr(self.config, "video_format", None),
                    options=getattr(self.config, "video_options", None) or {},
                )
                players.append(player)
                video = player.video
                if not audio_device:
                    audio = player.audio
            if audio_device:
                player = self._player_factory(
                    audio_device,
                    format=getattr(self.config, "audio_format", None),
                )
                players.append(player)
                audio = player.audio
        except Exception as e:
            raise MediaUnavailable(f"could not open capture device: {e}") from e

        if audio is None and video is None:
            raise MediaUnavailable("capture device exposes no audio or video track")
        logger.info("Local media acquired (audio=%s, video=%s)", audio is not None, video is not None)
        return LocalSource(audio=audio, video=video, players=players)

    def attach(self, transport, source: LocalSource) -> None:
        proxies = []
        for track in source.tracks:
            proxy = self._relay.subscribe(track)
            transport.addTrack(proxy)
            proxies.append(proxy)
        self._attached[transport] = proxies

    def detach(self, transport) -> None:
        for proxy in self._attached.pop(transport, []):
            proxy.stop()

    def is_attached(self, transport) -> bool:
        return transport in self._attached

    async def set_render_sink(self, track: MediaStreamTrack) -> None:
        sink = self._sink_factory()
        sink.addTrack(track)
        await sink.start()
        self._sinks.append(sink)
        logger.debug("Rendering remote %s track", track.kind)

    async def clear_render_sinks(self) -> None:
        sinks, self._sinks = self._sinks, []
        for sink in sinks:
            await sink.stop()

    def stop(self, source: Optional[LocalSource]) -> None:
        if source is not None:
            source.stop()
            logger.info("Local media stopped")


__all__ = ["LocalSource", "MediaBridge"]
