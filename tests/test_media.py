"""Tests covering local capture and per-transport attach/detach."""

from __future__ import annotations

import pytest

from pairchat.config import ClientConfig
from pairchat.errors import MediaUnavailable
from pairchat.media import MediaBridge


class RecordingTransport:
    def __init__(self):
        self.tracks = []

    def addTrack(self, track):
        self.tracks.append(track)


class RecordingSink:
    instances = []

    def __init__(self):
        self.tracks = []
        self.started = False
        self.stopped = False
        RecordingSink.instances.append(self)

    def addTrack(self, track):
        self.tracks.append(track)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind
        self.readyState = "live"

    def stop(self):
        self.readyState = "ended"


class FakePlayer:
    def __init__(self, file, format=None, options=None, audio=True, video=True):
        self.file = file
        self.format = format
        self.options = options
        self.audio = FakeTrack("audio") if audio else None
        self.video = FakeTrack("video") if video else None


@pytest.mark.asyncio
async def test_no_device_gives_synthetic_tracks() -> None:
    source = MediaBridge().acquire_local_source()

    assert sorted(t.kind for t in source.tracks) == ["audio", "video"]
    assert not source.stopped


@pytest.mark.asyncio
async def test_configured_device_is_opened_with_its_format() -> None:
    opened = []

    def factory(file, **kwargs):
        player = FakePlayer(file, **kwargs)
        opened.append(player)
        return player

    config = ClientConfig(video_device="/dev/video0", video_format="v4l2",
                          video_options={"video_size": "640x480"})
    source = MediaBridge(config, player_factory=factory).acquire_local_source()

    assert opened[0].file == "/dev/video0"
    assert opened[0].format == "v4l2"
    assert opened[0].options == {"video_size": "640x480"}
    assert source.video is opened[0].video
    assert source.audio is opened[0].audio


@pytest.mark.asyncio
async def test_device_that_cannot_open_is_media_unavailable() -> None:
    def factory(file, **kwargs):
        raise OSError("No such device")

    bridge = MediaBridge(ClientConfig(video_device="/dev/video9"), player_factory=factory)

    with pytest.raises(MediaUnavailable):
        bridge.acquire_local_source()


@pytest.mark.asyncio
async def test_device_without_tracks_is_media_unavailable() -> None:
    def factory(file, **kwargs):
        return FakePlayer(file, audio=False, video=False, **kwargs)

    bridge = MediaBridge(ClientConfig(video_device="/dev/video0"), player_factory=factory)

    with pytest.raises(MediaUnavailable):
        bridge.acquire_local_source()


@pytest.mark.asyncio
async def test_detach_leaves_local_source_running() -> None:
    bridge = MediaBridge()
    source = bridge.acquire_local_source()
    first, second = RecordingTransport(), RecordingTransport()

    bridge.attach(first, source)
    bridge.attach(second, source)
    assert len(first.tracks) == 2
    assert first.tracks[0] is not source.tracks[0]

    bridge.detach(first)

    assert not bridge.is_attached(first)
    assert bridge.is_attached(second)
    assert all(t.readyState == "ended" for t in first.tracks)
    assert all(t.readyState == "live" for t in source.tracks)
    assert not source.stopped


@pytest.mark.asyncio
async def test_stop_ends_the_source_once() -> None:
    bridge = MediaBridge()
    source = bridge.acquire_local_source()

    bridge.stop(source)
    bridge.stop(source)
    bridge.stop(None)

    assert source.stopped
    assert all(t.readyState == "ended" for t in source.tracks)


@pytest.mark.asyncio
async def test_render_sinks_are_started_and_cleared() -> None:
    RecordingSink.instances = []
    bridge = MediaBridge(sink_factory=RecordingSink)
    track = FakeTrack("video")

    await bridge.set_render_sink(track)
    sink = RecordingSink.instances[0]
    assert sink.started and sink.tracks == [track]

    await bridge.clear_render_sinks()
    await bridge.clear_render_sinks()

    assert sink.stopped
    assert len(RecordingSink.instances) == 1
