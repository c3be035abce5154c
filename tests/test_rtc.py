import asyncio

import pytest
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaRelay
from aiortc.mediastreams import MediaStreamError
from pyee.asyncio import AsyncIOEventEmitter

from cabin.services import rtc
from cabin.services.media import MediaStream, ToggleableTrack
from cabin.services.rtc import RtcMediaConnection, RtcPeerEndpoint
from fakes import FakeSource, make_track


class StubSender:
    def __init__(self, track):
        self.track = track

    def replaceTrack(self, track):
        self.track = track


class StubPeerConnection(AsyncIOEventEmitter):
    """Stands in for RTCPeerConnection; records what the adapter does to it."""

    def __init__(self, configuration=None):
        super().__init__()
        self.connectionState = "new"
        self.senders = []
        self.remote_descriptions = []
        self.close_calls = 0

    def addTrack(self, track):
        sender = StubSender(track)
        self.senders.append(sender)
        return sender

    async def setRemoteDescription(self, description):
        self.remote_descriptions.append(description)

    async def close(self):
        self.close_calls += 1


class QueuedSource(MediaStreamTrack):
    """Video source fed by the test; None ends it."""

    kind = "video"

    def __init__(self):
        super().__init__()
        self.frames = asyncio.Queue()

    async def recv(self):
        frame = await self.frames.get()
        if frame is None:
            raise MediaStreamError
        return frame


class RecordingSignaling(AsyncIOEventEmitter):
    def __init__(self):
        super().__init__()
        self.answers = []

    async def send_answer(self, target, connection_id, description):
        self.answers.append((target, connection_id, description))


@pytest.fixture(autouse=True)
def stub_pc(monkeypatch):
    monkeypatch.setattr(rtc, "RTCPeerConnection", StubPeerConnection)


@pytest.mark.asyncio
async def test_stream_is_emitted_once_both_kinds_arrive():
    connection = RtcMediaConnection("c1", "bob", {"id": "bob"}, signaling=None)
    streams = []
    connection.on("stream", streams.append)

    connection._on_track(FakeSource("audio"))
    assert streams == []

    connection._on_track(FakeSource("video"))
    connection._on_track(FakeSource("video"))
    assert streams == [connection.remote_stream]


@pytest.mark.asyncio
async def test_close_emits_once_and_releases_tracks():
    connection = RtcMediaConnection("c1", "bob", {"id": "bob"}, signaling=None)
    local = MediaStream([make_track("video"), make_track("audio")])
    connection._add_local_stream(local)
    connection._on_track(FakeSource("audio"))
    closes = []
    connection.on("close", lambda: closes.append(True))

    connection.close()
    connection.close()
    await asyncio.sleep(0)

    assert closes == [True]
    assert connection.pc.close_calls == 1
    assert all(s.track.readyState == "ended" for s in connection.pc.senders)
    assert connection.remote_stream.first_track("audio").readyState == "ended"
    # the local capture belongs to the session, not to the connection
    assert all(t.readyState == "live" for t in local.get_tracks())


@pytest.mark.asyncio
async def test_failed_peer_connection_closes():
    connection = RtcMediaConnection("c1", "bob", {"id": "bob"}, signaling=None)

    connection.pc.connectionState = "failed"
    await connection._on_connection_state()

    assert connection.closed


@pytest.mark.asyncio
async def test_every_connection_receives_every_frame():
    relay = MediaRelay()
    source = QueuedSource()
    local = MediaStream([ToggleableTrack(source)])
    peers = [RtcMediaConnection(f"c{n}", f"peer{n}", {}, signaling=None, relay=relay) for n in range(2)]
    for peer in peers:
        peer._add_local_stream(local)
    outbound = [peer.pc.senders[0].track for peer in peers]

    first = [asyncio.ensure_future(track.recv()) for track in outbound]
    await asyncio.sleep(0)
    source.frames.put_nowait(1)
    source.frames.put_nowait(2)

    assert await asyncio.gather(*first) == [1, 1]
    assert await asyncio.gather(*(track.recv() for track in outbound)) == [2, 2]
    source.frames.put_nowait(None)


@pytest.mark.asyncio
async def test_outbound_sender_reports_local_track_across_replacement():
    connection = RtcMediaConnection("c1", "bob", {"id": "bob"}, signaling=None)
    old_video = make_track("video")
    connection._add_local_stream(MediaStream([old_video]))
    sender = connection.get_senders()[0]
    old_proxy = connection.pc.senders[0].track

    new_video = make_track("video")
    sender.replaceTrack(new_video)

    assert sender.track is new_video
    assert connection.pc.senders[0].track is not old_proxy
    assert connection.pc.senders[0].track.kind == "video"
    assert old_proxy.readyState == "ended"
    assert old_video.readyState == "live"


@pytest.mark.asyncio
async def test_endpoint_surfaces_offers_and_routes_answers():
    signaling = RecordingSignaling()
    endpoint = RtcPeerEndpoint("me", signaling)
    calls = []
    endpoint.on("call", calls.append)

    signaling.emit("offer", {"from": "bob", "connection_id": "c1", "metadata": {"id": "bob", "name": "Bob"},
                             "description": {"type": "offer", "sdp": "v=0"}})
    connection = calls[0]
    assert connection.peer_id == "bob"
    assert connection.pending_offer == {"type": "offer", "sdp": "v=0"}
    assert endpoint.connections == {"c1": connection}

    signaling.emit("answer", {"connection_id": "unknown", "description": {"type": "answer", "sdp": "v=0"}})
    signaling.emit("answer", {"connection_id": "c1", "description": {"type": "answer", "sdp": "v=0"}})
    await asyncio.sleep(0)
    assert [d.type for d in connection.pc.remote_descriptions] == ["answer"]

    endpoint.destroy()
    assert connection.closed
    assert endpoint.connections == {}
