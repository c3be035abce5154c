# services/rtc.py
"""
aiortc implementation of the peer primitives used by the mesh.

RtcPeerEndpoint creates outbound connections and emits "call" for inbound
ones. Each RtcMediaConnection wraps one RTCPeerConnection and emits "stream"
(with the remote MediaStream, once audio and video have both arrived) and
"close" (exactly once). SDP travels over the signaling client; aiortc gathers
ICE candidates before setLocalDescription returns, so no trickle is needed.

A track can only be read by one consumer, so local tracks reach each
connection through a MediaRelay subscription shared by the endpoint.
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaRelay
from pyee.asyncio import AsyncIOEventEmitter

from cabin.services.events import subscribe
from cabin.services.media import MediaStream, ToggleableTrack

logger = logging.getLogger(__name__)


def build_configuration(ice_servers: List[str]) -> RTCConfiguration:
    return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])


class OutboundSender:
    """
    An RTCRtpSender seen from the local side.

    The wrapped sender carries a relay subscription; `track` is the local
    track it was subscribed from, so callers compare against the tracks of
    the local stream.
    """

    def __init__(self, sender, relay: MediaRelay, track) -> None:
        self.sender = sender
        self.relay = relay
        self.track = track

    def replaceTrack(self, track) -> None:
        previous = self.sender.track
        self.sender.replaceTrack(self.relay.subscribe(track) if track is not None else None)
        if previous is not None:
            previous.stop()
        self.track = track

    def stop(self) -> None:
        if self.sender.track is not None:
            self.sender.track.stop()


class RtcMediaConnection(AsyncIOEventEmitter):
    """
    One peer connection toward a single remote participant.

    Attributes:
        connection_id (str): Id shared by both ends, used to route the answer.
        peer_id (str): Remote participant id.
        metadata (dict): Caller identity ({id, name}) carried with the offer.
        pc (RTCPeerConnection): Underlying aiortc connection.
        remote_stream (MediaStream): Tracks received from the remote side.
    """

    def __init__(self, connection_id: str, peer_id: str, metadata: dict, signaling,
                 configuration: Optional[RTCConfiguration] = None,
                 relay: Optional[MediaRelay] = None) -> None:
        super().__init__()
        self.connection_id = connection_id
        self.peer_id = peer_id
        self.metadata = metadata
        self.signaling = signaling
        self.pc = RTCPeerConnection(configuration)
        self.relay = relay or MediaRelay()
        self.outbound: List[OutboundSender] = []
        self.remote_stream = MediaStream()
        self.pending_offer: Optional[dict] = None
        self.closed = False
        self._stream_emitted = False
        self._tasks = set()

        self.pc.on("track", self._on_track)
        self.pc.on("connectionstatechange", self._on_connection_state)

    # -------------------------------------------------------------------------
    # Negotiation
    # -------------------------------------------------------------------------
    def _spawn(self, coro, operation: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"{operation} failed for {self.peer_id}", exc_info=exc)
                self.close()

        task.add_done_callback(done)
        return task

    def _add_local_stream(self, stream: Optional[MediaStream]) -> None:
        if stream is None:
            return
        for track in stream.get_tracks():
            sender = self.pc.addTrack(self.relay.subscribe(track))
            self.outbound.append(OutboundSender(sender, self.relay, track))

    def start(self, stream: MediaStream) -> asyncio.Task:
        """
        Send an offer carrying `stream` to the remote participant.
        """
        return self._spawn(self._offer(stream), "offer")

    async def _offer(self, stream: MediaStream) -> None:
        self._add_local_stream(stream)
        await self.pc.setLocalDescription(await self.pc.createOffer())
        description = {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type}
        await self.signaling.send_offer(self.peer_id, self.connection_id, self.metadata, description)

    def answer(self, stream: MediaStream) -> asyncio.Task:
        """
        Accept the pending offer, sending `stream` back.
        """
        return self._spawn(self._answer(stream), "answer")

    async def _answer(self, stream: MediaStream) -> None:
        await self.pc.setRemoteDescription(RTCSessionDescription(**self.pending_offer))
        self._add_local_stream(stream)
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        description = {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type}
        await self.signaling.send_answer(self.peer_id, self.connection_id, description)

    def accept_answer(self, description: dict) -> asyncio.Task:
        return self._spawn(self.pc.setRemoteDescription(RTCSessionDescription(**description)), "accept_answer")

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------
    def _on_track(self, track) -> None:
        logger.info(f"Received {track.kind} track from {self.peer_id}")
        self.remote_stream.add_track(ToggleableTrack(track))
        kinds = {t.kind for t in self.remote_stream.get_tracks()}
        if {"audio", "video"} <= kinds and not self._stream_emitted:
            self._stream_emitted = True
            self.emit("stream", self.remote_stream)

    async def _on_connection_state(self) -> None:
        state = self.pc.connectionState
        logger.info(f"PC state for {self.peer_id}: {state}")
        if state in ("failed", "closed"):
            self.close()

    def get_senders(self) -> List[OutboundSender]:
        return list(self.outbound)

    def close(self) -> None:
        """
        Close the connection and emit "close" once.
        """
        if self.closed:
            return
        self.closed = True
        self.remote_stream.stop()
        for sender in self.outbound:
            sender.stop()
        asyncio.ensure_future(self.pc.close())
        self.emit("close")


class RtcPeerEndpoint(AsyncIOEventEmitter):
    """
    Local peer identity: places calls and surfaces incoming ones as "call" events.
    """

    def __init__(self, self_id: str, signaling, ice_servers: Optional[List[str]] = None) -> None:
        super().__init__()
        self.self_id = self_id
        self.signaling = signaling
        self.configuration = build_configuration(ice_servers or [])
        self.relay = MediaRelay()
        self.connections: Dict[str, RtcMediaConnection] = {}
        self._disposers = [
            subscribe(signaling, "offer", self._on_offer),
            subscribe(signaling, "answer", self._on_answer),
        ]

    def _track(self, connection: RtcMediaConnection) -> None:
        self.connections[connection.connection_id] = connection
        connection.once("close", lambda: self.connections.pop(connection.connection_id, None))

    def call(self, peer_id: str, stream: MediaStream, metadata: dict) -> RtcMediaConnection:
        """
        Start an outbound connection to `peer_id`.

        Returns:
            RtcMediaConnection: The connection; negotiation continues in the background.
        """
        connection = RtcMediaConnection(
            str(uuid.uuid4()), peer_id, metadata, self.signaling, self.configuration, self.relay)
        self._track(connection)
        connection.start(stream)
        return connection

    def _on_offer(self, payload: dict) -> None:
        caller = payload.get("from")
        metadata = payload.get("metadata") or {"id": caller}
        connection = RtcMediaConnection(
            payload["connection_id"], caller, metadata, self.signaling, self.configuration, self.relay)
        connection.pending_offer = payload["description"]
        self._track(connection)
        logger.info(f"Incoming connection {connection.connection_id} from {caller}")
        self.emit("call", connection)

    def _on_answer(self, payload: dict) -> None:
        connection = self.connections.get(payload.get("connection_id"))
        if connection is None or connection.closed:
            logger.warning(f"Answer for unknown connection {payload.get('connection_id')}")
            return
        connection.accept_answer(payload["description"])

    def destroy(self) -> None:
        """
        Close every connection created by this endpoint and stop listening.
        """
        for connection in list(self.connections.values()):
            connection.close()
        while self._disposers:
            self._disposers.pop()()
