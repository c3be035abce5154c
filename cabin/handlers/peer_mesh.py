# handlers/peer_mesh.py
import inspect
import logging
from typing import Callable, Dict, List, Optional

from cabin.errors import TrackReplacementFailure
from cabin.handlers.participants import ParticipantRegistry
from cabin.services.events import subscribe
from cabin.services.state import Session

logger = logging.getLogger(__name__)


class PeerMeshManager:
    """
    Keeps one connection per remote participant, in sync with the signaling roster.

    Connections come from a peer endpoint (see services/rtc.py) that emits "call"
    for incoming connections; each connection emits "stream" with the remote
    MediaStream and "close" once. Handlers are held as disposers per participant
    and dropped before the connection is closed, so no callback ever fires
    against a participant that was already torn down.
    """

    def __init__(self, session: Session, endpoint, registry: ParticipantRegistry) -> None:
        self.session = session
        self.endpoint = endpoint
        self.registry = registry
        self._subscriptions: Dict[str, List[Callable[[], None]]] = {}
        self._dispose_call = subscribe(endpoint, "call", self.on_incoming_connection)

    # -------------------------------------------------------------------------
    # Roster events
    # -------------------------------------------------------------------------
    def on_roster_join(self, participant_id: str, name: str):
        """
        Call a participant that just joined, offering the current local stream.

        Args:
            participant_id (str): Id announced by the signaling channel.
            name (str): Display name announced by the signaling channel.

        Returns:
            The new connection, or None when ignored (self id or session closed).
        """
        if self.session.has_left:
            logger.debug(f"Ignoring join of {participant_id} after leave")
            return None
        if participant_id == self.session.self_id:
            return None

        metadata = {"id": self.session.self_id, "name": self.session.self_name}
        connection = self.endpoint.call(participant_id, self.session.local_stream, metadata)
        self._register(participant_id, name, connection)
        logger.info(f"Calling {name} ({participant_id})")
        return connection

    def on_incoming_connection(self, connection) -> None:
        """
        Answer an incoming connection with the current local stream.

        Args:
            connection: Incoming connection; its metadata identifies the caller.
        """
        metadata = connection.metadata or {}
        participant_id = metadata.get("id")
        name = metadata.get("name", participant_id)

        if self.session.has_left or not participant_id:
            logger.warning(f"Rejecting incoming connection (metadata={metadata})")
            connection.close()
            return

        connection.answer(self.session.local_stream)
        self._register(participant_id, name, connection)
        logger.info(f"Answered call from {name} ({participant_id})")

    def on_participant_left(self, participant_id: str) -> bool:
        """
        Tear down a participant reported gone by signaling. Our own id is ignored.

        Returns:
            bool: True if anything was torn down.
        """
        if participant_id == self.session.self_id:
            logger.info("Departure notice for ourselves, ignoring")
            return False
        return self.remove_user(participant_id)

    # -------------------------------------------------------------------------
    # Connection bookkeeping
    # -------------------------------------------------------------------------
    def _register(self, participant_id: str, name: str, connection) -> None:
        previous = self.session.peers.get(participant_id)
        if previous is not None and previous is not connection:
            logger.info(f"Replacing existing connection for {participant_id}")
            self.remove_user(participant_id)

        self.session.peers[participant_id] = connection
        self._subscriptions[participant_id] = [
            subscribe(connection, "stream",
                      lambda stream: self._on_stream(participant_id, name, stream)),
            subscribe(connection, "close",
                      lambda: self._on_close(participant_id, connection)),
        ]

    def _dispose(self, participant_id: str) -> None:
        for dispose in self._subscriptions.pop(participant_id, []):
            dispose()

    def _on_stream(self, participant_id: str, name: str, stream) -> None:
        if self.session.has_left:
            return
        self.registry.add_remote_user(participant_id, name, stream)

    def _on_close(self, participant_id: str, connection) -> None:
        if self.session.peers.get(participant_id) is not connection:
            return
        logger.info(f"Connection to {participant_id} closed")
        self.remove_user(participant_id)

    def remove_user(self, participant_id: str) -> bool:
        """
        Remove the participant's tile, record and connection. Idempotent.

        Returns:
            bool: True if anything was removed.
        """
        self._dispose(participant_id)
        connection = self.session.peers.pop(participant_id, None)
        if connection is not None:
            connection.close()
        removed = self.registry.remove_user(participant_id)
        return removed or connection is not None

    # -------------------------------------------------------------------------
    # Media propagation
    # -------------------------------------------------------------------------
    async def replace_outbound_video_track(self, track) -> List[TrackReplacementFailure]:
        """
        Swap the outbound video track on every open connection.

        A failure on one connection is logged and recorded; the others still
        get the new track.

        Args:
            track: The new local video track.

        Returns:
            List[TrackReplacementFailure]: One entry per connection that failed.
        """
        failures = []
        for participant_id, connection in list(self.session.peers.items()):
            try:
                sender = self._video_sender(connection)
                if sender is None:
                    logger.warning(f"No outbound video sender for {participant_id}")
                    continue
                result = sender.replaceTrack(track)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"replace_outbound_video_track failed for participant {participant_id}", exc_info=e)
                failures.append(TrackReplacementFailure(
                    "replace_outbound_video_track", detail=str(e), participant_id=participant_id))
        return failures

    @staticmethod
    def _video_sender(connection) -> Optional[object]:
        return next(
            (s for s in connection.get_senders() if s.track is not None and s.track.kind == "video"),
            None,
        )

    def close_all(self) -> None:
        """
        Close every open connection. Idempotent.
        """
        for participant_id in list(self.session.peers):
            self._dispose(participant_id)
            connection = self.session.peers.pop(participant_id)
            connection.close()
        self._dispose_call()
        logger.info("Closed all peer connections")
