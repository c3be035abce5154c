# handlers/room_handler.py
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from cabin.constants import DISPLAY_NAME_MAX_LENGTH, ROOM_ADDRESS_MAX_LENGTH
from cabin.services.crypto_utils import send_error, send_message

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """
    A client connected to the relay and joined to a room.
    """
    user_id: str
    name: str
    room: str
    ws: object
    aes_key: bytes


class RoomHandler:
    """
    Room membership and message relay for the signaling server.

    Joins and departures are broadcast to the rest of the room; offers and
    answers go to their target member only; track state goes to its target
    when one is named, otherwise to everyone else in the sender's room.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Dict[str, Member]] = {}
        self.by_socket: Dict[object, Member] = {}

    def member_for(self, websocket) -> Optional[Member]:
        return self.by_socket.get(websocket)

    async def _broadcast(self, member: Member, msg_type: str, payload: dict) -> None:
        for other in list(self.rooms.get(member.room, {}).values()):
            if other.user_id == member.user_id:
                continue
            await send_message(other.ws, other.aes_key, msg_type, payload=payload)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------
    async def handle_join(self, websocket, data, aes_key):
        """
        Add the sender to a room and announce it to the other members.

        Args:
            websocket: Sender's websocket connection.
            data (dict): Parsed message; payload holds 'room', 'user_id' and 'name'.
            aes_key (bytes): AES key of the sender's connection.
        """
        payload = data.get("payload", {})
        room = str(payload.get("room") or "")
        user_id = str(payload.get("user_id") or data.get("user_id") or "")
        name = str(payload.get("name") or user_id)[:DISPLAY_NAME_MAX_LENGTH]

        if not room or not user_id or len(room) > ROOM_ADDRESS_MAX_LENGTH:
            return await send_error(
                websocket, aes_key, "join_room", "INVALID_JOIN", "Room and user id are required.")

        if websocket in self.by_socket:
            await self.handle_leave(websocket, data, aes_key)

        members = self.rooms.setdefault(room, {})
        stale = members.get(user_id)
        if stale is not None and stale.ws is not websocket:
            logger.info(f"{user_id} rejoined {room} from a new connection")
            self.by_socket.pop(stale.ws, None)

        member = Member(user_id, name, room, websocket, aes_key)
        members[user_id] = member
        self.by_socket[websocket] = member
        logger.info(f"{name} ({user_id}) joined room {room} ({len(members)} members)")

        await send_message(
            websocket, aes_key, "join_room", payload={"room": room, "members": len(members)})
        await self._broadcast(member, "participant_joined", {"id": user_id, "name": name})

    async def handle_leave(self, websocket, data=None, aes_key=None):
        """
        Remove the sender from its room and announce the departure. No-op if not joined.
        """
        member = self.by_socket.pop(websocket, None)
        if member is None:
            return
        members = self.rooms.get(member.room, {})
        if members.get(member.user_id) is member:
            del members[member.user_id]
        if not members:
            self.rooms.pop(member.room, None)
        logger.info(f"{member.name} ({member.user_id}) left room {member.room}")
        await self._broadcast(member, "participant_left", {"id": member.user_id, "name": member.name})

    # -------------------------------------------------------------------------
    # Relay
    # -------------------------------------------------------------------------
    async def _relay_to_target(self, websocket, data, aes_key, msg_type):
        member = self.member_for(websocket)
        if member is None:
            return await send_error(
                websocket, aes_key, msg_type, "NOT_IN_ROOM", "Join a room first.")

        payload = dict(data.get("payload", {}))
        target_id = payload.pop("target", None)
        target = self.rooms.get(member.room, {}).get(target_id)
        if target is None:
            logger.warning(f"{msg_type} from {member.user_id} to unknown target {target_id}")
            return await send_error(
                websocket, aes_key, msg_type, "TARGET_NOT_CONNECTED", f"{target_id} not connected.")

        payload["from"] = member.user_id
        logger.info(f"Relaying {msg_type} from {member.user_id} to {target_id}")
        await send_message(target.ws, target.aes_key, msg_type, payload=payload)

    async def handle_offer(self, websocket, data, aes_key):
        await self._relay_to_target(websocket, data, aes_key, "offer")

    async def handle_answer(self, websocket, data, aes_key):
        await self._relay_to_target(websocket, data, aes_key, "answer")

    async def handle_track_state(self, websocket, data, aes_key):
        member = self.member_for(websocket)
        if member is None:
            return await send_error(
                websocket, aes_key, "track_state", "NOT_IN_ROOM", "Join a room first.")
        payload = data.get("payload", {})
        state = {
            "from": member.user_id,
            "kind": payload.get("kind"),
            "enabled": bool(payload.get("enabled")),
        }
        if payload.get("target") is None:
            return await self._broadcast(member, "track_state", state)

        target = self.rooms.get(member.room, {}).get(payload["target"])
        if target is None:
            return await send_error(
                websocket, aes_key, "track_state", "TARGET_NOT_CONNECTED", f"{payload['target']} not connected.")
        await send_message(target.ws, target.aes_key, "track_state", payload=state)
