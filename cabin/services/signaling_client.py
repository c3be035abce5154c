# services/signaling_client.py
import asyncio
import json
import logging
import ssl
from typing import Optional

import websockets
from pyee.asyncio import AsyncIOEventEmitter

from cabin.constants import CLIENT_PING_INTERVAL
from cabin.services.crypto_utils import CryptoError, KeyExchange, open_envelope, seal

logger = logging.getLogger(__name__)

# Inbound message types re-emitted as events with the message payload.
INBOUND_EVENTS = (
    "participant_joined",
    "participant_left",
    "offer",
    "answer",
    "track_state",
    "join_room",
)


class SignalingClient(AsyncIOEventEmitter):
    """
    Client side of the relay protocol.

    Performs the X25519 handshake, then exchanges AES-GCM envelopes. Inbound
    messages are emitted as events named after their msg_type with the payload
    as the only argument; failed responses are emitted as "error_response".
    """

    def __init__(self, url: str, user_id: str, verify_tls: bool = True) -> None:
        super().__init__()
        self.url = url
        self.user_id = user_id
        self.verify_tls = verify_tls
        self.ws = None
        self.aes_key: Optional[bytes] = None
        self._listener: Optional[asyncio.Task] = None
        self._pinger: Optional[asyncio.Task] = None
        self.closed = asyncio.Event()

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.url.startswith("wss://"):
            return None
        ctx = ssl.create_default_context()
        if not self.verify_tls:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    async def connect(self) -> None:
        """
        Open the websocket, perform the handshake and start the receive loop.

        Raises:
            ValueError: If the relay's handshake message is malformed.
            websockets.exceptions.WebSocketException: On connection failure.
        """
        logger.info(f"Connecting to signaling relay {self.url}")
        self.ws = await websockets.connect(self.url, ssl=self._ssl_context())
        self.aes_key = await self._perform_handshake()
        logger.info("Signaling handshake successful")
        self._listener = asyncio.ensure_future(self._listen())
        self._pinger = asyncio.ensure_future(self._heartbeat())

    async def _perform_handshake(self) -> bytes:
        data = json.loads(await self.ws.recv())
        if data.get("msg_type") != "handshake":
            raise ValueError(f"Invalid handshake message | {data.get('msg_type')}")
        payload = data.get("payload", {})
        exchange = KeyExchange()
        await self.ws.send(json.dumps({
            "msg_type": "handshake",
            "payload": {"client_public_key": exchange.public_key},
        }))
        return exchange.derive(payload["server_public_key"], payload["salt"])

    async def _listen(self) -> None:
        try:
            async for raw in self.ws:
                self.dispatch(raw)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Signaling connection closed")
        finally:
            self.closed.set()
            if self._pinger is not None:
                self._pinger.cancel()
            self.emit("disconnected")

    def dispatch(self, raw: str) -> Optional[dict]:
        """
        Decrypt one raw message and emit it.

        Args:
            raw (str): Raw websocket text.

        Returns:
            dict or None: The decoded message, or None if it could not be read.
        """
        try:
            message = open_envelope(self.aes_key, raw)
        except (CryptoError, ValueError) as e:
            logger.error("Dropping unreadable signaling message", exc_info=e)
            return None

        msg_type = message.get("msg_type")
        if msg_type == "pong":
            return message
        if not message.get("success", True):
            logger.warning(
                f"Relay rejected {msg_type}: {message.get('error_code')} {message.get('error_message')}")
            self.emit("error_response", message)
            return message
        if msg_type in INBOUND_EVENTS:
            self.emit(msg_type, message.get("payload", {}))
        else:
            logger.warning(f"Unknown msg_type from relay: {msg_type}")
        return message

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(CLIENT_PING_INTERVAL)
            await self.send("ping")

    async def send(self, msg_type: str, payload: Optional[dict] = None) -> None:
        """
        Encrypt and send one message to the relay.

        Args:
            msg_type (str): Message type.
            payload (dict, optional): Message payload.
        """
        if self.ws is None or self.aes_key is None:
            logger.warning(f"Not connected, dropping {msg_type}")
            return
        message = {"msg_type": msg_type, "user_id": self.user_id, "payload": payload or {}}
        try:
            await self.ws.send(seal(self.aes_key, message))
        except websockets.exceptions.ConnectionClosed as e:
            logger.error(f"Failed to send {msg_type}: connection closed", exc_info=e)

    # -------------------------------------------------------------------------
    # Room protocol
    # -------------------------------------------------------------------------
    async def join(self, room_address: str, self_id: str, self_name: str) -> None:
        await self.send("join_room", {"room": room_address, "user_id": self_id, "name": self_name})

    async def leave(self) -> None:
        await self.send("leave_room")

    async def send_offer(self, target: str, connection_id: str, metadata: dict, description: dict) -> None:
        await self.send("offer", {
            "target": target,
            "connection_id": connection_id,
            "metadata": metadata,
            "description": description,
        })

    async def send_answer(self, target: str, connection_id: str, description: dict) -> None:
        await self.send("answer", {
            "target": target,
            "connection_id": connection_id,
            "description": description,
        })

    async def send_track_state(self, kind: str, enabled: bool, target: Optional[str] = None) -> None:
        """
        Announce a local track state to the room, or to `target` only.
        """
        payload = {"kind": kind, "enabled": enabled}
        if target is not None:
            payload["target"] = target
        await self.send("track_state", payload)

    async def close(self) -> None:
        """
        Stop the heartbeat and close the websocket.
        """
        if self._pinger is not None:
            self._pinger.cancel()
        if self.ws is not None:
            await self.ws.close()
