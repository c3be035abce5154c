# handlers/connection.py
import asyncio
import json
import logging
import time

import websockets

from cabin.constants import HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT
from cabin.handlers.room_handler import RoomHandler
from cabin.services.crypto_utils import (
    CryptoError, KeyExchange, new_salt, open_envelope, send_error, send_message
)
from cabin.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

HANDSHAKE_FAILED = 4001
RATE_LIMITED = 4008


class ConnectionHandler:
    """
    Serves one client socket on the relay.

    The socket is keyed by a handshake, then every envelope is rate limited per
    remote IP, decrypted and routed to the shared RoomHandler. A socket that
    stops pinging is closed; a closed socket counts as leaving its room.
    """

    def __init__(self, rooms: RoomHandler, rate_limiter: RateLimiter):
        self.rooms = rooms
        self.rate_limiter = rate_limiter
        self.ws = None
        self.aes_key = None
        self.last_ping = time.time()
        self.routes = {
            "join_room": rooms.handle_join,
            "leave_room": rooms.handle_leave,
            "offer": rooms.handle_offer,
            "answer": rooms.handle_answer,
            "track_state": rooms.handle_track_state,
        }

    async def handle_connection(self, ws):
        """
        Run the connection until the client goes away.

        Args:
            ws: Accepted websocket connection.
        """
        self.ws = ws
        peer_ip = ws.remote_address[0] if ws.remote_address else None
        logger.info(f"New relay connection from {peer_ip}")

        try:
            self.aes_key = await self._key_exchange()
        except (ValueError, KeyError, CryptoError, websockets.exceptions.ConnectionClosed) as e:
            logger.error(f"Handshake with {peer_ip} failed", exc_info=e)
            await ws.close(code=HANDSHAKE_FAILED, reason="Handshake failed")
            return

        watchdog = asyncio.ensure_future(self._watch_heartbeat())
        try:
            async for raw in ws:
                if peer_ip is not None and not self.rate_limiter.allow(peer_ip):
                    logger.warning(f"Rate limit exceeded for {peer_ip}, closing")
                    await ws.close(code=RATE_LIMITED, reason="Rate limit exceeded")
                    break
                await self._handle_raw(raw)
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Connection from {peer_ip} closed by client")
        finally:
            watchdog.cancel()
            await self.rooms.handle_leave(ws)
            if peer_ip is not None:
                self.rate_limiter.forget(peer_ip)

    async def _key_exchange(self) -> bytes:
        """
        Send our public key and salt, read the client's key, derive the AES key.

        Raises:
            ValueError: If the reply is not a handshake.
        """
        exchange, salt = KeyExchange(), new_salt()
        await self.ws.send(json.dumps({
            "msg_type": "handshake",
            "payload": {"server_public_key": exchange.public_key, "salt": salt},
        }))

        reply = json.loads(await self.ws.recv())
        if reply.get("msg_type") != "handshake":
            raise ValueError(f"Expected handshake, got {reply.get('msg_type')}")
        aes_key = exchange.derive(reply["payload"]["client_public_key"], salt)
        logger.info("Relay handshake complete")
        return aes_key

    async def _watch_heartbeat(self):
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            silence = time.time() - self.last_ping
            if silence > HEARTBEAT_TIMEOUT:
                logger.warning(f"No ping for {silence:.0f}s, closing connection")
                await self.ws.close()
                return

    async def _handle_raw(self, raw):
        try:
            data = open_envelope(self.aes_key, raw)
        except (CryptoError, ValueError) as e:
            logger.error("Unreadable relay message", exc_info=e)
            await send_error(self.ws, self.aes_key, "unknown", "INVALID_MESSAGE", "Invalid message format")
            return

        msg_type = data.get("msg_type")
        if msg_type == "ping":
            self.last_ping = time.time()
            await send_message(self.ws, self.aes_key, "pong")
            return

        route = self.routes.get(msg_type)
        if route is None:
            logger.warning(f"Unknown msg_type: {msg_type}")
            await send_error(self.ws, self.aes_key, str(msg_type), "UNKNOWN_TYPE", "Unknown message type")
            return
        await route(self.ws, data, self.aes_key)
