# relay.py
import logging

from cabin.services.logging_utils import setup_logging  # logging config must precede other imports
setup_logging("relay")
logger = logging.getLogger(__name__)

import asyncio  # noqa: E402
import os  # noqa: E402
import ssl  # noqa: E402

from websockets import serve  # noqa: E402

from cabin.handlers.connection import ConnectionHandler  # noqa: E402
from cabin.handlers.room_handler import RoomHandler  # noqa: E402
from cabin.services.rate_limiter import RateLimiter  # noqa: E402


def build_ssl_context():
    """
    Build a TLS context from SSL_CERT_FILE / SSL_KEY_FILE, or None when they are unset.

    Returns:
        ssl.SSLContext or None: Server context, or None to serve plain ws://.
    """
    cert_file = os.getenv("SSL_CERT_FILE")
    key_file = os.getenv("SSL_KEY_FILE")
    if not cert_file or not key_file:
        return None
    ssl_ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ssl_ctx.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return ssl_ctx


def main():
    """
    Entry point for starting the signaling relay.

    Reads host and port from RELAY_HOST / RELAY_PORT and enables TLS when
    certificate files are configured.
    """
    logger.info("Starting signaling relay...")
    host = os.getenv("RELAY_HOST", "0.0.0.0")
    port = int(os.getenv("RELAY_PORT", 8765))
    asyncio.run(start_server(host, port, build_ssl_context()))


async def start_server(host, port, ssl_ctx):
    """
    Serve relay connections until cancelled.

    Each connection gets its own ConnectionHandler; room membership and the
    rate limiter are shared by all of them.
    """
    rooms = RoomHandler()
    limiter = RateLimiter()

    async def handler(ws):
        await ConnectionHandler(rooms, limiter).handle_connection(ws)

    async with serve(handler, host, port, ssl=ssl_ctx):
        scheme = "wss" if ssl_ctx else "ws"
        logger.info(f"Signaling relay started on {scheme}://{host}:{port}")
        await asyncio.Future()  # Run forever


if __name__ == "__main__":
    main()
