# app.py
import logging

from cabin.services.logging_utils import setup_logging  # logging config must precede other imports
setup_logging("client")
logger = logging.getLogger(__name__)

import asyncio  # noqa: E402
import signal  # noqa: E402

from cabin.config import ClientConfig  # noqa: E402
from cabin.errors import RoomError  # noqa: E402
from cabin.handlers.room import Room  # noqa: E402
from cabin.services.devices import MediaDevices  # noqa: E402
from cabin.services.render import RenderSurface  # noqa: E402
from cabin.services.rtc import RtcPeerEndpoint  # noqa: E402
from cabin.services.scheduler import AsyncioScheduler  # noqa: E402
from cabin.services.signaling_client import SignalingClient  # noqa: E402
from cabin.services.state import Orientation, Session  # noqa: E402


def main():
    """
    Entry point for the headless room client.

    Reads CABIN_* settings, joins the configured room and stays until
    interrupted (SIGINT/SIGTERM) or the relay connection drops.
    """
    config = ClientConfig.from_env()
    try:
        asyncio.run(run_client(config))
    except RoomError as e:
        logger.error(f"Client stopped: {e}")
        raise SystemExit(1)


async def run_client(config: ClientConfig):
    """
    Build the session components, join the room and wait for departure.

    Parameters:
        config (ClientConfig): Client configuration.
    """
    loop = asyncio.get_running_loop()
    done = asyncio.Event()

    signaling = SignalingClient(config.signaling_url, config.user_id, verify_tls=config.verify_tls)
    await signaling.connect()

    session = Session(self_id=config.user_id, self_name=config.username, room_address=config.room_address)
    endpoint = RtcPeerEndpoint(session.self_id, signaling, config.ice_servers)
    surface = RenderSurface(Orientation(config.orientation))
    room = Room(
        session,
        MediaDevices(config),
        endpoint,
        signaling,
        surface=surface,
        scheduler=AsyncioScheduler(loop),
        on_exit=done.set,
    )
    logger.info(f"Exposed controls: {room.controls()}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(room.leave()))
        except NotImplementedError:
            pass  # Windows event loops

    signaling.on("disconnected", done.set)

    try:
        await room.initialize()
        logger.info(f"Joined room {config.room_address} as {config.username} ({config.user_id})")
        await done.wait()
    finally:
        await room.on_unload()
        await signaling.close()


if __name__ == "__main__":
    main()
