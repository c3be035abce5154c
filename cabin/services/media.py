# services/media.py
"""
Media stream primitives shared by local capture and remote peers.

A MediaStream is an ordered set of aiortc tracks. Every track that enters a
stream is wrapped in a ToggleableTrack so it exposes an `enabled` flag, the way
browser tracks do: a disabled track keeps flowing but carries silence or black
frames, so muting never requires renegotiation.
"""
import logging
import uuid
from typing import Iterable, List, Optional

from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def _blank_like(frame):
    """
    Build a silent audio frame or a black video frame matching `frame`.

    Args:
        frame (av.AudioFrame | av.VideoFrame): Frame whose geometry and timing are copied.

    Returns:
        av.AudioFrame | av.VideoFrame: Blank frame with the same pts and time base.
    """
    if isinstance(frame, VideoFrame):
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
        # luma plane at 0, chroma planes at mid-range -> black
        for index, plane in enumerate(blank.planes):
            fill = 0 if index == 0 else 128
            plane.update(bytes([fill]) * plane.buffer_size)
    else:
        blank = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in blank.planes:
            plane.update(bytes(plane.buffer_size))
        blank.sample_rate = frame.sample_rate
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class ToggleableTrack(MediaStreamTrack):
    """
    Relays frames from a source track and adds an `enabled` flag.

    Stopping the wrapper stops the source; the source ending (device unplugged,
    screen capture stopped from the OS, remote connection closed) ends the wrapper.
    """

    def __init__(self, source: MediaStreamTrack, enabled: bool = True) -> None:
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = enabled
        source.on("ended", self._on_source_ended)

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        return _blank_like(frame)

    def _on_source_ended(self) -> None:
        logger.debug(f"Source of {self.kind} track {self.id} ended")
        self.stop()

    def stop(self) -> None:
        if self.readyState == "ended":
            return
        super().stop()
        self.source.stop()


class MediaStream:
    """
    Ordered collection of tracks, at most one live track per kind in practice.
    """

    def __init__(self, tracks: Optional[Iterable[MediaStreamTrack]] = None, stream_id: Optional[str] = None) -> None:
        self.id = stream_id or str(uuid.uuid4())
        self._tracks: List[MediaStreamTrack] = list(tracks or [])

    def get_tracks(self) -> List[MediaStreamTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    def first_track(self, kind: str) -> Optional[MediaStreamTrack]:
        """
        Return the first track of `kind` ("audio" or "video"), or None.
        """
        return next((t for t in self._tracks if t.kind == kind), None)

    def add_track(self, track: MediaStreamTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: MediaStreamTrack) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def stop(self) -> None:
        """
        Stop every track in the stream. Stopped tracks stay in the stream.
        """
        for track in self._tracks:
            track.stop()

    def __repr__(self) -> str:
        kinds = ",".join(t.kind for t in self._tracks)
        return f"MediaStream(id={self.id}, tracks=[{kinds}])"
