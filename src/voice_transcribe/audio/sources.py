import asyncio
import logging
from enum import Enum
from typing import List, Optional

from voice_transcribe.audio.capture import CaptureSurface, PyAudioBackend
from voice_transcribe.audio.mixer import ChunkSink, MixingGraph
from voice_transcribe.config import Config, cfg
from voice_transcribe.errors import NoAudioTrackAvailable

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    PRIMARY_INPUT = "mic"
    SYSTEM_OUTPUT = "system"
    MIXED = "both"


class AudioStream:
    """The single logical chunk stream handed to a transcription session."""

    def __init__(self, kind: SourceKind, surfaces: List[CaptureSurface], graph: MixingGraph):
        self.kind = kind
        self.surfaces = surfaces
        self.graph = graph

    @property
    def tracks(self) -> list:
        return [t for s in self.surfaces for t in s.audio_tracks]

    @property
    def label(self) -> str:
        return " + ".join(t.label for t in self.tracks)

    def attach(self, callback: ChunkSink):
        self.graph.connect(callback)

    def detach(self):
        self.graph.connect(None)

    def stop(self):
        self.graph.close()
        for surface in self.surfaces:
            surface.stop()


class AudioSourceManager:
    def __init__(self, backend=None, config: Config = cfg):
        self.backend = backend or PyAudioBackend(config)
        self.config = config
        self.stream: Optional[AudioStream] = None

    @property
    def active(self) -> bool:
        return self.stream is not None

    async def acquire(self, kind: SourceKind) -> AudioStream:
        """
        Open the capture device(s) for kind and start them into one stream.

        Raises:
            PermissionDenied, DeviceUnavailable, NoAudioTrackAvailable. Nothing
            acquired by a failed call is left running.
        """
        self.release()
        kind = SourceKind(kind)
        surfaces: List[CaptureSurface] = []
        try:
            if kind in (SourceKind.PRIMARY_INPUT, SourceKind.MIXED):
                surfaces.append(await asyncio.to_thread(self.backend.open_primary_input))
            if kind in (SourceKind.SYSTEM_OUTPUT, SourceKind.MIXED):
                surface = await asyncio.to_thread(self.backend.open_system_output)
                surfaces.append(surface)
                if not surface.audio_tracks:
                    raise NoAudioTrackAvailable(
                        "No audio track found in the system output capture. "
                        "Make sure a loopback/monitor device is available and shared."
                    )

            graph = MixingGraph(self.config.chunk_size, self.config.mixer_max_lag_chunks)
            stream = AudioStream(kind, surfaces, graph)
            # Register every input before any track starts feeding the graph
            feeds = [graph.add_input(f"{i}:{track.label}") for i, track in enumerate(stream.tracks)]
            for track, feed in zip(stream.tracks, feeds):
                track.start(feed)
        except BaseException:
            for surface in surfaces:
                surface.stop()
            raise

        self.stream = stream
        logger.info(f"[SOURCE] Acquired {kind.value}: {stream.label}")
        return stream

    def release(self):
        stream, self.stream = self.stream, None
        if stream is None:
            return
        stream.stop()
        logger.info(f"[SOURCE] Released {stream.kind.value}")
