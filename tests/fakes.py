"""In-memory stand-ins for the capture backend, the audio stream, the transport and the Live SDK."""
import asyncio
from types import SimpleNamespace

import numpy as np

from voice_transcribe.audio.capture import CaptureSurface
from voice_transcribe.models import AudioChunk


class FakeTrack:
    def __init__(self, label: str, has_audio: bool = True):
        self.label = label
        self.has_audio = has_audio
        self.sink = None
        self.started = False
        self.stopped = False

    def start(self, sink):
        self.started = True
        self.sink = sink

    def stop(self):
        self.stopped = True
        self.sink = None

    def feed(self, samples):
        if self.sink is not None:
            self.sink(np.asarray(samples, dtype=np.float32))


class FakeBackend:
    def __init__(self, primary=None, system=None, primary_error=None, system_error=None):
        self.primary = primary if primary is not None else [FakeTrack("mic")]
        self.system = system if system is not None else [FakeTrack("speakers")]
        self.primary_error = primary_error
        self.system_error = system_error
        self.released = []

    def open_primary_input(self):
        if self.primary_error:
            raise self.primary_error
        return CaptureSurface(self.primary, lambda: self.released.append("primary"))

    def open_system_output(self):
        if self.system_error:
            raise self.system_error
        return CaptureSurface(self.system, lambda: self.released.append("system"))


class FakeStream:
    """Minimal AudioStream: the test pushes chunks through the attached callback."""

    def __init__(self):
        self.callback = None
        self.attach_count = 0
        self.label = "fake"

    def attach(self, callback):
        self.callback = callback
        self.attach_count += 1

    def detach(self):
        self.callback = None

    def feed(self, chunk: AudioChunk):
        if self.callback is not None:
            self.callback(chunk)


class FakeTransport:
    def __init__(self, open_error=None, open_delay: float = 0.0, fail_seqs=()):
        self.open_error = open_error
        self.open_delay = open_delay
        self.fail_seqs = set(fail_seqs)
        self.opened = False
        self.recognition = None
        self.sent = []
        self.close_count = 0
        self.inbound: asyncio.Queue = asyncio.Queue()

    async def open(self, recognition):
        self.recognition = recognition
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def send(self, frame):
        if frame.seq in self.fail_seqs:
            raise ConnectionError(f"send failed for {frame.seq}")
        self.sent.append(frame)

    async def events(self):
        while True:
            item = await self.inbound.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self):
        self.close_count += 1
        self.inbound.put_nowait(None)


def chunk(seq: int, level: float = 0.0, size: int = 2048) -> AudioChunk:
    return AudioChunk(seq=seq, samples=np.full(size, level, dtype=np.float32))


async def settle(rounds: int = 20):
    for _ in range(rounds):
        await asyncio.sleep(0)


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


# --- Gemini Live SDK stand-ins ---

def message(text=None, turn_complete=False):
    transcription = SimpleNamespace(text=text) if text is not None else None
    content = SimpleNamespace(input_transcription=transcription, turn_complete=turn_complete)
    return SimpleNamespace(server_content=content)


class FakeLiveSession:
    """Plays back one list of messages per receive() call; a number in the list pauses that long."""

    def __init__(self, turns):
        self.turns = list(turns)
        self.sent = []

    async def send_realtime_input(self, audio=None):
        self.sent.append(audio)

    async def receive(self):
        if not self.turns:
            return
        for item in self.turns.pop(0):
            if isinstance(item, Exception):
                raise item
            if isinstance(item, (int, float)):
                await asyncio.sleep(item)
                continue
            yield item


class FakeConnectContext:
    def __init__(self, session):
        self.session = session
        self.exited = False

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        self.exited = True


class FakeClient:
    def __init__(self, session):
        self.context = FakeConnectContext(session)
        self.connect_kwargs = None
        self.aio = SimpleNamespace(live=SimpleNamespace(connect=self.connect))

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs
        return self.context

