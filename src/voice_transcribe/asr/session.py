"""
Live transcription session.

    idle --start--> connecting --open--> open --stop--> closing --> closed
    (any) --transport/protocol error--> failed

closed and failed share one cleanup path that runs exactly once: detach the
audio callback, close the remote session, then tear down the outbound queue
and tasks. Every ending is reported once as a Terminated event on `events`,
the session's single ordered output channel.

Audio chunks arrive on a capture thread and are handed to the event loop;
VAD, encoding and queueing happen there. One sender task submits frames to
the transport in chunk order.
"""

import asyncio
import logging
import time
from typing import Optional

from voice_transcribe.audio import codec
from voice_transcribe.audio.vad import VoiceActivityDetector
from voice_transcribe.config import Config, cfg
from voice_transcribe.errors import ConnectionDropped, RemoteProtocolError, SessionError
from voice_transcribe.models import (
    AudioChunk, EncodedFrame, FrameSent, RecognitionConfig, RecognitionReceived,
    SessionEvent, SessionState, Terminated, VadChanged,
)

logger = logging.getLogger(__name__)


def as_session_error(e: Exception) -> SessionError:
    if isinstance(e, SessionError):
        return e
    if isinstance(e, (ConnectionError, OSError, TimeoutError)):
        return ConnectionDropped(str(e))
    return RemoteProtocolError(f"{type(e).__name__}: {e}")


class LiveTranscriptionSession:
    def __init__(self, transport, config: Config = cfg, vad: Optional[VoiceActivityDetector] = None):
        self.transport = transport
        self.config = config
        self.vad = vad or VoiceActivityDetector(config=config)
        self.state = SessionState.IDLE
        self.events: asyncio.Queue = asyncio.Queue()

        # Stats
        self.frames_sent = 0
        self.dropped_frames = 0
        self.events_received = 0
        self._opened_at = 0.0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream = None
        self._outbound: Optional[asyncio.Queue] = None
        self._tasks: list = []
        self._connect_task: Optional[asyncio.Future] = None
        self._stop_requested = False
        self._terminated = False
        self._done = asyncio.Event()

    def _set_state(self, state: SessionState):
        if state is not self.state:
            logger.info(f"[SESSION] {self.state.value} -> {state.value}")
            self.state = state

    def _emit(self, event: SessionEvent):
        self.events.put_nowait(event)

    async def start(self, stream, recognition: RecognitionConfig):
        """
        Connect to the recognizer and, once open, start streaming `stream`.

        Raises:
            SessionError: connect failed (the session is already FAILED and
                cleaned up when this propagates).
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session cannot start from state {self.state.value}")

        self._loop = asyncio.get_running_loop()
        self._stream = stream
        self._set_state(SessionState.CONNECTING)
        self._connect_task = asyncio.ensure_future(self.transport.open(recognition))
        try:
            await self._connect_task
        except asyncio.CancelledError:
            if self._stop_requested:
                # stop() won the race and already cleaned up
                return
            await self._terminate(SessionState.CLOSED, "start cancelled")
            raise
        except Exception as e:
            err = as_session_error(e)
            logger.error(f"[SESSION] Connect failed: {err}")
            await self._terminate(SessionState.FAILED, "connect failed", err)
            if err is e:
                raise
            raise err from e

        if self._stop_requested or self._terminated:
            return
        self._on_open()

    def _on_open(self):
        self._opened_at = time.time()
        self._outbound = asyncio.Queue()
        self._set_state(SessionState.OPEN)
        self._tasks = [
            asyncio.create_task(self._send_loop(), name="session-send"),
            asyncio.create_task(self._receive_loop(), name="session-receive"),
        ]
        # Audio starts flowing only now
        self._stream.attach(self._on_chunk)

    # --- audio path ---

    def _on_chunk(self, chunk: AudioChunk):
        """Capture-thread side: hand the chunk to the event loop."""
        try:
            self._loop.call_soon_threadsafe(self._process_chunk, chunk)
        except RuntimeError:
            # Loop already closed; capture is shutting down
            pass

    def _process_chunk(self, chunk: AudioChunk):
        if self.state is not SessionState.OPEN or self._outbound is None:
            return

        transition = self.vad.process(chunk)
        if transition is not None:
            logger.debug(f"[SESSION] Voice {'active' if transition.active else 'inactive'} at chunk {chunk.seq}")
            self._emit(VadChanged(transition))

        frame = codec.encode(chunk.samples, self.config.target_rate, seq=chunk.seq)
        if self._outbound.qsize() >= self.config.outbound_queue_frames:
            # Stale audio is worthless; drop the oldest queued frame
            stale: EncodedFrame = self._outbound.get_nowait()
            self.dropped_frames += 1
            logger.warning(f"[SESSION] Outbound queue full, dropped frame #{stale.seq}")
        self._outbound.put_nowait(frame)

    async def _send_loop(self):
        while True:
            frame: EncodedFrame = await self._outbound.get()
            try:
                await self.transport.send(frame)
            except Exception as e:
                # Best effort: no retry, keep going with the next frame
                self.dropped_frames += 1
                logger.warning(f"[SESSION] Failed to send frame #{frame.seq}: {e}")
                continue
            self.frames_sent += 1
            self._emit(FrameSent(seq=frame.seq, size=len(frame.data)))

    # --- inbound path ---

    async def _receive_loop(self):
        try:
            async for event in self.transport.events():
                self.events_received += 1
                self._emit(RecognitionReceived(event))
        except Exception as e:
            err = as_session_error(e)
            logger.error(f"[SESSION] Transport error: {err}")
            await self._terminate(SessionState.FAILED, "transport error", err)
            return
        if self.state is SessionState.OPEN:
            await self._terminate(SessionState.CLOSED, "remote closed")

    # --- shutdown ---

    async def stop(self):
        """Safe from any state, any number of times. Never raises."""
        try:
            if self._terminated:
                await self._done.wait()
                return
            self._stop_requested = True
            if self._connect_task is not None and not self._connect_task.done():
                self._connect_task.cancel()
                # Let the half-open connect unwind before closing the transport
                await asyncio.gather(self._connect_task, return_exceptions=True)
            await self._terminate(SessionState.CLOSED, "stopped")
        except Exception as e:
            logger.error(f"[SESSION] Error during stop: {e}")

    async def _terminate(self, state: SessionState, reason: str, error: Optional[Exception] = None):
        if self._terminated:
            return
        self._terminated = True
        try:
            # 1. no further frames
            if self._stream is not None:
                self._stream.detach()
            if state is SessionState.CLOSED and self.state in (SessionState.CONNECTING, SessionState.OPEN):
                self._set_state(SessionState.CLOSING)

            # 2. remote closure
            try:
                await self.transport.close()
            except Exception as e:
                logger.warning(f"[SESSION] Error closing transport: {e}")

            # 3. local processing graph
            current = asyncio.current_task()
            pending = [t for t in self._tasks if t is not current and not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._tasks = []
            self._outbound = None
            self.vad.reset()
        finally:
            self._set_state(state)
            logger.info(f"[SESSION] Terminated ({reason}) | sent={self.frames_sent} dropped={self.dropped_frames}")
            self._emit(Terminated(state=state, reason=reason, error=error))
            self._done.set()

    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "frames_sent": self.frames_sent,
            "dropped_frames": self.dropped_frames,
            "events_received": self.events_received,
            "uptime_s": time.time() - self._opened_at if self._opened_at else 0.0,
        }
