import asyncio
import logging
import random
import string
from typing import Callable, Optional

from voice_transcribe.asr.assembler import TranscriptAssembler
from voice_transcribe.asr.gemini_client import GeminiLiveTransport
from voice_transcribe.asr.session import LiveTranscriptionSession
from voice_transcribe.audio.sources import AudioSourceManager, SourceKind
from voice_transcribe.config import Config, cfg
from voice_transcribe.models import (
    RecognitionConfig, RecognitionEvent, RecognitionReceived, Segment, SessionState,
    Terminated, VadChanged,
)
from voice_transcribe.output.delivery import DeliveryWorker
from voice_transcribe.output.webhook import WebhookClient
from voice_transcribe.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)


def new_meeting_id(prefix: str) -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}-{suffix}"


class LiveTranscriber:
    """
    Owns one capture at a time: source acquisition, the live session, the
    transcript assembler and segment delivery. A fresh session is built on
    every start() and dropped on stop(); the transcript of the last capture
    stays readable until the next start().
    """

    def __init__(
        self,
        config: Config = cfg,
        sources: Optional[AudioSourceManager] = None,
        transport_factory: Optional[Callable[[], object]] = None,
        store: Optional[TranscriptStore] = None,
        webhook: Optional[WebhookClient] = None,
    ):
        self.config = config
        self.sources = sources or AudioSourceManager(config=config)
        self.transport_factory = transport_factory or (lambda: GeminiLiveTransport(config))
        self.store = store
        self.webhook = webhook

        collaborators = []
        if store is not None:
            collaborators.append(("store", store.save))
        if webhook is not None:
            collaborators.append(("webhook", webhook.post))
        self.delivery = DeliveryWorker(collaborators)
        self.assembler = TranscriptAssembler(config=config, handlers=[self.delivery.submit])

        self.session: Optional[LiveTranscriptionSession] = None
        self.session_id = ""
        self.voice_active = False
        self.last_termination: Optional[Terminated] = None
        self.finished = asyncio.Event()

        # Optional UI hooks
        self.on_live_text: Optional[Callable[[str], None]] = None
        self.on_segment: Optional[Callable[[Segment], None]] = None
        self.on_voice_activity: Optional[Callable[[bool], None]] = None

        self._consumer: Optional[asyncio.Task] = None
        self._auto_stop: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Future] = None
        self._silence_timer: Optional[asyncio.TimerHandle] = None

    @property
    def running(self) -> bool:
        return self.session is not None

    @property
    def stopping(self) -> bool:
        return self._stop_task is not None and not self._stop_task.done()

    @property
    def transcript(self) -> str:
        return self.assembler.transcript

    @property
    def segments(self):
        return self.assembler.segments

    async def start(self, kind: SourceKind, recognition: Optional[RecognitionConfig] = None) -> str:
        """
        Acquire audio, open the live session and start transcribing.

        Raises:
            AcquisitionError: before any audio is captured.
            SessionError: the session could not open; capture is released.
        """
        if self.running:
            raise RuntimeError("A capture is already running; stop() it first")
        recognition = recognition or RecognitionConfig(self.config.source_language, self.config.vocabulary)

        self.session_id = new_meeting_id(self.config.meeting_id_prefix)
        self.assembler.reset(self.session_id)
        self.last_termination = None
        self.voice_active = False
        self.finished.clear()

        stream = await self.sources.acquire(kind)
        logger.info(f"[CONTROL] Capture {self.session_id} started from {stream.label}")

        if self.store is not None:
            try:
                self.store.start_session(self.session_id)
            except OSError as e:
                logger.error(f"[STORE] Failed to start session file: {e}")
        self.delivery.start()

        session = LiveTranscriptionSession(self.transport_factory(), self.config)
        self.session = session
        self._consumer = asyncio.create_task(self._consume(session), name="transcriber-events")
        try:
            await session.start(stream, recognition)
        except BaseException:
            await self.stop()
            raise
        return self.session_id

    async def stop(self):
        """
        Idempotent; safe mid-start and after a failure. Concurrent callers
        share one teardown and all return only once it has finished.
        """
        if not self.stopping:
            self._stop_task = asyncio.ensure_future(self._stop())
        # Teardown runs to the end even if this caller is cancelled
        await asyncio.shield(self._stop_task)

    async def _stop(self):
        try:
            self._cancel_silence_timer()
            session, self.session = self.session, None
            if session is not None:
                await session.stop()
            self.sources.release()

            consumer, self._consumer = self._consumer, None
            if consumer is not None and consumer is not asyncio.current_task():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)
            if session is not None:
                # Events queued before termination still belong to the transcript
                while not session.events.empty():
                    self._dispatch(session.events.get_nowait())
                logger.info(f"[CONTROL] Session stats: {session.stats()}")

            self.assembler.live_text = ""
            await asyncio.to_thread(self.delivery.stop)
            if self.store is not None and self.session_id:
                self.store.stop_session(self.session_id)
        finally:
            self._cancel_silence_timer()
            self.finished.set()

    # --- event channel ---

    async def _consume(self, session: LiveTranscriptionSession):
        while True:
            event = await session.events.get()
            self._dispatch(event)
            if isinstance(event, Terminated):
                if not self.stopping and self.session is session:
                    # Unified "session ended" signal: tear down capture too
                    self._auto_stop = asyncio.create_task(self.stop())
                return

    def _dispatch(self, event):
        if isinstance(event, RecognitionReceived):
            self._on_recognition(event.event)
        elif isinstance(event, VadChanged):
            self.voice_active = event.transition.active
            if self.on_voice_activity:
                self.on_voice_activity(self.voice_active)
        elif isinstance(event, Terminated):
            self.last_termination = event
            if event.state is SessionState.FAILED:
                logger.error(f"[CONTROL] Session failed: {event.error}")
            else:
                logger.info(f"[CONTROL] Session ended: {event.reason}")

    def _on_recognition(self, event: RecognitionEvent):
        segment = self.assembler.apply(event)
        if segment is not None:
            self._on_segment(segment)
        elif not event.is_final and self.on_live_text:
            self.on_live_text(self.assembler.live_text)
        self._schedule_silence_flush()

    def _on_segment(self, segment: Segment):
        logger.info(f"[TRANSCRIPT] {segment.text}")
        if self.on_segment:
            self.on_segment(segment)

    # --- silence finalization ---

    def _schedule_silence_flush(self):
        self._cancel_silence_timer()
        if self.assembler.live_text and self.config.silence_finalize_s > 0:
            loop = asyncio.get_running_loop()
            self._silence_timer = loop.call_later(self.config.silence_finalize_s, self._flush_on_silence)

    def _cancel_silence_timer(self):
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _flush_on_silence(self):
        self._silence_timer = None
        segment = self.assembler.flush()
        if segment is not None:
            logger.debug("[CONTROL] No final result after silence, finalized live hypothesis")
            self._on_segment(segment)
