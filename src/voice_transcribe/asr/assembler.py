import logging
import time
import uuid
from collections import deque
from typing import Callable, Deque, List, Optional

from voice_transcribe.config import Config, cfg
from voice_transcribe.models import RecognitionEvent, Segment, SegmentRecord

logger = logging.getLogger(__name__)

SegmentHandler = Callable[[Segment, SegmentRecord], None]


class TranscriptAssembler:
    """
    Folds recognition events into a live buffer and finalized segments.

    A partial event replaces the live buffer. A final event becomes an
    immutable Segment, is appended to the session transcript and the bounded
    history, and clears the live buffer. Handlers see every new segment;
    their failures are logged and never touch assembler state.
    """

    def __init__(self, session_id: str = "", config: Config = cfg,
                 handlers: Optional[List[SegmentHandler]] = None):
        self.session_id = session_id
        self.config = config
        self.handlers: List[SegmentHandler] = list(handlers or [])
        self.live_text: str = ""
        self.transcript: str = ""
        self.history: Deque[Segment] = deque(maxlen=config.history_size)
        self.segment_count = 0
        # Turn text already committed by flush(); the service keeps repeating it until its final
        self._committed_prefix = ""
        self._pending_raw = ""

    @property
    def segments(self) -> List[Segment]:
        return list(self.history)

    @property
    def display_text(self) -> str:
        """What a caption overlay would show right now."""
        if self.live_text:
            return self.live_text
        return self.history[-1].text if self.history else ""

    def apply(self, event: RecognitionEvent) -> Optional[Segment]:
        text = self._strip_committed(event.text)
        if event.is_final:
            self._committed_prefix = ""
            return self._finalize(text if text.strip() else self.live_text)
        if text.strip():
            self.live_text = text
            self._pending_raw = event.text
        return None

    def _strip_committed(self, text: str) -> str:
        prefix = self._committed_prefix
        if not prefix:
            return text
        if text.startswith(prefix):
            return text[len(prefix):].lstrip()
        # Not a continuation of the flushed turn
        self._committed_prefix = ""
        return text

    def flush(self) -> Optional[Segment]:
        """
        Finalize whatever hypothesis is pending, e.g. after a long silence.

        Later events of the same turn still carry the flushed text as a
        prefix; it is cut from them so nothing is committed twice.
        """
        pending_raw = self._pending_raw
        segment = self._finalize(self.live_text)
        if segment is not None:
            self._committed_prefix = pending_raw
        return segment

    def _finalize(self, text: str) -> Optional[Segment]:
        clean_text = text.strip()
        self.live_text = ""
        self._pending_raw = ""
        if not clean_text:
            return None

        segment = Segment(id=str(uuid.uuid4()), text=clean_text, created_at=time.time())
        self.transcript = f"{self.transcript} {clean_text}" if self.transcript else clean_text
        self.history.append(segment)
        self.segment_count += 1

        record = SegmentRecord(
            session_id=self.session_id,
            speaker_id=self.config.speaker_id,
            segment_text=clean_text,
            cumulative_transcript=self.transcript,
            participants=list(self.config.participants),
        )
        for handler in self.handlers:
            try:
                handler(segment, record)
            except Exception as e:
                logger.error(f"[ASSEMBLER] Segment handler failed: {e}")
        return segment

    def reset(self, session_id: str = ""):
        self.session_id = session_id
        self.live_text = ""
        self._committed_prefix = ""
        self._pending_raw = ""
        self.transcript = ""
        self.history.clear()
        self.segment_count = 0
