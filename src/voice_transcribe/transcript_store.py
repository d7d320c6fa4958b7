from dataclasses import dataclass
from typing import Dict, Optional
import logging
import threading
from pathlib import Path
from datetime import datetime

from voice_transcribe.config import Config, cfg
from voice_transcribe.models import Segment, SegmentRecord

logger = logging.getLogger(__name__)

@dataclass
class MarkdownSession:
    session_id: str
    started_at: datetime
    path: Path
    segment_count: int = 0
    cumulative: str = ""

class TranscriptStore:
    """Persists finalized segments as one Markdown file per capture session."""

    def __init__(self, base_dir: Optional[Path] = None, config: Config = cfg):
        self.base_dir = Path(base_dir or config.transcript_dir)
        self.lock = threading.Lock()
        self.sessions: Dict[str, MarkdownSession] = {}

    def _make_unique_session_path(self, started_at: datetime, session_id: str) -> Path:
        stamp = started_at.strftime("%Y-%m-%d_%H-%M")
        idx = 0
        while True:
            suffix = "" if idx == 0 else f"_{idx:02d}"
            path = self.base_dir / f"{stamp}_{session_id}{suffix}.md"
            if not path.exists():
                return path
            idx += 1

    def start_session(self, session_id: str) -> MarkdownSession:
        with self.lock:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            started_at = datetime.now()
            path = self._make_unique_session_path(started_at, session_id)
            session = MarkdownSession(session_id=session_id, started_at=started_at, path=path)
            self.sessions[session_id] = session

            started_label = started_at.strftime("%Y-%m-%d %H:%M")
            path.write_text(
                f"# Transcript {session_id}\n\nStarted: {started_label}\n\n",
                encoding="utf-8",
            )
            logger.info(f"[STORE] Session started: {path}")
            return session

    def save(self, segment: Segment, record: SegmentRecord):
        """Append one segment. Raises OSError on write failure; the caller logs it."""
        with self.lock:
            session = self.sessions.get(record.session_id)
            if session is None:
                logger.warning(f"[STORE] No open session {record.session_id!r}, segment not saved")
                return
            ts = datetime.fromtimestamp(segment.created_at).strftime("%H:%M:%S")
            with session.path.open("a", encoding="utf-8") as f:
                f.write(f"- [{ts}] {record.segment_text}\n")
            session.segment_count += 1
            session.cumulative = record.cumulative_transcript

    def stop_session(self, session_id: str):
        with self.lock:
            session = self.sessions.pop(session_id, None)
        if session:
            logger.info(f"[STORE] Session closed: {session.path} ({session.segment_count} segments)")
