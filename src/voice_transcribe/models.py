from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union
import numpy as np

from voice_transcribe.config import LANGUAGES

SYSTEM_INSTRUCTION = (
    "You are a professional real-time transcriptionist. Transcribe the captured speaker's audio "
    "verbatim, exactly as spoken. Do not respond verbally, do not answer questions, do not "
    "paraphrase, summarize or translate, and do not add assistant-like commentary."
)

@dataclass(frozen=True)
class AudioChunk:
    seq: int             # monotonically increasing per stream
    samples: np.ndarray  # float32 mono at the target rate, fixed length

@dataclass(frozen=True)
class EncodedFrame:
    seq: int
    data: bytes          # PCM16 little-endian
    mime_type: str       # e.g. "audio/pcm;rate=16000"

@dataclass(frozen=True)
class VadState:
    active: bool = False
    consecutive_above: int = 0
    consecutive_below: int = 0

@dataclass(frozen=True)
class VadTransition:
    seq: int
    active: bool
    energy: float

class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)

@dataclass(frozen=True)
class RecognitionEvent:
    text: str
    is_final: bool

@dataclass(frozen=True)
class Segment:
    id: str              # uuid
    text: str
    created_at: float    # unix timestamp

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "createdAt": self.created_at}

@dataclass(frozen=True)
class SegmentRecord:
    session_id: str
    speaker_id: str
    segment_text: str
    cumulative_transcript: str
    participants: List[str]

@dataclass(frozen=True)
class RecognitionConfig:
    language: str = "English (US)"
    vocabulary: str = ""

    def __post_init__(self):
        if self.language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {self.language!r}")

    @property
    def system_instruction(self) -> str:
        parts = [SYSTEM_INSTRUCTION, f"The speaker is talking in {self.language}; transcribe in that language."]
        if self.vocabulary.strip():
            parts.append(f"Expect the following terms and jargon: {self.vocabulary.strip()}")
        return " ".join(parts)

# --- Session channel events ---

@dataclass(frozen=True)
class FrameSent:
    seq: int
    size: int

@dataclass(frozen=True)
class RecognitionReceived:
    event: RecognitionEvent

@dataclass(frozen=True)
class VadChanged:
    transition: VadTransition

@dataclass(frozen=True)
class Terminated:
    state: SessionState            # CLOSED or FAILED
    reason: str
    error: Optional[Exception] = field(default=None, compare=False)

SessionEvent = Union[FrameSent, RecognitionReceived, VadChanged, Terminated]
