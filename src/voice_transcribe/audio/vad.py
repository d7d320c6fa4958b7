from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np

from voice_transcribe.config import Config, cfg
from voice_transcribe.models import AudioChunk, VadState, VadTransition


@dataclass(frozen=True)
class VadParams:
    voice_threshold: float = 0.01    # RMS to count a chunk as voiced
    silence_threshold: float = 0.005  # RMS to count a chunk as silent; strictly lower
    min_speech_chunks: int = 2
    min_silence_chunks: int = 7

    def __post_init__(self):
        if not self.silence_threshold < self.voice_threshold:
            raise ValueError("silence_threshold must be lower than voice_threshold")
        if self.min_speech_chunks < 1 or self.min_silence_chunks < 1:
            raise ValueError("chunk counts must be positive")

    @classmethod
    def from_config(cls, config: Config) -> "VadParams":
        # Limits in chunks, from the configured durations
        chunk_ms = config.chunk_duration_ms
        return cls(
            voice_threshold=config.vad_voice_threshold,
            silence_threshold=config.vad_silence_threshold,
            min_speech_chunks=max(1, int(config.min_speech_ms / chunk_ms)),
            min_silence_chunks=max(1, int(config.min_silence_ms / chunk_ms)),
        )


def rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    x = np.asarray(samples, dtype=np.float32)
    return float(np.sqrt(np.mean(x ** 2)))


def classify(chunk: AudioChunk, state: VadState, params: VadParams) -> Tuple[VadState, Optional[VadTransition]]:
    """
    One hysteresis step. Pure: returns the next state and, only when the
    smoothed activity flips, the transition to report.
    """
    energy = rms(chunk.samples)

    if state.active:
        below = state.consecutive_below + 1 if energy < params.silence_threshold else 0
        if below >= params.min_silence_chunks:
            # Speech ended
            return VadState(active=False), VadTransition(seq=chunk.seq, active=False, energy=energy)
        return replace(state, consecutive_above=0, consecutive_below=below), None

    above = state.consecutive_above + 1 if energy >= params.voice_threshold else 0
    if above >= params.min_speech_chunks:
        # Speech started
        return VadState(active=True), VadTransition(seq=chunk.seq, active=True, energy=energy)
    return replace(state, consecutive_above=above, consecutive_below=0), None


class VoiceActivityDetector:
    """Owns the VadState of one capture session."""

    def __init__(self, params: Optional[VadParams] = None, config: Config = cfg):
        self.params = params or VadParams.from_config(config)
        self.state = VadState()

    @property
    def active(self) -> bool:
        return self.state.active

    def process(self, chunk: AudioChunk) -> Optional[VadTransition]:
        self.state, transition = classify(chunk, self.state, self.params)
        return transition

    def reset(self):
        self.state = VadState()
