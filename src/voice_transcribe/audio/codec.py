"""
Float <-> PCM16 sample codec.

Negative samples scale by 32768 and non-negative ones by 32767 so the whole
int16 range is used without overflowing on the positive side. Decoding divides
by 32768.0 for every sample.
"""

from typing import List, Sequence

import numpy as np

from voice_transcribe.errors import MalformedFrame
from voice_transcribe.models import EncodedFrame

PCM16_DTYPE = np.dtype("<i2")


def mime_type_for(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"


def encode(samples: Sequence[float], sample_rate: int = 16000, seq: int = 0) -> EncodedFrame:
    x = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    if x.size == 0:
        return EncodedFrame(seq=seq, data=b"", mime_type=mime_type_for(sample_rate))

    scaled = np.where(x < 0, x * 32768.0, x * 32767.0)
    ints = np.clip(np.round(scaled), -32768, 32767).astype(PCM16_DTYPE)
    return EncodedFrame(seq=seq, data=ints.tobytes(), mime_type=mime_type_for(sample_rate))


def decode(frame: bytes, sample_rate: int, channel_count: int = 1) -> List[np.ndarray]:
    """
    Decode interleaved PCM16 into one float32 array per channel.

    Raises:
        MalformedFrame: if the buffer does not hold a whole number of
            sample frames for channel_count channels.
    """
    if isinstance(frame, EncodedFrame):
        frame = frame.data
    if channel_count < 1 or sample_rate <= 0:
        raise MalformedFrame(f"Invalid layout: rate={sample_rate}, channels={channel_count}")
    frame_bytes = channel_count * PCM16_DTYPE.itemsize
    if len(frame) % frame_bytes != 0:
        raise MalformedFrame(
            f"Buffer of {len(frame)} bytes is not a multiple of {frame_bytes} "
            f"({channel_count} channel(s) x 2 bytes)"
        )

    ints = np.frombuffer(frame, dtype=PCM16_DTYPE).reshape(-1, channel_count)
    normalized = ints.astype(np.float32) / 32768.0
    return [np.ascontiguousarray(normalized[:, ch]) for ch in range(channel_count)]
