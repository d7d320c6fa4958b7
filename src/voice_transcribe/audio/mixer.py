import logging
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from voice_transcribe.models import AudioChunk
from voice_transcribe.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

ChunkSink = Callable[[AudioChunk], None]


class MixingGraph:
    """
    Sums any number of inputs onto one sample clock and cuts the result into
    fixed-size AudioChunks.

    A chunk is emitted once every input holds chunk_size samples. If one input
    stalls, the others may run up to max_lag_chunks ahead; past that the
    stalled input is zero-filled so the output keeps its pace, and any
    partial block it still holds is discarded to stay on the shared clock.
    """

    def __init__(self, chunk_size: int, max_lag_chunks: int = 2):
        self.chunk_size = chunk_size
        self.max_lag_chunks = max_lag_chunks
        self._inputs: Dict[str, RingBuffer] = {}
        self._sink: Optional[ChunkSink] = None
        self._seq = 0
        self.discarded_samples = 0
        self._lock = threading.Lock()
        self.closed = False

    @property
    def inputs(self) -> List[str]:
        return list(self._inputs)

    @property
    def chunks_emitted(self) -> int:
        return self._seq

    def add_input(self, name: str) -> Callable[[np.ndarray], None]:
        with self._lock:
            self._inputs[name] = RingBuffer(self.chunk_size * (self.max_lag_chunks + 2))
        return lambda samples: self.push(name, samples)

    def connect(self, sink: Optional[ChunkSink]):
        with self._lock:
            self._sink = sink

    def push(self, name: str, samples: np.ndarray):
        with self._lock:
            if self.closed:
                return
            self._inputs[name].write(np.asarray(samples, dtype=np.float32))
            # Sink is called under the lock so chunks leave in seq order
            for chunk in self._drain():
                if self._sink is not None:
                    self._sink(chunk)

    def _drain(self):
        buffers = list(self._inputs.values())
        lag_limit = self.chunk_size * (self.max_lag_chunks + 1)
        while True:
            levels = [b.available for b in buffers]
            if min(levels) < self.chunk_size and max(levels) < lag_limit:
                return
            mixed = np.zeros(self.chunk_size, dtype=np.float32)
            for buf in buffers:
                if buf.available < self.chunk_size:
                    # Stalled input counts as silence; its partial tail is dropped
                    self.discarded_samples += buf.available
                    buf.clear()
                    continue
                mixed += buf.read(self.chunk_size)
            np.clip(mixed, -1.0, 1.0, out=mixed)
            chunk = AudioChunk(seq=self._seq, samples=mixed)
            self._seq += 1
            yield chunk

    def close(self):
        with self._lock:
            self.closed = True
            self._sink = None
            for buf in self._inputs.values():
                buf.clear()
