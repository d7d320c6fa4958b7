import numpy as np

class RingBuffer:
    """Bounded FIFO of samples. Writers overwrite the oldest data once full.

    Not locked: the mixing graph serializes access to all of its inputs.
    """

    def __init__(self, size_samples: int, dtype=np.float32):
        self.size_samples = size_samples
        self.dtype = dtype
        self.buffer = np.zeros(size_samples, dtype=dtype)
        self.read_index = 0
        self.available = 0
        self.overflowed = 0  # samples lost to overwrite

    @property
    def write_index(self) -> int:
        return (self.read_index + self.available) % self.size_samples

    def write(self, data: np.ndarray):
        """Append data to the ring buffer."""
        n_samples = len(data)
        if n_samples == 0:
            return

        if n_samples >= self.size_samples:
            # If data is larger than buffer, just keep the last part
            self.overflowed += self.available + n_samples - self.size_samples
            self.buffer[:] = data[-self.size_samples:]
            self.read_index = 0
            self.available = self.size_samples
            return

        overflow = self.available + n_samples - self.size_samples
        if overflow > 0:
            # Drop the oldest samples to make room
            self.read_index = (self.read_index + overflow) % self.size_samples
            self.available -= overflow
            self.overflowed += overflow

        start = self.write_index
        first_len = min(n_samples, self.size_samples - start)
        self.buffer[start:start + first_len] = data[:first_len]
        if first_len < n_samples:
            # Wrap around
            self.buffer[:n_samples - first_len] = data[first_len:]
        self.available += n_samples

    def read(self, n_samples: int) -> np.ndarray:
        """Consume up to n_samples of the oldest data."""
        n = min(n_samples, self.available)
        if n <= 0:
            return np.zeros(0, dtype=self.dtype)

        end = self.read_index + n
        if end <= self.size_samples:
            out = self.buffer[self.read_index:end].copy()
        else:
            out = np.concatenate((self.buffer[self.read_index:], self.buffer[:end - self.size_samples]))
        self.read_index = end % self.size_samples
        self.available -= n
        return out

    def clear(self):
        self.read_index = 0
        self.available = 0
