import unittest
from types import SimpleNamespace

import numpy as np
import scipy.signal

from voice_transcribe.audio.capture import CaptureSurface, CaptureTrack, PyAudioBackend, StreamResampler
from voice_transcribe.config import Config
from voice_transcribe.errors import DeviceUnavailable, PermissionDenied

FAKE_PYAUDIO = SimpleNamespace(paFloat32=1, paContinue=0, paComplete=1, paWASAPI=13)


def device(index, name, channels=2, rate=48000):
    return {"index": index, "name": name, "maxInputChannels": channels,
            "defaultSampleRate": float(rate), "hostApi": 0}


class FakeHost:
    def __init__(self, devices, default_output="Speakers (Realtek Audio)", open_error=None):
        self.devices = devices
        self.default_output = default_output
        self.open_error = open_error
        self.opened = []

    def get_device_count(self):
        return len(self.devices)

    def get_device_info_by_index(self, i):
        return self.devices[i]

    def get_default_output_device_info(self):
        return {"name": self.default_output}

    def get_default_input_device_info(self):
        return self.devices[0]

    def open(self, **kwargs):
        if self.open_error:
            raise self.open_error
        self.opened.append(kwargs)
        return SimpleNamespace(start_stream=lambda: None, stop_stream=lambda: None, close=lambda: None)


class TestLoopbackSelection(unittest.TestCase):
    def setUp(self):
        self.candidates = [
            device(3, "Monitor of HDMI Output"),
            device(4, "Monitor of Speakers (Realtek Audio)"),
            device(5, "Realtek Audio Monitor"),
        ]

    def select(self, host, config=None):
        backend = PyAudioBackend(config or Config(loopback_device=None))
        backend._loopback_candidates = lambda pyaudio, pa: list(self.candidates)
        return backend.find_loopback_device(FAKE_PYAUDIO, host)

    def test_configured_device_wins(self):
        chosen = self.select(FakeHost([]), Config(loopback_device="hdmi"))
        self.assertEqual(chosen["index"], 3)

    def test_default_output_name_match(self):
        chosen = self.select(FakeHost([]))
        self.assertEqual(chosen["index"], 4)

    def test_fuzzy_match_on_shared_words(self):
        chosen = self.select(FakeHost([], default_output="Audio Realtek Speakers"))
        self.assertEqual(chosen["index"], 5)

    def test_falls_back_to_first_candidate(self):
        chosen = self.select(FakeHost([], default_output="USB Headset"))
        self.assertEqual(chosen["index"], 3)

    def test_no_candidates(self):
        self.candidates = []
        self.assertIsNone(self.select(FakeHost([])))


class TestCaptureTrack(unittest.TestCase):
    def test_callback_downmixes_resamples_and_applies_gain(self):
        received = []
        track = CaptureTrack(FAKE_PYAUDIO, FakeHost([]), device(0, "Mic", channels=2, rate=48000),
                             Config(target_rate=16000, capture_gain=2.0))
        track.sink = received.append
        stereo = np.column_stack([np.full(480, 0.1), np.full(480, 0.3)]).astype(np.float32)
        result = track._callback(stereo.tobytes(), 480, None, 0)

        self.assertEqual(result, (None, FAKE_PYAUDIO.paContinue))
        self.assertEqual(len(received), 1)
        # Output trails input by the resampler context
        self.assertEqual(len(received[0]), (480 - track.resampler.context) // 3)
        self.assertEqual(received[0].dtype, np.float32)
        # Interior samples avoid the filter edges
        np.testing.assert_allclose(received[0][40:120], 0.4, atol=0.01)

    def test_detached_callback_completes_stream(self):
        track = CaptureTrack(FAKE_PYAUDIO, FakeHost([]), device(0, "Mic"))
        self.assertEqual(track._callback(b"", 0, None, 0), (None, FAKE_PYAUDIO.paComplete))

    def test_open_errors_are_translated(self):
        denied = CaptureTrack(FAKE_PYAUDIO, FakeHost([], open_error=PermissionError("blocked")), device(0, "Mic"))
        with self.assertRaises(PermissionDenied):
            denied.start(lambda samples: None)
        busy = CaptureTrack(FAKE_PYAUDIO, FakeHost([], open_error=OSError(-9996, "Invalid device")), device(0, "Mic"))
        with self.assertRaises(DeviceUnavailable):
            busy.start(lambda samples: None)
        self.assertFalse(busy.running)

    def test_stop_is_idempotent(self):
        host = FakeHost([])
        track = CaptureTrack(FAKE_PYAUDIO, host, device(0, "Mic"))
        track.start(lambda samples: None)
        self.assertTrue(track.running)
        self.assertEqual(host.opened[0]["frames_per_buffer"], 3072)
        track.stop()
        track.stop()
        self.assertFalse(track.running)


class TestCaptureSurface(unittest.TestCase):
    def test_stop_releases_once(self):
        released = []
        silent = CaptureTrack(FAKE_PYAUDIO, FakeHost([]), device(1, "Display", channels=0))
        surface = CaptureSurface([silent], lambda: released.append(True))
        self.assertEqual(surface.audio_tracks, [])
        surface.stop()
        surface.stop()
        self.assertEqual(released, [True])


class TestStreamResampler(unittest.TestCase):
    def stream(self, signal, from_rate, block_sizes):
        resampler = StreamResampler(from_rate, 16000)
        out, pos, i = [], 0, 0
        while pos < len(signal):
            size = block_sizes[i % len(block_sizes)]
            out.append(resampler.process(signal[pos:pos + size]))
            pos += size
            i += 1
        return resampler, np.concatenate(out)

    def test_same_rate_is_passthrough(self):
        audio = np.ones(10, dtype=np.float32)
        self.assertIs(StreamResampler(16000, 16000).process(audio), audio)

    def test_blockwise_output_matches_one_shot(self):
        for rate, blocks in [(48000, [480, 1024, 37]), (44100, [441, 1000, 3])]:
            with self.subTest(rate=rate):
                t = np.arange(rate // 5) / rate
                signal = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
                resampler, streamed = self.stream(signal, rate, blocks)
                whole = scipy.signal.resample_poly(signal, resampler.up, resampler.down)
                # No edge transients at block boundaries
                np.testing.assert_allclose(streamed, whole[:len(streamed)], atol=1e-4)

    def test_no_drift_over_many_blocks(self):
        resampler, streamed = self.stream(np.zeros(100000, dtype=np.float32), 44100, [1000])
        # Rounding up per block would give 100 * 363 samples here
        self.assertEqual(len(streamed), (100000 - resampler.context) * 160 // 441)

    def test_history_stays_bounded(self):
        resampler, _ = self.stream(np.zeros(48000, dtype=np.float32), 48000, [512])
        self.assertLessEqual(len(resampler._history), 2 * (resampler.context + resampler.down))


if __name__ == '__main__':
    unittest.main()
