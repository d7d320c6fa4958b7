import logging
import sys
import threading
from math import gcd
from typing import Callable, List, Optional

import numpy as np
import scipy.signal

from voice_transcribe.config import Config, cfg
from voice_transcribe.errors import DeviceUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

SampleSink = Callable[[np.ndarray], None]

# Name fragments of input devices that expose what the speakers are playing
LOOPBACK_HINTS = ("monitor", "stereo mix", "loopback", "立体声混音")


def _load_pyaudio():
    """PyAudioWPatch adds WASAPI loopback on Windows; plain PyAudio elsewhere."""
    try:
        if sys.platform == "win32":
            import pyaudiowpatch as pyaudio
        else:
            import pyaudio
    except ImportError as e:
        raise DeviceUnavailable(f"PyAudio is not installed: {e}. Install the 'capture' extra.") from e
    return pyaudio


def _translate_os_error(e: Exception, what: str) -> Exception:
    if isinstance(e, PermissionError):
        return PermissionDenied(f"Permission denied opening {what}: {e}")
    return DeviceUnavailable(f"Cannot open {what}: {e}")


class StreamResampler:
    """
    resample_poly applied block by block without block-edge artifacts.

    Every call filters the new block together with retained input on both
    sides of it, and output is cut by global sample index so per-block
    rounding never accumulates into drift. Output trails input by `context`
    samples.
    """

    def __init__(self, from_rate: int, to_rate: int):
        g = gcd(from_rate, to_rate)
        self.up = to_rate // g
        self.down = from_rate // g
        # resample_poly's filter reaches 10 * max(up, down) upsampled samples each way
        self.context = int(np.ceil(10 * max(self.up, self.down) / self.up)) + 1
        pad = -(-self.context // self.down) * self.down
        self._history = np.zeros(pad, dtype=np.float32)
        self._history_start = -pad  # global input index of _history[0], always a multiple of down
        self._produced = 0

    @property
    def passthrough(self) -> bool:
        return self.up == self.down

    def process(self, block: np.ndarray) -> np.ndarray:
        block = np.asarray(block, dtype=np.float32)
        if self.passthrough:
            return block

        data = np.concatenate((self._history, block))
        start = self._history_start
        ready = max(0, (start + len(data) - self.context) * self.up // self.down)
        base = start * self.up // self.down
        out = np.zeros(0, dtype=np.float32)
        if ready > self._produced:
            y = scipy.signal.resample_poly(data, self.up, self.down)
            out = y[self._produced - base:ready - base].astype(np.float32)
            self._produced = ready

        # Keep what the next output sample's filter still needs
        keep_from = (self._produced * self.down // self.up - self.context) // self.down * self.down
        keep_from = max(keep_from, start)
        self._history = data[keep_from - start:]
        self._history_start = keep_from
        return out


class CaptureTrack:
    """One open capture device delivering mono float32 at the target rate."""

    def __init__(self, pyaudio_module, pa, device_info: dict, config: Config = cfg):
        self.pyaudio = pyaudio_module
        self.pa = pa
        self.device_info = device_info
        self.config = config
        self.stream = None
        self.sink: Optional[SampleSink] = None
        rate = int(device_info.get("defaultSampleRate") or config.target_rate)
        self.resampler = StreamResampler(rate, config.target_rate)
        self._lock = threading.Lock()

    @property
    def label(self) -> str:
        return self.device_info["name"]

    @property
    def has_audio(self) -> bool:
        return int(self.device_info.get("maxInputChannels", 0)) > 0

    @property
    def running(self) -> bool:
        return self.stream is not None

    def start(self, sink: SampleSink):
        channels = int(self.device_info["maxInputChannels"])
        rate = int(self.device_info["defaultSampleRate"])
        blocksize = int(self.config.capture_blocksize * rate / self.config.target_rate)
        self.sink = sink
        self.resampler = StreamResampler(rate, self.config.target_rate)
        logger.info(f"[CAPTURE] Starting {self.label}: {rate}Hz x{channels} -> {self.config.target_rate}Hz mono")
        try:
            self.stream = self.pa.open(
                format=self.pyaudio.paFloat32,
                channels=channels,
                rate=rate,
                input=True,
                input_device_index=self.device_info["index"],
                frames_per_buffer=blocksize,
                stream_callback=self._callback,
            )
            self.stream.start_stream()
        except OSError as e:
            self.stream = None
            raise _translate_os_error(e, self.label) from e

    def _callback(self, in_data, frame_count, time_info, status):
        sink = self.sink
        if sink is None:
            return (None, self.pyaudio.paComplete)

        try:
            audio = np.frombuffer(in_data, dtype=np.float32)
            channels = int(self.device_info["maxInputChannels"])
            if channels > 1:
                # Downmix to mono: average channels
                audio = audio.reshape(-1, channels).mean(axis=1)
            audio = self.resampler.process(audio)
            if len(audio) == 0:
                return (None, self.pyaudio.paContinue)
            if self.config.capture_gain != 1.0:
                audio = audio * self.config.capture_gain
            sink(audio.astype(np.float32))
        except Exception as e:
            logger.error(f"[CAPTURE] Callback error on {self.label}: {e}")

        return (None, self.pyaudio.paContinue)

    def stop(self):
        with self._lock:
            stream, self.stream = self.stream, None
            self.sink = None
        if stream is None:
            return
        try:
            stream.stop_stream()
            stream.close()
        except OSError as e:
            logger.warning(f"[CAPTURE] Error closing {self.label}: {e}")
        logger.info(f"[CAPTURE] Stopped {self.label}")


class CaptureSurface:
    """Everything obtained by one acquisition call. stop() releases all of it."""

    def __init__(self, tracks: List, on_release: Optional[Callable[[], None]] = None):
        self.tracks = list(tracks)
        self._on_release = on_release

    @property
    def audio_tracks(self) -> List:
        return [t for t in self.tracks if t.has_audio]

    def stop(self):
        for track in self.tracks:
            track.stop()
        release, self._on_release = self._on_release, None
        if release:
            release()


class PyAudioBackend:
    def __init__(self, config: Config = cfg):
        self.config = config

    def _open_host(self):
        pyaudio = _load_pyaudio()
        try:
            return pyaudio, pyaudio.PyAudio()
        except OSError as e:
            raise _translate_os_error(e, "the audio host") from e

    def open_primary_input(self) -> CaptureSurface:
        pyaudio, pa = self._open_host()
        try:
            device = self._find_input_device(pa)
        except OSError as e:
            pa.terminate()
            raise _translate_os_error(e, "the input device") from e
        if device is None:
            pa.terminate()
            raise DeviceUnavailable("No input device found")
        logger.info(f"[CAPTURE] Primary input: {device['name']}")
        return CaptureSurface([CaptureTrack(pyaudio, pa, device, self.config)], pa.terminate)

    def open_system_output(self) -> CaptureSurface:
        pyaudio, pa = self._open_host()
        try:
            device = self.find_loopback_device(pyaudio, pa)
        except OSError as e:
            pa.terminate()
            raise _translate_os_error(e, "the loopback device") from e
        tracks = [CaptureTrack(pyaudio, pa, device, self.config)] if device else []
        return CaptureSurface(tracks, pa.terminate)

    def _find_input_device(self, pa) -> Optional[dict]:
        if self.config.capture_device:
            for i in range(pa.get_device_count()):
                dev = pa.get_device_info_by_index(i)
                if dev.get("maxInputChannels", 0) > 0 and not dev.get("isLoopbackDevice") \
                        and self.config.capture_device.lower() in dev["name"].lower():
                    return dev
            logger.warning(f"[CAPTURE] Configured device '{self.config.capture_device}' not found, using default")
        return pa.get_default_input_device_info()

    def _loopback_candidates(self, pyaudio, pa) -> List[dict]:
        candidates = []
        if sys.platform == "win32":
            try:
                wasapi_info = pa.get_host_api_info_by_type(pyaudio.paWASAPI)
            except OSError:
                logger.warning("[CAPTURE] WASAPI not found")
                return candidates
            for i in range(pa.get_device_count()):
                dev = pa.get_device_info_by_index(i)
                if dev["hostApi"] == wasapi_info["index"] and dev.get("isLoopbackDevice"):
                    candidates.append(dev)
        else:
            for i in range(pa.get_device_count()):
                dev = pa.get_device_info_by_index(i)
                if any(hint in dev["name"].lower() for hint in LOOPBACK_HINTS):
                    candidates.append(dev)
        return candidates

    def find_loopback_device(self, pyaudio, pa) -> Optional[dict]:
        candidates = self._loopback_candidates(pyaudio, pa)
        if not candidates:
            logger.warning("[CAPTURE] No loopback device found.")
            return None

        # Priority 1: Configured device
        if self.config.loopback_device:
            for dev in candidates:
                if self.config.loopback_device.lower() in dev["name"].lower():
                    logger.info(f"[CAPTURE] Selected loopback device (matched config): {dev['name']}")
                    return dev
            logger.warning(f"[CAPTURE] Configured loopback '{self.config.loopback_device}' not found in candidates.")

        # Priority 2: Match default output device
        try:
            default_name = pa.get_default_output_device_info()["name"]
        except OSError:
            default_name = ""
        if default_name:
            for dev in candidates:
                if default_name in dev["name"]:
                    logger.info(f"[CAPTURE] Selected loopback device (matched default): {dev['name']}")
                    return dev

            # Priority 3: Fuzzy match, at least 2 words in common
            def_tokens = set(default_name.split())
            for dev in candidates:
                if len(def_tokens.intersection(dev["name"].split())) >= 2:
                    logger.info(f"[CAPTURE] Selected loopback device (fuzzy match): {dev['name']}")
                    return dev

        # Priority 4: First available
        logger.warning(f"[CAPTURE] Could not match default output device. Selecting first available: {candidates[0]['name']}")
        return candidates[0]

    def list_devices(self) -> List[dict]:
        pyaudio, pa = self._open_host()
        try:
            devices = []
            for i in range(pa.get_device_count()):
                dev = pa.get_device_info_by_index(i)
                devices.append({
                    "index": dev["index"],
                    "name": dev["name"],
                    "channels": int(dev.get("maxInputChannels", 0)),
                    "rate": int(dev.get("defaultSampleRate", 0)),
                    "loopback": bool(dev.get("isLoopbackDevice"))
                    or any(hint in dev["name"].lower() for hint in LOOPBACK_HINTS),
                })
            return devices
        finally:
            pa.terminate()
