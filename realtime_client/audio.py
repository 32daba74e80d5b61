import base64
import binascii
import math

import numpy as np
from pydub import AudioSegment

from .errors import EncodingError

# raw 16 bit PCM audio at 24kHz, 1 channel, little-endian
SAMPLE_RATE = 24000
PCM16 = np.dtype("<i2")


class AudioRing:
    """
    Fixed-capacity circular buffer of PCM16 samples.

    Once more than *capacity* samples have been appended, the oldest samples are overwritten, so the ring always holds
    the most recent ``min(total_written, capacity)`` samples.
    """

    def __init__(self, capacity: int):
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"AudioRing capacity must be a positive integer, got {capacity!r}")
        self.capacity = capacity
        self.total_written = 0
        self._buffer = np.zeros(capacity, dtype=np.int16)
        self._start = 0
        self._end = 0
        self._length = 0

    def __len__(self):
        return self._length

    def __repr__(self):
        return f"{type(self).__name__}(capacity={self.capacity}, length={self._length})"

    def append(self, samples) -> None:
        """Write *samples* to the ring, evicting the oldest samples if the capacity is exceeded."""
        data = np.asarray(samples, dtype=np.int16).ravel()
        n = len(data)
        if n == 0:
            return
        self.total_written += n

        # only the newest `capacity` samples of an oversized chunk can survive
        if n >= self.capacity:
            self._buffer[:] = data[-self.capacity :]
            self._start = self._end = 0
            self._length = self.capacity
            return

        # write in at most two slices: up to the end of the array, then wrapping around to the front
        first = min(n, self.capacity - self._end)
        self._buffer[self._end : self._end + first] = data[:first]
        self._buffer[: n - first] = data[first:]
        self._end = (self._end + n) % self.capacity

        overflow = max(0, self._length + n - self.capacity)
        self._start = (self._start + overflow) % self.capacity
        self._length = min(self.capacity, self._length + n)

    def snapshot(self) -> np.ndarray:
        """Return a copy of the held samples, oldest first."""
        head = min(self._length, self.capacity - self._start)
        return np.concatenate(
            (self._buffer[self._start : self._start + head], self._buffer[: self._length - head])
        ).astype(np.int16)

    def clear(self) -> None:
        self._start = self._end = self._length = 0
        self.total_written = 0


# ===== encoding =====
def as_samples(audio) -> np.ndarray:
    """View raw little-endian PCM16 bytes, or any int sequence, as an int16 sample array."""
    if isinstance(audio, (bytes, bytearray, memoryview)):
        if len(audio) % PCM16.itemsize:
            raise EncodingError(f"PCM16 audio must have an even number of bytes, got {len(audio)}")
        return np.frombuffer(audio, dtype=PCM16).astype(np.int16)
    return np.asarray(audio, dtype=np.int16)


def float_to_16bit_pcm(float32_array) -> np.ndarray:
    """Convert float amplitudes in [-1, 1] to PCM16 samples. Out-of-range values are clamped."""
    clamped = np.clip(np.asarray(float32_array, dtype=np.float32), -1, 1)
    scaled = np.where(clamped < 0, clamped * 0x8000, clamped * 0x7FFF)
    return scaled.astype(np.int16)


def base64_to_array(b64: str) -> np.ndarray:
    """Decode a base64 string of little-endian PCM16 audio into samples."""
    try:
        raw = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise EncodingError(f"Audio is not valid base64: {e}") from e
    if len(raw) % PCM16.itemsize:
        raise EncodingError(f"PCM16 audio must have an even number of bytes, got {len(raw)}")
    return np.frombuffer(raw, dtype=PCM16).astype(np.int16)


def array_to_base64(audio) -> str:
    """
    Encode audio as base64.

    Float arrays are converted to PCM16 first (see :func:`float_to_16bit_pcm`); int16 arrays and raw bytes are encoded
    as-is.
    """
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return base64.b64encode(audio).decode()
    audio = np.asarray(audio)
    if np.issubdtype(audio.dtype, np.floating):
        audio = float_to_16bit_pcm(audio)
    return base64.b64encode(audio.astype(PCM16).tobytes()).decode()


def merge_int16_arrays(left, right) -> np.ndarray:
    """Concatenate two PCM16 buffers (int16 arrays or raw bytes)."""
    if isinstance(left, (bytes, bytearray)):
        left = np.frombuffer(left, dtype=PCM16)
    if isinstance(right, (bytes, bytearray)):
        right = np.frombuffer(right, dtype=PCM16)
    if not (
        isinstance(left, np.ndarray)
        and isinstance(right, np.ndarray)
        and left.dtype == np.int16
        and right.dtype == np.int16
    ):
        raise ValueError("Both items must be int16 arrays or bytes")
    return np.concatenate((left, right)).astype(np.int16)


def ms_to_sample_index(ms: float, sample_rate: int = SAMPLE_RATE) -> int:
    """The index of the sample at *ms* milliseconds. Negative times clamp to the first sample."""
    return max(0, math.floor(ms * sample_rate / 1000))


# ===== pydub =====
def samples_to_segment(samples, frame_rate: int = SAMPLE_RATE) -> AudioSegment:
    """Wrap PCM16 samples in a mono :class:`pydub.AudioSegment` for playback or export."""
    data = np.asarray(samples, dtype=np.int16).astype(PCM16).tobytes()
    return AudioSegment(data=data, sample_width=2, frame_rate=frame_rate, channels=1)


def segment_to_samples(segment: AudioSegment) -> np.ndarray:
    """Resample an arbitrary :class:`pydub.AudioSegment` to 24kHz mono PCM16 samples."""
    pcm_audio = segment.set_frame_rate(SAMPLE_RATE).set_channels(1).set_sample_width(2).raw_data
    return np.frombuffer(pcm_audio, dtype=PCM16).astype(np.int16)
