from __future__ import annotations

import base64
from collections import deque
from dataclasses import dataclass
from typing import Deque, List

import numpy as np

INPUT_RATE = 16000
OUTPUT_RATE = 24000


@dataclass(frozen=True)
class AudioBlob:
    data: str  # base64
    mime_type: str


def encode_pcm16(samples, rate: int = INPUT_RATE) -> AudioBlob:
    """Float samples in [-1, 1] -> base64 little-endian PCM16."""
    x = np.asarray(samples, dtype=np.float32)
    pcm = np.clip(x * 32768.0, -32768, 32767).astype("<i2")
    return AudioBlob(
        data=base64.b64encode(pcm.tobytes()).decode("ascii"),
        mime_type=f"audio/pcm;rate={rate}",
    )


def decode_pcm16(data, num_channels: int = 1) -> np.ndarray:
    """
    Base64 string (or raw bytes) of interleaved PCM16 -> float32 array of
    shape (num_channels, frames) in [-1, 1).
    """
    raw = base64.b64decode(data) if isinstance(data, str) else bytes(data)
    pcm = np.frombuffer(raw, dtype="<i2")
    frames = len(pcm) // num_channels
    pcm = pcm[: frames * num_channels].reshape(frames, num_channels)
    return (pcm.T.astype(np.float32)) / 32768.0


def pcm16_duration(raw: bytes, rate: int = OUTPUT_RATE, num_channels: int = 1) -> float:
    return len(raw) / 2 / num_channels / rate


@dataclass
class ScheduledFrame:
    start: float
    duration: float
    raw: bytes


class PlaybackQueue:
    """
    Outbound audio scheduled back-to-back. `interrupt()` drops everything
    queued and rewinds the cursor, like stopping every pending source.
    """

    def __init__(self, rate: int = OUTPUT_RATE):
        self.rate = rate
        self.next_start: float = 0.0
        self._frames: Deque[ScheduledFrame] = deque()

    def enqueue(self, raw: bytes, now: float) -> ScheduledFrame:
        start = max(self.next_start, now)
        dur = pcm16_duration(raw, self.rate)
        frame = ScheduledFrame(start=start, duration=dur, raw=raw)
        self._frames.append(frame)
        self.next_start = start + dur
        return frame

    def pop_ready(self, now: float) -> List[ScheduledFrame]:
        out: List[ScheduledFrame] = []
        while self._frames and self._frames[0].start <= now:
            out.append(self._frames.popleft())
        return out

    def interrupt(self) -> int:
        dropped = len(self._frames)
        self._frames.clear()
        self.next_start = 0.0
        return dropped

    def __len__(self) -> int:
        return len(self._frames)
