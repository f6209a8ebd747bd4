"""Data model for NR Recorder: audio blocks, stream formats and sessions."""

import datetime
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

SAMPLE_DTYPE = np.float32


@dataclass(frozen=True)
class AudioBlock:
    """One hardware callback's worth of interleaved float32 samples.

    ``samples`` is a read-only 1-D array; ``channels`` is the channel stride.
    A writeable input array is copied so that a block can be handed to another
    thread without the producer mutating it afterwards.
    """

    samples: np.ndarray
    channels: int = 1

    def __post_init__(self) -> None:
        if self.channels < 1:
            raise ValueError(f"channels must be >= 1, got {self.channels}")

        samples = np.asarray(self.samples, dtype=SAMPLE_DTYPE).reshape(-1)
        if samples.flags.writeable:
            samples = samples.copy()
            samples.setflags(write=False)
        if samples.size % self.channels:
            raise ValueError(
                f"{samples.size} samples is not a multiple of {self.channels} channels"
            )
        object.__setattr__(self, 'samples', samples)

    @classmethod
    def from_bytes(cls, data: bytes, channels: int = 1) -> "AudioBlock":
        """Wrap a raw float32 callback buffer without copying it."""
        return cls(np.frombuffer(data, dtype=SAMPLE_DTYPE), channels)

    @property
    def stride(self) -> int:
        return self.channels

    @property
    def frame_count(self) -> int:
        return self.samples.size // self.channels

    def channel(self, index: int = 0) -> np.ndarray:
        """Return the samples of a single channel."""
        if not 0 <= index < self.channels:
            raise IndexError(f"channel {index} out of range for {self.channels} channels")
        return self.samples[index::self.channels]

    def frames(self) -> np.ndarray:
        """Return a ``(frame_count, channels)`` view, the layout soundfile writes."""
        return self.samples.reshape(-1, self.channels)


@dataclass(frozen=True)
class StreamFormat:
    """Format granted by the audio hardware for a capture session."""

    sample_rate: int
    channels: int
    denoise: bool = False
    device_id: Optional[int] = None
    device_name: str = 'Unknown'


@dataclass
class RecordingSession:
    """One capture-to-upload lifecycle.

    ``denoise`` is chosen before the session starts and never changes.
    Counters are only updated by :class:`~nr_recorder.core.recording.CapturePipeline`.
    """

    path: Path
    denoise: bool
    format: StreamFormat
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    ended_at: Optional[datetime.datetime] = None
    blocks_written: int = 0
    frames_written: int = 0
    failed_writes: int = 0

    @property
    def active(self) -> bool:
        return self.ended_at is None

    @property
    def duration_sec(self) -> float:
        """Duration of the audio written so far, in seconds."""
        if self.format.sample_rate <= 0:
            return 0.0
        return self.frames_written / self.format.sample_rate

    def finish(self, ended_at: Optional[datetime.datetime] = None) -> None:
        if self.ended_at is None:
            self.ended_at = ended_at or datetime.datetime.now()
