"""Shared test fixtures for NR Recorder tests."""

import threading
from typing import Iterable, List, Optional

import numpy as np
import pytest

from nr_recorder.core.errors import ConfigurationError
from nr_recorder.core.models import AudioBlock, StreamFormat


def make_block(
    amplitude: float,
    frames: int = 1024,
    channels: int = 1,
    rate: int = 16000,
) -> AudioBlock:
    """Build a sine block of the given peak amplitude."""
    t = np.arange(frames) / rate
    wave = (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
    return AudioBlock(np.repeat(wave, channels), channels)


def constant_block(value: float, frames: int = 512) -> AudioBlock:
    """Build a mono block whose samples all equal *value*."""
    return AudioBlock(np.full(frames, value, dtype=np.float32))


class FakeAudioInput:
    """Audio input that delivers blocks from a background thread on demand."""

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        fail_acquire: bool = False,
        fail_start: bool = False,
        fail_stop: bool = False,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.fail_acquire = fail_acquire
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.calls: List[str] = []
        self.denoise: Optional[bool] = None
        self._on_block = None

    def acquire(self, denoise: bool) -> StreamFormat:
        self.calls.append("acquire")
        if self.fail_acquire:
            raise ConfigurationError("No input device matching 'echo-cancel' for denoise mode")
        self.denoise = denoise
        return StreamFormat(
            sample_rate=self.sample_rate,
            channels=self.channels,
            denoise=denoise,
            device_id=0,
            device_name="Fake Mic",
        )

    def start(self, on_block) -> None:
        self.calls.append("start")
        if self.fail_start:
            raise ConfigurationError("Cannot open input stream")
        self._on_block = on_block

    def stop(self) -> None:
        self.calls.append("stop")
        self._on_block = None
        if self.fail_stop:
            raise OSError("Stream closed: device unplugged")

    def release(self) -> None:
        self.calls.append("release")

    @property
    def streaming(self) -> bool:
        return self._on_block is not None

    def feed(self, blocks: Iterable[AudioBlock]) -> None:
        """Deliver *blocks* in order from a separate thread, like a hardware callback."""
        blocks = list(blocks)

        def run() -> None:
            for block in blocks:
                on_block = self._on_block
                if on_block is not None:
                    on_block(block)

        thread = threading.Thread(target=run, name="FakeAudioCallback")
        thread.start()
        thread.join()


@pytest.fixture
def fake_input():
    """Provide a fake mono 16 kHz audio input."""
    return FakeAudioInput()


@pytest.fixture
def capture_path(tmp_path):
    """Provide a capture file path inside a temporary directory."""
    return tmp_path / "capture" / "record.wav"


@pytest.fixture
def upload_settings():
    """Provide upload configuration mapping for tests."""
    return {
        "endpoint": "https://api.example.test/",
        "token": "secret-token",
        "user_id": "42",
        "device_id": "lab-phone-01",
    }
