"""PyAudio microphone input tests for NR Recorder."""

import pytest

pytest.importorskip("pyaudio")

from nr_recorder.core import microphone  # noqa: E402
from nr_recorder.core.microphone import MicrophoneInput  # noqa: E402


class _FakeStream:
    def __init__(self, fail_stop=False):
        self.fail_stop = fail_stop
        self.closed = False

    def stop_stream(self):
        if self.fail_stop:
            raise OSError("Stream closed: device unplugged")

    def close(self):
        self.closed = True


class _FakePyAudio:
    def __init__(self, default_rate=0.0):
        self.default_rate = default_rate
        self.stream = _FakeStream()
        self.terminated = False

    def get_default_input_device_info(self):
        return {"index": 0, "name": "Fake Mic", "maxInputChannels": 2,
                "defaultSampleRate": self.default_rate}

    def get_device_count(self):
        return 1

    def get_device_info_by_index(self, index):
        return self.get_default_input_device_info()

    def open(self, **kwargs):
        return self.stream

    def terminate(self):
        self.terminated = True


@pytest.fixture
def fake_pyaudio(monkeypatch):
    audio = _FakePyAudio()
    monkeypatch.setattr(microphone.pyaudio, "PyAudio", lambda: audio)
    return audio


def test_acquire_uses_configured_rate_when_device_reports_none(fake_pyaudio):
    mic = MicrophoneInput(rate=44100)
    fmt = mic.acquire(denoise=False)
    assert fmt.sample_rate == 44100
    assert fmt.channels == 1
    mic.release()
    assert fake_pyaudio.terminated


def test_acquire_prefers_native_rate(fake_pyaudio):
    fake_pyaudio.default_rate = 48000.0
    mic = MicrophoneInput(rate=44100)
    assert mic.acquire(denoise=True).sample_rate == 48000
    mic.release()


def test_stop_closes_stream_when_stop_fails(fake_pyaudio):
    fake_pyaudio.stream.fail_stop = True
    mic = MicrophoneInput()
    mic.acquire(denoise=False)
    mic.start(lambda block: None)

    with pytest.raises(OSError):
        mic.stop()

    assert fake_pyaudio.stream.closed
    # Nothing left to stop afterwards
    mic.stop()
    mic.release()
