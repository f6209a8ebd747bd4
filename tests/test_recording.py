"""Capture sink and pipeline tests for NR Recorder."""

import asyncio

import numpy as np
import pytest
import soundfile as sf

from nr_recorder.core import (
    AlreadyRecording,
    AudioBlock,
    CaptureFileError,
    CapturePipeline,
    CaptureSink,
    ConfigurationError,
    RecorderState,
    RecordingLogger,
    StreamFormat,
    compute_level,
)
from tests.conftest import FakeAudioInput, make_block

MONO_16K = StreamFormat(sample_rate=16000, channels=1)


def _recorder(fake_input, capture_path, **kwargs):
    state = RecorderState()
    snapshots = []
    state.subscribe(snapshots.append)
    pipeline = CapturePipeline(fake_input, state, capture_path, **kwargs)
    return pipeline, state, snapshots


# ---------------------------------------------------------------------------
# CaptureSink
# ---------------------------------------------------------------------------

def test_sink_writes_blocks_in_order(capture_path):
    blocks = [make_block(0.2), make_block(0.4), make_block(0.1)]
    sink = CaptureSink.open(capture_path, MONO_16K)
    for block in blocks:
        assert sink.write(block) is True
    sink.close()

    data, rate = sf.read(str(capture_path), dtype="float32")
    assert rate == 16000
    np.testing.assert_array_equal(data, np.concatenate([b.samples for b in blocks]))


def test_sink_truncates_existing_file(capture_path):
    capture_path.parent.mkdir(parents=True)
    capture_path.write_bytes(b"old recording" * 1000)

    sink = CaptureSink.open(capture_path, MONO_16K)
    sink.write(make_block(0.5, frames=100))
    sink.close()

    data, _ = sf.read(str(capture_path), dtype="float32")
    assert len(data) == 100


def test_sink_open_failure_raises_capture_file_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")

    with pytest.raises(CaptureFileError) as excinfo:
        CaptureSink.open(blocker / "record.wav", MONO_16K)
    assert isinstance(excinfo.value, OSError)


def test_sink_write_failure_is_skipped(capture_path):
    sink = CaptureSink.open(capture_path, MONO_16K)
    stereo = make_block(0.3, frames=64, channels=2)

    assert sink.write(stereo) is False
    assert sink.failed_writes == 1
    assert sink.write(make_block(0.3, frames=64)) is True
    sink.close()


def test_sink_close_is_idempotent(capture_path):
    sink = CaptureSink.open(capture_path, MONO_16K)
    sink.close()
    sink.close()
    assert sink.closed
    assert sink.write(make_block(0.1)) is False

    never_opened = CaptureSink(capture_path)
    never_opened.close()


# ---------------------------------------------------------------------------
# CapturePipeline
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_publishes_recording(fake_input, capture_path):
    pipeline, state, snapshots = _recorder(fake_input, capture_path)

    session = await pipeline.start(denoise=True)

    assert pipeline.is_recording
    assert state.recording is True
    assert snapshots[-1].recording is True
    assert session.denoise is True
    assert session.path == capture_path
    assert fake_input.denoise is True
    assert fake_input.calls == ["acquire", "start"]

    await pipeline.stop()


@pytest.mark.asyncio
async def test_start_twice_raises_already_recording(fake_input, capture_path):
    pipeline, state, _ = _recorder(fake_input, capture_path)
    session = await pipeline.start(denoise=False)

    with pytest.raises(AlreadyRecording):
        await pipeline.start(denoise=True)

    assert pipeline.session is session
    assert session.denoise is False
    assert session.active
    assert state.recording is True
    assert fake_input.calls == ["acquire", "start"]

    await pipeline.stop()


@pytest.mark.asyncio
async def test_stop_resets_level_and_recording(fake_input, capture_path):
    pipeline, state, _ = _recorder(fake_input, capture_path)
    await pipeline.start()
    fake_input.feed([make_block(0.8)])

    session = await pipeline.stop()

    assert session is not None
    assert not session.active
    assert state.level == 0.0
    assert state.recording is False
    assert not pipeline.is_recording
    assert not fake_input.streaming
    assert fake_input.calls == ["acquire", "start", "stop", "release"]


@pytest.mark.asyncio
async def test_stop_when_idle_is_noop(fake_input, capture_path):
    pipeline, state, _ = _recorder(fake_input, capture_path)
    assert await pipeline.stop() is None
    assert fake_input.calls == []
    assert state.recording is False


@pytest.mark.asyncio
async def test_end_to_end_file_and_last_level(fake_input, capture_path):
    pipeline, _, snapshots = _recorder(fake_input, capture_path)
    blocks = [make_block(amplitude) for amplitude in (0.05, 0.5, 0.01, 0.9, 0.2)]

    await pipeline.start()
    fake_input.feed(blocks)
    session = await pipeline.stop()

    data, rate = sf.read(str(capture_path), dtype="float32")
    assert rate == fake_input.sample_rate
    np.testing.assert_array_equal(data, np.concatenate([b.samples for b in blocks]))
    assert session.blocks_written == len(blocks)
    assert session.frames_written == sum(b.frame_count for b in blocks)

    published = [s.level for s in snapshots if s.recording]
    assert published[-1] == compute_level(blocks[-1])


@pytest.mark.asyncio
async def test_levels_published_in_arrival_order(fake_input, capture_path):
    pipeline, _, snapshots = _recorder(fake_input, capture_path, queue_size=64)
    blocks = [make_block(a) for a in (0.3, 0.9, 0.02, 0.6, 0.1, 0.75, 0.004)]

    await pipeline.start()
    fake_input.feed(blocks[:3])
    await asyncio.sleep(0)
    fake_input.feed(blocks[3:])
    await pipeline.stop()

    # First recording snapshot is the start transition itself
    published = [s.level for s in snapshots if s.recording][1:]
    assert published == [compute_level(b) for b in blocks]


@pytest.mark.asyncio
async def test_bounded_channel_drops_oldest(fake_input, capture_path):
    pipeline, _, snapshots = _recorder(fake_input, capture_path, queue_size=2)
    blocks = [make_block(a) for a in (0.1, 0.2, 0.3, 0.4, 0.5, 0.6)]

    await pipeline.start()
    fake_input.feed(blocks)
    session = await pipeline.stop()

    published = [s.level for s in snapshots if s.recording][1:]
    expected = [compute_level(b) for b in blocks]
    assert published == expected[-len(published):]
    assert published[-1] == expected[-1]
    assert pipeline.dropped_blocks == len(blocks) - len(published)
    # Every block still reaches the file
    assert session.blocks_written == len(blocks)


@pytest.mark.asyncio
async def test_pipeline_adapts_to_granted_format(capture_path):
    fake_input = FakeAudioInput(sample_rate=48000, channels=2)
    pipeline, _, _ = _recorder(fake_input, capture_path)
    blocks = [make_block(0.5, frames=480, channels=2, rate=48000)]

    session = await pipeline.start()
    fake_input.feed(blocks)
    await pipeline.stop()

    info = sf.info(str(capture_path))
    assert info.samplerate == 48000
    assert info.channels == 2
    assert session.duration_sec == pytest.approx(0.01)


@pytest.mark.asyncio
async def test_configuration_error_aborts_start(capture_path):
    fake_input = FakeAudioInput(fail_acquire=True)
    pipeline, state, _ = _recorder(fake_input, capture_path)

    with pytest.raises(ConfigurationError):
        await pipeline.start(denoise=True)

    assert not pipeline.is_recording
    assert state.recording is False
    assert not capture_path.exists()


@pytest.mark.asyncio
async def test_capture_file_error_releases_input(fake_input, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    pipeline, state, _ = _recorder(fake_input, blocker / "record.wav")

    with pytest.raises(CaptureFileError):
        await pipeline.start()

    assert fake_input.calls == ["acquire", "release"]
    assert not pipeline.is_recording
    assert state.recording is False


@pytest.mark.asyncio
async def test_stream_start_failure_closes_sink(capture_path):
    fake_input = FakeAudioInput(fail_start=True)
    pipeline, state, _ = _recorder(fake_input, capture_path)

    with pytest.raises(ConfigurationError):
        await pipeline.start()

    assert fake_input.calls == ["acquire", "start", "stop", "release"]
    assert not pipeline.is_recording
    assert pipeline.session is None
    assert state.recording is False

    # The pipeline is usable again once the input recovers
    fake_input.fail_start = False
    await pipeline.start()
    await pipeline.stop()


@pytest.mark.asyncio
async def test_bad_block_is_skipped(fake_input, capture_path):
    pipeline, state, _ = _recorder(fake_input, capture_path)
    good = [make_block(0.2, frames=256), make_block(0.4, frames=256)]
    bad = make_block(0.3, frames=256, channels=2)

    await pipeline.start()
    fake_input.feed([good[0], bad, good[1]])
    session = await pipeline.stop()

    assert session.failed_writes == 1
    assert session.blocks_written == 2
    data, _ = sf.read(str(capture_path), dtype="float32")
    np.testing.assert_array_equal(data, np.concatenate([b.samples for b in good]))
    assert state.snapshot().error is None


@pytest.mark.asyncio
async def test_repeated_write_failures_abort_session(fake_input, capture_path):
    pipeline, state, _ = _recorder(fake_input, capture_path, max_write_failures=2)
    bad = make_block(0.3, frames=64, channels=2)

    await pipeline.start()
    fake_input.feed([bad, bad, bad])

    for _ in range(100):
        if not pipeline.is_recording:
            break
        await asyncio.sleep(0.01)

    assert not pipeline.is_recording
    assert state.recording is False
    assert "aborted" in state.snapshot().error
    assert fake_input.calls[-2:] == ["stop", "release"]


@pytest.mark.asyncio
async def test_new_session_overwrites_capture_file(fake_input, capture_path):
    pipeline, _, _ = _recorder(fake_input, capture_path)

    first = await pipeline.start()
    fake_input.feed([make_block(0.5, frames=1000)])
    await pipeline.stop()

    second = await pipeline.start(denoise=True)
    fake_input.feed([make_block(0.5, frames=10)])
    await pipeline.stop()

    assert second.session_id != first.session_id
    assert pipeline.session is second
    data, _ = sf.read(str(capture_path), dtype="float32")
    assert len(data) == 10


@pytest.mark.asyncio
async def test_session_log_records_start_and_end(fake_input, capture_path, tmp_path):
    recording_logger = RecordingLogger(tmp_path / "recordings.jsonl")
    pipeline, _, _ = _recorder(fake_input, capture_path, recording_logger=recording_logger)

    session = await pipeline.start(denoise=True)
    fake_input.feed([make_block(0.5, frames=1600)])
    await pipeline.stop()

    last = recording_logger.last_session()
    assert last["session_id"] == session.session_id
    assert last["denoise"] is True
    assert last["file_path"] == str(capture_path)
    assert '"event": "end"' in recording_logger.path.read_text()


@pytest.mark.asyncio
async def test_stop_survives_input_stop_error(capture_path):
    fake_input = FakeAudioInput(fail_stop=True)
    pipeline, state, _ = _recorder(fake_input, capture_path)

    await pipeline.start()
    fake_input.feed([make_block(0.7)])
    session = await pipeline.stop()

    assert session is not None
    assert not session.active
    assert not pipeline.is_recording
    assert state.recording is False
    assert state.level == 0.0
    assert fake_input.calls == ["acquire", "start", "stop", "release"]
    data, _ = sf.read(str(capture_path), dtype="float32")
    assert len(data) == 1024

    # A new session can start once the failed stop is over
    fake_input.fail_stop = False
    await pipeline.start()
    await pipeline.stop()
