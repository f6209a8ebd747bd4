"""Audio capture pipeline for NR Recorder.

This module connects a callback-driven audio input to the capture file and
the live level meter.

Main public classes
-------------------
:class:`CaptureSink`
    Owns the open WAV capture file and appends audio blocks to it.

:class:`CapturePipeline`
    Runs the ``Idle -> Recording -> Idle`` state machine.  Each block the
    audio input delivers is written to the :class:`CaptureSink` on the
    callback thread, then handed to the event loop where the level is
    computed and published to :class:`~nr_recorder.core.state.RecorderState`.

Threading model
---------------
The audio callback runs on a realtime PortAudio thread.  It performs one
buffered file write and schedules the block onto the event loop with
:meth:`asyncio.AbstractEventLoop.call_soon_threadsafe`, which runs callbacks
in submission order.  On the loop the block enters a bounded
:class:`asyncio.Queue` drained by a single consumer task, so level readings
are published strictly in arrival order.  When the queue is full the oldest
pending block is dropped; the meter only cares about recent audio.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional, Protocol

import soundfile as sf
from loguru import logger

from .config import MAX_WRITE_FAILURES, PUBLISH_QUEUE_SIZE
from .errors import AlreadyRecording, CaptureFileError
from .log import RecordingLogger
from .models import AudioBlock, RecordingSession, StreamFormat
from .processing import compute_level
from .state import RecorderState

BlockCallback = Callable[[AudioBlock], None]


class AudioInput(Protocol):
    """Hardware input collaborator driven by :class:`CapturePipeline`."""

    def acquire(self, denoise: bool) -> StreamFormat:
        """Configure the input for a capture mode and return the granted format."""

    def start(self, on_block: BlockCallback) -> None:
        """Register *on_block* and start delivering blocks."""

    def stop(self) -> None:
        """Unregister the callback and halt the stream."""

    def release(self) -> None:
        """Release the device so other consumers can use it."""


class CaptureSink:
    """Appends audio blocks to a WAV capture file."""

    def __init__(self, path: Path, sound_file: Optional[sf.SoundFile] = None) -> None:
        self.path = Path(path)
        self._file = sound_file
        self.failed_writes = 0

    @classmethod
    def open(cls, path: Path, fmt: StreamFormat) -> "CaptureSink":
        """Create or truncate *path* as a float WAV file in the granted format.

        Args:
            path: Capture file path
            fmt: Format granted by the audio input

        Returns:
            Open sink

        Raises:
            CaptureFileError: If the file cannot be created
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            sound_file = sf.SoundFile(
                str(path),
                mode='w',
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                format='WAV',
                subtype='FLOAT',
            )
        except (RuntimeError, OSError, ValueError) as e:
            raise CaptureFileError(f"Cannot open capture file {path}: {e}") from e

        logger.debug(f"Capture file opened: {path} ({fmt.sample_rate} Hz, {fmt.channels} ch)")
        return cls(path, sound_file)

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, block: AudioBlock) -> bool:
        """Append *block* to the capture file.

        A failed write is logged and skipped so one bad block does not end
        the recording.

        Returns:
            True if the block was written
        """
        sound_file = self._file
        if sound_file is None:
            return False

        try:
            sound_file.write(block.frames())
            return True
        except (RuntimeError, OSError, ValueError) as e:
            self.failed_writes += 1
            logger.warning(f"Skipping block, write to {self.path} failed: {e}")
            return False

    def close(self) -> None:
        """Flush and close the capture file. Safe to call more than once."""
        sound_file = self._file
        if sound_file is None:
            return
        self._file = None
        sound_file.close()
        logger.debug(f"Capture file closed: {self.path}")


class CapturePipeline:
    """Drives one recording session at a time from an :class:`AudioInput`.

    ``start`` and ``stop`` must be awaited on the event loop that owns the
    :class:`RecorderState`.
    """

    def __init__(
        self,
        audio_input: AudioInput,
        state: RecorderState,
        capture_path: Path,
        queue_size: int = PUBLISH_QUEUE_SIZE,
        max_write_failures: int = MAX_WRITE_FAILURES,
        recording_logger: Optional[RecordingLogger] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            audio_input: Hardware input collaborator
            state: Observable state owned by the event loop
            capture_path: Well-known capture file, overwritten on each start
            queue_size: Bound of the callback-to-loop level channel
            max_write_failures: Failed writes that abort a session (0 = never)
            recording_logger: Optional JSONL session log
        """
        self._input = audio_input
        self._state = state
        self._capture_path = Path(capture_path)
        self._queue_size = max(1, int(queue_size))
        self._max_write_failures = max(0, int(max_write_failures))
        self._recording_logger = recording_logger

        self._session: Optional[RecordingSession] = None
        self._last_session: Optional[RecordingSession] = None
        self._sink: Optional[CaptureSink] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._aborting = False
        self._stopping = False
        self._abort_task: Optional[asyncio.Task] = None
        self.dropped_blocks = 0

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[RecordingSession]:
        """The active session, or the most recently finished one."""
        return self._session or self._last_session

    @property
    def capture_path(self) -> Path:
        return self._capture_path

    async def start(self, denoise: bool = False) -> RecordingSession:
        """Start recording a new session.

        Args:
            denoise: Request the noise-suppressing input configuration

        Returns:
            The new session

        Raises:
            AlreadyRecording: If a session is active
            ConfigurationError: If the audio input cannot be acquired
            CaptureFileError: If the capture file cannot be opened
        """
        if self._session is not None:
            raise AlreadyRecording(
                f"Recording {self._session.session_id} is already in progress"
            )

        loop = asyncio.get_running_loop()
        fmt = self._input.acquire(denoise)

        try:
            sink = CaptureSink.open(self._capture_path, fmt)
        except CaptureFileError:
            self._input.release()
            raise

        session = RecordingSession(path=self._capture_path, denoise=denoise, format=fmt)
        self._loop = loop
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._consumer = loop.create_task(self._publish_levels(self._queue))
        self._sink = sink
        self._session = session
        self._last_session = None
        self._aborting = False
        self.dropped_blocks = 0

        try:
            self._input.start(self._on_block)
        except Exception:
            await self._teardown()
            self._last_session = None
            raise

        self._state.set_recording(True)
        logger.info(
            f"Recording started: session {session.session_id}, "
            f"{'denoise' if denoise else 'raw'} mode, {fmt.device_name}, "
            f"{fmt.sample_rate} Hz, {fmt.channels} ch -> {self._capture_path}"
        )

        if self._recording_logger is not None:
            self._recording_logger.write_session_start(
                session_id=session.session_id,
                file_path=str(session.path),
                denoise=denoise,
                device_id=fmt.device_id,
                device_name=fmt.device_name,
                sample_rate=fmt.sample_rate,
                channels=fmt.channels,
                started_at=session.created_at,
            )
        return session

    async def stop(self) -> Optional[RecordingSession]:
        """Stop the active session and return it, or None when idle."""
        session = self._session
        if session is None or self._stopping:
            return None

        self._stopping = True
        try:
            await self._teardown()
        finally:
            self._stopping = False
            self._state.set_recording(False)

        logger.info(
            f"Recording stopped: session {session.session_id}, "
            f"{session.blocks_written} blocks, {session.duration_sec:.1f}s"
        )
        if self.dropped_blocks:
            logger.debug(f"{self.dropped_blocks} level updates dropped while the loop was busy")

        if self._recording_logger is not None:
            self._recording_logger.write_session_end(
                session_id=session.session_id,
                ended_at=session.ended_at,
                duration_sec=session.duration_sec,
                blocks=session.blocks_written,
                frames=session.frames_written,
                failed_writes=session.failed_writes,
            )
        return session

    async def _teardown(self) -> None:
        """Halt the input, close the sink and drain pending level updates.

        Hardware and file errors are logged; the session is always finalised.
        """
        session = self._session
        sink = self._sink
        self._sink = None
        try:
            try:
                self._input.stop()
            except Exception as e:
                logger.warning(f"Audio input did not stop cleanly: {e}")
            if sink is not None:
                try:
                    sink.close()
                except (RuntimeError, OSError) as e:
                    logger.warning(f"Capture file {sink.path} did not close cleanly: {e}")
            try:
                self._input.release()
            except Exception as e:
                logger.warning(f"Audio input was not released cleanly: {e}")

            # Let hand-offs already scheduled by the callback reach the queue
            await asyncio.sleep(0)
            if self._queue is not None:
                await self._queue.join()
        finally:
            if self._consumer is not None:
                self._consumer.cancel()
                try:
                    await self._consumer
                except asyncio.CancelledError:
                    pass

            if session is not None:
                if sink is not None:
                    session.failed_writes = sink.failed_writes
                session.finish()
            self._last_session = session
            self._session = None
            self._consumer = None
            self._queue = None
            self._loop = None

    # ------------------------------------------------------------------
    # Audio callback thread
    # ------------------------------------------------------------------

    def _on_block(self, block: AudioBlock) -> None:
        """Write *block* and hand it to the event loop. Runs on the audio thread."""
        sink = self._sink
        session = self._session
        loop = self._loop
        if sink is None or session is None or loop is None:
            return

        if sink.write(block):
            session.blocks_written += 1
            session.frames_written += block.frame_count
        elif (
            self._max_write_failures
            and sink.failed_writes >= self._max_write_failures
            and not self._aborting
        ):
            self._aborting = True
            self._schedule(loop, self._abort, sink.failed_writes)
            return

        self._schedule(loop, self._enqueue, block)

    @staticmethod
    def _schedule(loop: asyncio.AbstractEventLoop, callback, *args) -> None:
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop closed while the stream was still delivering
            logger.debug("Event loop closed, dropping audio block hand-off")

    # ------------------------------------------------------------------
    # Event loop side
    # ------------------------------------------------------------------

    def _enqueue(self, block: AudioBlock) -> None:
        queue = self._queue
        if queue is None:
            return
        if queue.full():
            queue.get_nowait()
            queue.task_done()
            self.dropped_blocks += 1
        queue.put_nowait(block)

    async def _publish_levels(self, queue: asyncio.Queue) -> None:
        while True:
            block = await queue.get()
            try:
                self._state.set_level(compute_level(block))
            finally:
                queue.task_done()

    def _abort(self, failed_writes: int) -> None:
        message = f"Recording aborted after {failed_writes} failed writes to {self._capture_path}"
        logger.error(message)
        self._state.report_error(message)
        if self._session is not None and self._loop is not None:
            self._abort_task = self._loop.create_task(self.stop())
