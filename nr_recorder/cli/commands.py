"""CLI commands for NR Recorder.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import signal
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.panel import Panel
from rich.table import Table

from nr_recorder.core import (
    AppConfig,
    CapturePipeline,
    RecorderError,
    RecorderState,
    RecordingLogger,
    RecordingSession,
    RecordingUploader,
    UploadClient,
    UploadConfig,
)
from nr_recorder.core.config import CHANNEL, CHUNK, MAX_WRITE_FAILURES, PUBLISH_QUEUE_SIZE, RATE
from nr_recorder.core.upload import UploadResult
from nr_recorder.cli.utils import (
    console,
    format_level,
    make_device_table,
    make_level_progress,
    make_upload_progress,
    suppress_stderr,
)

app = typer.Typer(help="Microphone recording with live level metering and upload")

app_config = AppConfig()


def _configure_logging(verbose: bool) -> None:
    """Configure loguru log level based on verbose flag."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _load_upload_config() -> UploadConfig:
    upload_config = app_config.get_upload_config()
    if not upload_config:
        raise ValueError("no `upload` config found in .nr-recorder.yml")
    return UploadConfig.from_dict(upload_config)


async def _record(
    pipeline: CapturePipeline,
    state: RecorderState,
    denoise: bool,
    duration: Optional[float],
    quiet: bool,
) -> Optional[RecordingSession]:
    """Record until *duration* elapses, Ctrl+C, or the pipeline aborts."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on this platform/thread
            pass

    with make_level_progress() as progress:
        task = progress.add_task("level", total=1.0, level_text="--")

        def show_level(snapshot) -> None:
            progress.update(task, completed=snapshot.level, level_text=format_level(snapshot.level))
            if snapshot.error:
                progress.console.print(f"[error]✗ {snapshot.error}[/error]")

        unsubscribe = state.subscribe(show_level)
        try:
            with suppress_stderr() if quiet else nullcontext():
                session = await pipeline.start(denoise)

            unsubscribe_stop = state.subscribe(
                lambda snapshot: None if snapshot.recording else stop_event.set()
            )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
            finally:
                unsubscribe_stop()
                await pipeline.stop()
        finally:
            unsubscribe()

    return session


async def _upload(
    path: Path,
    denoise: bool,
    upload_config: UploadConfig,
    recording_logger: RecordingLogger,
) -> Optional[UploadResult]:
    state = RecorderState()
    with make_upload_progress() as progress:
        task = progress.add_task("upload", total=1.0, message="")
        state.subscribe(
            lambda snapshot: progress.update(
                task, completed=snapshot.upload_progress, message=snapshot.upload_message
            )
        )
        async with UploadClient(timeout=upload_config.timeout) as client:
            uploader = RecordingUploader(client, upload_config, state, recording_logger)
            return await uploader.upload(path, denoise)


def _report_upload(result: Optional[UploadResult]) -> bool:
    if result is None:
        console.print("[warning]Upload already in progress[/warning]")
        return False
    if result.ok:
        console.print(
            f"[success]✓ Uploaded {result.byte_count} bytes, file ID: {result.file_id}[/success]"
        )
        return True

    detail = f" (code {result.code})" if result.code is not None else ""
    console.print(f"[error]✗ Upload failed [{result.kind.value}]{detail}: {result.message}[/error]")
    return False


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    _configure_logging(verbose)
    from nr_recorder.core.microphone import RecordingEngine

    with suppress_stderr() if not verbose else nullcontext():
        devices = RecordingEngine.list_devices(driver_filter=driver)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def record(
    duration: Optional[float] = typer.Option(
        None, help="Recording duration in seconds. Leave empty to record until Ctrl+C."
    ),
    denoise: bool = typer.Option(
        False,
        "--denoise/--raw",
        help="Record from the noise-suppressing input (--denoise) or the plain input (--raw).",
    ),
    upload: bool = typer.Option(
        True,
        "--upload/--no-upload",
        help="Upload the recording when it stops; use --no-upload to keep it local.",
    ),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use instead of the configured device for the mode."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Record the microphone with a live level meter, then upload it."""
    _configure_logging(verbose)
    from nr_recorder.core.microphone import MicrophoneInput

    recording_logger = RecordingLogger(app_config.get_log_path())

    upload_config = None
    if upload:
        try:
            upload_config = _load_upload_config()
        except ValueError as e:
            console.print(f"[warning]Upload disabled: {e}[/warning]")

    audio_input = MicrophoneInput(
        denoise_device=app_config.get_input_device(True),
        raw_device=app_config.get_input_device(False),
        device_id=device_id,
        chunk=int(app_config.get("chunk", CHUNK)),
        channels=int(app_config.get("channel", CHANNEL)),
        rate=int(app_config.get("rate", RATE)),
    )
    state = RecorderState()
    pipeline = CapturePipeline(
        audio_input,
        state,
        app_config.get_capture_path(),
        queue_size=int(app_config.get("publish_queue_size", PUBLISH_QUEUE_SIZE)),
        max_write_failures=int(app_config.get("max_write_failures", MAX_WRITE_FAILURES)),
        recording_logger=recording_logger,
    )

    mode_str = "[green]denoise[/green]" if denoise else "[yellow]raw[/yellow]"
    duration_str = f"{duration:g}s" if duration else "until Ctrl+C"
    upload_str = "[green]enabled[/green]" if upload_config else "[yellow]disabled[/yellow]"
    console.print(
        f"[info]🎙 Recording ({mode_str} mode, {duration_str}, upload {upload_str})[/info]"
    )

    try:
        session = asyncio.run(_record(pipeline, state, denoise, duration, quiet=not verbose))
    except RecorderError as e:
        console.print(f"[error]✗ Error during recording: {e}[/error]")
        sys.exit(1)

    fmt = session.format
    info_grid = Table.grid(padding=(0, 1))
    info_grid.add_column(style="dim", justify="right")
    info_grid.add_column()
    info_grid.add_row("Session ID:", session.session_id)
    info_grid.add_row("Device:", f"{fmt.device_name} (ID: {fmt.device_id})")
    info_grid.add_row("Sample Rate:", f"{fmt.sample_rate} Hz, {fmt.channels} ch")
    info_grid.add_row("Mode:", mode_str)
    info_grid.add_row("Duration:", f"{session.duration_sec:.1f}s ({session.blocks_written} blocks)")
    if session.failed_writes:
        info_grid.add_row("Failed writes:", f"[warning]{session.failed_writes}[/warning]")
    info_grid.add_row("File:", str(session.path))
    info_grid.add_row("Log:", str(recording_logger.path))
    console.print(Panel(info_grid, title="[bold]🎙 Recording Session[/bold]", border_style="green"))

    if upload_config is None:
        return
    result = asyncio.run(_upload(session.path, session.denoise, upload_config, recording_logger))
    if not _report_upload(result):
        sys.exit(1)


@app.command("upload")
def upload_command(
    file: Optional[Path] = typer.Argument(
        None, help="File to upload. Defaults to the capture file."
    ),
    denoise: Optional[bool] = typer.Option(
        None,
        "--denoise/--raw",
        help="Capture mode of the file. Defaults to the mode in the recording log.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Upload a recording to the evaluation service."""
    _configure_logging(verbose)

    path = Path(file) if file else app_config.get_capture_path()
    if not path.exists():
        console.print(f"[error]✗ Recording not found: {path}[/error]")
        sys.exit(1)

    recording_logger = RecordingLogger(app_config.get_log_path())
    if denoise is None:
        last_session = recording_logger.last_session()
        denoise = bool(
            last_session
            and last_session.get("file_path") == str(path)
            and last_session.get("denoise")
        )

    try:
        upload_config = _load_upload_config()
    except ValueError as e:
        console.print(f"[error]✗ Upload not configured: {e}[/error]")
        sys.exit(1)

    result = asyncio.run(_upload(path, denoise, upload_config, recording_logger))
    if not _report_upload(result):
        sys.exit(1)


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show input devices, the capture file and upload configuration."""
    _configure_logging(verbose)

    console.rule("[bold]📋 NR Recorder Status[/bold]")
    console.print()
    try:
        from nr_recorder.core.microphone import RecordingEngine

        with suppress_stderr() if not verbose else nullcontext():
            devices = RecordingEngine.list_devices()
        console.print(Panel(make_device_table(devices), title="[bold]Available Input Devices[/bold]"))
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")

    capture_path = app_config.get_capture_path()
    if capture_path.exists():
        console.print(f"[info]Capture file: {capture_path} ({capture_path.stat().st_size} bytes)[/info]")
    else:
        console.print(f"[dim]No capture file at {capture_path}[/dim]")

    upload_conf = app_config.get_upload_config()
    if not upload_conf:
        console.print("[dim]Upload not configured[/dim]")
        return
    try:
        upload_config = UploadConfig.from_dict(upload_conf)
        console.print(
            f"[info]Upload endpoint: {upload_config.endpoint} "
            f"(user {upload_config.user_id}, device {upload_config.device_id})[/info]"
        )
    except ValueError as e:
        console.print(f"[error]Invalid upload configuration: {e}[/error]")
