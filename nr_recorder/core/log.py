"""Local JSONL recording log for NR Recorder.

Appends structured JSON Lines entries to a log file next to the capture file,
capturing session metadata and upload outcomes.

Record types
------------
``session`` (event=``"start"``)
    Written when a recording starts with the capture mode and the format the
    hardware granted.

``session`` (event=``"end"``)
    Written when a recording stops with duration and block counters.

``upload``
    Written once per upload attempt with the remote path and its outcome.

Example log lines::

    {"type":"session","event":"start","session_id":"9f0c...","file_path":"/tmp/record.wav","denoise":true,"device_id":3,"device_name":"echo-cancel-source","sample_rate":48000,"channels":1,"started_at":"2026-02-23T14:30:22"}
    {"type":"session","event":"end","session_id":"9f0c...","ended_at":"2026-02-23T14:30:52","duration_sec":30.0,"blocks":352,"failed_writes":0}
    {"type":"upload","file_path":"/tmp/record.wav","remote_path":"speech-recognition-message/mobile_nr_eval/iOS/1b2c..._phone_nr.wav","status":"succeeded","file_id":"f-123","error_kind":null,"error_code":null,"message":"Uploaded 2880044 bytes","at":"2026-02-23T14:31:02"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class RecordingLogger:
    """Appends JSONL log entries for recording sessions and uploads.

    Thread-safe: a single :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file.  Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_session_start(
        self,
        session_id: str,
        file_path: str,
        denoise: bool,
        device_id: Optional[int],
        device_name: str,
        sample_rate: int,
        channels: int,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Append a session-start record.

        Args:
            session_id: Unique session identifier.
            file_path: Capture file the session writes to.
            denoise: Whether the noise-suppressing input was requested.
            device_id: Numeric audio device ID (``None`` = system default).
            device_name: Human-readable device name.
            sample_rate: Sample rate granted by the device (Hz).
            channels: Number of recorded channels.
            started_at: Session start time.  Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "session",
            "event": "start",
            "session_id": session_id,
            "file_path": file_path,
            "denoise": denoise,
            "device_id": device_id,
            "device_name": device_name,
            "sample_rate": sample_rate,
            "channels": channels,
            "started_at": _iso(started_at),
        })

    def write_session_end(
        self,
        session_id: str,
        ended_at: Optional[datetime] = None,
        duration_sec: float = 0.0,
        blocks: int = 0,
        frames: int = 0,
        failed_writes: int = 0,
    ) -> None:
        """Append a session-end record.

        Args:
            session_id: Session identifier matching the earlier start record.
            ended_at: Session end time.  Defaults to ``datetime.now()``.
            duration_sec: Audio duration written to the capture file (s).
            blocks: Number of blocks written.
            frames: Number of frames written.
            failed_writes: Number of blocks that could not be written.
        """
        self._append({
            "type": "session",
            "event": "end",
            "session_id": session_id,
            "ended_at": _iso(ended_at),
            "duration_sec": round(duration_sec, 3),
            "blocks": blocks,
            "frames": frames,
            "failed_writes": failed_writes,
        })

    def write_upload(
        self,
        file_path: str,
        remote_path: str,
        status: str,
        message: str,
        file_id: Optional[str] = None,
        error_kind: Optional[str] = None,
        error_code: Optional[int] = None,
    ) -> None:
        """Append an upload record.

        Args:
            file_path: Local file that was uploaded.
            remote_path: Remote object path sent in the request metadata.
            status: Final job status (``succeeded`` or ``failed``).
            message: Human-readable outcome.
            file_id: Remote file identifier on success.
            error_kind: Failure classification on failure.
            error_code: Server or HTTP error code on failure, when known.
        """
        self._append({
            "type": "upload",
            "file_path": file_path,
            "remote_path": remote_path,
            "status": status,
            "file_id": file_id,
            "error_kind": error_kind,
            "error_code": error_code,
            "message": message,
            "at": _iso(None),
        })

    def last_session(self) -> Optional[Dict[str, Any]]:
        """Return the most recent session-start record, if any."""
        if not self._log_path.exists():
            return None

        last = None
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except ValueError:
                        continue
                    if record.get("type") == "session" and record.get("event") == "start":
                        last = record
        return last

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
