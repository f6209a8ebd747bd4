"""Configuration management for NR Recorder.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.nr-recorder.yml`` in the working directory).

Audio constants
---------------
- ``RATE``               – fallback sample rate in Hz when a device reports none
- ``CHUNK``              – PortAudio buffer size in frames (one block per callback)
- ``CHANNEL``            – number of requested input channels (default 1 / mono)
- ``CAPTURE_DIR``        – directory holding the capture file (system temp dir)
- ``CAPTURE_FILE``       – well-known capture filename, overwritten on each start
- ``PUBLISH_QUEUE_SIZE`` – bound of the callback-to-event-loop level channel
- ``MAX_WRITE_FAILURES`` – failed block writes before a session aborts
  (``0`` never aborts; failed blocks are logged and skipped)

Input devices
-------------
``denoise_device`` and ``raw_device`` select which input is opened for each
capture mode.  Each is a case-insensitive substring of a device name (for
example a PulseAudio ``echo-cancel`` source that applies noise suppression)
or ``null`` for the system default input.

Configuration file
------------------
.. code-block:: yaml

    recording:
      capture_dir: /tmp
      capture_file: record.wav
      chunk: 4096
      denoise_device: echo-cancel
      raw_device: null
      max_write_failures: 0
    upload:
      endpoint: https://api.example.com
      token: "<bearer token>"
      user_id: "42"
      device_id: lab-phone-01
    log:
      file: recordings.jsonl
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Audio recording parameters
RATE = 16000
CHUNK = 4096
CHANNEL = 1
CAPTURE_DIR = tempfile.gettempdir()
CAPTURE_FILE = 'record.wav'
PUBLISH_QUEUE_SIZE = 32
MAX_WRITE_FAILURES = 0

# Input device selection per capture mode (None = system default input)
DENOISE_DEVICE: Optional[str] = None
RAW_DEVICE: Optional[str] = None

CONFIG_FILE = '.nr-recorder.yml'

# Local recording log
LOG_FILE = 'recordings.jsonl'

# Upload parameters
UPLOAD_TIMEOUT = 60.0
MIME_TYPE = 'audio/wav'


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'chunk': CHUNK,
            'channel': CHANNEL,
            'capture_dir': CAPTURE_DIR,
            'capture_file': CAPTURE_FILE,
            'publish_queue_size': PUBLISH_QUEUE_SIZE,
            'max_write_failures': MAX_WRITE_FAILURES,
            'denoise_device': DENOISE_DEVICE,
            'raw_device': RAW_DEVICE,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        recording_config = content.get('recording')
        if isinstance(recording_config, dict):
            for key in self._config.keys():
                if key in recording_config:
                    self._config[key] = recording_config[key]

        for key, value in content.items():
            if key == 'recording':
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def get_capture_path(self) -> Path:
        """Get the well-known capture file path, creating its directory.

        Returns:
            Capture file path
        """
        capture_dir = Path(self._config.get('capture_dir') or CAPTURE_DIR)
        capture_dir.mkdir(parents=True, exist_ok=True)
        return capture_dir / str(self._config.get('capture_file') or CAPTURE_FILE)

    def get_input_device(self, denoise: bool) -> Optional[str]:
        """Return the device name hint configured for a capture mode."""
        value = self._config.get('denoise_device' if denoise else 'raw_device')
        return str(value) if value else None

    def get_upload_config(self) -> Optional[Dict[str, Any]]:
        """Get upload configuration mapping, if present."""
        upload_config = self._config.get('upload')
        if isinstance(upload_config, dict):
            return upload_config
        return None

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the recording log file path.

        The log file name is taken from the ``log.file`` key in
        ``.nr-recorder.yml`` when present, otherwise from the
        :data:`LOG_FILE` constant.  The file is placed inside *output_dir*
        (defaults to the capture file's directory).

        Args:
            output_dir: Directory that will contain the log file.

        Returns:
            Path including the log filename.
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(output_dir) if output_dir is not None else self.get_capture_path().parent
        return base / log_file
