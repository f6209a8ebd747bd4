"""Core business logic for NR Recorder."""

from .config import AppConfig
from .errors import (
    AlreadyRecording,
    CaptureFileError,
    ConfigurationError,
    DecodingError,
    ErrorKind,
    NetworkError,
    RecorderError,
    ServerError,
)
from .log import RecordingLogger
from .models import AudioBlock, RecordingSession, StreamFormat
from .multipart import UploadMetadata, build_remote_path, encode
from .processing import compute_level, detect_driver_type, level_to_db
from .recording import CapturePipeline, CaptureSink
from .state import RecorderState, StateSnapshot, UploadStatus
from .upload import (
    RecordingUploader,
    UploadClient,
    UploadConfig,
    UploadFailure,
    UploadJob,
    UploadSuccess,
)

__all__ = [
    "AppConfig",
    "AudioBlock",
    "StreamFormat",
    "RecordingSession",
    "CaptureSink",
    "CapturePipeline",
    "RecorderState",
    "StateSnapshot",
    "UploadStatus",
    "RecordingLogger",
    "UploadClient",
    "UploadConfig",
    "UploadJob",
    "UploadSuccess",
    "UploadFailure",
    "UploadMetadata",
    "RecordingUploader",
    "compute_level",
    "level_to_db",
    "detect_driver_type",
    "build_remote_path",
    "encode",
    "ErrorKind",
    "RecorderError",
    "ConfigurationError",
    "CaptureFileError",
    "AlreadyRecording",
    "NetworkError",
    "ServerError",
    "DecodingError",
]
