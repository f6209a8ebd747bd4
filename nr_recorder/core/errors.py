"""Error taxonomy for NR Recorder.

Capture errors (:class:`ConfigurationError`, :class:`CaptureFileError`,
:class:`AlreadyRecording`) abort a ``start`` attempt and are raised to the
caller.  Upload errors (:class:`NetworkError`, :class:`ServerError`,
:class:`DecodingError`) are raised while talking to the remote service and
converted by the upload client into an :class:`~nr_recorder.core.upload.UploadFailure`.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a failed upload."""

    NETWORK = 'network'
    HTTP_STATUS = 'http_status'
    SERVER = 'server'
    DECODING = 'decoding'
    IO = 'io'


class RecorderError(Exception):
    """Base class for all NR Recorder errors."""


class ConfigurationError(RecorderError):
    """The audio input could not be acquired or configured."""


class CaptureFileError(RecorderError, OSError):
    """The capture file could not be created or written."""


class AlreadyRecording(RecorderError):
    """``start`` was called while a recording session is active."""


class UploadError(RecorderError):
    """Base class for errors raised during a single upload attempt."""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status


class NetworkError(UploadError):
    """Transport-level failure (connection, timeout, TLS)."""

    kind = ErrorKind.NETWORK


class ServerError(UploadError):
    """Non-200 HTTP status or a server-reported ``code`` other than ``"0"``."""

    kind = ErrorKind.SERVER

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message, code=code, http_status=http_status)
        if http_status is not None and http_status != 200:
            self.kind = ErrorKind.HTTP_STATUS


class DecodingError(UploadError):
    """A 200 response whose body is not the expected JSON shape."""

    kind = ErrorKind.DECODING
