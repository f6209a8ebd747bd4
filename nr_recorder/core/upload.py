"""HTTP upload of recorded audio files.

:class:`UploadClient` performs exactly one ``POST {endpoint}/api/v1/files/save``
per call and classifies the outcome as :class:`UploadSuccess` or
:class:`UploadFailure`.  :class:`RecordingUploader` wraps it in an upload job
that reports status to the observable :class:`~nr_recorder.core.state.RecorderState`
and ignores new requests while a job is in progress.

Response shape::

    {"code": "0", "message": "ok",
     "data": {"id": "f-123", "bytes": 2880044, "originalFilename": "..._phone_nr.wav"}}

``code == "0"`` is success and requires ``data``; any other code is a server
failure whose numeric value is reported (``-1`` when it is not numeric).
"""

import asyncio
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx
from loguru import logger

from .config import MIME_TYPE, UPLOAD_TIMEOUT
from .errors import (
    DecodingError,
    ErrorKind,
    NetworkError,
    ServerError,
    UploadError,
)
from .log import RecordingLogger
from .multipart import UploadMetadata, build_remote_path, encode
from .state import RecorderState, UploadStatus

SAVE_FILE_PATH = '/api/v1/files/save'
SUCCESS_CODE = '0'
UNKNOWN_ERROR_CODE = -1


@dataclass
class UploadConfig:
    """Configuration for the upload endpoint."""

    endpoint: str
    token: str
    user_id: str
    device_id: str = field(default_factory=socket.gethostname)
    timeout: float = UPLOAD_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadConfig":
        """Build and validate upload config from mapping."""
        required_fields = ("endpoint", "token", "user_id")
        missing = [name for name in required_fields if not data.get(name)]
        if missing:
            raise ValueError(f"Missing required upload configuration fields: {', '.join(missing)}")

        return cls(
            endpoint=str(data["endpoint"]),
            token=str(data["token"]),
            user_id=str(data["user_id"]),
            device_id=str(data.get("device_id") or socket.gethostname()),
            timeout=float(data.get("timeout", UPLOAD_TIMEOUT)),
        )


@dataclass(frozen=True)
class UploadSuccess:
    """The server stored the file."""

    file_id: str
    byte_count: int
    original_filename: str = ''

    ok = True


@dataclass(frozen=True)
class UploadFailure:
    """The upload attempt failed."""

    kind: ErrorKind
    message: str
    code: Optional[int] = None
    http_status: Optional[int] = None

    ok = False

    @classmethod
    def from_error(cls, error: UploadError) -> "UploadFailure":
        return cls(
            kind=error.kind,
            message=error.message,
            code=error.code,
            http_status=error.http_status,
        )


UploadResult = Union[UploadSuccess, UploadFailure]


@dataclass(frozen=True)
class SavedFile:
    """``data`` object of a successful save response."""

    id: str
    byte_count: int
    original_filename: str

    @classmethod
    def from_dict(cls, data: Any) -> "SavedFile":
        if not isinstance(data, dict):
            raise DecodingError("Success response has no 'data' object")

        file_id = data.get('id')
        byte_count = data.get('bytes')
        original_filename = data.get('originalFilename')
        if not isinstance(file_id, str) or not file_id:
            raise DecodingError("Response field 'data.id' must be a non-empty string")
        if isinstance(byte_count, bool) or not isinstance(byte_count, int):
            raise DecodingError("Response field 'data.bytes' must be an integer")
        if not isinstance(original_filename, str):
            raise DecodingError("Response field 'data.originalFilename' must be a string")
        return cls(id=file_id, byte_count=byte_count, original_filename=original_filename)


@dataclass(frozen=True)
class SaveFileResponse:
    """Envelope of the save endpoint's JSON response."""

    code: str
    message: str
    data: Optional[SavedFile] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "SaveFileResponse":
        """Validate a decoded JSON payload.

        Raises:
            DecodingError: If the payload does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise DecodingError("Response body must be a JSON object")

        code = payload.get('code')
        message = payload.get('message')
        if not isinstance(code, str):
            raise DecodingError("Response field 'code' must be a string")
        if not isinstance(message, str):
            raise DecodingError("Response field 'message' must be a string")

        data = None
        if code == SUCCESS_CODE:
            data = SavedFile.from_dict(payload.get('data'))
        return cls(code=code, message=message, data=data)

    @property
    def error_code(self) -> int:
        """Numeric server error code, or ``-1`` when ``code`` is not numeric."""
        try:
            return int(self.code)
        except ValueError:
            return UNKNOWN_ERROR_CODE


def decode_response(response: httpx.Response) -> UploadSuccess:
    """Turn an HTTP response into an :class:`UploadSuccess`.

    Raises:
        ServerError: On a non-200 status or a non-zero ``code``
        DecodingError: On a 200 response that is not the expected JSON
    """
    if response.status_code != 200:
        raise ServerError(
            f"Upload rejected with HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            code=response.status_code,
            http_status=response.status_code,
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise DecodingError(f"Response is not valid JSON: {e}") from e

    parsed = SaveFileResponse.from_dict(payload)
    if parsed.code != SUCCESS_CODE:
        raise ServerError(parsed.message, code=parsed.error_code)

    return UploadSuccess(
        file_id=parsed.data.id,
        byte_count=parsed.data.byte_count,
        original_filename=parsed.data.original_filename,
    )


class UploadClient:
    """Single-attempt HTTP client for the file save endpoint."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPLOAD_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Args:
            http_client: Existing ``httpx.AsyncClient``; one is created when omitted
            timeout: Request timeout in seconds for a created client
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def upload(
        self,
        endpoint_base: str,
        credential: str,
        user_id: str,
        device_id: str,
        body: bytes,
        boundary: str,
    ) -> UploadResult:
        """POST an encoded multipart body once and classify the response.

        Args:
            endpoint_base: Service base URL
            credential: Opaque bearer token
            user_id: Value of the ``X-Ninja-User-Id`` header
            device_id: Value of the ``Device-Id`` header
            body: Encoded multipart body
            boundary: Boundary used to encode *body*

        Returns:
            :class:`UploadSuccess` or :class:`UploadFailure`; never raises for
            transport, HTTP or decoding errors
        """
        url = endpoint_base.rstrip('/') + SAVE_FILE_PATH
        headers = {
            'Authorization': f'Bearer {credential}',
            'X-Ninja-User-Id': user_id,
            'Device-Id': device_id,
            'Content-Type': f'multipart/form-data; boundary={boundary}',
        }

        try:
            try:
                response = await self._client.post(url, content=body, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as e:
                raise NetworkError(f"Upload to {url} failed: {e}") from e
            return decode_response(response)
        except UploadError as error:
            logger.warning(f"Upload failed ({error.kind.value}): {error.message}")
            return UploadFailure.from_error(error)


@dataclass
class UploadJob:
    """One upload attempt for a recording file."""

    source_path: Path
    remote_path: str
    mime_type: str = MIME_TYPE
    status: UploadStatus = UploadStatus.IDLE
    progress: float = 0.0
    message: str = ''

    @classmethod
    def create(cls, source_path: Path, denoise: bool) -> "UploadJob":
        return cls(source_path=Path(source_path), remote_path=build_remote_path(denoise))


class RecordingUploader:
    """Runs upload jobs one at a time and publishes their progress."""

    def __init__(
        self,
        client: UploadClient,
        config: UploadConfig,
        state: RecorderState,
        recording_logger: Optional[RecordingLogger] = None,
    ) -> None:
        self._client = client
        self._config = config
        self._state = state
        self._recording_logger = recording_logger
        self._job: Optional[UploadJob] = None

    @property
    def job(self) -> Optional[UploadJob]:
        return self._job

    @property
    def busy(self) -> bool:
        return self._job is not None and self._job.status is UploadStatus.IN_PROGRESS

    def _update(self, job: UploadJob, status: UploadStatus, progress: float, message: str) -> None:
        job.status = status
        job.progress = progress
        job.message = message
        self._state.set_upload(status, progress, message)

    async def upload(self, source_path: Path, denoise: bool) -> Optional[UploadResult]:
        """Upload *source_path* once.

        Args:
            source_path: Recorded file to upload
            denoise: Capture mode of the recording, selects the remote suffix

        Returns:
            The upload result, or None if another upload is still in progress
        """
        if self.busy:
            logger.info("Upload already in progress, ignoring request")
            return None

        job = UploadJob.create(source_path, denoise)
        self._job = job
        self._update(job, UploadStatus.IN_PROGRESS, 0.0, f"Reading {job.source_path.name}")

        try:
            payload = job.source_path.read_bytes()
        except OSError as e:
            result = UploadFailure(kind=ErrorKind.IO, message=f"Cannot read {job.source_path}: {e}")
        else:
            metadata = UploadMetadata(path=job.remote_path, mime_type=job.mime_type)
            body, boundary = encode(payload, Path(job.remote_path).name, metadata)
            self._update(job, UploadStatus.IN_PROGRESS, 0.1, f"Uploading {len(payload)} bytes")
            try:
                result = await self._client.upload(
                    self._config.endpoint,
                    self._config.token,
                    self._config.user_id,
                    self._config.device_id,
                    body,
                    boundary,
                )
            except asyncio.CancelledError:
                self._update(job, UploadStatus.FAILED, 1.0, "Upload cancelled")
                raise
            except Exception as e:
                logger.exception(f"Unexpected error uploading {job.source_path}")
                result = UploadFailure(kind=ErrorKind.NETWORK, message=f"Unexpected error: {e}")

        if result.ok:
            message = f"Uploaded {result.byte_count} bytes as {result.file_id}"
            self._update(job, UploadStatus.SUCCEEDED, 1.0, message)
            logger.info(f"{message} ({job.remote_path})")
        else:
            message = f"Upload failed: {result.message}"
            self._update(job, UploadStatus.FAILED, 1.0, message)
            self._state.report_error(message)

        if self._recording_logger is not None:
            self._recording_logger.write_upload(
                file_path=str(job.source_path),
                remote_path=job.remote_path,
                status=job.status.value,
                message=job.message,
                file_id=result.file_id if result.ok else None,
                error_kind=None if result.ok else result.kind.value,
                error_code=None if result.ok else result.code,
            )
        return result
