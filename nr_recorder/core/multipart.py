"""multipart/form-data encoding for recording uploads.

The upload request carries two parts, always in this order:

1. ``file`` – the WAV payload, with ``Content-Type: audio/wav``
2. ``request`` – compact JSON ``{"path": ..., "mimeType": "audio/wav"}``

Remote object paths follow the template::

    speech-recognition-message/mobile_nr_eval/iOS/{random_id}_phone_{nr|raw}.wav
"""

import json
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from .config import MIME_TYPE

REMOTE_PATH_TEMPLATE = 'speech-recognition-message/mobile_nr_eval/iOS/{random_id}_phone_{suffix}.wav'

CRLF = b'\r\n'


def build_remote_path(denoise: bool, random_id: Optional[str] = None) -> str:
    """Build the remote object path for one upload attempt.

    Args:
        denoise: Whether the recording used the noise-suppressing input
        random_id: Identifier to embed; a fresh UUID is generated when omitted

    Returns:
        Remote object path ending in ``_phone_nr.wav`` or ``_phone_raw.wav``
    """
    if random_id is None:
        random_id = str(uuid.uuid4()).upper()
    return REMOTE_PATH_TEMPLATE.format(random_id=random_id, suffix='nr' if denoise else 'raw')


@dataclass(frozen=True)
class UploadMetadata:
    """JSON metadata part of an upload request."""

    path: str
    mime_type: str = MIME_TYPE

    def to_json(self) -> bytes:
        return json.dumps(
            {'path': self.path, 'mimeType': self.mime_type},
            separators=(',', ':'),
            ensure_ascii=False,
        ).encode('utf-8')


def make_boundary() -> str:
    """Generate a random boundary token."""
    return f"Boundary-{uuid.uuid4().hex}"


def _quote(value: str) -> str:
    # Keep header parameters on one line and inside their quotes
    return value.replace('\r', '%0D').replace('\n', '%0A').replace('"', '%22')


def encode(
    file_payload: bytes,
    filename: str,
    metadata: UploadMetadata,
    boundary: Optional[str] = None,
) -> Tuple[bytes, str]:
    """Build a multipart/form-data body.

    Args:
        file_payload: Raw bytes of the audio file
        filename: Filename announced for the file part
        metadata: Metadata serialized into the ``request`` part
        boundary: Boundary token; a random one is generated when omitted

    Returns:
        Tuple of (body, boundary)
    """
    if boundary is None:
        boundary = make_boundary()
    delimiter = f'--{boundary}'.encode('ascii')

    parts = [
        (
            f'Content-Disposition: form-data; name="file"; filename="{_quote(filename)}"\r\n'
            f'Content-Type: {metadata.mime_type}\r\n',
            file_payload,
        ),
        (
            'Content-Disposition: form-data; name="request"\r\n',
            metadata.to_json(),
        ),
    ]

    chunks = []
    for headers, payload in parts:
        chunks.append(delimiter + CRLF)
        chunks.append(headers.encode('utf-8'))
        chunks.append(CRLF)
        chunks.append(payload)
        chunks.append(CRLF)
    chunks.append(delimiter + b'--' + CRLF)

    return b''.join(chunks), boundary
