"""NR Recorder - microphone capture with live level metering and upload.

This package records microphone audio to a WAV file while showing a live
loudness meter, then uploads the recording to the evaluation service.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]
