"""Observable recorder state owned by the event loop.

:class:`RecorderState` is the single mutable object the CLI (or any other
front end) watches.  It must only be mutated from the event loop thread; the
audio callback thread hands data to the loop and never touches it.  Every
mutation publishes an immutable :class:`StateSnapshot` to all subscribers.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from loguru import logger


class UploadStatus(str, Enum):
    """Lifecycle of an upload job."""

    IDLE = 'idle'
    IN_PROGRESS = 'in_progress'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only view of the recorder state after a transition."""

    recording: bool = False
    level: float = 0.0
    upload_status: UploadStatus = UploadStatus.IDLE
    upload_progress: float = 0.0
    upload_message: str = ''
    error: Optional[str] = None


Observer = Callable[[StateSnapshot], None]


class RecorderState:
    """Holds recording and upload state and notifies observers on change."""

    def __init__(self) -> None:
        self._snapshot = StateSnapshot()
        self._observers: List[Observer] = []

    # ------------------------------------------------------------------
    # Observer helpers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register *observer* and return a callable that unregisters it.

        The observer immediately receives the current snapshot.
        """
        self._observers.append(observer)
        observer(self._snapshot)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    def _publish(self, **changes) -> None:
        self._snapshot = replace(self._snapshot, **changes)
        for observer in list(self._observers):
            try:
                observer(self._snapshot)
            except Exception as e:
                logger.debug(f"Observer notification failed: {e}")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @property
    def recording(self) -> bool:
        return self._snapshot.recording

    @property
    def level(self) -> float:
        return self._snapshot.level

    def set_recording(self, recording: bool) -> None:
        changes = {'recording': recording}
        if recording:
            changes['error'] = None
        else:
            changes['level'] = 0.0
        self._publish(**changes)

    def set_level(self, level: float) -> None:
        self._publish(level=max(0.0, min(1.0, float(level))))

    def report_error(self, message: str) -> None:
        self._publish(error=message)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    @property
    def upload_status(self) -> UploadStatus:
        return self._snapshot.upload_status

    def set_upload(
        self,
        status: UploadStatus,
        progress: float,
        message: str,
    ) -> None:
        self._publish(
            upload_status=status,
            upload_progress=max(0.0, min(1.0, progress)),
            upload_message=message,
        )
