"""Progress events emitted at each pipeline stage boundary."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ProgressEvent:
    type: EventType
    job_id: str
    percentage: float
    current_step: str
    message: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Fire-and-forget delivery of progress events to one observer.

    An observer that raises is reported once and receives no further events.
    """

    def __init__(self, job_id: str, callback: Optional[ProgressCallback] = None):
        self.job_id = job_id
        self._callback = callback
        self._callback_failed = False

    def emit(self, event_type: EventType, percentage: float, current_step: str, message: Optional[str] = None) -> None:
        if self._callback is None or self._callback_failed:
            return

        event = ProgressEvent(
            type=event_type,
            job_id=self.job_id,
            percentage=round(min(100.0, max(0.0, percentage)), 1),
            current_step=current_step,
            message=message,
        )
        try:
            self._callback(event)
        except Exception as callback_error:
            self._callback_failed = True
            logger.warning("Progress callback error: %s", callback_error)

    def start(self, current_step: str, message: Optional[str] = None) -> None:
        self.emit(EventType.START, 0.0, current_step, message)

    def progress(self, percentage: float, current_step: str, message: Optional[str] = None) -> None:
        self.emit(EventType.PROGRESS, percentage, current_step, message)

    def complete(self, message: Optional[str] = None) -> None:
        self.emit(EventType.COMPLETE, 100.0, "complete", message)

    def error(self, percentage: float, current_step: str, message: str) -> None:
        self.emit(EventType.ERROR, percentage, current_step, message)
