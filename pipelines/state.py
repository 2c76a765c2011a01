"""Training state and per-sync context.

A ``SyncContext`` is owned by exactly one active sync of a project. It
carries the observable training state, the running error list and the
cancellation token, and is passed explicitly to every pipeline call.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Any, List, Optional, Tuple

from .errors import SyncInProgressError
from .utils import pluralize, truncate

logger = logging.getLogger(__name__)


class TrainingStatus(str, Enum):
    """Training state kinds."""
    IDLE = "idle"
    FETCHING_DATA = "fetching_data"
    LOADING = "loading"
    CANCEL_REQUESTED = "cancel_requested"
    COMPLETE = "complete"


@dataclass(frozen=True)
class TrainingState:
    """Immutable snapshot of the training state."""
    status: TrainingStatus = TrainingStatus.IDLE
    progress: Optional[int] = None
    total: Optional[int] = None
    filename: Optional[str] = None
    message: Optional[str] = None
    errors: Tuple[str, ...] = ()

    @classmethod
    def idle(cls) -> 'TrainingState':
        return cls(TrainingStatus.IDLE)

    @classmethod
    def fetching_data(cls) -> 'TrainingState':
        return cls(TrainingStatus.FETCHING_DATA)

    @classmethod
    def loading(cls, progress: int, total: int, filename: Optional[str] = None,
                message: Optional[str] = None) -> 'TrainingState':
        return cls(TrainingStatus.LOADING, progress=progress, total=total,
                   filename=filename, message=message)

    @classmethod
    def cancel_requested(cls) -> 'TrainingState':
        return cls(TrainingStatus.CANCEL_REQUESTED)

    @classmethod
    def complete(cls, errors: List[str]) -> 'TrainingState':
        return cls(TrainingStatus.COMPLETE, errors=tuple(errors))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'state': self.status.value}
        if self.status == TrainingStatus.LOADING:
            for key in ('progress', 'total', 'filename', 'message'):
                value = getattr(self, key)
                if value is not None:
                    data[key] = value
        elif self.status == TrainingStatus.COMPLETE:
            data['errors'] = list(self.errors)
        return data


def get_training_state_message(state: TrainingState, num_files: Optional[int] = None) -> str:
    """Human readable description of a training state."""
    if state.status == TrainingStatus.LOADING:
        filename = f" ({truncate(state.filename, 20)})" if state.filename else ""
        return f"Processing file {state.progress} of {state.total}{filename}"
    elif state.status == TrainingStatus.COMPLETE:
        return "Done processing files"
    elif state.status == TrainingStatus.CANCEL_REQUESTED:
        return "Stopping processing..."
    if num_files is not None:
        return f"{pluralize(num_files, 'file', 'files')} added"
    return ""


class CancellationToken:
    """Cooperative cancellation flag, checked at item dispatch."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


StateObserver = Callable[[TrainingState], None]


class SyncContext:
    """State owned by the active sync of one project."""

    def __init__(self, project_id: str, observer: Optional[StateObserver] = None):
        self.project_id = project_id
        self.state = TrainingState.idle()
        self.errors: List[str] = []
        self.token = CancellationToken()
        self._observers: List[StateObserver] = [observer] if observer else []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, observer: StateObserver):
        self._observers.append(observer)

    def begin(self):
        """Claim the context for a new sync pass."""
        if self._running:
            raise SyncInProgressError(f"A sync is already running for project {self.project_id}")
        self._running = True
        self.errors = []
        self.token = CancellationToken()

    def end(self):
        self._running = False

    def set_state(self, state: TrainingState):
        # Progress updates from items already in flight must not hide a
        # pending cancellation.
        if (state.status == TrainingStatus.LOADING and self.token.cancelled):
            return
        self.state = state
        for observer in self._observers:
            observer(state)

    def add_error(self, message: str):
        self.errors.append(message)

    def cancel(self):
        """Request cooperative cancellation of the running sync."""
        logger.info(f"Cancellation requested for project {self.project_id}")
        self.token.cancel()
        self.set_state(TrainingState.cancel_requested())

    @property
    def message(self) -> str:
        return get_training_state_message(self.state)
