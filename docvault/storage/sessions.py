"""Upload session tracking for locally issued targets.

Provides the state machine a single upload moves through, from target
issue to completion, with an explicit transition table.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone

from docvault.core.exceptions import UnknownUploadTargetError, UploadStateError
from docvault.core.logging import get_logger
from docvault.core.models import UploadState

logger = get_logger(__name__)


# Valid state transitions
VALID_TRANSITIONS: dict[UploadState, set[UploadState]] = {
    UploadState.REQUESTED: {UploadState.TARGET_ISSUED, UploadState.FAILED},
    UploadState.TARGET_ISSUED: {UploadState.BYTES_TRANSFERRED, UploadState.FAILED},
    UploadState.BYTES_TRANSFERRED: {UploadState.COMPLETED, UploadState.FAILED},
    UploadState.COMPLETED: {UploadState.BYTES_TRANSFERRED},  # repeat completion replaces
    UploadState.FAILED: {UploadState.BYTES_TRANSFERRED, UploadState.FAILED},  # retry
}


@dataclass
class UploadSession:
    """One issued upload target."""

    file_id: str
    expires_at: datetime
    state: UploadState = UploadState.REQUESTED
    in_flight: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


class UploadSessionRegistry:
    """In-memory registry of upload targets issued by the local backend.

    A local completion must name a target issued by this process that has
    not expired, and only one transfer per target may run at a time. A
    failure never produces a ledger entry; it only moves the session to
    FAILED, from which the client may retry until the target expires.

    Example:
        sessions = UploadSessionRegistry()
        sessions.issue(target.file_id, target.expires_at)

        sessions.begin(file_id)
        ...
        sessions.transition(file_id, UploadState.BYTES_TRANSFERRED)
        ...
        sessions.finish(file_id, succeeded=True)
    """

    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def issue(self, file_id: str, expires_at: datetime) -> UploadSession:
        """Register a freshly issued target."""
        self.prune()
        session = UploadSession(file_id=file_id, expires_at=expires_at)
        self._sessions[file_id] = session
        self.transition(file_id, UploadState.TARGET_ISSUED)
        return session

    def get(self, file_id: str) -> UploadSession:
        """Get a live session.

        Raises:
            UnknownUploadTargetError: If never issued or already expired
        """
        session = self._sessions.get(file_id)
        if session is None or session.expired:
            raise UnknownUploadTargetError(
                "Upload target is unknown or has expired; request a new one",
                details={"file_id": file_id},
            )
        return session

    def begin(self, file_id: str) -> UploadSession:
        """Claim a session for an incoming transfer.

        Raises:
            UnknownUploadTargetError: If never issued or already expired
            UploadStateError: If another transfer for this target is running
        """
        session = self.get(file_id)
        if session.in_flight:
            raise UploadStateError(
                "An upload to this target is already in progress",
                details={"file_id": file_id},
            )
        session.in_flight = True
        return session

    def transition(self, file_id: str, target: UploadState) -> None:
        """Move a session to a new state.

        Raises:
            UploadStateError: If the transition is not allowed
        """
        session = self._sessions[file_id]
        if target not in VALID_TRANSITIONS[session.state]:
            raise UploadStateError(
                f"Cannot transition from {session.state.value} to {target.value}",
                details={"file_id": file_id},
            )

        logger.debug(
            "Upload state transition",
            file_id=file_id,
            from_state=session.state.value,
            to_state=target.value,
        )
        session.state = target
        session.updated_at = datetime.now(timezone.utc)

    def finish(self, file_id: str, succeeded: bool) -> None:
        """Release a claimed session, marking it completed or failed.

        A failed repeat of an already completed upload leaves the session
        COMPLETED, since the earlier record is still valid.
        """
        session = self._sessions.get(file_id)
        if session is None:
            return
        session.in_flight = False

        if succeeded:
            self.transition(file_id, UploadState.COMPLETED)
        elif UploadState.FAILED in VALID_TRANSITIONS[session.state]:
            self.transition(file_id, UploadState.FAILED)

    def prune(self) -> int:
        """Drop expired sessions that are not mid-transfer."""
        stale = [
            file_id
            for file_id, session in self._sessions.items()
            if session.expired and not session.in_flight
        ]
        for file_id in stale:
            del self._sessions[file_id]
        return len(stale)
