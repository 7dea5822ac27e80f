"""
Feedback Aggregation for ARSnova Rooms
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional

from .models import Feedback, FeedbackValue

logger = logging.getLogger('arsnova.feedback.aggregator')


@dataclass
class RoomFeedbackState:
    """
    Running histogram of a single room.

    ``feedback`` is the last authoritative snapshot plus every submission
    counted since.
    """

    room_id: str
    feedback: Feedback
    snapshots_applied: int = 0
    submissions_since_snapshot: int = 0
    last_snapshot_at: Optional[datetime] = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def has_data(self) -> bool:
        return self.snapshots_applied > 0 or self.submissions_since_snapshot > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'room_id': self.room_id,
            'values': list(self.feedback.values),
            'snapshots_applied': self.snapshots_applied,
            'submissions_since_snapshot': self.submissions_since_snapshot,
            'last_snapshot_at': self.last_snapshot_at.isoformat() if self.last_snapshot_at else None,
            'last_updated': self.last_updated.isoformat(),
        }


class FeedbackAggregator:
    """
    Keeps the latest known Feedback per room.

    Incoming submissions are counted into the room's histogram; an incoming
    snapshot replaces it wholesale. The remote session is authoritative, so
    a snapshot always wins over the increments that came before it.
    """

    def __init__(self):
        self._rooms: Dict[str, RoomFeedbackState] = {}
        self._locks: Dict[str, Lock] = {}
        self._global_lock = Lock()

        logger.debug("FeedbackAggregator initialized")

    def on_submission(self, room_id: str, value: FeedbackValue) -> Feedback:
        """
        Count a single participant submission.

        Args:
            room_id: Internal room ID
            value: Submitted bucket

        Returns:
            The room's updated aggregate
        """
        value = FeedbackValue.parse(value)
        with self._get_room_lock(room_id):
            state = self._get_or_create(room_id)
            state.feedback = state.feedback.with_submission(value)
            state.submissions_since_snapshot += 1
            state.last_updated = datetime.now(timezone.utc)
            logger.debug(f"[{room_id}]: Counted submission {value.name} -> {state.feedback.values}")
            return state.feedback

    def on_snapshot(self, room_id: str, feedback: Feedback) -> Feedback:
        """
        Replace the room's aggregate with an authoritative snapshot.

        Args:
            room_id: Internal room ID
            feedback: Snapshot received from the remote

        Returns:
            The room's updated aggregate
        """
        snapshot = Feedback(values=feedback.values, room_id=room_id)
        with self._get_room_lock(room_id):
            state = self._get_or_create(room_id)
            if state.submissions_since_snapshot:
                logger.debug(
                    f"[{room_id}]: Snapshot overrides {state.submissions_since_snapshot} counted submissions"
                )
            now = datetime.now(timezone.utc)
            state.feedback = snapshot
            state.snapshots_applied += 1
            state.submissions_since_snapshot = 0
            state.last_snapshot_at = now
            state.last_updated = now
            return snapshot

    def current_snapshot(self, room_id: str) -> Feedback:
        """Latest known aggregate for a room (all zeros if nothing is known)"""
        with self._get_room_lock(room_id):
            state = self._rooms.get(room_id)
            if state is None:
                return Feedback.empty(room_id)
            return state.feedback

    def has_state(self, room_id: str) -> bool:
        """True once a snapshot or submission was seen for the room"""
        with self._get_room_lock(room_id):
            state = self._rooms.get(room_id)
            return state is not None and state.has_data()

    def clear_room(self, room_id: str) -> bool:
        """
        Forget everything known about a room.

        Returns:
            True if state existed
        """
        with self._global_lock:
            self._locks.pop(room_id, None)
            removed = self._rooms.pop(room_id, None)
        if removed is not None:
            logger.debug(f"[{room_id}]: Cleared aggregate state")
        return removed is not None

    def get_rooms(self) -> List[str]:
        with self._global_lock:
            return list(self._rooms.keys())

    def get_state_summary(self) -> Dict[str, Any]:
        """Serializable view of every room's state"""
        with self._global_lock:
            return {room_id: state.to_dict() for room_id, state in self._rooms.items()}

    def _get_or_create(self, room_id: str) -> RoomFeedbackState:
        # Caller holds the room lock
        state = self._rooms.get(room_id)
        if state is None:
            state = RoomFeedbackState(room_id=room_id, feedback=Feedback.empty(room_id))
            with self._global_lock:
                self._rooms[room_id] = state
        return state

    def _get_room_lock(self, room_id: str) -> Lock:
        """Get or create the lock for a specific room"""
        with self._global_lock:
            if room_id not in self._locks:
                self._locks[room_id] = Lock()
            return self._locks[room_id]
