"""
Feedback Data Model

Value types shared by the aggregator, the dispatcher and the push channel.
All of them are immutable once created.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Tuple, Union

BUCKET_COUNT = 4


class FeedbackValue(Enum):
    """
    A single participant's feedback, stored as its bucket index.

    The letter names are the labels ARSnova shows next to the buckets.
    """
    VERY_GOOD = 0
    GOOD = 1
    BAD = 2
    VERY_BAD = 3

    # Letter aliases
    A = 0
    B = 1
    C = 2
    D = 3

    @classmethod
    def parse(cls, raw: Union['FeedbackValue', int, str]) -> 'FeedbackValue':
        """
        Parse a bucket index, member name or letter into a FeedbackValue.

        Raises:
            ValueError: If the value does not name one of the four buckets
        """
        if isinstance(raw, FeedbackValue):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"Invalid feedback value: {raw!r}")
        if isinstance(raw, int):
            return cls(raw)
        if isinstance(raw, str):
            key = raw.strip().upper().replace('-', '_').replace(' ', '_')
            if key.isdigit():
                return cls(int(key))
            try:
                return cls[key]
            except KeyError:
                pass
        raise ValueError(f"Invalid feedback value: {raw!r}")


@dataclass(frozen=True)
class Feedback:
    """Aggregate 4-bucket histogram of a room"""

    values: Tuple[int, int, int, int]
    room_id: str = ""

    def __post_init__(self):
        values = tuple(int(v) for v in self.values)
        if len(values) != BUCKET_COUNT:
            raise ValueError(f"Feedback needs exactly {BUCKET_COUNT} values, got {len(values)}")
        if any(v < 0 for v in values):
            raise ValueError(f"Feedback values must be non-negative: {values}")
        object.__setattr__(self, 'values', values)

    @classmethod
    def empty(cls, room_id: str = "") -> 'Feedback':
        return cls(values=(0, 0, 0, 0), room_id=room_id)

    @classmethod
    def from_values(cls, values: Iterable[int], room_id: str = "") -> 'Feedback':
        return cls(values=tuple(values), room_id=room_id)  # type: ignore[arg-type]

    @property
    def very_good(self) -> int:
        return self.values[FeedbackValue.VERY_GOOD.value]

    @property
    def good(self) -> int:
        return self.values[FeedbackValue.GOOD.value]

    @property
    def bad(self) -> int:
        return self.values[FeedbackValue.BAD.value]

    @property
    def very_bad(self) -> int:
        return self.values[FeedbackValue.VERY_BAD.value]

    def count_votes(self) -> int:
        """Total number of votes across all buckets"""
        return sum(self.values)

    def with_submission(self, value: FeedbackValue) -> 'Feedback':
        """Return a copy with one more vote in the bucket of ``value``"""
        values = list(self.values)
        values[value.value] += 1
        return Feedback(values=tuple(values), room_id=self.room_id)  # type: ignore[arg-type]


@dataclass(frozen=True)
class RoomInfo:
    """Room metadata resolved from an 8-digit short id"""
    id: str
    short_id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class RoomStats:
    """Summary statistics of a room"""
    content_count: int
    ack_comment_count: int
    room_user_count: int


@dataclass(frozen=True)
class SessionContext:
    """Authenticated context produced by the login call"""
    token: str = field(repr=False)
    user_id: str
