"""
STOMP Frame Codec

ARSnova speaks STOMP over a plain WebSocket. Frames are text of the form
``COMMAND\\nheader:value\\n...\\n\\nbody\\0``. Only the handful of frames the
feedback stream needs are implemented here.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.errors import DecodeError, StompError
from ..feedback.models import BUCKET_COUNT, Feedback, FeedbackValue

logger = logging.getLogger('arsnova.transport.stomp')

ACCEPT_VERSION = "1.2,1.1,1.0"
HEARTBEAT = "20000,0"
SUBSCRIPTION_ID = "sub-6"
FEEDBACK_COMMAND_DESTINATION = "/queue/feedback.command"
HEARTBEAT_FRAME = "\n"

SNAPSHOT_EVENT = "FeedbackChanged"
RESET_EVENT = "FeedbackReset"
SUBMISSION_EVENT = "FeedbackCreated"


@dataclass
class StompFrame:
    """A parsed STOMP frame"""
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


def encode_frame(command: str, headers: Optional[Dict[str, str]] = None, body: str = "") -> str:
    lines = [command]
    for key, value in (headers or {}).items():
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + body + "\0"


def parse_frame(raw: str) -> Optional[StompFrame]:
    """
    Split raw WebSocket text into a STOMP frame.

    Returns:
        None for heartbeats (frames without a command)
    """
    text = raw.replace("\0", "")
    if not text.strip():
        return None

    head, _, body = text.lstrip("\r\n").partition("\n\n")
    lines = head.splitlines()
    command = lines[0].strip()
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if sep:
            # Repeated headers: first occurrence wins
            headers.setdefault(key.strip(), value)
    return StompFrame(command=command, headers=headers, body=body.strip())


def connect_frame(token: str) -> str:
    return encode_frame("CONNECT", {
        "token": token,
        "accept-version": ACCEPT_VERSION,
        "heart-beat": HEARTBEAT,
    })


def feedback_topic(room_id: str) -> str:
    return f"/topic/{room_id}.feedback.stream"


def subscribe_frame(room_id: str) -> str:
    return encode_frame("SUBSCRIBE", {
        "id": SUBSCRIPTION_ID,
        "destination": feedback_topic(room_id),
    })


def create_feedback_frame(room_id: str, user_id: str, value: FeedbackValue) -> str:
    """SEND frame carrying a single submission"""
    payload = json.dumps({
        "type": "CreateFeedback",
        "payload": {
            "roomId": room_id,
            "userId": user_id,
            "value": FeedbackValue.parse(value).value,
        },
    }, separators=(",", ":"))
    return encode_frame("SEND", {
        "destination": FEEDBACK_COMMAND_DESTINATION,
        "content-type": "application/json",
        "content-length": str(len(payload)),
    }, payload)


# Inbound events

class _FeedbackChangedPayload(BaseModel):
    values: List[int] = Field(..., description="Vote count per bucket")

    @field_validator('values')
    @classmethod
    def validate_values(cls, v):
        if len(v) != BUCKET_COUNT:
            raise ValueError(f'values must contain exactly {BUCKET_COUNT} counts')
        if any(count < 0 for count in v):
            raise ValueError('values must be non-negative')
        return v


class _FeedbackCreatedPayload(BaseModel):
    value: int = Field(..., ge=0, le=BUCKET_COUNT - 1, description="Bucket index")


class _EventBody(BaseModel):
    type: str
    payload: dict = Field(default_factory=dict)


@dataclass(frozen=True)
class SnapshotEvent:
    """Authoritative aggregate pushed by the remote"""
    values: tuple

    def to_feedback(self, room_id: str) -> Feedback:
        return Feedback.from_values(self.values, room_id=room_id)


@dataclass(frozen=True)
class SubmissionEvent:
    """A single participant's vote seen on the stream"""
    value: FeedbackValue


FeedbackEvent = Union[SnapshotEvent, SubmissionEvent]


def decode_event(raw: str) -> Optional[FeedbackEvent]:
    """
    Decode an inbound WebSocket text message.

    Returns:
        The feedback event, or None for frames that carry none
        (heartbeats, CONNECTED, RECEIPT, unrelated MESSAGE types)

    Raises:
        StompError: For ERROR frames
        DecodeError: For MESSAGE frames whose body cannot be decoded
    """
    frame = parse_frame(raw)
    if frame is None:
        return None

    if frame.command == "ERROR":
        raise StompError(frame.headers.get("message") or frame.body or "STOMP error")
    if frame.command != "MESSAGE":
        logger.debug(f"Ignoring {frame.command} frame")
        return None

    try:
        body = _EventBody.model_validate_json(frame.body)
        if body.type == SNAPSHOT_EVENT:
            payload = _FeedbackChangedPayload.model_validate(body.payload)
            return SnapshotEvent(values=tuple(payload.values))
        if body.type == RESET_EVENT:
            return SnapshotEvent(values=(0,) * BUCKET_COUNT)
        if body.type == SUBMISSION_EVENT:
            submission = _FeedbackCreatedPayload.model_validate(body.payload)
            return SubmissionEvent(value=FeedbackValue(submission.value))
    except ValidationError as e:
        raise DecodeError(f"Invalid feedback message: {e.errors()[0].get('msg', e)}") from e

    logger.debug(f"Ignoring message of type {body.type}")
    return None
