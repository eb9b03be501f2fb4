"""
MeshGate — Wire Protocol
========================

What:  Frame models and the newline-delimited JSON codec shared by the
       transport client and the message server.

Frame shapes (one JSON object per line, UTF-8):

    request   {"id": "...", "pattern": "user.get", "data": {...}, "meta": {...}}
    event     {"pattern": "user.created", "data": {...}, "meta": {...}}
    response  {"id": "...", "response": ...}
              {"id": "...", "err": {"code": "conflict", "message": "..."}}

`meta` carries cross-cutting values (currently the request ID). A response
with `"response": null` is a successful lookup miss, not an error.
"""

import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from meshgate.exceptions import FrameError

DELIMITER = b"\n"


class ErrorBody(BaseModel):
    code: str
    message: str


class RequestFrame(BaseModel):
    id: str
    pattern: str
    data: Any = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class EventFrame(BaseModel):
    pattern: str
    data: Any = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class ResponseFrame(BaseModel):
    id: str
    response: Any = None
    err: Optional[ErrorBody] = None

    @property
    def is_error(self) -> bool:
        return self.err is not None


Frame = Union[RequestFrame, EventFrame, ResponseFrame]


def encode_frame(frame: Frame, max_bytes: Optional[int] = None) -> bytes:
    """
    Serialize a frame to one newline-terminated line.

    Raises:
        FrameError: the encoded frame exceeds max_bytes
    """
    if isinstance(frame, ResponseFrame) and frame.err is None:
        # null responses must keep the "response" key
        payload = frame.model_dump_json(exclude={"err"})
    else:
        payload = frame.model_dump_json(exclude_none=isinstance(frame, ResponseFrame))
    line = payload.encode("utf-8") + DELIMITER
    if max_bytes is not None and len(line) > max_bytes:
        raise FrameError(
            message=f"Frame of {len(line)} bytes exceeds the {max_bytes} byte limit",
            context={"size": len(line), "limit": max_bytes},
        )
    return line


def decode_frame(line: bytes) -> Frame:
    """
    Parse one line into a frame.

    Classification:
        has "id" and "pattern"         → RequestFrame
        has "pattern" only             → EventFrame
        has "id" and "response"/"err"  → ResponseFrame

    Raises:
        FrameError: invalid UTF-8/JSON, not an object, or an unknown shape
    """
    try:
        obj = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FrameError(message=f"Malformed frame: {e}")

    if not isinstance(obj, dict):
        raise FrameError(message="Malformed frame: expected a JSON object")

    try:
        if "pattern" in obj:
            if "id" in obj:
                return RequestFrame.model_validate(obj)
            return EventFrame.model_validate(obj)
        if "id" in obj and ("response" in obj or "err" in obj):
            return ResponseFrame.model_validate(obj)
    except PydanticValidationError as e:
        raise FrameError(message=f"Malformed frame: {e.error_count()} invalid field(s)")

    raise FrameError(message="Malformed frame: unknown frame shape")
