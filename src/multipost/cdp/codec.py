"""
Frame codec - newline-delimited JSON framing for CDP messages.

A frame is one JSON object on one line. JSON string escaping never emits a
raw newline, so the delimiter cannot appear inside a frame and a corrupt
line can always be skipped by resuming after the next delimiter.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from multipost.core.config import DEFAULT_MAX_FRAME_SIZE
from multipost.core.errors import CDPMalformedFrameError

logger = logging.getLogger("multipost")

DELIMITER = b"\n"

Frame = Dict[str, Any]


def encode_text(frame: Frame) -> str:
    """Serialize a frame to compact JSON text (no delimiter)."""
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":"))


def encode_frame(frame: Frame) -> bytes:
    """Serialize a frame to delimited UTF-8 bytes, ready for the wire."""
    return encode_text(frame).encode("utf-8") + DELIMITER


def parse_frame(raw: Union[bytes, str]) -> Frame:
    """Parse a single complete message.

    Raises:
        CDPMalformedFrameError: if the message is not a JSON object with an
            integer ``id`` or a string ``method``.
    """
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise CDPMalformedFrameError(f"Invalid JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise CDPMalformedFrameError(f"Frame is not a JSON object: {type(data).__name__}")

    if "id" in data:
        frame_id = data["id"]
        if isinstance(frame_id, bool) or not isinstance(frame_id, int):
            raise CDPMalformedFrameError(f"Frame id is not an integer: {frame_id!r}")
    elif not isinstance(data.get("method"), str):
        raise CDPMalformedFrameError("Frame has neither an id nor a method")

    return data


def decode_frame(buffer: bytes) -> Tuple[Optional[Frame], bytes]:
    """Take the first complete frame off ``buffer``.

    Returns ``(frame, remaining)``, or ``(None, buffer)`` when no complete
    frame is buffered yet. Blank lines are skipped.

    Raises:
        CDPMalformedFrameError: for a complete but invalid line; the
            exception's ``remaining`` holds the bytes after it.
    """
    while True:
        line, sep, rest = buffer.partition(DELIMITER)
        if not sep:
            return None, buffer
        if not line.strip():
            buffer = rest
            continue
        try:
            return parse_frame(line), rest
        except CDPMalformedFrameError as e:
            e.remaining = rest
            raise


def is_response(frame: Frame) -> bool:
    return "id" in frame


def is_event(frame: Frame) -> bool:
    return "id" not in frame and "method" in frame


class FrameDecoder:
    """Incremental decoder fed with arbitrary byte chunks.

    Only complete frames are returned. Malformed frames are logged and
    dropped. A frame that exceeds ``max_frame_size`` without a delimiter is
    discarded up to the next delimiter.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self.dropped = 0
        self._buffer = b""
        self._discarding = False

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Frame]:
        frames: List[Frame] = []
        if not chunk:
            return frames

        if self._discarding:
            _, sep, chunk = chunk.partition(DELIMITER)
            if not sep:
                return frames
            self._discarding = False

        buffer = self._buffer + chunk
        while True:
            try:
                frame, buffer = decode_frame(buffer)
            except CDPMalformedFrameError as e:
                self.dropped += 1
                logger.warning(f"Dropping malformed CDP frame: {e.message}")
                buffer = e.remaining
                continue
            if frame is None:
                break
            frames.append(frame)

        if len(buffer) > self.max_frame_size:
            self.dropped += 1
            logger.warning(
                f"Dropping oversized CDP frame ({len(buffer)} bytes buffered, "
                f"limit {self.max_frame_size})"
            )
            buffer = b""
            self._discarding = True

        self._buffer = buffer
        return frames
