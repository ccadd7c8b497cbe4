"""STOMP 1.2 frame encoding for the WebSocket transport."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ninetynine.core.exceptions import FrameError

NULL = "\x00"
EOL = "\n"

CLIENT_COMMANDS = {"CONNECT", "STOMP", "SEND", "SUBSCRIBE", "UNSUBSCRIBE", "DISCONNECT", "ACK", "NACK",
                   "BEGIN", "COMMIT", "ABORT"}
SERVER_COMMANDS = {"CONNECTED", "MESSAGE", "RECEIPT", "ERROR"}

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "c": ":"}


@dataclass
class Frame:
    """A single STOMP frame."""

    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)


def _escape(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in str(value))


def _unescape(value: str) -> str:
    out = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt not in _UNESCAPES:
            raise FrameError(f"Undefined escape sequence in header: \\{nxt}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    """Serialize a frame. CONNECT headers are not escaped, per STOMP 1.2."""
    escape = (lambda v: str(v)) if frame.command in ("CONNECT", "CONNECTED") else _escape
    lines = [frame.command]
    for name, value in frame.headers.items():
        lines.append(f"{escape(name)}:{escape(value)}")
    if frame.body and "content-length" not in frame.headers:
        lines.append(f"content-length:{len(frame.body.encode('utf-8'))}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def decode_frames(data) -> List[Frame]:
    """
    Parse every frame in a WebSocket message.

    Bare EOLs between frames are heart-beats and produce no frame.

    Raises:
        FrameError: If the data is not well-formed STOMP
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameError(f"Frame is not valid UTF-8: {str(e)}") from e

    frames = []
    pos = 0
    while pos < len(data):
        while pos < len(data) and data[pos] in "\r\n":
            pos += 1
        if pos >= len(data):
            break
        frame, pos = _decode_one(data, pos)
        frames.append(frame)
    return frames


def decode_frame(data) -> Frame:
    """Parse a message that must hold exactly one frame."""
    frames = decode_frames(data)
    if len(frames) != 1:
        raise FrameError(f"Expected one frame, got {len(frames)}")
    return frames[0]


def _decode_one(data: str, pos: int):
    head_end = data.find("\n\n", pos)
    crlf_end = data.find("\r\n\r\n", pos)
    if crlf_end != -1 and (head_end == -1 or crlf_end < head_end):
        head, body_start = data[pos:crlf_end], crlf_end + 4
    elif head_end != -1:
        head, body_start = data[pos:head_end], head_end + 2
    else:
        raise FrameError("Frame has no header terminator")

    lines = [line.rstrip("\r") for line in head.split("\n")]
    command = lines[0]
    if command not in CLIENT_COMMANDS and command not in SERVER_COMMANDS:
        raise FrameError(f"Unknown STOMP command: {command!r}")

    raw = command in ("CONNECT", "CONNECTED")
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            raise FrameError(f"Malformed header line: {line!r}")
        if not raw:
            name, value = _unescape(name), _unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(name, value)

    length = headers.get("content-length")
    if length is not None:
        try:
            size = int(length)
        except ValueError as e:
            raise FrameError(f"Invalid content-length: {length!r}") from e
        encoded = data[body_start:].encode("utf-8")
        if len(encoded) < size + 1 or encoded[size:size + 1] != b"\x00":
            raise FrameError("Frame body shorter than content-length")
        body = encoded[:size].decode("utf-8")
        end = body_start + len(body)
    else:
        end = data.find(NULL, body_start)
        if end == -1:
            raise FrameError("Frame is not NUL-terminated")
        body = data[body_start:end]
    return Frame(command, headers, body), end + 1


def topic_destination(topic: str) -> str:
    """Map a topic name to its broker destination."""
    if topic.startswith("/"):
        return topic
    return f"/topic/{topic}"
