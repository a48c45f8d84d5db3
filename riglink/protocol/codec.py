"""Framing for the rigctld Extended Response Protocol.

Requests are sent as ``+<command>\\n``. The leading ``+`` makes rigctld answer
in extended mode: an echo of the command name, zero or more ``Label: Value``
lines, and a terminating ``RPRT <code>`` line. There is no request id; the
RPRT line is the only frame boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from riglink.errors import DaemonRejectedError, ProtocolError

RPRT_MARKER = "RPRT "
VALUE_SEPARATOR = ": "
ENCODING = "utf-8"


def encode_command(command: str) -> bytes:
    """Encode a rigctld command in extended-response mode."""
    cmd = command.strip()
    if cmd.startswith("+"):
        cmd = cmd[1:]
    return f"+{cmd}\n".encode(ENCODING)


@dataclass(frozen=True)
class RigResponse:
    code: int
    values: list[str] | None
    lines: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.code == 0

    def raise_for_code(self, command: str | None = None) -> None:
        if self.code != 0:
            raise DaemonRejectedError(self.code, command)


def _split_lines(text: str) -> list[str]:
    return [line.rstrip("\r") for line in text.strip().split("\n")]


def _rprt_code(line: str) -> int:
    token = line[len(RPRT_MARKER):].strip().split(" ", 1)[0]
    try:
        return int(token)
    except ValueError as e:
        raise ProtocolError(f"Invalid RPRT line: {line!r}") from e


def _find_rprt(lines: list[str]) -> int:
    for idx, line in enumerate(lines):
        if line.startswith(RPRT_MARKER):
            return idx
    return -1


def extract_value(line: str) -> str:
    """Return the value part of a ``Key: Value`` line (whole line without separator)."""
    idx = line.find(VALUE_SEPARATOR)
    return line[idx + len(VALUE_SEPARATOR):] if idx != -1 else line


def decode_response(text: str) -> RigResponse:
    lines = _split_lines(text)
    rprt_idx = _find_rprt(lines)
    if rprt_idx == -1:
        raise ProtocolError("Invalid response format: missing RPRT line")
    code = _rprt_code(lines[rprt_idx])
    data_lines = [
        line
        for line in lines[:rprt_idx]
        if line.strip() and not line.endswith(":")
    ]
    values = [extract_value(line) for line in data_lines] or None
    return RigResponse(code=code, values=values, lines=lines[:rprt_idx])


def decode_capabilities(text: str) -> list[str]:
    """Keep the dump_caps body verbatim: everything between the echo and RPRT."""
    lines = _split_lines(text)
    rprt_idx = _find_rprt(lines)
    if rprt_idx == -1:
        raise ProtocolError("Invalid capabilities response: missing RPRT line")
    code = _rprt_code(lines[rprt_idx])
    if code != 0:
        raise DaemonRejectedError(code, "dump_caps")
    if rprt_idx == 0:
        raise ProtocolError("Invalid capabilities response: empty body")
    return lines[1:rprt_idx]


class ResponseDecoder:
    """Accumulates partial TCP reads until a full response has arrived.

    Completion is detected by scanning the whole buffer for ``RPRT `` followed by
    a line terminator, so chunk boundaries never affect the decoded result.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> bool:
        self._buffer.extend(chunk)
        return self.complete

    @property
    def complete(self) -> bool:
        text = self.text
        idx = text.find(RPRT_MARKER)
        return idx != -1 and "\n" in text[idx:]

    @property
    def text(self) -> str:
        return self._buffer.decode(ENCODING, errors="replace")

    def reset(self) -> None:
        self._buffer.clear()

    def decode(self) -> RigResponse:
        if not self.complete:
            raise ProtocolError("Unterminated response")
        return decode_response(self.text)

    def decode_capabilities(self) -> list[str]:
        if not self.complete:
            raise ProtocolError("Unterminated capabilities response")
        return decode_capabilities(self.text)


__all__ = [
    "RPRT_MARKER",
    "ResponseDecoder",
    "RigResponse",
    "decode_capabilities",
    "decode_response",
    "encode_command",
    "extract_value",
]
