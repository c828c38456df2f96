"""Newline-delimited JSON framing for protocol envelopes.

One frame is the UTF-8 JSON encoding of one value followed by a single
``\\n``. There is no length prefix; the receiving side accumulates bytes
until a delimiter arrives and then attempts to decode what precedes it.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional

from .. import json
from ..protocol.fields import DELIMITER
from .base import ProtocolError, TransportOverflow


# A peer that never sends a decodable frame would otherwise grow the
# receive buffer without bound.

MAXIMUM_BUFFER = 10_000_000

# A complete string, a string left open at the end of the line, or a
# bracket. JSON strings cannot contain a raw newline, so a string always
# closes on the line that opens it.

_TOKEN = re.compile(rb'"[^"\\\n]*(?:\\.[^"\\\n]*)*"|"|[\[\]{}]')


def encode(envelope: Any) -> bytes:
    """Encode a Request, Response, or plain JSON value as one frame."""

    try:
        value = envelope.to_dict()
    except AttributeError:
        value = envelope

    return json.dumps(value) + DELIMITER


def _nesting(line, depth: int) -> Optional[int]:
    """Return the bracket depth after *line*, starting from *depth*, or None
    if the line cannot be part of any JSON value at that depth.
    """

    for match in _TOKEN.finditer(line):
        token = match.group()

        if token == b'"':
            return None
        if token[:1] == b'"':
            continue

        if token in (b'{', b'['):
            depth += 1
        else:
            depth -= 1
            if depth < 0:
                return None

    return depth


class Decoder:
    """Incrementally extract JSON values from an arbitrarily chunked stream.

    Each call to :func:`feed` appends a chunk and returns the values that
    became complete. A delimiter-bounded slice that does not decode is
    retained and extended to the next delimiter, since JSON may carry
    newlines as whitespace. The candidate is parsed again only once its
    brackets balance, so every byte is scanned once however the value is
    split across lines.

    A candidate that no extension can turn into JSON (stray text, a
    closing bracket too many, a value that still fails once balanced) stays
    in the buffer without being parsed again. The buffer then keeps growing
    until it passes *ceiling* bytes, at which point it is discarded and
    :class:`TransportOverflow` is raised; any frame decoded from the same
    chunk before that travels on the exception.

    With *strict* set a slice that does not decode is dropped instead, and a
    :class:`ProtocolError` describing it takes its place in the output. The
    serving peer uses this so it can answer malformed requests.
    """

    def __init__(self, ceiling: int = MAXIMUM_BUFFER, strict: bool = False):
        self.ceiling = ceiling
        self.strict = strict
        self.clear()

    def __len__(self) -> int:
        return len(self.buffer)

    def clear(self) -> None:
        self.buffer = bytearray()

        # Offset at which to resume looking for the next delimiter. Bytes
        # before it have already been scanned.
        self._scan = 0

        # Bracket depth of a candidate spanning several lines, if any.
        self._depth: Optional[int] = None

        # Set once the retained candidate can never decode.
        self._poisoned = False

    def feed(self, data: bytes) -> List[Any]:
        self.buffer += data
        frames: List[Any] = []

        buffer = self.buffer
        start = 0
        scan = self._scan

        while True:
            index = buffer.find(DELIMITER, scan)
            if index == -1:
                scan = len(buffer)
                break

            line = buffer[scan:index]
            scan = index + 1

            if self._poisoned:
                continue

            if self._depth is None:
                if line.strip() == b'':
                    start = scan
                    continue

                try:
                    value = json.loads(line)
                except json.JSONDecodeError as e:
                    if self.strict:
                        frames.append(ProtocolError(str(e), bytes(line)))
                        start = scan
                        continue

                    depth = _nesting(line, 0)
                    if depth:
                        self._depth = depth
                    else:
                        self._poisoned = True
                    continue

            else:
                depth = _nesting(line, self._depth)
                if depth:
                    self._depth = depth
                    continue

                self._depth = None
                if depth is None:
                    self._poisoned = True
                    continue

                try:
                    value = json.loads(bytes(buffer[start:index]))
                except json.JSONDecodeError:
                    self._poisoned = True
                    continue

            frames.append(value)
            start = scan

        if start:
            del buffer[:start]
            scan -= start

        self._scan = scan

        if len(buffer) > self.ceiling:
            size = len(buffer)
            self.clear()
            raise TransportOverflow(
                f"receive buffer exceeded {self.ceiling} bytes ({size}) without a complete frame",
                frames)

        return frames


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
