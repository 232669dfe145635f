"""
Wire format for unicast channels.

A channel carries one handshake line followed by any number of record frames:

    handshake:  b"<initiator id>\\n"            ASCII decimal, at most 32 bytes
    frame:      >BqI header + UTF-8 text
                 |  |  +- text length in bytes (uint32)
                 |  +---- sender id (int64)
                 +------- wire version (uint8, currently 1)

The byte after the handshake newline is the first byte of the first frame.
Both ends must read through the same buffered reader for that to hold.
"""

import re
import socket
import struct
from dataclasses import dataclass
from typing import Optional

from errors import FramingError, MeshEstablishmentError, TransportError

WIRE_VERSION = 1
HEADER = struct.Struct(">BqI")
MAX_TEXT_BYTES = 1 << 20
HANDSHAKE_LIMIT = 32

_HANDSHAKE_ID = re.compile(rb"-?[0-9]+")


@dataclass(frozen=True)
class Record:
    sender_id: int
    text: str


def encode_record(record: Record) -> bytes:
    try:
        payload = record.text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise FramingError(f"text cannot be encoded as UTF-8: {e}") from e
    if len(payload) > MAX_TEXT_BYTES:
        raise FramingError(f"text of {len(payload)} bytes exceeds the {MAX_TEXT_BYTES} byte frame limit")
    try:
        header = HEADER.pack(WIRE_VERSION, record.sender_id, len(payload))
    except struct.error as e:
        raise FramingError(f"sender id {record.sender_id} does not fit in a frame header") from e
    return header + payload


def _read_exact(reader, n: int) -> bytes:
    # Short result means EOF was hit first
    chunks = []
    remaining = n
    while remaining:
        try:
            chunk = reader.read(remaining)
        except socket.timeout as e:
            raise TransportError("read deadline exceeded") from e
        except (OSError, ValueError) as e:
            raise TransportError(f"read failed: {e}") from e
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_record(reader) -> Optional[Record]:
    """
    Read the next record frame.

    Returns:
        The decoded Record, or None when the peer closed the stream cleanly
        on a frame boundary.

    Raises:
        FramingError: truncated frame, unknown version, oversize length, bad UTF-8
        TransportError: the underlying read failed or timed out
    """
    header = _read_exact(reader, HEADER.size)
    if not header:
        return None
    if len(header) < HEADER.size:
        raise FramingError(f"stream ended inside a frame header ({len(header)} of {HEADER.size} bytes)")

    version, sender_id, length = HEADER.unpack(header)
    if version != WIRE_VERSION:
        raise FramingError(f"unsupported wire version {version}")
    if length > MAX_TEXT_BYTES:
        raise FramingError(f"frame length {length} exceeds the {MAX_TEXT_BYTES} byte limit")

    payload = _read_exact(reader, length)
    if len(payload) < length:
        raise FramingError(f"stream ended inside a frame body ({len(payload)} of {length} bytes)")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FramingError(f"frame text is not valid UTF-8: {e}") from e
    return Record(sender_id=sender_id, text=text)


def encode_handshake(process_id: int) -> bytes:
    return f"{int(process_id)}\n".encode("ascii")


def read_handshake(reader) -> int:
    try:
        line = reader.readline(HANDSHAKE_LIMIT)
    except socket.timeout as e:
        raise MeshEstablishmentError("timed out waiting for handshake") from e
    except (OSError, ValueError) as e:
        raise MeshEstablishmentError(f"handshake read failed: {e}") from e

    if not line:
        raise MeshEstablishmentError("connection closed before handshake")
    if not line.endswith(b"\n"):
        raise MeshEstablishmentError(f"handshake not newline-terminated within {HANDSHAKE_LIMIT} bytes: {line!r}")
    token = line[:-1].rstrip(b"\r")
    if not _HANDSHAKE_ID.fullmatch(token):
        raise MeshEstablishmentError(f"handshake {token!r} is not an integer process id")
    return int(token)
