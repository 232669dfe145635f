"""
Tests for the channel wire format.

These tests verify:
1. Records survive encode/decode for awkward text (empty, separators, newlines, unicode)
2. The handshake line and the first frame share one stream without ambiguity
3. Clean close, malformed frame and transport failure are reported differently
"""

import io
import socket
import struct
import unittest

from codec import (
    HANDSHAKE_LIMIT,
    HEADER,
    MAX_TEXT_BYTES,
    WIRE_VERSION,
    Record,
    encode_handshake,
    encode_record,
    read_handshake,
    read_record,
)
from errors import FramingError, MeshEstablishmentError, TransportError


class FailingReader:
    def __init__(self, exc):
        self.exc = exc

    def read(self, n):
        raise self.exc

    def readline(self, limit=-1):
        raise self.exc


class TestRecordFraming(unittest.TestCase):
    """Encode/decode of single and consecutive frames."""

    def test_awkward_texts_decode_unchanged(self):
        texts = [
            "",
            "Hello, world!",
            "2 looks like another id",
            " leading and trailing ",
            "line one\nline two",
            "\n",
            "tab\tseparated  fields",
            "héllo ✓ 你好",
        ]
        for text in texts:
            decoded = read_record(io.BytesIO(encode_record(Record(7, text))))
            self.assertEqual(decoded, Record(7, text), f"mismatch for {text!r}")

    def test_frame_layout_is_big_endian_header_plus_utf8(self):
        data = encode_record(Record(3, "hi"))
        self.assertEqual(data, struct.pack(">BqI", WIRE_VERSION, 3, 2) + b"hi")
        self.assertEqual(HEADER.size, 13)

    def test_negative_and_large_sender_ids(self):
        for sender in (-1, 0, 2**40):
            self.assertEqual(read_record(io.BytesIO(encode_record(Record(sender, "x")))).sender_id, sender)

    def test_consecutive_frames_then_clean_close(self):
        stream = io.BytesIO(encode_record(Record(1, "a")) + encode_record(Record(1, "")) + encode_record(Record(2, "c")))
        self.assertEqual(read_record(stream), Record(1, "a"))
        self.assertEqual(read_record(stream), Record(1, ""))
        self.assertEqual(read_record(stream), Record(2, "c"))
        self.assertIsNone(read_record(stream))

    def test_empty_stream_is_clean_close(self):
        self.assertIsNone(read_record(io.BytesIO(b"")))

    def test_truncated_header_is_framing_error(self):
        data = encode_record(Record(1, "hello"))
        with self.assertRaises(FramingError):
            read_record(io.BytesIO(data[:5]))

    def test_truncated_body_is_framing_error(self):
        data = encode_record(Record(1, "hello"))
        with self.assertRaises(FramingError):
            read_record(io.BytesIO(data[:-2]))

    def test_unknown_version_is_framing_error(self):
        data = struct.pack(">BqI", 9, 1, 0)
        with self.assertRaises(FramingError) as ctx:
            read_record(io.BytesIO(data))
        self.assertIn("version", str(ctx.exception))

    def test_oversize_length_is_framing_error(self):
        data = struct.pack(">BqI", WIRE_VERSION, 1, MAX_TEXT_BYTES + 1)
        with self.assertRaises(FramingError):
            read_record(io.BytesIO(data))

    def test_invalid_utf8_is_framing_error(self):
        data = struct.pack(">BqI", WIRE_VERSION, 1, 2) + b"\xff\xfe"
        with self.assertRaises(FramingError):
            read_record(io.BytesIO(data))

    def test_oversize_text_refused_on_encode(self):
        with self.assertRaises(FramingError):
            encode_record(Record(1, "x" * (MAX_TEXT_BYTES + 1)))

    def test_lone_surrogate_refused_on_encode(self):
        with self.assertRaises(FramingError) as ctx:
            encode_record(Record(1, "bad\udcffbyte"))
        self.assertIsInstance(ctx.exception.__cause__, UnicodeEncodeError)

    def test_read_failure_is_transport_error_not_framing(self):
        with self.assertRaises(TransportError) as ctx:
            read_record(FailingReader(ConnectionResetError("reset by peer")))
        self.assertNotIsInstance(ctx.exception, FramingError)

    def test_read_deadline_is_transport_error(self):
        with self.assertRaises(TransportError) as ctx:
            read_record(FailingReader(socket.timeout("timed out")))
        self.assertIn("deadline", str(ctx.exception))

    def test_framing_error_is_a_transport_error(self):
        self.assertTrue(issubclass(FramingError, TransportError))


class TestHandshake(unittest.TestCase):
    """Handshake line parsing and its boundary with the first frame."""

    def test_handshake_bytes(self):
        self.assertEqual(encode_handshake(3), b"3\n")
        self.assertEqual(encode_handshake(120), b"120\n")

    def test_handshake_then_frame_on_one_stream(self):
        stream = io.BufferedReader(io.BytesIO(encode_handshake(4) + encode_record(Record(4, "9 trailing\n"))))
        self.assertEqual(read_handshake(stream), 4)
        self.assertEqual(read_record(stream), Record(4, "9 trailing\n"))
        self.assertIsNone(read_record(stream))

    def test_crlf_handshake_accepted(self):
        self.assertEqual(read_handshake(io.BytesIO(b"12\r\n")), 12)

    def test_non_integer_handshake_rejected(self):
        for raw in (b"abc\n", b"1 2\n", b"+3\n", b"\n", b"3.0\n"):
            with self.assertRaises(MeshEstablishmentError, msg=f"{raw!r} should be rejected"):
                read_handshake(io.BytesIO(raw))

    def test_closed_before_handshake(self):
        with self.assertRaises(MeshEstablishmentError) as ctx:
            read_handshake(io.BytesIO(b""))
        self.assertIn("closed", str(ctx.exception))

    def test_unterminated_handshake_rejected(self):
        with self.assertRaises(MeshEstablishmentError):
            read_handshake(io.BytesIO(b"12"))
        with self.assertRaises(MeshEstablishmentError):
            read_handshake(io.BytesIO(b"1" * HANDSHAKE_LIMIT + b"\n"))

    def test_handshake_timeout(self):
        with self.assertRaises(MeshEstablishmentError) as ctx:
            read_handshake(FailingReader(socket.timeout("timed out")))
        self.assertIn("timed out", str(ctx.exception))


if __name__ == "__main__":
    unittest.main(verbosity=2)
