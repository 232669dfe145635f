"""
Tests for channels and the per-process channel registry.

These tests verify:
1. A channel carries records both ways over one stream
2. Closing a channel ends its reader and refuses further writes
3. The registry refuses duplicates and strangers, and tracks settling
"""

import socket
import threading
import unittest

from channel import Channel, ChannelRegistry
from codec import Record
from errors import MeshEstablishmentError, TransportError


def channel_pair():
    a, b = socket.socketpair()
    return Channel(1, 2, a), Channel(2, 1, b)


class TestChannel(unittest.TestCase):

    def test_records_flow_both_ways(self):
        left, right = channel_pair()
        try:
            left.send_record(Record(1, "ping"))
            right.send_record(Record(2, "pong"))
            self.assertEqual(next(right.records()), Record(1, "ping"))
            self.assertEqual(next(left.records()), Record(2, "pong"))
        finally:
            left.close()
            right.close()

    def test_peer_close_ends_records(self):
        left, right = channel_pair()
        left.send_record(Record(1, "last"))
        left.close()
        self.assertEqual(list(right.records()), [Record(1, "last")])
        right.close()

    def test_close_wakes_blocked_reader(self):
        left, right = channel_pair()
        result = {}

        def drain():
            try:
                result["records"] = list(left.records())
            except TransportError as e:
                result["error"] = e

        t = threading.Thread(target=drain, daemon=True)
        t.start()
        left.close()
        t.join(2.0)
        self.assertFalse(t.is_alive())
        self.assertTrue(left.closed)
        right.close()

    def test_write_after_close_fails(self):
        left, right = channel_pair()
        left.close()
        with self.assertRaises(TransportError):
            left.send_record(Record(1, "too late"))
        right.close()

    def test_close_is_idempotent(self):
        left, right = channel_pair()
        left.close()
        left.close()
        self.assertIn("CLOSED", repr(left))
        right.close()

    def test_concurrent_writes_do_not_interleave(self):
        left, right = channel_pair()
        texts = [f"{i}:" + "x" * 5000 for i in range(20)]
        received = []

        def drain():
            for record in right.records():
                received.append(record.text)

        reader = threading.Thread(target=drain, daemon=True)
        reader.start()
        writers = [threading.Thread(target=left.send_record, args=(Record(1, t),)) for t in texts]
        for w in writers:
            w.start()
        for w in writers:
            w.join()
        left.close()
        reader.join(5.0)
        self.assertEqual(sorted(received), sorted(texts))
        right.close()


class TestChannelRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ChannelRegistry(1, [2, 3])
        self.sockets = []

    def tearDown(self):
        for s in self.sockets:
            s.close()

    def make_channel(self, peer_id):
        a, b = socket.socketpair()
        self.sockets.extend([a, b])
        return Channel(1, peer_id, a)

    def test_register_and_lookup(self):
        ch = self.make_channel(2)
        self.registry.register(ch)
        self.assertIs(self.registry.get(2), ch)
        self.assertIsNone(self.registry.get(3))
        self.assertEqual(self.registry.peers(), [2])
        self.assertEqual(len(self.registry), 1)

    def test_duplicate_rejected(self):
        self.registry.register(self.make_channel(2))
        with self.assertRaises(MeshEstablishmentError) as ctx:
            self.registry.register(self.make_channel(2))
        self.assertEqual(ctx.exception.peer_id, 2)

    def test_unknown_peer_rejected(self):
        with self.assertRaises(MeshEstablishmentError):
            self.registry.register(self.make_channel(9))

    def test_removed_peer_stays_unreachable(self):
        self.registry.register(self.make_channel(2))
        self.registry.remove(2, "stream closed")
        self.assertIsNone(self.registry.get(2))
        self.assertTrue(self.registry.is_unreachable(2))
        self.assertEqual(self.registry.unreachable(), {2: "stream closed"})
        with self.assertRaises(MeshEstablishmentError):
            self.registry.register(self.make_channel(2))

    def test_settles_when_every_peer_accounted_for(self):
        self.assertFalse(self.registry.wait_until_settled(0.05))
        self.registry.register(self.make_channel(2))
        self.assertFalse(self.registry.is_settled())
        threading.Timer(0.05, self.registry.mark_unreachable, args=(3, "dial failed")).start()
        self.assertTrue(self.registry.wait_until_settled(2.0))

    def test_drain_does_not_mark_unreachable(self):
        self.registry.register(self.make_channel(2))
        drained = self.registry.drain()
        self.assertEqual([c.peer_id for c in drained], [2])
        self.assertEqual(self.registry.unreachable(), {})
        self.assertEqual(len(self.registry), 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
