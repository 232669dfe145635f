#!/usr/bin/env python3
"""
Demo script for the delayed unicast mesh with clean output.

Run with: python demo.py [scenario]
Options: hello, reorder, failure, all
"""

import sys
import threading
import time

from console import format_event
from network import Network
from receiver import MessageReceived
from settings import Settings
from utils import local_topology

DEMO_SETTINGS = Settings(dial_attempts=3, backoff_unit=0.2)


class EventLog:
    """Sink that prints and keeps every event."""

    def __init__(self):
        self.events = []
        self._cond = threading.Condition()

    def __call__(self, event):
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()
        print("  " + format_event(event))

    def wait_for_messages(self, count, timeout=5.0):
        with self._cond:
            return self._cond.wait_for(
                lambda: sum(isinstance(e, MessageReceived) for e in self.events) >= count, timeout
            )


def print_header(title: str):
    width = 70
    print("")
    print("=" * width)
    print(title.center(width))
    print("=" * width)


def print_subheader(title: str):
    print("")
    print("--- %s ---" % title)


def print_mesh(net):
    complete, missing, one_sided = net.verify()
    print("  Processes: %s" % sorted(net.nodes))
    print("  Channels: %d (expected %d)" % (len(net.channel_pairs()), len(net.nodes) * (len(net.nodes) - 1) // 2))
    for pid, peers in sorted(net.links().items()):
        print("  Process %d -> %s" % (pid, sorted(peers)))
    print("  Full mesh: %s" % ("yes" if complete else "no (missing=%s, one-sided=%s)" % (missing, one_sided)))


def demo_hello(min_delay=100, max_delay=200):
    """Three processes; process 1 sends one message to process 2."""
    print_header("Hello World Unicast")
    log = EventLog()
    topology = local_topology(3, min_delay, max_delay)
    with Network(topology, sink=log, settings=DEMO_SETTINGS, seed=7) as net:
        net.wait_until_settled(10.0)
        print_subheader("Mesh")
        print_mesh(net)

        print_subheader("send 2 Hello, world! (from process 1)")
        sent_at = time.time()
        pending = net.send(1, 2, "Hello, world!")
        print("  drawn delay: %d ms (range [%d, %d))" % (pending.delay_ms, min_delay, max_delay))
        log.wait_for_messages(1)
        received = [e for e in log.events if isinstance(e, MessageReceived)][0]
        print("  observed latency: %.0f ms" % ((received.arrival_time - sent_at) * 1000))


def demo_reorder():
    """Two sends on one channel whose delays invert arrive out of send order."""
    print_header("No FIFO Ordering")
    log = EventLog()
    delays = iter([400, 50])
    topology = local_topology(2, 0, 500)
    with Network(topology, sink=log, settings=DEMO_SETTINGS, delay_fn=lambda: next(delays)) as net:
        net.wait_until_settled(10.0)
        print_subheader("send 'first' (delay 400 ms), then 'second' (delay 50 ms)")
        net.send(1, 2, "first")
        net.send(1, 2, "second")
        log.wait_for_messages(2)
        order = [e.text for e in log.events if isinstance(e, MessageReceived)]
        print("")
        print("  Arrival order: %s" % order)


def demo_failure():
    """One crashed process only costs the channels to that process."""
    print_header("Failure Containment")
    log = EventLog()
    topology = local_topology(3, 50, 100)
    with Network(topology, sink=log, settings=DEMO_SETTINGS) as net:
        net.wait_until_settled(10.0)
        print_mesh(net)

        print_subheader("Crash process 3")
        net.crash(3)
        time.sleep(0.3)

        print_subheader("Process 1 keeps talking to process 2")
        net.send(1, 2, "still here")
        log.wait_for_messages(1)
        try:
            net.send(1, 3, "anyone?")
        except ValueError as e:
            print("  send 3 rejected: %s" % e)


def main():
    """Main demo entry point."""
    scenario = sys.argv[1].lower() if len(sys.argv) > 1 else "all"

    if scenario in ["hello", "all"]:
        demo_hello()
    if scenario in ["reorder", "all"]:
        demo_reorder()
    if scenario in ["failure", "all"]:
        demo_failure()
    if scenario not in ["hello", "reorder", "failure", "all"]:
        print("")
        print("Unknown scenario: %s" % scenario)
        print("Options: hello, reorder, failure, all")

    print("")


if __name__ == "__main__":
    main()
