import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from errors import UserInputError
from receiver import MessageReceived, PeerLost, PeerUnreachable

USAGE = "Invalid command format. Use: send [destinationID] [message]"


def format_time(ts: float) -> str:
    # RFC 3339 in local time, second precision
    return datetime.fromtimestamp(ts).astimezone().isoformat(timespec="seconds")


def format_event(event) -> str:
    if isinstance(event, MessageReceived):
        return (f"[{event.process_id}] Received message: {event.text} from process {event.sender_id}, "
                f"system time is: {format_time(event.arrival_time)}")
    if isinstance(event, PeerLost):
        return f"[{event.process_id}] Lost connection to process {event.peer_id}: {event.reason}"
    if isinstance(event, PeerUnreachable):
        return f"[{event.process_id}] Process {event.peer_id} is unreachable: {event.reason}"
    return f"{event}"


def print_event(event):
    print(format_event(event))


@dataclass(frozen=True)
class Command:
    name: str
    process_id: Optional[int] = None
    text: str = ""


def _parse_id(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise UserInputError(USAGE) from None


def parse_command(line: str) -> Command:
    """
    Parse one console line.

        send <destinationID> <text...>   text is the rest of the line, single-spaced
        use <processID>                  issue later commands from that process
        peers                            show channels of the current process
        help | ?
        exit | quit
    """
    parts = line.split()
    if not parts:
        raise UserInputError(USAGE)
    name = parts[0]
    if name == "send":
        if len(parts) < 2:
            raise UserInputError(USAGE)
        return Command("send", _parse_id(parts[1]), " ".join(parts[2:]))
    if name == "use":
        if len(parts) != 2:
            raise UserInputError("Invalid command format. Use: use [processID]")
        return Command("use", _parse_id(parts[1]))
    if name == "peers" and len(parts) == 1:
        return Command("peers")
    if name in {"help", "?"}:
        return Command("help")
    if name in {"exit", "quit"}:
        return Command("exit")
    raise UserInputError(USAGE)


class Dispatcher:
    """Turns console lines into unicast sends on the current local process."""

    def __init__(self, nodes: dict, current: Optional[int] = None, out: Callable[[str], None] = print):
        if not nodes:
            raise ValueError("Dispatcher needs at least one local process")
        self.nodes = nodes
        self.current = current if current is not None else min(nodes)
        self.out = out

    def print_help(self):
        self.out("Commands:")
        self.out("  send <destinationID> <message>   send a message from the current process")
        if len(self.nodes) > 1:
            self.out(f"  use <processID>                  switch current process (local: {sorted(self.nodes)})")
        self.out("  peers                            show channels of the current process")
        self.out("  help | ?                         show this help")
        self.out("  exit | quit                      leave")

    def handle(self, line: str) -> bool:
        """Run one command. Returns False when the console should exit."""
        try:
            command = parse_command(line)
        except UserInputError as e:
            self.out(str(e))
            return True

        if command.name == "exit":
            return False
        if command.name == "help":
            self.print_help()
        elif command.name == "use":
            if command.process_id not in self.nodes:
                self.out(f"Process {command.process_id} is not hosted here; local: {sorted(self.nodes)}")
            else:
                self.current = command.process_id
        elif command.name == "peers":
            status = self.nodes[self.current].status()
            self.out(f"Process {status['id']}: connected={status['connected']} "
                     f"unreachable={sorted(status['unreachable'])} pending={status['pending_sends']}")
        elif command.name == "send":
            node = self.nodes[self.current]
            try:
                node.unicast_send(command.process_id, command.text)
            except UserInputError as e:
                self.out(str(e))
                return True
            self.out(f"Sent message: {command.text} to process {command.process_id}, "
                     f"system time is: {format_time(time.time())}")
        return True

    def run(self, input_fn: Callable[[str], str] = input):
        while True:
            try:
                line = input_fn(f"p{self.current}> ").strip()
            except EOFError:
                break
            if not line:
                continue
            if not self.handle(line):
                break
