import argparse
import logging
import sys

from console import Dispatcher, print_event
from errors import ConfigurationError, MeshEstablishmentError
from network import Network
from settings import DEFAULT_CONFIG_PATH, Settings
from topology import load_config

logger = logging.getLogger(__name__)


def parse_args_once():
    parser = argparse.ArgumentParser(description="Run a delayed unicast message mesh.")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Topology file: '<minDelay> <maxDelay>' then '<id> <address> <port>' lines")
    parser.add_argument("--process", type=int, default=None, help="Run only this process id (default: run every process in this program)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for delay draws")
    parser.add_argument("--dial-attempts", type=int, default=None, help="Connection attempts per peer before marking it unreachable")
    parser.add_argument("--backoff", type=float, default=None, help="Backoff unit in seconds; attempt i waits i units")
    parser.add_argument("--read-timeout", type=float, default=None, help="Close a channel idle for this many seconds (default: never)")
    parser.add_argument("--settle-timeout", type=float, default=30.0, help="Seconds to wait for the mesh before opening the console")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return parser


def build_settings(args) -> Settings:
    overrides = {}
    if args.dial_attempts is not None:
        overrides["dial_attempts"] = args.dial_attempts
    if args.backoff is not None:
        overrides["backoff_unit"] = args.backoff
    if args.read_timeout is not None:
        overrides["read_timeout"] = args.read_timeout
    return Settings(**overrides)


def main(argv=None) -> int:
    args = parse_args_once().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        topology = load_config(args.config)
        settings = build_settings(args)
    except (ConfigurationError, ValueError) as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1
    if args.process is not None and args.process not in topology:
        logger.critical(f"Process {args.process} is not in {args.config}")
        return 1

    only = [args.process] if args.process is not None else None
    net = Network(topology, sink=print_event, settings=settings, seed=args.seed, only=only)
    try:
        net.start()
    except MeshEstablishmentError as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    try:
        if not net.wait_until_settled(args.settle_timeout):
            logger.warning("Mesh not fully settled; some peers are still connecting")
        dispatcher = Dispatcher(net.nodes, current=args.process)
        dispatcher.print_help()
        dispatcher.run()
    except KeyboardInterrupt:
        pass
    finally:
        net.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
