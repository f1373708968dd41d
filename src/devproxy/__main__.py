"""
=============================================================================
DEVPROXY CLI ENTRY POINT
=============================================================================

    devproxy [options] <listen port> [<remote host> <remote port>]

=============================================================================
USAGE
=============================================================================

    # localhost:3000 → staging.example.com:80
    python -m devproxy 3000 staging.example.com 80

    # Same, but TLS to the remote and the Host header fixed up
    python -m devproxy 3000 staging.example.com 443 --ssl --vhost staging.example.com

    # Keep every connection's bytes in ./captures/api.N.in / .out
    python -m devproxy 3000 localhost 8000 --log --dir ./captures --name api

    # How long does the remote take to answer?
    python -m devproxy 3000 localhost 8000 --timing

    # Route by Host header instead of a fixed remote
    python -m devproxy 80 -o foo.test=127.0.0.1:8001 -o bar.test=127.0.0.1:8002

=============================================================================
"""

import argparse
import logging
import signal
import sys
from typing import Optional, Sequence

from . import __version__
from .config import LOG_LEVELS, ProxyConfig, parse_host_mapping
from .proxy import build_server, setup_logging


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devproxy",
        description="Intercepting TCP/HTTP proxy for development",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  devproxy 3000 staging.example.com 80            # Plain forwarding
  devproxy 3000 api.example.com 443 -s -v api.example.com
  devproxy 3000 localhost 8000 -l -d ./captures   # Keep traffic files
  devproxy 80 -o foo.test=127.0.0.1:8001          # Route by Host header
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # WHERE FROM, WHERE TO
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("listen_port", type=int, help="Local port to listen on")
    parser.add_argument("remote_host", nargs="?", help="Remote host")
    parser.add_argument("remote_port", nargs="?", type=int, help="Remote port")

    parser.add_argument(
        "--listen-host",
        default="127.0.0.1",
        help="Local interface to bind (default: 127.0.0.1)"
    )

    parser.add_argument(
        "-o", "--host-map",
        action="append",
        default=[],
        metavar="NAME=ADDR[:PORT]",
        help="Route requests for Host NAME to ADDR (repeatable, replaces the remote)"
    )

    parser.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Connect to the remote over TLS (SSL termination)"
    )

    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Don't verify the remote's TLS certificate"
    )

    parser.add_argument(
        "-v", "--vhost",
        metavar="HOST",
        help='Rewrite the HTTP "Host:" header, for servers using virtual hosts'
    )

    # ─────────────────────────────────────────────────────────────────────
    # RELAY
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-w", "--wait",
        type=float,
        metavar="SECONDS",
        help="Hold back every block coming from the remote"
    )

    parser.add_argument(
        "--max-connections",
        type=int,
        default=5,
        help="Connections relayed at once (default: 5)"
    )

    parser.add_argument(
        "--block-size",
        type=int,
        default=4096,
        help="Largest single read in bytes (default: 4096)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-l", "--log",
        action="store_true",
        help="Write each connection's traffic to files"
    )

    parser.add_argument(
        "-d", "--dir",
        help="Directory for traffic files (default: the temp dir)"
    )

    parser.add_argument(
        "-n", "--name",
        default="proxy",
        help='Prefix for traffic files (default: "proxy")'
    )

    parser.add_argument(
        "-m", "--timing",
        action="store_true",
        help="Report time until the remote answers"
    )

    parser.add_argument(
        "-x", "--xtiming",
        action="store_true",
        help="Report timing for every block"
    )

    parser.add_argument(
        "--http",
        action="store_true",
        help="Parse traffic as HTTP and log each request/response"
    )

    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"devproxy {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ProxyConfig:
    """Translate parsed arguments into a ProxyConfig (not validated)."""
    return ProxyConfig(
        listen_host=args.listen_host,
        listen_port=args.listen_port,
        remote_host=args.remote_host,
        remote_port=args.remote_port,
        host_mapping=parse_host_mapping(",".join(args.host_map)),
        ssl=args.ssl,
        ssl_verify=not args.insecure,
        vhost=args.vhost,
        delay=args.wait,
        max_connections=args.max_connections,
        max_block_size=args.block_size,
        log_traffic=args.log,
        log_dir=args.dir,
        log_name=args.name,
        timing=2 if args.xtiming else 1 if args.timing else 0,
        inspect_http=args.http,
        log_level=args.log_level,
    )


def install_signal_handlers(server) -> None:
    def shutdown_handler(signum, frame):
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, shutting down...")
        server.close()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        server = build_server(config_from_args(args))
    except ValueError as e:
        parser.error(str(e))

    install_signal_handlers(server)

    try:
        server.call()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
