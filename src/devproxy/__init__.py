"""
=============================================================================
DEVPROXY - Intercepting TCP/HTTP Proxy for Development
=============================================================================

Sit between a client and a remote service, relay every byte unchanged, and
let pluggable listeners watch (or gently bend) the traffic.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    client ──────► Server (local port)
                     │ accept
                     ▼
                   Connection ──── socket factory ────► remote
                     │  ▲                              (TCP, TLS, or
                     │  │ data_in / data_out            picked by Host)
                     ▼  │
                   listeners: reporters, traffic files, HTTP inspector

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    devproxy/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m devproxy)
    ├── config.py            # ProxyConfig dataclass
    ├── events.py            # Publisher: subscribe / on / broadcast
    ├── proxy.py             # Wiring: build_server(), tcp_proxy(), ...
    ├── core/
    │   ├── socket_server.py # Server: accept loop, admission control
    │   ├── connection.py    # Connection: the bidirectional relay
    │   └── socket_factory.py# TCP, TLS and Host-routed outbound sockets
    ├── http/
    │   ├── headers.py       # Headers, HeaderParser
    │   ├── message.py       # Incremental HTTP message parser
    │   └── splitter.py      # Request/response pairing
    └── listeners/           # Reporters, traffic files, Host rewrite, ...

=============================================================================
QUICK START
=============================================================================

    from devproxy import tcp_proxy

    # localhost:3000 → foo.example.com:4000, traffic reported to the log
    tcp_proxy(3000, "foo.example.com", 4000, log_traffic=True).call()

Or from the shell:

    python -m devproxy 3000 foo.example.com 4000 --log --timing

=============================================================================
"""

__version__ = "1.0.0"

from .config import ProxyConfig
from .core import Connection, Server
from .events import Publisher
from .proxy import build_server, http_host_proxy, run, setup_logging, tcp_proxy

__all__ = [
    "Connection",
    "ProxyConfig",
    "Publisher",
    "Server",
    "build_server",
    "http_host_proxy",
    "run",
    "setup_logging",
    "tcp_proxy",
    "__version__",
]
