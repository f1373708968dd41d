"""
=============================================================================
CORE PROXY COMPONENTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                              SERVER                                  │
    │  • Listens on the local port, accepts clients                       │
    │  • Builds a Connection per client through a connection factory      │
    │  • Caps the number of live connections (admission control)          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ one per accepted client
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                            CONNECTION                                │
    │  • Own thread, relays bytes client ⇄ remote                         │
    │  • Broadcasts data_in / data_out / lifecycle events                 │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ asks for the outbound socket
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          SOCKET FACTORY                              │
    │  • TCPSocketFactory      fixed host:port                            │
    │  • SSLSocketFactory      TLS to the remote                          │
    │  • HTTPHostSocketFactory routed by the HTTP Host header             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .socket_factory import (
    FactoryState,
    HostLookupError,
    HTTPHostSocketFactory,
    SingleUseError,
    SSLSocketFactory,
    TCPSocketFactory,
    parse_address,
)
from .socket_server import Server

__all__ = [
    "Connection",
    "ConnectionState",
    "FactoryState",
    "HostLookupError",
    "HTTPHostSocketFactory",
    "SingleUseError",
    "SSLSocketFactory",
    "TCPSocketFactory",
    "parse_address",
    "Server",
]
