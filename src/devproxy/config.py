"""
=============================================================================
PROXY CONFIGURATION
=============================================================================

Everything the proxy can be told, in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION SOURCES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Command-line arguments  (python -m devproxy 8080 example.com 80)│
    │   2. Environment variables   (PROXY_LISTEN_PORT=8080 ...)           │
    │   3. Defaults below                                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Two ways to pick the remote side:

    remote_host + remote_port   every connection goes to the same place
    host_mapping                the HTTP Host header picks the place

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_host_mapping(text: Optional[str]) -> Dict[str, str]:
    """
    Parse "name=address[:port],name=address[:port]" into a dict.

        parse_host_mapping("foo.test=10.0.0.1:8080,bar.test=10.0.0.2")
        → {"foo.test": "10.0.0.1:8080", "bar.test": "10.0.0.2"}
    """
    mapping: Dict[str, str] = {}
    if not text:
        return mapping

    for entry in text.split(","):
        entry = entry.strip()
        if not entry:
            continue
        name, sep, address = entry.partition("=")
        if not sep or not name.strip() or not address.strip():
            raise ValueError(f"Invalid host mapping entry: {entry!r} (expected NAME=ADDR[:PORT])")
        mapping[name.strip()] = address.strip()
    return mapping


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


@dataclass
class ProxyConfig:
    """
    Configuration for a proxy server.

    Development, one fixed remote:
        ProxyConfig(listen_port=8080, remote_host="api.staging", remote_port=443,
                    ssl=True, log_traffic=True)

    Virtual hosts, routed by Host header:
        ProxyConfig(listen_port=80, host_mapping={"foo.test": "10.0.0.1:8080"})
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENING SIDE
    # ─────────────────────────────────────────────────────────────────────

    listen_host: str = "127.0.0.1"
    """Local interface to accept clients on."""

    listen_port: int = 8080
    """Local port. 0 lets the OS pick a free one."""

    backlog: int = 128
    """listen() backlog; clients wait here while the proxy is full."""

    max_connections: int = 5
    """Relays running at once. Further clients wait in the backlog."""

    reap_interval: float = 1.0
    """Longest wait between checks for finished connections when full."""

    accept_timeout: float = 1.0
    """accept() wakes up this often so close() is noticed."""

    # ─────────────────────────────────────────────────────────────────────
    # REMOTE SIDE
    # ─────────────────────────────────────────────────────────────────────

    remote_host: Optional[str] = None
    remote_port: Optional[int] = None

    host_mapping: Dict[str, str] = field(default_factory=dict)
    """Host header value → "address[:port]" (port defaults to 80)."""

    connect_timeout: Optional[float] = None
    """Timeout for connecting to the remote. None waits as long as the OS does."""

    ssl: bool = False
    """Speak TLS to the remote (plain text stays on the client side)."""

    ssl_verify: bool = True
    """Check the remote certificate. Turn off for self-signed staging boxes."""

    vhost: Optional[str] = None
    """Rewrite the client's Host header to this name."""

    # ─────────────────────────────────────────────────────────────────────
    # RELAY
    # ─────────────────────────────────────────────────────────────────────

    max_block_size: int = 4096
    """Largest single read from either socket."""

    delay: Optional[float] = None
    """Seconds to hold every block coming back from the remote."""

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT
    # ─────────────────────────────────────────────────────────────────────

    log_traffic: bool = False
    """Write each connection's bytes to {log_dir}/{log_name}.N.in / .out"""

    log_dir: Optional[str] = None
    """Directory for traffic files; the system temp dir if unset."""

    log_name: str = "proxy"
    """Prefix for traffic files."""

    timing: int = 0
    """0: off, 1: time to first reply, 2: also every following block."""

    inspect_http: bool = False
    """Parse relayed traffic as HTTP and log one line per exchange."""

    log_level: str = "INFO"

    @property
    def host_routed(self) -> bool:
        return bool(self.host_mapping)

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        """
        Create configuration from environment variables.

            PROXY_LISTEN_HOST       PROXY_LISTEN_PORT
            PROXY_REMOTE_HOST       PROXY_REMOTE_PORT
            PROXY_HOST_MAP          "name=addr[:port],..."
            PROXY_MAX_CONNECTIONS   PROXY_BLOCK_SIZE
            PROXY_CONNECT_TIMEOUT
            PROXY_SSL               PROXY_SSL_VERIFY
            PROXY_VHOST             PROXY_DELAY
            PROXY_LOG_TRAFFIC       PROXY_LOG_DIR        PROXY_LOG_NAME
            PROXY_INSPECT_HTTP      PROXY_LOG_LEVEL
        """
        remote_port = os.getenv("PROXY_REMOTE_PORT")
        return cls(
            listen_host=os.getenv("PROXY_LISTEN_HOST", "127.0.0.1"),
            listen_port=int(os.getenv("PROXY_LISTEN_PORT", "8080")),
            remote_host=os.getenv("PROXY_REMOTE_HOST"),
            remote_port=int(remote_port) if remote_port else None,
            host_mapping=parse_host_mapping(os.getenv("PROXY_HOST_MAP")),
            max_connections=int(os.getenv("PROXY_MAX_CONNECTIONS", "5")),
            max_block_size=int(os.getenv("PROXY_BLOCK_SIZE", "4096")),
            connect_timeout=_env_float("PROXY_CONNECT_TIMEOUT"),
            ssl=_env_bool("PROXY_SSL", False),
            ssl_verify=_env_bool("PROXY_SSL_VERIFY", True),
            vhost=os.getenv("PROXY_VHOST") or None,
            delay=_env_float("PROXY_DELAY"),
            log_traffic=_env_bool("PROXY_LOG_TRAFFIC", False),
            log_dir=os.getenv("PROXY_LOG_DIR") or None,
            log_name=os.getenv("PROXY_LOG_NAME", "proxy"),
            inspect_http=_env_bool("PROXY_INSPECT_HTTP", False),
            log_level=os.getenv("PROXY_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Fail fast on settings that can't work.

        Raises:
            ValueError: Describing the first problem found.
        """
        if not 0 <= self.listen_port < 65536:
            raise ValueError(f"Invalid listen port: {self.listen_port}. Must be 0-65535.")

        if not self.host_mapping:
            if not self.remote_host or self.remote_port is None:
                raise ValueError("Need remote_host and remote_port, or a host_mapping")
            if not 0 < self.remote_port < 65536:
                raise ValueError(f"Invalid remote port: {self.remote_port}. Must be 1-65535.")
        elif self.vhost:
            # Rewriting Host would defeat routing by Host
            raise ValueError("vhost can't be combined with host_mapping")

        if self.max_connections < 1:
            raise ValueError("max_connections must be >= 1")

        if self.max_block_size < 1:
            raise ValueError("max_block_size must be >= 1")

        if self.delay is not None and self.delay < 0:
            raise ValueError("delay must be >= 0")

        if self.timing not in (0, 1, 2):
            raise ValueError("timing must be 0, 1 or 2")

        if self.reap_interval <= 0 or self.accept_timeout <= 0:
            raise ValueError("reap_interval and accept_timeout must be > 0")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")
