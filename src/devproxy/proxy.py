"""
=============================================================================
PUTTING IT TOGETHER
=============================================================================

The core classes know nothing about each other's configuration. This module
wires them up from a ProxyConfig:

    ProxyConfig
        │
        ├──► socket factory   TCP / Host-routed, optionally wrapped in TLS
        │
        ├──► Connection       one per client, with ConsoleReporter,
        │                     TimingReporter and the Host rewrite filter
        │
        └──► Server           with ServerReporter, RequestResponseLogging,
                              SlowDown and HTTPInspector as configured

Shortcuts for the two common setups:

    tcp_proxy(3000, "foo.example.com", 4000).call()
    http_host_proxy(80, {"foo.example.org": "10.10.0.1"}).call()

=============================================================================
"""

import logging
from typing import Dict, Optional

from .config import ProxyConfig
from .core import (
    Connection,
    HTTPHostSocketFactory,
    Server,
    SSLSocketFactory,
    TCPSocketFactory,
)
from .listeners import (
    ConsoleReporter,
    HostHeaderRewriter,
    HTTPInspector,
    RequestResponseLogging,
    ServerReporter,
    SlowDown,
    TimingReporter,
)


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once, for command-line use."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("devproxy").setLevel(numeric)


def make_socket_factory(config: ProxyConfig):
    """
    A fresh socket factory for one connection.

    A new one is needed per connection because the Host-routed factory is
    single-use.
    """
    if config.host_routed:
        factory = HTTPHostSocketFactory(config.host_mapping, timeout=config.connect_timeout)
    else:
        factory = TCPSocketFactory(
            config.remote_host, config.remote_port, timeout=config.connect_timeout
        )

    if config.ssl:
        factory = SSLSocketFactory(factory, verify=config.ssl_verify)
    return factory


def build_server(config: ProxyConfig) -> Server:
    """
    Build a Server (not yet started) from a configuration.

    Raises:
        ValueError: If the configuration doesn't validate.
    """
    config.validate()

    reporter = ConsoleReporter()
    timing = TimingReporter(verbose=config.timing > 1) if config.timing else None

    inbound_filters = []
    if config.vhost:
        inbound_filters.append(HostHeaderRewriter(config.vhost, config.remote_port))

    def connection_factory(in_socket):
        socket_factory = make_socket_factory(config)
        connection = Connection(
            in_socket,
            socket_factory,
            max_block_size=config.max_block_size,
            inbound_filters=inbound_filters,
        )
        if socket_factory.requires_first_packet:
            connection.subscribe(socket_factory, on="data_in")
        connection.subscribe(reporter)
        if timing is not None:
            connection.subscribe(timing)
        return connection

    server = Server.from_config(config, connection_factory)
    server.subscribe(ServerReporter())

    if config.log_traffic:
        server.subscribe(RequestResponseLogging(config.log_dir, config.log_name))
    if config.delay:
        server.subscribe(SlowDown(config.delay))
    if config.inspect_http:
        server.subscribe(HTTPInspector())

    if config.host_routed:
        logger.debug(f"Routing by Host header: {config.host_mapping}")
    else:
        logger.debug(
            f"Forwarding to {config.remote_host}:{config.remote_port}"
            f"{' over TLS' if config.ssl else ''}"
        )
    return server


def tcp_proxy(listen_port: int, remote_host: str, remote_port: int, **options) -> Server:
    """
    Plain byte forwarding from a local port to a remote host and port.

        tcp_proxy(3000, "foo.example.com", 4000).call()

    Extra keyword arguments are ProxyConfig fields.
    """
    return build_server(ProxyConfig(
        listen_port=listen_port,
        remote_host=remote_host,
        remote_port=remote_port,
        **options,
    ))


def http_host_proxy(listen_port: int, host_mapping: Dict[str, str], **options) -> Server:
    """
    A proxy that picks the remote from the HTTP Host header.

        http_host_proxy(80, {"foo.example.org": "10.10.0.1"}).call()
    """
    return build_server(ProxyConfig(
        listen_port=listen_port,
        host_mapping=dict(host_mapping),
        **options,
    ))


def run(config: Optional[ProxyConfig] = None) -> Server:
    """
    Build a server and run it until close() is called. Blocks.

    Without a config, settings are read from the environment.
    """
    config = config or ProxyConfig.from_env()
    setup_logging(config.log_level)
    server = build_server(config)
    server.call()
    return server
