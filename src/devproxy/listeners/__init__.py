"""
Listeners: everything that watches (or gently bends) the relayed traffic.

    Connection listeners        subscribe to a Connection
        ConsoleReporter         "1. +++", "1. < 91", "1. > 4096", "1. ---"
        TimingReporter          time until the remote answers

    Server listeners            subscribe to a Server, hook each new Connection
        RequestResponseLogging  raw bytes to {dir}/{name}.N.in / .out
        SlowDown                hold back every reply block
        HTTPInspector           one log line per HTTP exchange
        ServerReporter          accepted / reaped connections

    Inbound filter              passed to Connection(inbound_filters=...)
        HostHeaderRewriter      replace the Host header
"""

from .host_rewrite import HostHeaderRewriter
from .http_inspector import HTTPInspector
from .reporting import ConsoleReporter, ServerReporter, TimingReporter
from .slow_down import SlowDown
from .traffic_log import RequestResponseLogging

__all__ = [
    "ConsoleReporter",
    "HostHeaderRewriter",
    "HTTPInspector",
    "RequestResponseLogging",
    "ServerReporter",
    "SlowDown",
    "TimingReporter",
]
