"""
Host header rewriting.

Servers that use name-based virtual hosting answer based on the Host
header. When the client thinks it's talking to localhost:8080, the remote
sees "Host: localhost:8080" and serves the wrong site (or none). The
rewriter replaces the header in the client's bytes before they are
broadcast and forwarded:

    Host: localhost:8080   ──►   Host: staging.example.com

It is a Connection inbound filter, not an event listener, because it
changes the data instead of observing it.
"""

import re


HOST_HEADER = re.compile(rb"^Host:[^\r\n]*", re.IGNORECASE | re.MULTILINE)


class HostHeaderRewriter:
    """
    Callable bytes → bytes replacing every Host header line.

    Args:
        vhost: The host name to present to the remote.
        remote_port: Appended as ":port" unless it is 80.
    """

    def __init__(self, vhost: str, remote_port: int = 80):
        self.vhost = vhost
        self.remote_port = int(remote_port)
        host = vhost if self.remote_port == 80 else f"{vhost}:{self.remote_port}"
        self.header = b"Host: " + host.encode("iso-8859-1")

    def __call__(self, data: bytes) -> bytes:
        return HOST_HEADER.sub(lambda _: self.header, data)

    def __repr__(self) -> str:
        return f"HostHeaderRewriter({self.header.decode('iso-8859-1')!r})"
