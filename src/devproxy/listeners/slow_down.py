"""
Simulate a slow remote.

Events are dispatched synchronously, so sleeping inside a data_out handler
holds the block back before the Connection forwards it to the client.
Handy for exercising client timeouts.
"""

import time


class SlowDown:
    """
    Server listener delaying every block coming back from the remote.

        server.subscribe(SlowDown(wait_seconds=5))
    """

    def __init__(self, wait_seconds: float = 5.0):
        self.wait_seconds = wait_seconds

    def new_connection(self, connection) -> None:
        connection.on("data_out", self.data_out)

    def data_out(self, connection, data: bytes) -> None:
        time.sleep(self.wait_seconds)
