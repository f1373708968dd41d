"""
Unit tests for request/response pairing.
"""

import pytest

from devproxy.http import HTTPParseError, HTTPRequestSplitter


PIPELINED_RESPONSES = (
    b"HTTP/1.1 200 OK\r\nTransfer-encoding: chunked\r\n\r\n"
    b"5\r\nabcde\r\n5\r\n12345\r\n\r\n"
    b"HTTP/1.1 200 OK\r\nContent-length: 10\r\n\r\n"
    b"12345abcde trailing garbage"
)


@pytest.fixture
def splitter(event_collector) -> HTTPRequestSplitter:
    return HTTPRequestSplitter().subscribe(event_collector)


class TestPairing:
    """Tests for FIFO pairing of requests and responses."""

    def test_pipelined_requests(self, splitter, event_collector):
        """Test two pipelined exchanges are paired in order."""
        splitter.data_in(None, b"GET /foo HTTP/1.1\r\nHost: foo.bar\r\n\r\n")
        splitter.data_in(None, b"GET /bar HTTP/1.1\r\nHost: foo.bar\r\n\r\n")
        splitter.data_out(None, PIPELINED_RESPONSES)

        assert event_collector.names() == ["http_request", "http_request"]
        (req1, res1), (req2, res2) = event_collector.of("http_request")

        assert req1.head_line == "GET /foo HTTP/1.1"
        assert req2.head_line == "GET /bar HTTP/1.1"
        assert res1.body == b"abcde12345"
        assert res2.body == b"12345abcde"

    @pytest.mark.parametrize("size", [1, 5, 13])
    def test_response_split_into_blocks(self, splitter, event_collector, size):
        """Test pairing doesn't depend on how responses are cut up."""
        splitter.data_in(
            None,
            b"GET /foo HTTP/1.1\r\nHost: foo.bar\r\n\r\n"
            b"GET /bar HTTP/1.1\r\nHost: foo.bar\r\n\r\n",
        )
        for i in range(0, len(PIPELINED_RESPONSES), size):
            splitter.data_out(None, PIPELINED_RESPONSES[i:i + size])

        pairs = event_collector.of("http_request")
        assert [req.path for req, _ in pairs] == ["/foo", "/bar"]
        assert [res.body for _, res in pairs] == [b"abcde12345", b"12345abcde"]

    def test_requests_with_bodies_in_one_block(self, splitter):
        """Test one data_in block may complete several requests."""
        splitter.data_in(
            None,
            b"POST /a HTTP/1.1\r\nContent-Length: 3\r\n\r\nabc"
            b"POST /b HTTP/1.1\r\nContent-Length: 2\r\n\r\nde"
            b"GET /c HT",
        )

        assert splitter.pending_requests == 2
        assert len(splitter.requests) == 3
        assert splitter.requests[-1].head == b"GET /c HT"

    def test_pending_count_drops_when_answered(self, splitter, event_collector):
        """Test answered requests leave the queue."""
        splitter.data_in(None, b"GET / HTTP/1.1\r\n\r\n")
        assert splitter.pending_requests == 1

        splitter.data_out(None, b"HTTP/1.1 204 No Content\r\n\r\n")

        assert splitter.pending_requests == 0
        (request, response), = event_collector.of("http_request")
        assert request.path == "/"
        assert response.status_code == "204"
        assert response.status_text == "No Content"

    def test_no_event_for_partial_response(self, splitter, event_collector):
        """Test nothing is broadcast until a response is complete."""
        splitter.data_in(None, b"GET / HTTP/1.1\r\n\r\n")
        splitter.data_out(None, b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nab")

        assert event_collector.events == []
        assert splitter.response.raw_body == b"ab"

    def test_malformed_response_raises(self, splitter):
        """Test parse errors reach the caller."""
        splitter.data_in(None, b"GET / HTTP/1.1\r\n\r\n")
        with pytest.raises(HTTPParseError):
            splitter.data_out(None, b"HTTP/1.1 200 OK\r\nContent-Length: x\r\n\r\n")
