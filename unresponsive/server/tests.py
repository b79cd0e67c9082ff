import errno
import io
import os
import socket
import tempfile
import time
import unittest
from unittest import mock

import eventlet

from unresponsive.conf import load_from_dict as conf_from_dict
from unresponsive.error import SetupError
from unresponsive.log import DEFAULT_LEVEL, update_loggers_level
from unresponsive.server import Connection, Server, ServerConfig, respond_slowly
from unresponsive.server import cli_server, connection
from unresponsive.server.sniffer import RequestSniffer


# Very unprobably, but still may be you need to raise this value on slow machine if most tests fail.
DELAY = 0.3
SLACK = 0.25

HTTP_503 = (b"HTTP/1.1 503 Service Unavailable\r\n"
            b"Content-Type: text/plain\r\n"
            b"Content-Length: 0\r\n\r\n")


class FakeClock(object):
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_config(delay=DELAY, **kwargs):
    kwargs.setdefault('host', "127.0.0.1")
    kwargs.setdefault('resolve_names', False)
    return ServerConfig(0, delay, **kwargs)

def connected_pair():
    """Returns (client socket, server side socket, client address)."""

    listener = eventlet.listen(('127.0.0.1', 0))
    try:
        client = eventlet.connect(listener.getsockname())
        server_side, address = listener.accept()
    finally:
        listener.close()
    return client, server_side, address

def read_all(sock, timeout=5):
    chunks = []
    with eventlet.Timeout(timeout):
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)

def count_lines(output, suffix):
    return len([line for line in output if line.endswith(suffix)])


class SnifferTestCase(unittest.TestCase):
    def setUp(self):
        self.sniffer = RequestSniffer()

    def test_detect_001(self):
        """Must detect HTTP/1.1 request line."""
        self.assertTrue(self.sniffer.feed(b"GET / HTTP/1.1\r\nHost: x\r\n"))
        self.assertTrue(self.sniffer.detected)
        self.assertEqual(self.sniffer.request_line, "GET / HTTP/1.1")

    def test_detect_002(self):
        """Must detect HTTP/1.0 request line."""
        self.assertTrue(self.sniffer.feed(b"HEAD / HTTP/1.0\r\n\r\n"))
        self.assertEqual(self.sniffer.request_line, "HEAD / HTTP/1.0")

    def test_detect_003(self):
        """Marker must be found anywhere, not only at start."""
        self.assertTrue(self.sniffer.feed(b"junk junk GET /x HTTP/1.1\r\n"))
        self.assertEqual(self.sniffer.request_line, "junk junk GET /x HTTP/1.1")

    def test_detect_004(self):
        """Marker without CRLF or of other version is not HTTP."""
        self.assertFalse(self.sniffer.feed(b"GET / HTTP/1.1\n"))
        self.assertFalse(self.sniffer.feed(b"GET / HTTP/2.0\r\n"))
        self.assertFalse(self.sniffer.detected)
        self.assertIsNone(self.sniffer.request_line)

    def test_partial_001(self):
        """Marker split across reads must be detected once complete."""
        self.assertFalse(self.sniffer.feed(b"GET / HTTP/1."))
        self.assertTrue(self.sniffer.feed(b"GET / HTTP/1.1\r\n"))

    def test_sticky_001(self):
        """Once detected, stays detected and first request line is kept."""
        self.sniffer.feed(b"GET /first HTTP/1.1\r\n")
        self.assertFalse(self.sniffer.feed(b"garbage"))
        self.assertFalse(self.sniffer.feed(b"GET /second HTTP/1.0\r\n"))
        self.assertTrue(self.sniffer.detected)
        self.assertEqual(self.sniffer.request_line, "GET /first HTTP/1.1")


class ReaderTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.sock = mock.Mock()

    def make_connection(self, delay=3, **kwargs):
        return Connection(self.sock, ('127.0.0.1', 4242), delay, resolve_names=False,
                          clock=self.clock, **kwargs)

    def test_name_001(self):
        self.assertEqual(self.make_connection().name, "127.0.0.1:4242")

    def test_timeout_001(self):
        """Past deadline must return TIMEOUT without touching socket."""
        conn = self.make_connection()
        self.clock.now += 3
        result = conn.read()
        self.assertEqual(result.outcome, connection.TIMEOUT)
        self.assertFalse(self.sock.settimeout.called)
        self.assertFalse(self.sock.recv_into.called)

    def test_timeout_002(self):
        """Wait must be bounded by remaining time."""
        conn = self.make_connection()
        self.clock.now += 1
        self.sock.recv_into.side_effect = socket.timeout("timed out")
        result = conn.read()
        self.assertEqual(result.outcome, connection.TIMEOUT)
        self.sock.settimeout.assert_called_once_with(2.0)

    def test_data_001(self):
        conn = self.make_connection()

        def recv_into(space):
            space[:5] = b"hello"
            return 5
        self.sock.recv_into.side_effect = recv_into

        result = conn.read()
        self.assertEqual(result.outcome, connection.DATA)
        self.assertEqual(result.count, 5)
        self.assertTrue(result.buffered)
        self.assertEqual(conn.buffer.held(), b"hello")

    def test_peer_closed_001(self):
        conn = self.make_connection()
        self.sock.recv_into.return_value = 0
        self.assertEqual(conn.read().outcome, connection.PEER_CLOSED)

    def test_retry_001(self):
        """Would-block must be retried, not failed."""
        conn = self.make_connection()
        self.sock.recv_into.side_effect = BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable")
        self.assertEqual(conn.read().outcome, connection.RETRY)

    def test_retry_002(self):
        conn = self.make_connection()
        self.sock.recv_into.side_effect = InterruptedError(errno.EINTR, "Interrupted system call")
        self.assertEqual(conn.read().outcome, connection.RETRY)

    def test_fatal_001(self):
        conn = self.make_connection()
        e = ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
        self.sock.recv_into.side_effect = e
        result = conn.read()
        self.assertEqual(result.outcome, connection.FATAL)
        self.assertIs(result.error, e)

    def test_overflow_001(self):
        """Full buffer must still drain socket, but keep nothing."""
        conn = self.make_connection(buffer_capacity=4)
        self.sock.recv_into.return_value = 4
        self.assertTrue(conn.read().buffered)

        result = conn.read()
        self.assertEqual(result.outcome, connection.DATA)
        self.assertEqual(result.count, 4)
        self.assertFalse(result.buffered)
        self.assertEqual(len(conn.buffer), 4)
        self.assertEqual(self.sock.recv_into.call_count, 2)


class DrainTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.sock = mock.Mock()
        self.conn = Connection(self.sock, ('127.0.0.1', 4242), 25, resolve_names=False, clock=self.clock)
        self.sleeps = []

        def fake_sleep(seconds):
            self.sleeps.append(seconds)
            self.clock.now += seconds
        patcher = mock.patch.object(connection, 'sleep', side_effect=fake_sleep)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_slices_001(self):
        """Must sleep in slices of at most 10 seconds until deadline."""
        self.sock.recv.side_effect = BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable")
        self.conn.drain()
        self.assertEqual(self.sleeps, [10, 10, 5])
        self.assertFalse(self.conn.eof)

    def test_eof_001(self):
        """Zero bytes read must stop draining as EOF."""
        self.sock.recv.return_value = b""
        self.conn.drain()
        self.assertEqual(self.sleeps, [])
        self.assertTrue(self.conn.eof)

    def test_data_001(self):
        """Input is consumed and dropped while draining."""
        self.sock.recv.side_effect = [b"more", b"", b""]
        self.conn.drain()
        self.assertEqual(self.sleeps, [10])
        self.assertTrue(self.conn.eof)

    def test_past_deadline_001(self):
        self.clock.now += 30
        self.conn.drain()
        self.assertFalse(self.sock.recv.called)
        self.assertEqual(self.sleeps, [])


class SequencerTestCase(unittest.TestCase):
    """Full connection lifecycle over real sockets."""

    def setUp(self):
        self.client, self.server_side, self.address = connected_pair()
        self.config = make_config()

    def tearDown(self):
        self.client.close()

    def serve(self):
        started = time.monotonic()
        with self.assertLogs('unresponsive', 'INFO') as cm:
            respond_slowly(self.server_side, self.address, self.config)
        return time.monotonic() - started, cm.output

    def test_plain_001(self):
        """Silent client must get greeting after delay, then close."""
        elapsed, output = self.serve()
        self.assertGreaterEqual(elapsed, DELAY)
        self.assertLess(elapsed, DELAY + SLACK)
        self.assertEqual(read_all(self.client), b"Hello, world!\r\n")
        self.assertEqual(count_lines(output, "CONNECTED"), 1)
        self.assertEqual(count_lines(output, "CLOSED"), 1)

    def test_plain_002(self):
        """Non-HTTP input must get greeting."""
        self.client.sendall(b"hello there\r\nhow are you?\r\n")
        elapsed, output = self.serve()
        self.assertEqual(read_all(self.client), b"Hello, world!\r\n")
        self.assertTrue([line for line in output if "Received" in line])

    def test_http_001(self):
        """HTTP/1.0 request must get 503 response."""
        self.client.sendall(b"HEAD / HTTP/1.0\r\n\r\n")
        elapsed, output = self.serve()
        self.assertGreaterEqual(elapsed, DELAY)
        self.assertEqual(read_all(self.client), HTTP_503)
        self.assertEqual(count_lines(output, "] HEAD / HTTP/1.0"), 1)
        self.assertEqual(count_lines(output, "Sent HTTP 503"), 1)
        self.assertEqual(count_lines(output, "CLOSED"), 1)

    def test_http_002(self):
        """HTTP/1.1 request sent in pieces must get 503 response."""
        def trickle():
            for piece in (b"GET / HT", b"TP/1.1\r\n", b"Host: localhost\r\n\r\n"):
                self.client.sendall(piece)
                eventlet.sleep(0.02)
        eventlet.spawn(trickle)
        self.serve()
        self.assertEqual(read_all(self.client), HTTP_503)

    def test_overflow_001(self):
        """Request line past buffer capacity is not detected."""
        self.client.sendall(b"x" * 4096 + b"GET / HTTP/1.1\r\n\r\n")
        self.serve()
        self.assertEqual(read_all(self.client), b"Hello, world!\r\n")

    def test_eof_001(self):
        """Client closing its side before delay must get nothing."""
        self.config = make_config(delay=5)
        self.client.shutdown(socket.SHUT_WR)
        elapsed, output = self.serve()
        self.assertLess(elapsed, 1)
        self.assertEqual(read_all(self.client), b"")
        self.assertEqual(count_lines(output, "EOF"), 1)
        self.assertEqual(count_lines(output, "CLOSED"), 1)

    def test_eof_002(self):
        """HTTP client closing before delay must get nothing."""
        self.config = make_config(delay=5)
        self.client.sendall(b"GET / HTTP/1.1\r\n\r\n")
        self.client.shutdown(socket.SHUT_WR)
        _elapsed, output = self.serve()
        self.assertEqual(read_all(self.client), b"")
        self.assertEqual(count_lines(output, "Sent HTTP 503"), 0)


class FailureTestCase(unittest.TestCase):
    def setUp(self):
        self.sock = mock.Mock()
        self.config = make_config()

    def test_fatal_read_001(self):
        """Read error must close connection once without response."""
        self.sock.recv_into.side_effect = ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
        with self.assertLogs('unresponsive', 'INFO') as cm:
            respond_slowly(self.sock, ('127.0.0.1', 4242), self.config)
        self.assertFalse(self.sock.sendall.called)
        self.sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)
        self.assertEqual(self.sock.close.call_count, 1)
        self.assertEqual(count_lines(cm.output, "CLOSED"), 1)
        self.assertEqual(len([line for line in cm.output if line.startswith("ERROR")]), 1)

    def test_write_001(self):
        """Failed 503 header write means peer is gone, nothing more is sent."""
        clock = FakeClock()
        request = b"GET / HTTP/1.1\r\n\r\n"

        def recv_request(space):
            space[:len(request)] = request
            return len(request)

        def recv_timeout(space):
            clock.now += 10
            raise socket.timeout("timed out")

        steps = [recv_request, recv_timeout]
        self.sock.recv_into.side_effect = lambda space: steps.pop(0)(space)
        self.sock.sendall.side_effect = BrokenPipeError(errno.EPIPE, "Broken pipe")
        conn = Connection(self.sock, ("127.0.0.1", 4242), 3, resolve_names=False, clock=clock)

        with self.assertLogs('unresponsive', 'INFO') as cm:
            try:
                conn.run()
            finally:
                conn.close()
        self.assertTrue(conn.http)
        self.assertTrue(conn.eof)
        self.assertEqual(self.sock.sendall.call_count, 1)
        self.assertFalse(self.sock.recv.called)
        self.assertEqual(count_lines(cm.output, "Sent HTTP 503"), 0)
        self.assertEqual(count_lines(cm.output, "CLOSED"), 1)

    def test_write_002(self):
        """Failed greeting write must be logged, connection still closed once."""
        clock = FakeClock()

        def recv_timeout(space):
            clock.now += 10
            raise socket.timeout("timed out")

        self.sock.recv_into.side_effect = recv_timeout
        self.sock.sendall.side_effect = BrokenPipeError(errno.EPIPE, "Broken pipe")
        conn = Connection(self.sock, ("127.0.0.1", 4242), 3, resolve_names=False, clock=clock)

        with self.assertLogs('unresponsive', 'INFO') as cm:
            try:
                conn.run()
            finally:
                conn.close()
        self.assertFalse(conn.http)
        self.sock.sendall.assert_called_once_with(connection.HELLO)
        self.assertEqual(len([line for line in cm.output if line.startswith("ERROR")]), 1)
        self.assertEqual(self.sock.close.call_count, 1)
        self.assertEqual(count_lines(cm.output, "CLOSED"), 1)

    def test_setup_001(self):
        """Socket must be closed even if connection can't be set up."""
        with mock.patch.object(connection, 'peer_name', side_effect=RuntimeError("boom")):
            self.assertRaises(RuntimeError, respond_slowly, self.sock, ('127.0.0.1', 4242), self.config)
        self.assertEqual(self.sock.close.call_count, 1)

    def test_close_001(self):
        """Close must act once and survive shutdown of dead socket."""
        self.sock.shutdown.side_effect = OSError(errno.ENOTCONN, "Transport endpoint is not connected")
        conn = Connection(self.sock, ('127.0.0.1', 4242), 3, resolve_names=False)
        with self.assertLogs('unresponsive', 'INFO') as cm:
            conn.close()
            conn.close()
        self.assertEqual(self.sock.close.call_count, 1)
        self.assertEqual(count_lines(cm.output, "CLOSED"), 1)


class ServerTestCase(unittest.TestCase):
    """Server tests over real listening socket."""

    def start_server(self, **kwargs):
        self.server = Server(make_config(**kwargs))
        self.server.listen()
        self.server_thread = eventlet.spawn(self.server.serve_forever)

    def tearDown(self):
        self.assertTrue(self.server.graceful_stop(timeout=5), "Server didn't stop in allocated time.")
        self.server_thread.kill()

    def connect(self):
        return eventlet.connect(self.server.address)

    def test_listen_001(self):
        """Must listen on ephemeral port when port is 0."""
        self.start_server()
        self.assertEqual(self.server.address[0], "127.0.0.1")
        self.assertNotEqual(self.server.address[1], 0)

    def test_plain_001(self):
        self.start_server()
        client = self.connect()
        try:
            self.assertEqual(read_all(client), b"Hello, world!\r\n")
        finally:
            client.close()

    def test_http_001(self):
        self.start_server()
        client = self.connect()
        try:
            client.sendall(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
            self.assertEqual(read_all(client), HTTP_503)
        finally:
            client.close()

    def test_eof_001(self):
        self.start_server(delay=5)
        client = self.connect()
        try:
            client.shutdown(socket.SHUT_WR)
            self.assertEqual(read_all(client, timeout=2), b"")
        finally:
            client.close()

    def test_repeat_001(self):
        """Repeated connections must be served identically."""
        self.start_server()
        with self.assertLogs('unresponsive', 'INFO') as cm:
            for _ in range(3):
                client = self.connect()
                try:
                    client.sendall(b"HEAD / HTTP/1.0\r\n\r\n")
                    self.assertEqual(read_all(client), HTTP_503)
                finally:
                    client.close()
            self.assertTrue(self.server.graceful_stop(timeout=5))
        self.assertEqual(count_lines(cm.output, "CONNECTED"), 3)
        self.assertEqual(count_lines(cm.output, "CLOSED"), 3)

    def test_concurrent_001(self):
        """Must serve clients in parallel by default."""
        self.start_server()
        clients = [self.connect() for _ in range(3)]
        started = time.monotonic()
        try:
            pile = eventlet.GreenPile()
            for client in clients:
                pile.spawn(read_all, client)
            self.assertEqual(list(pile), [b"Hello, world!\r\n"] * 3)
            self.assertLess(time.monotonic() - started, DELAY * 2)
        finally:
            for client in clients:
                client.close()

    def test_single_client_001(self):
        """Single client mode must serve clients one after another."""
        self.start_server(single_client=True)
        clients = [self.connect() for _ in range(2)]
        started = time.monotonic()
        try:
            self.assertEqual(read_all(clients[0]), b"Hello, world!\r\n")
            self.assertEqual(read_all(clients[1]), b"Hello, world!\r\n")
            self.assertGreaterEqual(time.monotonic() - started, DELAY * 2 - 0.05)
        finally:
            for client in clients:
                client.close()

    def test_stop_001(self):
        """`stop` must end accept loop."""
        self.start_server()
        self.server.stop()
        with eventlet.Timeout(2):
            self.server_thread.wait()
        self.assertTrue(self.server.closed)


class SetupTestCase(unittest.TestCase):
    def setUp(self):
        self.blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.blocker.bind(('127.0.0.1', 0))
        self.blocker.listen(1)
        self.port = self.blocker.getsockname()[1]

    def tearDown(self):
        self.blocker.close()
        conf_from_dict({})
        update_loggers_level(DEFAULT_LEVEL)

    def test_listen_001(self):
        """Busy port must raise `SetupError`."""
        server = Server(ServerConfig(self.port, 1, host="127.0.0.1"))
        self.assertRaises(SetupError, server.listen)

    def test_main_001(self):
        """Busy port must exit with status 1."""
        fd, path = tempfile.mkstemp(suffix=".yaml")
        with os.fdopen(fd, "w") as f:
            f.write("listen_host: 127.0.0.1\n")
        self.addCleanup(os.unlink, path)
        with self.assertRaises(SystemExit) as cm:
            cli_server.main(["-q", "-c", path, str(self.port), "1"])
        self.assertEqual(cm.exception.code, 1)

    def test_main_002(self):
        """Missing config file must exit with status 1."""
        with self.assertRaises(SystemExit) as cm:
            cli_server.main(['-q', '-c', "/nonexistent/unresponsive.yaml", str(self.port), '1'])
        self.assertEqual(cm.exception.code, 1)


class CliTestCase(unittest.TestCase):
    def parse_fails(self, argv):
        with mock.patch('sys.stderr', new_callable=io.StringIO) as stderr:
            with self.assertRaises(SystemExit) as cm:
                cli_server.parse_params(argv)
        self.assertNotEqual(cm.exception.code, 0)
        self.assertIn("Usage: unresponsive", stderr.getvalue())

    def test_params_001(self):
        options, port, delay = cli_server.parse_params(['8080', '5'])
        self.assertEqual((port, delay), (8080, 5))
        self.assertFalse(options.single_client)

    def test_params_002(self):
        options, port, delay = cli_server.parse_params(['-1', '8080', '5'])
        self.assertTrue(options.single_client)
        self.assertEqual((port, delay), (8080, 5))

    def test_params_003(self):
        options, _port, _delay = cli_server.parse_params(['-v', '-c', "some.yaml", '8080', '5'])
        self.assertTrue(options.verbose)
        self.assertEqual(options.config, "some.yaml")

    def test_missing_001(self):
        self.parse_fails([])
        self.parse_fails(['8080'])

    def test_too_many_001(self):
        self.parse_fails(['8080', '5', '7'])

    def test_not_positive_001(self):
        self.parse_fails(['0', '5'])
        self.parse_fails(['8080', '0'])
        self.parse_fails(['8080', '-5'])

    def test_not_integer_001(self):
        self.parse_fails(['http', '5'])
        self.parse_fails(['8080', '1.5'])

    def test_unknown_option_001(self):
        self.parse_fails(['-x', '8080', '5'])
