"""Unresponsive connection handler: slow drain-and-respond state machine.

Each accepted connection is owned by exactly one `Connection`. It reads and
keeps whatever the peer sends until the delay elapses, then answers with
either a bogus HTTP 503 or a plain greeting and closes. A peer that hangs up
first gets nothing."""

from collections import namedtuple
import math
import socket
import time

from eventlet import sleep

from unresponsive import get_logger
log = get_logger("server.connection")
from unresponsive.data import InputBuffer
from unresponsive.dns import peer_name
from .sniffer import RequestSniffer


HELLO = b"Hello, world!\r\n"
HTTP_STATUS_LINE = b"HTTP/1.1 503 Service Unavailable\r\n"
HTTP_CONTENT_TYPE = b"Content-Type: text/plain\r\n"
HTTP_END = b"Content-Length: 0\r\n\r\n"

# Longest single sleep while draining after the delay, in seconds.
DRAIN_SLICE = 10

# `Connection.read` outcomes
DATA = 'data'
PEER_CLOSED = 'peer-closed'
RETRY = 'retry'
FATAL = 'fatal'
TIMEOUT = 'timeout'

ReadResult = namedtuple('ReadResult', 'outcome count buffered error')
ReadResult.__new__.__defaults__ = (0, False, None)


class Connection(object):
    """Single peer connection with its input buffer and deadline."""

    def __init__(self, sock, address, delay, resolve_names=True,
                 buffer_capacity=InputBuffer.DEFAULT_CAPACITY, clock=time.monotonic):
        self.clock = clock
        # fixed once, nothing extends it later
        self.deadline = clock() + delay
        self.sock = sock
        self.address = address
        self.name = peer_name(address, resolve_names)
        self.buffer = InputBuffer(buffer_capacity)
        self.sniffer = RequestSniffer()
        self.eof = False
        self.closed = False

    @property
    def http(self):
        return self.sniffer.detected

    def remaining(self):
        return self.deadline - self.clock()

    def read(self):
        """Waits for input until deadline and makes a single receive attempt.

        Returns `ReadResult`. Never raises on I/O errors, see `FATAL` outcome."""

        remaining = self.remaining()
        if remaining <= 0:
            return ReadResult(TIMEOUT)

        space, buffered = self.buffer.free_space()
        try:
            self.sock.settimeout(remaining)
            n = self.sock.recv_into(space)
        except socket.timeout:
            return ReadResult(TIMEOUT)
        except (BlockingIOError, InterruptedError):
            return ReadResult(RETRY)
        except OSError as e:
            return ReadResult(FATAL, error=e)

        if n == 0:
            return ReadResult(PEER_CLOSED)
        if buffered:
            self.buffer.commit(n)
        return ReadResult(DATA, n, buffered)

    def read_until_deadline(self):
        """READING state. Returns True if the delay elapsed with peer still connected."""

        while True:
            result = self.read()

            if result.outcome == TIMEOUT:
                if self.remaining() > 0:
                    # hub woke us a bit early
                    continue
                return True
            elif result.outcome == RETRY:
                continue
            elif result.outcome == PEER_CLOSED:
                self.eof = True
                log.info("[%s] EOF", self.name)
                return False
            elif result.outcome == FATAL:
                log.error("[%s] %s", self.name, result.error)
                return False

            log.info("[%s] Received %d bytes", self.name, result.count)
            if result.buffered and self.sniffer.feed(self.buffer.held()):
                log.info("[%s] %s", self.name, self.sniffer.request_line)

    def write(self, data):
        """Sends all of `data`. Returns False if peer is gone."""

        try:
            self.sock.settimeout(None)
            self.sock.sendall(data)
        except OSError as e:
            log.error("[%s] %s", self.name, e)
            return False
        return True

    def send_http_header(self):
        """RESPONDING_HTTP_HEADER state. Peer is assumed gone if it fails."""

        if self.write(HTTP_STATUS_LINE) and self.write(HTTP_CONTENT_TYPE):
            log.info("[%s] Sent HTTP 503", self.name)
        else:
            self.eof = True

    def _recv_nowait(self):
        """Non-blocking receive. Returns count of bytes read or None if nothing was there."""

        try:
            self.sock.settimeout(0.0)
            return len(self.sock.recv(self.buffer.capacity))
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            # final write will hit the same error and report it
            log.debug("[%s] drain: %s", self.name, e)
            return None

    def drain(self):
        """DRAINING state. Consumes input until deadline or peer EOF."""

        while True:
            remaining = self.remaining()
            if remaining <= 0:
                break

            if self._recv_nowait() == 0:
                self.eof = True
                log.info("[%s] EOF", self.name)
                break

            log.info("[%s] %d seconds remaining", self.name, math.ceil(remaining))
            sleep(min(DRAIN_SLICE, remaining))

    def send_final(self):
        """RESPONDING_FINAL state. Errors are only logged."""

        if self.http:
            self.write(HTTP_END)
        else:
            self.write(HELLO)

    def run(self):
        log.info("[%s] CONNECTED", self.name)

        if not self.read_until_deadline():
            return

        if self.http:
            self.send_http_header()

        if not self.eof:
            self.drain()
            if not self.eof:
                self.send_final()

    def close(self):
        """CLOSED state. Safe to call more than once, acts only on the first call."""

        if self.closed:
            return
        self.closed = True

        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # ENOTCONN after peer reset, nothing left to shut down
            log.debug("[%s] shutdown: %s", self.name, e)
        self.sock.close()
        log.info("[%s] CLOSED", self.name)


def respond_slowly(sock, address, config):
    """Serves one accepted connection from start to close.

    `config` is `ServerConfig`, only `delay` and `resolve_names` are used."""

    conn = None
    try:
        conn = Connection(sock, address, config.delay, resolve_names=config.resolve_names)
        conn.run()
    finally:
        if conn is not None:
            conn.close()
        else:
            sock.close()
