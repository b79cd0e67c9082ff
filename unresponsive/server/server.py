"""Unresponsive listener: accepts connections and hands them to `respond_slowly`."""

from collections import namedtuple

import eventlet
from eventlet import GreenPool, greenthread

from unresponsive import error, get_logger, log_exceptions
log = get_logger("server")
from unresponsive.conf import settings
from unresponsive.error import SetupError, WrongOption
from .connection import respond_slowly


DEFAULT_MAX_CONNECTIONS = 1000


class StopServing(error.Error):
    """Thrown into accepting green thread by `Server.stop`."""
    pass


class ServerConfig(namedtuple('ServerConfig',
        'port delay single_client host backlog resolve_names max_connections')):
    """Immutable server settings, built once at startup."""

    __slots__ = ()

    def __new__(cls, port, delay, single_client=False, host="0.0.0.0", backlog=5,
                resolve_names=True, max_connections=DEFAULT_MAX_CONNECTIONS):
        if port < 0:
            raise ValueError("port must not be negative, got %r" % (port,))
        if delay <= 0:
            raise ValueError("delay must be positive, got %r" % (delay,))
        return super(ServerConfig, cls).__new__(cls, port, delay, single_client, host, backlog,
                                                resolve_names, max_connections)

    @classmethod
    def from_settings(cls, port, delay, single_client=False):
        """Takes the rest of options from `conf.settings`."""

        options = dict(host=settings.get('listen_host'),
                       backlog=settings.get('backlog'),
                       resolve_names=settings.get('resolve_names'),
                       max_connections=settings.get('max_connections', DEFAULT_MAX_CONNECTIONS))
        for name in ('backlog', 'max_connections'):
            value = options[name]
            # YAML `true` is an int too
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise WrongOption(name, value, "Positive integer")
        return cls(port, delay, single_client, **options)


class Server(object):
    def __init__(self, config, handler=respond_slowly):
        self.config = config
        self.handler = handler
        self.closed = False
        self.sock = None
        self.address = None
        self._acceptor = None
        self._accepting = False
        self._handler_pool = GreenPool(config.max_connections)

    def listen(self):
        """Creates listening socket. Raises `SetupError` on failure."""

        address = (self.config.host, self.config.port)
        try:
            self.sock = eventlet.listen(address, backlog=self.config.backlog,
                                        reuse_addr=True, reuse_port=False)
        except OSError as e:
            raise SetupError("listen on %s:%d: %s" % (address[0], address[1], e))
        self.address = self.sock.getsockname()
        log.info("Listening on %s:%d. Delay is %s seconds%s.",
                 self.address[0], self.address[1], self.config.delay,
                 ", single client mode" if self.config.single_client else "")
        return self.sock

    def serve_forever(self):
        """Accept loop. Returns after `stop()`, raises `SetupError` if accept fails otherwise."""

        if self.sock is None:
            self.listen()

        self._acceptor = greenthread.getcurrent()
        while not self.closed:
            self._accepting = True
            try:
                client, address = self.sock.accept()
            except StopServing:
                break
            except OSError as e:
                if self.closed:
                    break
                raise SetupError("accept: %s" % (e,))
            finally:
                self._accepting = False

            if self.config.single_client:
                self.handle(client, address)
            else:
                t = self._handler_pool.spawn(self.handle, client, address)
                t.link(self._handler_done, address)

    @log_exceptions
    def handle(self, client, address):
        self.handler(client, address, self.config)

    def _handler_done(self, _gt, address):
        log.debug("Handler for %s:%d finished. %d still running.",
                  address[0], address[1], self._handler_pool.running())

    def running(self):
        """Count of connections being served concurrently now."""

        return self._handler_pool.running()

    def stop(self):
        """Stops accepting new connections. Already accepted ones are served to the end."""

        if self.closed:
            return
        self.closed = True
        if self._accepting and self._acceptor is not greenthread.getcurrent():
            # closing listening socket does not wake up its waiter
            greenthread.kill(self._acceptor, StopServing)
        if self.sock is not None:
            self.sock.close()
        log.info("Stopped listening.")

    def graceful_stop(self, timeout=None):
        """Stops server and waits for all already accepted connections to finish.

        If `timeout` is supplied, it waits for at most `timeout` time to finish
            and returns True if allocated time was enough.
            Returns False if `timeout` was not enough.
        """
        self.stop()
        if timeout is not None:
            with eventlet.Timeout(timeout, False):
                self._handler_pool.waitall()
                return True
            return False
        else:
            self._handler_pool.waitall()
            return True
