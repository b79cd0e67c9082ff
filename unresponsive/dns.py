"""Unresponsive peer name resolving subsystem."""

from eventlet import tpool
import socket

from unresponsive import error, get_logger
log = get_logger("dns")


class DnsError(error.Error):
    """Base class for DNS errors."""
    pass


def _resolve(addr):
    """addr -> hostname"""

    try:
        hostname, _aliases, _addrs = tpool.execute(socket.gethostbyaddr, addr)
    except socket.gaierror as e:
        raise DnsError("%s: %s" % (e.strerror, addr))
    except socket.herror as e:
        raise DnsError("%s: %s" % (e.strerror, addr))
    except (TypeError, ValueError, UnicodeError) as e:
        raise DnsError(str(e))
    return hostname

def gethostbyaddr(addr):
    """Reverse lookup of `addr`. Falls back to `addr` itself if it has no name."""

    try:
        return _resolve(addr)
    except DnsError as e:
        log.debug("Reverse lookup failed: %s", e.msg)
        return addr

def peer_name(address, resolve=True):
    """Renders socket `address` tuple as `host:port` for log lines."""

    host, port = address[:2]
    if resolve:
        host = gethostbyaddr(host)
    return "%s:%d" % (host, port)
