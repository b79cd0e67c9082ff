"""HTTP request line detection."""


HTTP_MARKERS = (b"HTTP/1.0\r\n", b"HTTP/1.1\r\n")


class RequestSniffer(object):
    """Looks for an HTTP/1.x request line anywhere in peer input.

    Once detected, stays detected."""

    def __init__(self):
        self.detected = False
        self.request_line = None

    def feed(self, held):
        """Inspects `held` bytes, returns True if HTTP was detected by this very call."""

        if self.detected:
            return False
        if not any(marker in held for marker in HTTP_MARKERS):
            return False

        end = held.find(b"\r")
        self.request_line = held[:end].decode('latin-1')
        self.detected = True
        return True
