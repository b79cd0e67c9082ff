import socket
import unittest
from unittest import mock

from unresponsive import dns


class PeerNameTestCase(unittest.TestCase):
    def test_no_resolve_001(self):
        with mock.patch.object(dns.tpool, 'execute') as execute:
            self.assertEqual(dns.peer_name(('10.1.2.3', 5555), resolve=False), "10.1.2.3:5555")
        self.assertFalse(execute.called)

    def test_resolve_001(self):
        with mock.patch.object(dns.tpool, 'execute', return_value=("client.example", [], ['10.1.2.3'])):
            self.assertEqual(dns.peer_name(('10.1.2.3', 5555)), "client.example:5555")

    def test_resolve_002(self):
        """Failed reverse lookup must fall back to numeric address."""
        error = socket.herror(1, "Unknown host")
        with mock.patch.object(dns.tpool, 'execute', side_effect=error):
            self.assertEqual(dns.peer_name(('10.1.2.3', 5555)), "10.1.2.3:5555")

    def test_resolve_003(self):
        error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        with mock.patch.object(dns.tpool, 'execute', side_effect=error):
            self.assertEqual(dns.gethostbyaddr('10.1.2.3'), '10.1.2.3')

    def test_ipv6_001(self):
        """Extra items of IPv6 address tuple are ignored."""
        self.assertEqual(dns.peer_name(('::1', 80, 0, 0), resolve=False), "::1:80")
