import logging
import os
import tempfile
import unittest
from unittest import mock

from unresponsive import conf, get_logger
from unresponsive.conf import load_from_dict as conf_from_dict, settings
from unresponsive.error import MissingOption, WrongOption
from unresponsive.log import DEFAULT_LEVEL, _log_handlers, update_loggers_level
from unresponsive.server import ServerConfig


class SettingsTestCase(unittest.TestCase):
    def tearDown(self):
        conf_from_dict({})

    def test_defaults_001(self):
        """Empty config must fall back to listening defaults."""
        conf_from_dict({})
        self.assertEqual(settings.listen_host, "0.0.0.0")
        self.assertEqual(settings.backlog, 5)
        self.assertTrue(settings.resolve_names)

    def test_missing_001(self):
        """Unknown option must raise `MissingOption`, `get` must return default."""
        conf_from_dict({})
        self.assertRaises(MissingOption, getattr, settings, 'no_such_option')
        self.assertEqual(settings.get('no_such_option', 42), 42)

    def test_file_001(self):
        """Must load YAML mapping from file."""
        fd, path = tempfile.mkstemp(suffix=".yaml")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write("listen_host: 127.0.0.1\nbacklog: 17\nresolve_names: false\n")
            conf.load_from_file(path)
        finally:
            os.unlink(path)
        self.assertEqual(settings.listen_host, "127.0.0.1")
        self.assertEqual(settings.backlog, 17)
        self.assertFalse(settings.resolve_names)

    def test_file_002(self):
        """Empty file must give empty config."""
        fd, path = tempfile.mkstemp(suffix=".yaml")
        os.close(fd)
        try:
            conf.load_from_file(path)
        finally:
            os.unlink(path)
        self.assertEqual(settings.backlog, 5)

    def test_file_003(self):
        """YAML that is not a mapping must be refused."""
        fd, path = tempfile.mkstemp(suffix=".yaml")
        with os.fdopen(fd, 'w') as f:
            f.write("- just\n- a list\n")
        try:
            self.assertRaises(ValueError, conf.load_from_file, path)
        finally:
            os.unlink(path)

    def test_load_001(self):
        """No config anywhere must give defaults."""
        with mock.patch.dict(os.environ, clear=False) as environ:
            environ.pop(conf.ENVIRON_KEY, None)
            with mock.patch.object(conf, 'path', []):
                conf.load()
        self.assertEqual(settings.listen_host, "0.0.0.0")
        self.assertIsNone(settings.get('log'))

    def test_load_002(self):
        """Stub environment value must give empty config."""
        conf_from_dict({'backlog': 17})
        with mock.patch.dict(os.environ, {conf.ENVIRON_KEY: "stub"}):
            conf.load()
        self.assertEqual(settings.backlog, 5)


class ServerConfigTestCase(unittest.TestCase):
    def tearDown(self):
        conf_from_dict({})

    def test_from_settings_001(self):
        conf_from_dict({'listen_host': "127.0.0.1", 'resolve_names': False})
        config = ServerConfig.from_settings(8080, 3)
        self.assertEqual(config.port, 8080)
        self.assertEqual(config.delay, 3)
        self.assertFalse(config.single_client)
        self.assertEqual(config.host, "127.0.0.1")
        self.assertEqual(config.backlog, 5)
        self.assertFalse(config.resolve_names)

    def test_from_settings_002(self):
        """Must refuse nonsense backlog."""
        conf_from_dict({'backlog': "lots"})
        self.assertRaises(WrongOption, ServerConfig.from_settings, 8080, 3)

    def test_from_settings_003(self):
        """YAML boolean is not a count."""
        conf_from_dict({'backlog': True})
        self.assertRaises(WrongOption, ServerConfig.from_settings, 8080, 3)
        conf_from_dict({'max_connections': True})
        self.assertRaises(WrongOption, ServerConfig.from_settings, 8080, 3)

    def test_delay_001(self):
        self.assertRaises(ValueError, ServerConfig, 8080, 0)

    def test_immutable_001(self):
        config = ServerConfig(8080, 3)
        self.assertRaises(AttributeError, setattr, config, 'delay', 10)


class LoggingTestCase(unittest.TestCase):
    def tearDown(self):
        update_loggers_level(DEFAULT_LEVEL)

    def test_name_001(self):
        self.assertEqual(get_logger("foo").name, "unresponsive.foo")

    def test_level_001(self):
        """`update_loggers_level` must reach already created loggers."""
        logger = get_logger("test_level_001")
        update_loggers_level(logging.DEBUG)
        self.assertEqual(logger.level, logging.DEBUG)

    def test_format_001(self):
        """Lines must start with time and process id."""
        record = logging.LogRecord("unresponsive.test", logging.INFO, __file__, 1,
                                   "[%s] CLOSED", ("127.0.0.1:1",), None)
        handler = _log_handlers['stdout']
        line = handler.format(record)
        self.assertRegex(line, r"^\[\d\d:\d\d:\d\d\] \[%d\] \[127\.0\.0\.1:1\] CLOSED$" % os.getpid())
