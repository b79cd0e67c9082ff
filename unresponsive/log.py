"""Unresponsive logging subsystem.

Every line is prefixed with time and process id::

    [12:34:56] [4242] [127.0.0.1:51234] CONNECTED

Records below WARNING go to stdout, the rest to stderr.

Usage::

    from unresponsive.log import get_logger
    log = get_logger("foo")
    log.info("Hello World!")
"""

import logging
import sys
from logging import StreamHandler
from logging.handlers import SysLogHandler

from unresponsive.conf import settings
from unresponsive.error import ConfigNotFound, ConfigNotSpecified, MissingOption, WrongOption


LOG_FORMAT = "[%(asctime)s] [%(process)d] %(message)s"
DATE_FORMAT = "%H:%M:%S"
DEFAULT_LEVEL = logging.INFO

# Handlers cache is to open a single fd to write to syslog, stdout and stderr.
_log_handlers = {}

# Loggers cache allows to update all existing loggers' level
# with a single call of the function `update_loggers_level` below.
_loggers = set()


class _BelowLevel(logging.Filter):
    """Passes only records strictly below `level`."""

    def __init__(self, level):
        super(_BelowLevel, self).__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


def _log_options():
    """Returns `log` config section, ensuring config is loaded at all."""

    try:
        options = settings.log
    except (ConfigNotSpecified, ConfigNotFound) as e:
        # Don't let any configuration problem ruin whole logging.
        settings.log = options = {}
        if isinstance(e, ConfigNotFound):
            sys.stderr.write("Config was not found, using defaults. %s\n" % (e.msg,))
    except MissingOption:
        settings.log = options = {}
    if not hasattr(options, 'get'):
        raise WrongOption('log', options, "Mapping")
    return options

def _create_handlers(options):
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    if 'stdout' not in _log_handlers:
        _log_handlers['stdout'] = StreamHandler(sys.stdout)
        _log_handlers['stdout'].setFormatter(formatter)
        _log_handlers['stdout'].addFilter(_BelowLevel(logging.WARNING))

    if 'stderr' not in _log_handlers:
        _log_handlers['stderr'] = StreamHandler(sys.stderr)
        _log_handlers['stderr'].setFormatter(formatter)
        _log_handlers['stderr'].setLevel(logging.WARNING)

    syslog_address = options.get('syslog')
    if syslog_address and 'syslog' not in _log_handlers:
        _log_handlers['syslog'] = SysLogHandler(address=syslog_address)
        _log_handlers['syslog'].setFormatter(logging.Formatter("unresponsive[%(process)d]: %(message)s"))

def get_logger(name):
    """Returns logger `unresponsive.<name>`, or the package root logger for empty `name`.

    Only the root logger carries handlers, children propagate to it."""

    options = _log_options()
    _create_handlers(options)

    full_name = "unresponsive" + ("."+name if name else "")
    logger = logging.getLogger(full_name)
    _loggers.add(logger)

    if not name:
        for handler in _log_handlers.values():
            if handler not in logger.handlers:
                logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(options.get('level', DEFAULT_LEVEL))

    return logger

def update_loggers_level(level):
    """Sets `level` for all existing loggers and for those created later."""

    options = _log_options()

    # for all loggers created in future
    options['level'] = level

    # for all already created loggers
    for logger in _loggers:
        logger.setLevel(level)

def log_exceptions(func):
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception: # pylint: disable-msg=W0703
            get_logger("log").exception("")
    return wrapper
