"""Unresponsive entry-point. Run this to start stalling clients.

Syntax: unresponsive [OPTION...] PORT DELAY"""

import logging
import sys
from optparse import OptionParser

import yaml

import unresponsive
from unresponsive import conf, get_logger
log = get_logger("server.cli")
from unresponsive.conf import settings
from unresponsive.error import ConfigurationError, SetupError
from unresponsive.log import DEFAULT_LEVEL, update_loggers_level
from .server import Server, ServerConfig


def _positive_int(value):
    try:
        n = int(value)
    except ValueError:
        return None
    return n if n > 0 else None

def parse_params(argv=None):
    usage_info = "Usage: %prog [OPTION...] PORT DELAY"
    version_info = "Unresponsive/%s" % unresponsive.__version__
    opt_parser = OptionParser(usage_info, version=version_info, prog="unresponsive")
    opt_parser.set_defaults(verbose=False, quiet=False, single_client=False, config=None)
    opt_parser.add_option('-1', '--single', action="store_true", dest="single_client",
                          help="Serve only one client at a time, others wait in listen backlog")
    opt_parser.add_option('-c', '--config', metavar="FILE",
                          help="Read YAML configuration from FILE")
    opt_parser.add_option('-q', '--quiet', action="store_true",
                          help="Be quiet, don't generate any output")
    opt_parser.add_option('-v', '--verbose', action="store_true",
                          help="Be verbose, print detailed information")
    options, args = opt_parser.parse_args(argv)

    if len(args) < 2:
        opt_parser.error("PORT and DELAY are required")
    if len(args) > 2:
        opt_parser.error("too many arguments")

    port, delay = _positive_int(args[0]), _positive_int(args[1])
    if port is None:
        opt_parser.error("PORT must be a positive integer, got '%s'" % args[0])
    if delay is None:
        opt_parser.error("DELAY must be a positive integer number of seconds, got '%s'" % args[1])
    return options, port, delay

def main(argv=None):
    options, port, delay = parse_params(argv)

    try:
        conf.load(options.config)
        # picks syslog handler from freshly loaded config, if any
        get_logger("")

        # set up logging
        if options.quiet:
            update_loggers_level(logging.CRITICAL)
        elif options.verbose:
            update_loggers_level(logging.DEBUG)
        else:
            update_loggers_level((settings.get('log') or {}).get('level', DEFAULT_LEVEL))

        config = ServerConfig.from_settings(port, delay, options.single_client)
    except (IOError, ValueError, yaml.YAMLError, ConfigurationError) as e:
        log.error("Configuration: %s", e)
        sys.exit(1)

    server = Server(config)
    try:
        server.serve_forever()
    except SetupError as e:
        log.error("%s", e.msg)
        sys.exit(1)
    except KeyboardInterrupt:
        log.info("Interrupted, waiting for %d connections to finish.", server.running())
        server.graceful_stop()


if __name__ == '__main__':
    main()
