"""Configuration subsystem.

Config is a YAML mapping. It comes from a file named on command line, from
os.environ[conf.ENVIRON_KEY] or from the first existing file in `path`.

Exposes config via `settings` attributes, e.g. `settings.backlog`."""

import os
import yaml

from unresponsive.error import ConfigNotSpecified, ConfigNotFound, MissingOption


ENVIRON_KEY = "UNRESPONSIVE_CONFIG_PATH"

# Used for options missing from config.
DEFAULTS = {
    'listen_host': "0.0.0.0",
    'backlog': 5,
    'resolve_names': True,
}


class Settings(object):
    """Dot-syntax access to config mapping with fallback to `DEFAULTS`."""

    def __init__(self, config=None):
        self._target = config
        self._source = '' # from where config was read. For debugging purposes.

    def __getattr__(self, name):
        if name.startswith('__'):
            # copy, pickle and friends probe for these
            raise AttributeError(name)

        if self._target is None:
            init()
        if name in self._target:
            return self._target[name]
        if name in DEFAULTS:
            return DEFAULTS[name]
        raise MissingOption(name)

    def get(self, name, default=None):
        """Value of option `name` or `default` if it is not set."""

        try:
            return self.__getattr__(name)
        except MissingOption:
            return default

    def __setattr__(self, name, value):
        if name in ('_target', '_source'):
            self.__dict__[name] = value
        else:
            # setting an option before loading makes an empty config, get() won't init() then
            if self._target is None:
                self._target = {}
            self._target[name] = value

    def __repr__(self):
        return "<Settings from %s>" % (self._source or "nowhere",)


def load_from_dict(new_config):
    """Replaces whole config with a copy of `new_config`."""

    settings._target = dict(new_config)
    settings._source = 'dict: %r' % (new_config,)

def load_from_file(file_path):
    """Replaces whole config with YAML mapping read from `file_path`.

    Empty file is an empty config."""

    with open(file_path) as f:
        new_config = yaml.safe_load(f)
    if new_config is None:
        new_config = {}
    elif not isinstance(new_config, dict):
        raise ValueError("%s: YAML mapping expected, got %s" % (file_path, type(new_config).__name__))
    load_from_dict(new_config)
    settings._source = "file: %s" % file_path

def init():
    """Loads first available config.

    Environment key (`ENVIRON_KEY`) goes first, then locations in module attribute `path`.
    Environment value "stub" or "dummy" gives an empty config. Mostly useful for tests.

    Raises `ConfigNotSpecified` if there was nothing to try at all,
    and `ConfigNotFound` if none of the tried files exist."""

    default_path = os.environ.get(ENVIRON_KEY)

    if default_path and default_path.lower() in ("dummy", "stub"):
        settings._target = {}
        settings._source = "stub"
        return

    if default_path and default_path not in path:
        path.insert(0, default_path)

    if not path:
        raise ConfigNotSpecified("`conf.path` is empty and %s environ variable is not set." % (ENVIRON_KEY,))

    existing = next((p for p in path if os.path.exists(p)), None)
    if existing is None:
        raise ConfigNotFound("Tried these: %s." % (", ".join( "'%s'" % (s,) for s in path ),))
    load_from_file(existing)

def load(file_path=None):
    """Startup config loading: `file_path` if given, else `init()`.

    Unlike `init()`, having no config at all is fine here, defaults apply then."""

    if file_path:
        load_from_file(file_path)
        return
    try:
        init()
    except ConfigNotSpecified:
        load_from_dict({})


# module attributes
settings = Settings()
# path is list of filesystem paths to search config for
# kinda conforms sys.path
path = []
