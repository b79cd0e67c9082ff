"""Common exceptions."""


class Error(Exception):
    """Base class for all Unresponsive errors."""

    def __init__(self, msg=None):
        self.msg = msg
        super(Error, self).__init__(msg)

    def __str__(self):
        return "<%s %s>" % (self.__class__.__name__, self.msg)

    def __repr__(self):
        return str(self)


class ConfigurationError(Error):
    """Base class for errors with server config."""
    pass


class ConfigNotSpecified(ConfigurationError):
    """No config source was given at all."""
    pass


class ConfigNotFound(ConfigurationError):
    """Config source was given but none of the paths exist."""
    pass


class MissingOption(ConfigurationError, AttributeError):
    """Required option is missing in config."""

    def __init__(self, option):
        super(MissingOption, self).__init__("Option \"%s\" is not defined in config." % option)


class WrongOption(ConfigurationError):
    """Option contains wrong value."""

    def __init__(self, option, value, expected):
        super(WrongOption, self).__init__(
                "Config option \"%s\" has wrong value \"%s\". %s expected." % (option, value, expected))


class SetupError(Error):
    """Listening socket could not be created, bound or accepted on.

    The server can't do anything useful after this one."""
    pass
