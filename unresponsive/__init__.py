from importlib import metadata

from .log import get_logger, log_exceptions
get_logger("") # root logger. Just to initialize logging subsystem.


try:
    # cache
    VERSION = metadata.version("unresponsive")
except Exception:
    VERSION = "unknown"
__version__ = VERSION
