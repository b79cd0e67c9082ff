from .connection import Connection, respond_slowly
from .server import Server, ServerConfig
