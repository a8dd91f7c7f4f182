"""MISP MCP - typed MISP REST client and read-only MCP server.

Features:
    - Event search with tag include/exclude expressions
    - Normalized Event / Attribute / Tag / Org entities
    - Authenticated JSON transport over an injected requests.Session

Usage:
    python -m misp_mcp
"""

__version__ = "0.1.0"

from .errors import (
    MISPMCPError,
    ConfigurationError,
    TransportError,
    RequestConstructionError,
    StatusError,
    DecodeError,
    ValidationError,
)
from .config import Config, SecretStr
from .models import Attribute, Event, Org, Tag
from .tags import chain
from .transport import Transport
from .client import MISPClient, SearchFilter
from .server import MISPMCPServer
from .logging import setup_logging, get_logger

__all__ = [
    "__version__",
    "MISPMCPError",
    "ConfigurationError",
    "TransportError",
    "RequestConstructionError",
    "StatusError",
    "DecodeError",
    "ValidationError",
    "Config",
    "SecretStr",
    "Attribute",
    "Event",
    "Org",
    "Tag",
    "chain",
    "Transport",
    "MISPClient",
    "SearchFilter",
    "MISPMCPServer",
    "setup_logging",
    "get_logger",
]
