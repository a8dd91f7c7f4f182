"""Configuration management for MISP MCP.

Security design:
- API key stored as SecretStr (never logged)
- Key file permissions enforced (600)
- Config objects cannot be pickled
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://localhost"


# =============================================================================
# Environment Variable Parsing Helpers
# =============================================================================


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer environment variable with fallback to default.

    Logs a warning if the value is invalid instead of crashing.
    """
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(
            f"Invalid integer value for {name}: '{value}', using default {default}"
        )
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name, "").strip().lower()
    if not value:
        return default
    return value in ("true", "1", "yes", "on")


# =============================================================================
# Secret String Type
# =============================================================================


class SecretStr:
    """String type that hides its value in logs and repr.

    Security: Prevents accidental credential exposure in logs,
    error messages, or debug output.
    """

    def __init__(self, value: str) -> None:
        self._value = value

    def get_secret_value(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __repr__(self) -> str:
        return "SecretStr('***')"

    def __str__(self) -> str:
        return "***"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretStr):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


# =============================================================================
# URL Normalization
# =============================================================================


def normalize_base_url(url: str) -> str:
    """Default the scheme to https:// and strip a trailing slash.

        >>> normalize_base_url("misp.example.org/")
        'https://misp.example.org'
    """
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    if url.endswith("/"):
        url = url[:-1]
    return url


def _validate_url(url: str) -> str:
    """Normalize the MISP URL and make sure it names a host."""
    if not url or not url.strip():
        raise ConfigurationError("MISP URL cannot be empty")

    url = normalize_base_url(url)
    parsed = urlparse(url)
    if not parsed.netloc:
        raise ConfigurationError("Invalid URL: missing host")

    if parsed.scheme == "http":
        host = parsed.hostname or ""
        if host not in ("localhost", "127.0.0.1", "::1"):
            logger.warning(
                "Using HTTP for non-local MISP - API key sent in plaintext",
                extra={"url": url},
            )

    return url


# =============================================================================
# Configuration Class
# =============================================================================


@dataclass(frozen=True)
class Config:
    """Immutable MISP configuration.

    Security:
    - misp_key is SecretStr (never logged)
    - Cannot be pickled (prevents serialization of secrets)
    - frozen=True prevents accidental mutation
    """

    misp_url: str
    misp_key: SecretStr
    timeout_seconds: int = 60
    ssl_verify: bool = True
    max_results: int = 100

    def __post_init__(self) -> None:
        # frozen dataclass: bypass to store the normalized URL
        object.__setattr__(self, "misp_url", _validate_url(self.misp_url))
        self._validate_values()

    def _validate_values(self) -> None:
        if not self.misp_key:
            raise ConfigurationError("MISP API key is required")

        if self.timeout_seconds < 1 or self.timeout_seconds > 300:
            raise ConfigurationError("timeout_seconds must be between 1 and 300")

        if self.max_results < 1 or self.max_results > 1000:
            raise ConfigurationError("max_results must be between 1 and 1000")

    def __repr__(self) -> str:
        """Safe repr that never includes the key."""
        return (
            f"Config(misp_url={self.misp_url!r}, "
            f"key=***, timeout={self.timeout_seconds}s)"
        )

    def __str__(self) -> str:
        return self.__repr__()

    def __getstate__(self) -> None:
        """Prevent pickling to avoid credential serialization."""
        raise TypeError("Config cannot be pickled (contains secrets)")

    def __reduce__(self) -> None:  # type: ignore[override]
        """Prevent pickling via reduce."""
        raise TypeError("Config cannot be pickled (contains secrets)")

    @classmethod
    def load(cls) -> Config:
        """Load configuration from environment and files.

        Key sources (precedence order):
        1. MISP_KEY environment variable
        2. ~/.config/misp-mcp/key file
        3. .env file in working directory

        Raises:
            ConfigurationError: If the key is not found or settings are invalid
        """
        url = os.getenv("MISP_URL", DEFAULT_URL)

        key = _load_key()
        if not key:
            raise ConfigurationError(
                "MISP API key not found. Set MISP_KEY environment variable "
                "or create ~/.config/misp-mcp/key file."
            )

        return cls(
            misp_url=url,
            misp_key=SecretStr(key),
            timeout_seconds=_parse_int_env("MISP_TIMEOUT", 60),
            ssl_verify=_parse_bool_env("MISP_SSL_VERIFY", True),
            max_results=_parse_int_env("MISP_MAX_RESULTS", 100),
        )


# =============================================================================
# Key Loading
# =============================================================================


def _load_key() -> str | None:
    """Load the MISP API key from available sources.

    Security: Key file permissions are enforced.
    """
    key = os.getenv("MISP_KEY")
    if key is not None:
        stripped = key.strip()
        if stripped:
            logger.debug("Loaded key from MISP_KEY environment variable")
            return stripped
        # Whitespace-only is explicitly invalid, don't fall through
        if key:
            return None

    config_file = Path.home() / ".config" / "misp-mcp" / "key"
    key = _load_key_file(config_file)
    if key:
        logger.debug("Loaded key from config file")
        return key

    env_file = Path.cwd() / ".env"
    key = _load_key_from_env_file(env_file)
    if key:
        logger.debug("Loaded key from .env file")
        return key

    return None


def _load_key_file(path: Path) -> str | None:
    """Load key from file with permission check.

    Security: Refuses to load the key if file permissions are too open.
    """
    if not path.exists():
        return None

    mode = path.stat().st_mode
    # Group or other access is refused (requires 600 or 400)
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        logger.warning(
            "Key file has insecure permissions",
            extra={"path": str(path), "mode": oct(mode)},
        )
        raise ConfigurationError(
            f"Key file {path} has insecure permissions. Run: chmod 600 {path}"
        )

    try:
        key = path.read_text().strip()
        return key or None
    except OSError as e:
        logger.warning(f"Failed to read key file: {e}")
        return None


def _load_key_from_env_file(path: Path) -> str | None:
    """Load key from a .env file (``MISP_KEY=...``)."""
    if not path.exists():
        return None

    mode = path.stat().st_mode
    if mode & (stat.S_IROTH | stat.S_IWOTH):
        logger.warning(
            ".env file has insecure permissions (world-readable)",
            extra={"path": str(path), "mode": oct(mode)},
        )

    try:
        content = path.read_text()
    except OSError as e:
        logger.warning(f"Failed to read .env file: {e}")
        return None

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("MISP_KEY="):
            value = line.split("=", 1)[1].strip()
            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]
            return value or None

    return None
