"""Configuration for apollo-sync.

Settings come from environment variables (a ``.env`` file is loaded by the
CLI before this module is consulted):

- ``APOLLO_ENDPOINT``: base URL of the Apollo/Sunshine web UI
- ``APOLLO_USERNAME`` / ``APOLLO_PASSWORD``: web UI credentials
- ``APOLLO_CACHE_DIR``: optional override for the baseline cache directory
- ``LOG_LEVEL``: trace, debug, info, warn or error (default: info)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from apollo_sync.exceptions import ConfigurationError

__all__ = [
    "ApolloConfig",
    "DEFAULT_CACHE_DIR",
    "LOG_LEVELS",
]

DEFAULT_CACHE_DIR = Path.home() / ".apollo-sync"

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class ApolloConfig:
    """Connection and runtime settings."""

    endpoint: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    cache_dir: Path = DEFAULT_CACHE_DIR
    log_level: str = "info"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ApolloConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            ApolloConfig (not yet validated)
        """
        env = os.environ if environ is None else environ

        cache_dir = env.get("APOLLO_CACHE_DIR")
        return cls(
            endpoint=env.get("APOLLO_ENDPOINT", "").strip(),
            username=env.get("APOLLO_USERNAME", ""),
            password=env.get("APOLLO_PASSWORD", ""),
            cache_dir=Path(cache_dir).expanduser() if cache_dir else DEFAULT_CACHE_DIR,
            log_level=(env.get("LOG_LEVEL") or "info").lower(),
        )

    @property
    def logging_level(self) -> int:
        """The ``logging`` level matching ``log_level``."""
        return LOG_LEVELS.get(self.log_level, logging.INFO)

    def validate(self) -> tuple[bool, list[str]]:
        """Check that the remote connection settings are usable.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = []

        if not self.endpoint:
            errors.append("APOLLO_ENDPOINT is required")
        else:
            parsed = urlparse(self.endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(
                    f"APOLLO_ENDPOINT must be a valid http(s) URL, got {self.endpoint!r}"
                )

        if not self.username:
            errors.append("APOLLO_USERNAME is required")
        if not self.password:
            errors.append("APOLLO_PASSWORD is required")

        if self.log_level not in LOG_LEVELS:
            errors.append(
                f"LOG_LEVEL must be one of {', '.join(sorted(LOG_LEVELS))}, "
                f"got {self.log_level!r}"
            )

        return len(errors) == 0, errors

    def require_valid(self) -> None:
        """Raise if the configuration cannot be used to reach the host.

        Raises:
            ConfigurationError: Listing every problem found
        """
        is_valid, errors = self.validate()
        if not is_valid:
            raise ConfigurationError(
                "Invalid Apollo configuration: " + "; ".join(errors)
            )
