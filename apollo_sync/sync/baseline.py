"""Baseline cache for three-way sync.

The baseline is the host's app list as it looked right after the last
successful sync. It is the common ancestor the diff engine compares local
and remote entries against.

Stored as: ~/.apollo-sync/server-state.json

    {"apps": [...], "timestamp": <epoch ms>, "checksum": "<hex>"}
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from apollo_sync.config import DEFAULT_CACHE_DIR
from apollo_sync.exceptions import (
    CacheError,
    LocalStoreError,
    ValidationError,
)
from apollo_sync.models import Entry
from apollo_sync.store import LocalStore

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "server-state.json"


def calculate_checksum(apps: list[Entry]) -> str:
    """32-bit rolling hash over the apps serialized with sorted keys.

    Detects gross corruption (truncated or hand-mangled files), not
    deliberate tampering.
    """
    content = json.dumps(apps, sort_keys=True, separators=(",", ":"))
    value = 0
    for char in content:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return format(value, "x")


@dataclass
class CachedState:
    """A baseline snapshot."""

    apps: list[Entry]
    timestamp: int  # epoch milliseconds
    checksum: str

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


def validate_cached_state(data: Any) -> CachedState:
    """Check the cache document's shape and checksum.

    Raises:
        ValidationError: If any check fails
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid cached state: not an object")

    apps = data.get("apps")
    timestamp = data.get("timestamp")
    checksum = data.get("checksum")

    if not isinstance(apps, list):
        raise ValidationError("Invalid cached state: apps is not an array")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise ValidationError("Invalid cached state: timestamp is not a number")
    if not isinstance(checksum, str):
        raise ValidationError("Invalid cached state: checksum is not a string")

    for app in apps:
        if not isinstance(app, dict) or not isinstance(app.get("name"), str):
            raise ValidationError(
                "Invalid cached state: apps array contains invalid app objects"
            )

    if calculate_checksum(apps) != checksum:
        raise ValidationError("Invalid cached state: checksum mismatch")

    return CachedState(apps=apps, timestamp=int(timestamp), checksum=checksum)


class BaselineCache:
    """Persist the host's app list as of the last successful sync."""

    def __init__(self, cache_dir: Path = DEFAULT_CACHE_DIR, store: LocalStore | None = None):
        """Initialize baseline cache.

        Args:
            cache_dir: Directory holding the cache file (default: ~/.apollo-sync)
            store: File accessor (default: LocalStore())
        """
        self.cache_dir = Path(cache_dir)
        self.cache_file = self.cache_dir / CACHE_FILE_NAME
        self.store = store or LocalStore()

    def load(self) -> CachedState | None:
        """Load the baseline.

        A missing, unreadable or invalid cache file is reported as no
        baseline; it never fails the run.

        Returns:
            CachedState, or None if there is no usable baseline
        """
        logger.debug(f"Loading cached server state from: {self.cache_file}")

        if not self.cache_file.exists():
            logger.debug("No cached server state found")
            return None

        try:
            state = self.store.load_json(self.cache_file, validate_cached_state)
        except (LocalStoreError, ValidationError) as e:
            logger.warning(f"Ignoring unusable cache {self.cache_file}: {e}")
            return None

        logger.debug(f"Loaded cached server state with {len(state.apps)} apps")
        return state

    def save(self, apps: list[Entry]) -> CachedState:
        """Replace the baseline with ``apps``.

        Raises:
            CacheError: If the file cannot be written
        """
        logger.debug(f"Caching server state with {len(apps)} apps to: {self.cache_file}")

        state = CachedState(
            apps=apps,
            timestamp=int(datetime.now(timezone.utc).timestamp() * 1000),
            checksum=calculate_checksum(apps),
        )

        try:
            self.store.save_json(
                self.cache_file,
                {"apps": state.apps, "timestamp": state.timestamp, "checksum": state.checksum},
            )
        except LocalStoreError as e:
            raise CacheError(f"Failed to save cached state: {e}") from e

        logger.debug("Saved cached server state")
        return state

    def clear(self) -> bool:
        """Delete the cache file.

        Returns:
            True if a file was removed, False if there was none
        """
        logger.debug(f"Clearing cache: {self.cache_file}")

        if not self.cache_file.exists():
            logger.debug("Cache file does not exist, nothing to clear")
            return False

        try:
            self.cache_file.unlink()
        except OSError as e:
            raise CacheError(f"Failed to clear cache {self.cache_file}: {e}") from e

        logger.debug("Cleared cache")
        return True
