"""Local JSON file access.

Reads and writes the local app catalog (``apps.json``) and other small JSON
documents. Writes replace the whole file: the content goes to a temporary
file in the same directory which is then renamed over the target.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

from apollo_sync.exceptions import LocalStoreError, ValidationError
from apollo_sync.models import Entry, validate_local_catalog

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CATALOG_PATH = Path("./apps.json")


class LocalStore:
    """Read and write local JSON documents."""

    def load_json(
        self, path: Path, validator: Callable[[Any], T] | None = None
    ) -> T | Any:
        """Load and parse a JSON file.

        Args:
            path: File to read
            validator: Optional callable applied to the parsed data; its
                return value is returned instead

        Returns:
            Parsed (and validated) data

        Raises:
            LocalStoreError: File missing or unreadable
            ValidationError: Invalid JSON or validator rejected the data
        """
        full_path = Path(path).resolve()
        logger.debug(f"Loading JSON file: {full_path}")

        if not full_path.exists():
            raise LocalStoreError(f"File not found: {full_path}")

        try:
            content = full_path.read_text(encoding="utf-8")
        except OSError as e:
            raise LocalStoreError(f"Failed to read {full_path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON in {full_path}: {e}") from e

        if validator is not None:
            data = validator(data)

        logger.debug(f"Loaded JSON file: {full_path}")
        return data

    def save_json(self, path: Path, data: Any) -> None:
        """Serialize data and replace the file at ``path``.

        Raises:
            LocalStoreError: Directory could not be created or write failed
        """
        full_path = Path(path).resolve()
        logger.debug(f"Saving JSON file: {full_path}")

        self.ensure_directory(full_path.parent)

        try:
            content = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"Failed to serialize data for {full_path}: {e}") from e

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{full_path.name}.", suffix=".tmp", dir=full_path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.write("\n")
            os.replace(tmp_name, full_path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise LocalStoreError(f"Failed to write {full_path}: {e}") from e

        logger.debug(f"Saved JSON file: {full_path}")

    def ensure_directory(self, path: Path) -> None:
        """Create a directory (and parents) if it does not exist."""
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalStoreError(f"Failed to create directory {path}: {e}") from e

    def file_exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def load_catalog(self, path: Path = DEFAULT_CATALOG_PATH) -> list[Entry]:
        """Load and validate the local app catalog.

        Returns:
            The catalog's entries, in file order

        Raises:
            LocalStoreError: File missing or unreadable
            ValidationError: Document does not match the catalog schema
        """
        return self.load_json(path, validate_local_catalog)

    def save_catalog(self, path: Path, apps: list[Entry]) -> None:
        """Write the local app catalog as ``{"apps": [...]}``."""
        self.save_json(path, {"apps": apps})
