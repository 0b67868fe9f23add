"""Entry model for Apollo/Sunshine app catalogs.

Entries travel as plain JSON objects (``dict``) so that keys this tool does
not know about survive a round trip untouched. The pydantic schemas below are
only used to validate shape when a catalog is read from disk or from the host.

Field names are the host's literal kebab-case keys (``exit-timeout``,
``prep-cmd``, ``auto-detach``...).
"""

import copy
import re
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr

from apollo_sync.exceptions import ValidationError

Entry = dict[str, Any]

# Fields that participate in change detection and merging, in display order
SYNC_FIELDS: tuple[str, ...] = (
    "cmd",
    "detached",
    "elevated",
    "auto-detach",
    "wait-all",
    "exit-timeout",
    "exclude-global-prep-cmd",
    "output",
    "prep-cmd",
)

# Bookkeeping the host owns; never diffed, stripped before entering apps.json
REMOTE_ONLY_FIELDS: tuple[str, ...] = (
    "uuid",
    "image-path",
    "allow-client-commands",
    "per-client-app-identity",
    "scale-factor",
    "state-cmd",
    "terminate-on-pause",
    "use-app-identity",
    "virtual-display",
    "gamepad",
    "exclude-global-state-cmd",
    "index",
)

_EMPTY_VALUES: dict[str, Any] = {
    "cmd": "",
    "detached": [],
    "elevated": False,
    "auto-detach": False,
    "wait-all": False,
    "exit-timeout": 0,
    "exclude-global-prep-cmd": False,
    "output": "",
    "prep-cmd": [],
}

_STRIP_CHARS = re.compile(r"[:'\"]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Normalize an app name for identity comparison.

    Lower-cases and trims, turns hyphens into spaces, drops quotes and
    colons, and collapses runs of whitespace.

    Example:
        >>> normalize_name("  Half-Life 2 ")
        'half life 2'
    """
    normalized = name.lower().strip().replace("-", " ")
    normalized = _STRIP_CHARS.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def empty_value(field: str) -> Any:
    """Return the explicit empty value used to clear a sync field."""
    return copy.deepcopy(_EMPTY_VALUES[field])


def sync_value(entry: Entry, field: str) -> Any:
    """Get a sync field's value, treating absent or null as empty."""
    value = entry.get(field)
    if value is None:
        return empty_value(field)
    return value


def sync_view(entry: Entry) -> dict[str, Any]:
    """Project an entry onto its sync fields with absent fields made empty."""
    return {field: sync_value(entry, field) for field in SYNC_FIELDS}


def to_local_entry(remote_entry: Entry) -> Entry:
    """Copy a remote entry without the host's bookkeeping fields."""
    return {
        key: copy.deepcopy(value)
        for key, value in remote_entry.items()
        if key not in REMOTE_ONLY_FIELDS
    }


class PrepCmd(BaseModel):
    """A do/undo command pair run around a launch."""

    model_config = ConfigDict(extra="allow")

    do: StrictStr
    undo: StrictStr
    elevated: StrictBool


class LocalApp(BaseModel):
    """Schema of one entry in apps.json."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: StrictStr
    output: Optional[StrictStr] = None
    cmd: Optional[StrictStr] = None
    detached: Optional[list[StrictStr]] = None
    exclude_global_prep_cmd: Optional[StrictBool] = Field(
        None, alias="exclude-global-prep-cmd"
    )
    elevated: Optional[StrictBool] = None
    auto_detach: Optional[StrictBool] = Field(None, alias="auto-detach")
    wait_all: Optional[StrictBool] = Field(None, alias="wait-all")
    exit_timeout: Optional[StrictInt] = Field(None, alias="exit-timeout")
    prep_cmd: Optional[list[PrepCmd]] = Field(None, alias="prep-cmd")


class RemoteApp(BaseModel):
    """Schema of one entry returned by ``GET /api/apps``.

    Only identity is checked; the host owns the rest of the entry.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    uuid: Optional[str] = None


class LocalCatalog(BaseModel):
    """Schema of the whole apps.json document."""

    model_config = ConfigDict(extra="allow")

    apps: list[LocalApp]


class RemoteAppsResponse(BaseModel):
    """Schema of the ``GET /api/apps`` response body."""

    model_config = ConfigDict(extra="allow")

    apps: Optional[list[RemoteApp]] = None


def _format_errors(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def validate_local_catalog(data: Any) -> list[Entry]:
    """Validate an apps.json document and return its entries.

    The entries are returned as the original dicts, not as model instances.

    Raises:
        ValidationError: If the document does not match the schema
    """
    try:
        LocalCatalog.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid local catalog: {_format_errors(e)}") from e
    return list(data["apps"])


def validate_remote_apps(data: Any) -> list[Entry]:
    """Validate a ``GET /api/apps`` body and return its entries.

    Raises:
        ValidationError: If the body does not match the schema
    """
    try:
        RemoteAppsResponse.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid apps response: {_format_errors(e)}") from e
    return list(data.get("apps") or [])
