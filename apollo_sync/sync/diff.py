"""Three-way diff between the local catalog, the host and the baseline.

For every app name found in any of the three lists, ``classify`` decides
what changed since the last sync and on which side:

- local only / remote only, not in baseline → CREATE on the other side
- in baseline, missing on one side → DELETE on the other side
- in baseline, missing on both → NO_CHANGE
- on both sides → compare each side's sync fields against the baseline:
  neither changed → NO_CHANGE, one side changed → UPDATE from that side,
  both changed → CONFLICT if some field was changed to different values on
  each side, otherwise an UPDATE that merges the two edits field by field

Only sync fields take part; host bookkeeping such as ``uuid`` or
``image-path`` never counts as a change.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from apollo_sync.models import SYNC_FIELDS, Entry, normalize_name, sync_value

logger = logging.getLogger(__name__)


class DiffAction(str, Enum):
    """What to do with one app."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONFLICT = "CONFLICT"
    NO_CHANGE = "NO_CHANGE"


class Direction(str, Enum):
    """Which side an operation is applied to."""

    LOCAL = "local"  # apps.json
    REMOTE = "remote"  # the Apollo host


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality that does not treat booleans as numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return False
    return a == b


def field_changed(current: Optional[Entry], cached: Optional[Entry], name: str) -> bool:
    return not values_equal(sync_value(current or {}, name), sync_value(cached or {}, name))


def sync_fields_changed(current: Optional[Entry], cached: Optional[Entry]) -> bool:
    """Whether an entry differs from its baseline in any sync field.

    An entry with no baseline counterpart (or vice versa) has changed.
    """
    if current is None and cached is None:
        return False
    if current is None or cached is None:
        return True
    return any(field_changed(current, cached, name) for name in SYNC_FIELDS)


@dataclass(frozen=True)
class FieldConflict:
    """A sync field both sides changed to different values."""

    field: str
    local_value: Any
    remote_value: Any

    def __str__(self) -> str:
        return (
            f"{self.field}: local={json.dumps(self.local_value)} "
            f"vs remote={json.dumps(self.remote_value)}"
        )


@dataclass
class EntryDiff:
    """Classification of one app across local, remote and baseline."""

    name: str
    action: DiffAction
    description: str
    local: Optional[Entry] = None
    remote: Optional[Entry] = None
    cached: Optional[Entry] = None
    # Entry whose sync fields both sides should end up with (CREATE/UPDATE)
    target: Optional[Entry] = None
    conflicts: list[FieldConflict] = field(default_factory=list)
    remote_index: Optional[int] = None  # position in the fetched host list

    @property
    def key(self) -> str:
        return normalize_name(self.name)


def find_conflicts(
    local: Entry, remote: Entry, cached: Optional[Entry]
) -> list[FieldConflict]:
    """List sync fields changed on both sides to values that disagree."""
    conflicts = []
    base = cached or {}

    for name in SYNC_FIELDS:
        local_value = sync_value(local, name)
        remote_value = sync_value(remote, name)
        if (
            field_changed(local, base, name)
            and field_changed(remote, base, name)
            and not values_equal(local_value, remote_value)
        ):
            conflicts.append(FieldConflict(name, local_value, remote_value))

    return conflicts


def merge_changes(local: Entry, remote: Entry, cached: Optional[Entry]) -> Entry:
    """Combine non-overlapping edits: each field from the side that changed it."""
    base = cached or {}
    merged: Entry = {"name": local["name"]}

    for name in SYNC_FIELDS:
        source = local if field_changed(local, base, name) else remote
        if source.get(name) is not None:
            merged[name] = copy.deepcopy(source[name])

    return merged


def classify(
    name: str,
    local: Optional[Entry],
    remote: Optional[Entry],
    cached: Optional[Entry],
) -> EntryDiff:
    """Classify one app from its local, remote and baseline versions.

    Args:
        name: Display name of the app
        local: Entry in apps.json, if any
        remote: Entry on the host, if any
        cached: Entry in the baseline, if any

    Returns:
        EntryDiff describing the action to take
    """
    has_local = local is not None
    has_remote = remote is not None
    has_cached = cached is not None

    if not has_local and not has_remote and has_cached:
        return EntryDiff(
            name, DiffAction.NO_CHANGE, "App deleted from both local and server",
            cached=cached,
        )

    if not has_local and has_remote and not has_cached:
        return EntryDiff(
            name, DiffAction.CREATE, "New app on server, add to local",
            remote=remote, target=remote,
        )

    if has_local and not has_remote and not has_cached:
        return EntryDiff(
            name, DiffAction.CREATE, "New app locally, add to server",
            local=local, target=local,
        )

    if not has_local and has_remote and has_cached:
        return EntryDiff(
            name, DiffAction.DELETE, "App deleted locally, remove from server",
            remote=remote, cached=cached,
        )

    if has_local and not has_remote and has_cached:
        return EntryDiff(
            name, DiffAction.DELETE, "App deleted on server, remove from local",
            local=local, cached=cached,
        )

    if has_local and has_remote:
        local_changed = sync_fields_changed(local, cached)
        remote_changed = sync_fields_changed(remote, cached)
        both = dict(local=local, remote=remote, cached=cached)

        if not local_changed and not remote_changed:
            return EntryDiff(name, DiffAction.NO_CHANGE, "No changes detected", **both)

        if local_changed and not remote_changed:
            return EntryDiff(
                name, DiffAction.UPDATE, "Local changes, update server",
                target=local, **both,
            )

        if remote_changed and not local_changed:
            return EntryDiff(
                name, DiffAction.UPDATE, "Server changes, update local",
                target=remote, **both,
            )

        conflicts = find_conflicts(local, remote, cached)
        if conflicts:
            return EntryDiff(
                name, DiffAction.CONFLICT,
                "Both local and server changed, conflict detected",
                conflicts=conflicts, **both,
            )

        return EntryDiff(
            name, DiffAction.UPDATE,
            "Both local and server changed without overlap, merging",
            target=merge_changes(local, remote, cached), **both,
        )

    return EntryDiff(
        name, DiffAction.NO_CHANGE, "Unknown state, no action taken",
        local=local, remote=remote, cached=cached,
    )


@dataclass
class SyncSummary:
    local_changes: int = 0
    remote_changes: int = 0
    conflicts: int = 0


@dataclass
class SyncPlan:
    """Operations for both sides plus unresolved conflicts."""

    local_operations: list[EntryDiff] = field(default_factory=list)
    remote_operations: list[EntryDiff] = field(default_factory=list)
    conflicts: list[EntryDiff] = field(default_factory=list)
    diffs: list[EntryDiff] = field(default_factory=list)

    @property
    def summary(self) -> SyncSummary:
        return SyncSummary(
            local_changes=len(self.local_operations),
            remote_changes=len(self.remote_operations),
            conflicts=len(self.conflicts),
        )

    @property
    def total_operations(self) -> int:
        return len(self.local_operations) + len(self.remote_operations)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    @property
    def is_empty(self) -> bool:
        return self.total_operations == 0 and not self.conflicts

    def add(self, diff: EntryDiff) -> None:
        """Route a classified diff into the partition(s) it affects."""
        if diff.action == DiffAction.NO_CHANGE:
            return

        if diff.action == DiffAction.CONFLICT:
            self.conflicts.append(diff)
            return

        for direction in operation_directions(diff):
            if direction == Direction.LOCAL:
                self.local_operations.append(diff)
            else:
                self.remote_operations.append(diff)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for logs and reports."""

        def describe(diff: EntryDiff) -> dict[str, Any]:
            item = {
                "name": diff.name,
                "action": diff.action.value,
                "description": diff.description,
            }
            if diff.conflicts:
                item["conflicts"] = [str(c) for c in diff.conflicts]
            return item

        return {
            "local_operations": [describe(d) for d in self.local_operations],
            "remote_operations": [describe(d) for d in self.remote_operations],
            "conflicts": [describe(d) for d in self.conflicts],
        }


def operation_directions(diff: EntryDiff) -> list[Direction]:
    """Sides an actionable diff must be applied to."""
    directions = []

    if diff.action == DiffAction.CREATE:
        if diff.remote is not None and diff.local is None:
            directions.append(Direction.LOCAL)
        elif diff.local is not None and diff.remote is None:
            directions.append(Direction.REMOTE)

    elif diff.action == DiffAction.DELETE:
        if diff.local is not None and diff.remote is None:
            directions.append(Direction.LOCAL)
        elif diff.remote is not None and diff.local is None:
            directions.append(Direction.REMOTE)

    elif diff.action == DiffAction.UPDATE and diff.target is not None:
        if diff.local is not None and sync_fields_changed(diff.local, diff.target):
            directions.append(Direction.LOCAL)
        if diff.remote is not None and sync_fields_changed(diff.remote, diff.target):
            directions.append(Direction.REMOTE)

    return directions


def key_entries(apps: list[Entry], label: str) -> dict[str, tuple[int, Entry]]:
    """Index entries by normalized name, keeping the first of any duplicates."""
    keyed: dict[str, tuple[int, Entry]] = {}
    for index, app in enumerate(apps):
        key = normalize_name(app["name"])
        if key in keyed:
            logger.warning(
                f"Duplicate {label} app name {app['name']!r}; "
                f"keeping the first entry ({keyed[key][1]['name']!r})"
            )
            continue
        keyed[key] = (index, app)
    return keyed


class DiffEngine:
    """Build sync plans from local, remote and baseline app lists."""

    def build_plan(
        self,
        local_apps: list[Entry],
        remote_apps: list[Entry],
        cached_apps: Optional[list[Entry]],
    ) -> SyncPlan:
        """Classify every app and route it into a plan.

        Args:
            local_apps: Entries from apps.json
            remote_apps: Entries fetched from the host
            cached_apps: Baseline entries, or None when there is no baseline
                (every entry is then treated as absent from the baseline)

        Returns:
            SyncPlan with conflicts left unresolved
        """
        logger.debug(
            f"Creating sync plan: {len(local_apps)} local, {len(remote_apps)} server, "
            f"{len(cached_apps or [])} cached apps"
        )

        local_map = key_entries(local_apps, "local")
        remote_map = key_entries(remote_apps, "server")
        cached_map = key_entries(cached_apps or [], "cached")

        plan = SyncPlan()
        keys = dict.fromkeys([*local_map, *remote_map, *cached_map])

        for key in keys:
            local = local_map.get(key, (None, None))[1]
            remote_index, remote = remote_map.get(key, (None, None))
            cached = cached_map.get(key, (None, None))[1]
            name = (local or remote or cached)["name"]

            diff = classify(name, local, remote, cached)
            diff.remote_index = remote_index
            logger.debug(f"{name}: {diff.action.value} ({diff.description})")

            plan.diffs.append(diff)
            plan.add(diff)

        summary = plan.summary
        logger.debug(
            f"Sync plan created: {summary.local_changes} local changes, "
            f"{summary.remote_changes} server changes, {summary.conflicts} conflicts"
        )
        return plan
