"""Three-way sync between apps.json and an Apollo/Sunshine host.

A run:
1. Loads the local catalog and fetches the host's apps
2. Loads the baseline (the host's apps as of the last successful sync)
3. Builds a plan with the diff engine and settles conflicts by policy
4. Pushes remote-direction operations to the host
5. Applies local-direction operations to a copy of the catalog and saves it
6. Records the host's resulting apps as the new baseline

Failures of single operations are collected in the result and do not stop
the run; a run with any error leaves the baseline untouched so the next run
sees the same differences again.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from apollo_sync.client import ApolloClient
from apollo_sync.exceptions import (
    ApolloSyncError,
    ApplicationError,
    CacheError,
    LocalStoreError,
)
from apollo_sync.models import (
    SYNC_FIELDS,
    Entry,
    empty_value,
    normalize_name,
    to_local_entry,
)
from apollo_sync.store import DEFAULT_CATALOG_PATH, LocalStore
from apollo_sync.sync.baseline import BaselineCache
from apollo_sync.sync.conflict_resolver import (
    ConflictPolicy,
    ConflictResolver,
    create_conflict_resolver,
    resolve_conflicts,
)
from apollo_sync.sync.diff import DiffAction, DiffEngine, EntryDiff, SyncPlan

logger = logging.getLogger(__name__)


@dataclass
class TwoWaySyncOptions:
    """Options for one sync run."""

    config_path: Path = DEFAULT_CATALOG_PATH
    dry_run: bool = False
    verbose: bool = False
    conflict_policy: ConflictPolicy = ConflictPolicy.MANUAL


@dataclass
class TwoWaySyncResult:
    """Outcome of a sync run."""

    plan: SyncPlan
    local_changes: int = 0
    remote_changes: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def _find_entry(apps: list[Entry], name: str) -> int:
    key = normalize_name(name)
    for index, app in enumerate(apps):
        if normalize_name(app["name"]) == key:
            return index
    return -1


def apply_local_operation(apps: list[Entry], op: EntryDiff) -> list[Entry]:
    """Apply one local-direction operation to a copy of ``apps``.

    Returns:
        New list of entries; ``apps`` itself is not modified

    Raises:
        ApplicationError: If the operation cannot be applied
    """
    index = _find_entry(apps, op.name)

    if op.action == DiffAction.CREATE:
        if op.target is None:
            raise ApplicationError(f"No server entry to create {op.name} from", op.name, "create")
        if index >= 0:
            raise ApplicationError(
                f"App already exists in local config: {op.name}", op.name, "create"
            )
        return [*apps, to_local_entry(op.target)]

    if index < 0:
        raise ApplicationError(
            f"App not found in local config: {op.name}", op.name, op.action.value.lower()
        )

    if op.action == DiffAction.DELETE:
        return apps[:index] + apps[index + 1 :]

    if op.action == DiffAction.UPDATE and op.target is not None:
        updated = copy.deepcopy(apps[index])
        for name in SYNC_FIELDS:
            if op.target.get(name) is not None:
                updated[name] = copy.deepcopy(op.target[name])
            else:
                updated.pop(name, None)
        return apps[:index] + [updated] + apps[index + 1 :]

    raise ApplicationError(
        f"Cannot apply {op.action.value} to local config", op.name, op.action.value.lower()
    )


def apply_local_operations(apps: list[Entry], ops: list[EntryDiff]) -> list[Entry]:
    """Apply local-direction operations in order, copy-on-apply.

    Raises:
        ApplicationError: On the first operation that cannot be applied
    """
    result = list(apps)
    for op in ops:
        result = apply_local_operation(result, op)
    return result


def build_create_payload(local: Entry) -> dict[str, Any]:
    """Payload that creates a local entry on the host."""
    payload = copy.deepcopy(local)
    payload["uuid"] = ""  # assigned by the host
    payload["index"] = -1
    return payload


def build_update_payload(remote: Entry, index: int, target: Entry) -> dict[str, Any]:
    """Payload that updates a host entry to the target's sync fields.

    The host entry is the starting point so its own fields (uuid,
    image-path...) survive; sync fields missing from the target are sent as
    their empty values so the host clears them.
    """
    payload = copy.deepcopy(remote)
    payload["index"] = index
    payload["name"] = target["name"]
    for name in SYNC_FIELDS:
        value = target.get(name)
        payload[name] = copy.deepcopy(value) if value is not None else empty_value(name)
    return payload


def order_remote_operations(ops: list[EntryDiff]) -> list[EntryDiff]:
    """Order host operations so positions sent with updates stay valid.

    Updates address apps by their index in the fetched list, so they run
    before any delete shifts that list. Creates append and come next.
    Deletes run last, highest index first.
    """
    updates = [op for op in ops if op.action == DiffAction.UPDATE]
    creates = [op for op in ops if op.action == DiffAction.CREATE]
    deletes = [op for op in ops if op.action == DiffAction.DELETE]
    deletes.sort(
        key=lambda op: op.remote_index if op.remote_index is not None else -1,
        reverse=True,
    )
    others = [
        op for op in ops
        if op.action not in (DiffAction.UPDATE, DiffAction.CREATE, DiffAction.DELETE)
    ]
    return updates + creates + deletes + others


class TwoWaySyncEngine:
    """Orchestrate a three-way sync run."""

    def __init__(
        self,
        client: ApolloClient,
        store: LocalStore,
        baseline: BaselineCache,
        diff_engine: Optional[DiffEngine] = None,
        resolver: Optional[ConflictResolver] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Remote client for the host
            store: Local catalog accessor
            baseline: Baseline cache
            diff_engine: Plan builder (default: DiffEngine())
            resolver: Conflict resolver; when omitted one is created from
                each run's ``conflict_policy``
        """
        self.client = client
        self.store = store
        self.baseline = baseline
        self.diff_engine = diff_engine or DiffEngine()
        self.resolver = resolver

    def sync(self, options: TwoWaySyncOptions) -> TwoWaySyncResult:
        """Run a sync.

        Raises:
            LocalStoreError, ValidationError: Local catalog unusable
            RemoteError: Host unreachable or rejecting the initial fetch
        """
        logger.info("Starting two-way sync...")

        local_apps = self.store.load_catalog(options.config_path)
        logger.info(f"Loaded {len(local_apps)} apps from {options.config_path}")

        if not options.dry_run:
            self.client.test_connection()
        remote_apps = self.client.fetch_apps()
        logger.info(f"Fetched {len(remote_apps)} apps from server")

        state = self.baseline.load()
        cached_apps = state.apps if state is not None else None
        logger.info(f"Loaded {len(cached_apps or [])} cached apps")

        plan = self.diff_engine.build_plan(local_apps, remote_apps, cached_apps)
        resolver = self.resolver or create_conflict_resolver(options.conflict_policy)
        resolve_conflicts(plan, resolver)

        if options.verbose:
            self._log_plan(plan)

        result = TwoWaySyncResult(
            plan=plan, conflicts=len(plan.conflicts), dry_run=options.dry_run
        )

        if plan.conflicts:
            logger.warning(
                f"Found {len(plan.conflicts)} conflicts that require manual resolution"
            )
            for conflict in plan.conflicts:
                logger.warning(f"Conflict in {conflict.name}: {conflict.description}")
                for detail in conflict.conflicts:
                    logger.warning(f"  - {detail}")

        for op in order_remote_operations(plan.remote_operations):
            if self._apply_remote_operation(op, options, result):
                result.remote_changes += 1

        updated_apps = local_apps
        for op in plan.local_operations:
            try:
                updated_apps = apply_local_operation(updated_apps, op)
            except ApplicationError as e:
                logger.error(f"✗ Failed to apply local change for {op.name}: {e}")
                result.errors.append(str(e))
                continue

            result.local_changes += 1
            prefix = "[DRY RUN] Would apply" if options.dry_run else "Applied"
            logger.info(f"{prefix} local {op.action.value.lower()}: {op.name}")

        if result.local_changes > 0 and not options.dry_run:
            try:
                self.store.save_catalog(options.config_path, updated_apps)
                logger.info(f"Saved {len(updated_apps)} apps to {options.config_path}")
            except LocalStoreError as e:
                result.errors.append(f"Failed to save local config: {e}")
                logger.error(f"Failed to save local config: {e}")

        if result.success and not options.dry_run:
            self._update_baseline(remote_apps, cached_apps, plan, result.remote_changes > 0)

        logger.info(
            f"Two-way sync completed: {result.local_changes} local changes, "
            f"{result.remote_changes} server changes, {result.conflicts} conflicts"
        )
        return result

    def _apply_remote_operation(
        self, op: EntryDiff, options: TwoWaySyncOptions, result: TwoWaySyncResult
    ) -> bool:
        """Push one operation to the host; failures go to ``result.errors``."""
        verb = {
            DiffAction.CREATE: "create",
            DiffAction.UPDATE: "update",
            DiffAction.DELETE: "delete",
        }.get(op.action, op.action.value.lower())

        if options.dry_run:
            logger.info(f"[DRY RUN] Would {verb} app on server: {op.name}")
            return True

        logger.info(f"Server {verb}: {op.name}")
        try:
            if op.action == DiffAction.CREATE and op.local is not None:
                self.client.push_app(build_create_payload(op.local))
            elif op.action == DiffAction.UPDATE and op.remote is not None and op.target is not None:
                if op.remote_index is None:
                    raise ApplicationError("Server position unknown", op.name, verb)
                self.client.push_app(build_update_payload(op.remote, op.remote_index, op.target))
            elif op.action == DiffAction.DELETE and op.remote is not None:
                self.client.delete_app(op.remote.get("uuid") or "")
            else:
                raise ApplicationError(f"Cannot apply {op.action.value} to server", op.name, verb)
        except ApolloSyncError as e:
            error = ApplicationError(f"Failed to {verb} {op.name} on server: {e}", op.name, verb)
            logger.error(f"✗ {error}")
            result.errors.append(str(error))
            return False

        logger.info(f"✓ {verb.capitalize()}d app on server: {op.name}")
        return True

    def _update_baseline(
        self,
        remote_apps: list[Entry],
        cached_apps: Optional[list[Entry]],
        plan: SyncPlan,
        pushed: bool,
    ) -> None:
        """Record the host's apps as the new baseline.

        After pushes the host is fetched again so the baseline reflects what
        it actually stores. Unresolved conflicts keep their previous
        baseline entry so they are reported again on the next run.
        """
        apps = remote_apps
        if pushed:
            try:
                apps = self.client.fetch_apps()
            except ApolloSyncError as e:
                logger.warning(f"Failed to refresh server state, keeping old cache: {e}")
                return

        if plan.conflicts:
            previous = {normalize_name(app["name"]): app for app in cached_apps or []}
            pending = {conflict.key for conflict in plan.conflicts}
            kept = []
            for app in apps:
                key = normalize_name(app["name"])
                if key not in pending:
                    kept.append(app)
                elif key in previous:
                    kept.append(previous[key])
            apps = kept

        try:
            self.baseline.save(apps)
        except CacheError as e:
            logger.warning(f"Failed to update cache: {e}")

    def _log_plan(self, plan: SyncPlan) -> None:
        logger.info("Sync plan:")
        logger.info(json.dumps(plan.to_dict(), indent=2))
