"""One-way sync: push apps.json to the host.

Each local entry is paired with a host entry by fuzzy name match. Unmatched
entries are created, matched entries whose sync fields differ are updated,
and nothing is ever deleted or written locally. No baseline is used.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from apollo_sync.client import ApolloClient
from apollo_sync.exceptions import ApolloSyncError
from apollo_sync.models import SYNC_FIELDS, Entry
from apollo_sync.sync.diff import values_equal
from apollo_sync.sync.engine import build_update_payload
from apollo_sync.sync.matcher import FuzzyNameMatcher, NameMatcher

logger = logging.getLogger(__name__)

# Defaults the host expects for a brand new app
_CREATE_DEFAULTS: dict[str, Any] = {
    "output": "",
    "cmd": "",
    "detached": [],
    "exclude-global-prep-cmd": False,
    "elevated": False,
    "auto-detach": False,
    "wait-all": False,
    "exit-timeout": 5,
    "prep-cmd": [],
}


@dataclass
class OneWaySyncResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def compare_apps(local: Entry, remote: Entry) -> list[str]:
    """Describe sync fields where the host differs from the local entry.

    A field that is empty or missing on both sides is not a difference.
    """
    differences = []
    for name in SYNC_FIELDS:
        local_value = local.get(name)
        remote_value = remote.get(name)
        if not local_value and not remote_value:
            continue
        if not values_equal(local_value, remote_value):
            differences.append(
                f"{name}: {json.dumps(remote_value)} -> {json.dumps(local_value)}"
            )
    return differences


def build_new_app_payload(local: Entry) -> dict[str, Any]:
    """Payload creating a local entry on the host, with host defaults filled in."""
    payload: dict[str, Any] = {"name": local["name"]}
    for name, default in _CREATE_DEFAULTS.items():
        value = local.get(name)
        payload[name] = copy.deepcopy(value) if value is not None else copy.deepcopy(default)
    payload["index"] = -1
    payload["uuid"] = ""
    payload["image-path"] = ""
    return payload


class OneWaySync:
    """Push local entries to the host."""

    def __init__(self, client: ApolloClient, matcher: Optional[NameMatcher] = None):
        self.client = client
        self.matcher = matcher or FuzzyNameMatcher()

    def sync(
        self, local_apps: list[Entry], dry_run: bool = False, verbose: bool = False
    ) -> OneWaySyncResult:
        """Create or update every local entry on the host.

        Raises:
            RemoteError: If the connection test or the initial fetch fails
        """
        logger.info("Starting app sync...")

        if not dry_run:
            self.client.test_connection()
        remote_apps = self.client.fetch_apps()

        result = OneWaySyncResult(dry_run=dry_run)
        logger.info(
            f"Processing {len(local_apps)} local apps against {len(remote_apps)} server apps"
        )

        for local in local_apps:
            name = local["name"]
            match = self.matcher.find_match(local, remote_apps)

            if match is None:
                logger.info(f"Creating new app: {name}")
                if verbose:
                    logger.debug(f"New app details: {json.dumps(local, indent=2)}")
                if self._push(build_new_app_payload(local), name, "create", dry_run, result):
                    result.created += 1
                continue

            differences = compare_apps(local, match.entry)
            if not differences:
                result.unchanged += 1
                if verbose:
                    logger.debug(f"No changes needed for: {name}")
                continue

            logger.info(f"Updating app: {name}")
            if verbose:
                logger.debug(f"Changes for {name}:")
                for difference in differences:
                    logger.debug(f"  • {difference}")

            payload = build_update_payload(match.entry, match.index, local)
            if self._push(payload, name, "update", dry_run, result):
                result.updated += 1

        logger.info(
            f"App sync completed: {result.created} created, {result.updated} updated, "
            f"{result.unchanged} unchanged, {len(result.errors)} errors"
        )
        return result

    def _push(
        self,
        payload: dict[str, Any],
        name: str,
        verb: str,
        dry_run: bool,
        result: OneWaySyncResult,
    ) -> bool:
        if dry_run:
            logger.info(f"[DRY RUN] Would {verb} app: {name}")
            return True

        try:
            self.client.push_app(payload)
        except ApolloSyncError as e:
            message = f"Failed to {verb} {name}: {e}"
            result.errors.append(message)
            logger.error(f"✗ {message}")
            return False

        logger.info(f"✓ {verb.capitalize()}d app: {name}")
        return True
