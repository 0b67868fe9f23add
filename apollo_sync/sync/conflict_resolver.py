"""Conflict resolution for three-way sync.

A conflict is an app whose sync fields were changed on both sides to
different values since the last sync. Resolvers decide a conflict as a
whole entry: either one side wins completely, or the conflict is left for
the user to settle by hand.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from enum import Enum
from typing import Optional

from apollo_sync.sync.diff import DiffAction, EntryDiff, SyncPlan

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """How conflicts are settled (values match the CLI flag)."""

    MANUAL = "manual"
    LOCAL_WINS = "local-wins"
    SERVER_WINS = "server-wins"


class ConflictResolver(ABC):
    """Abstract interface for resolving sync conflicts."""

    @abstractmethod
    def resolve(self, conflict: EntryDiff) -> Optional[EntryDiff]:
        """Resolve a conflicting entry.

        Args:
            conflict: Diff with action CONFLICT

        Returns:
            An UPDATE diff to apply instead, or None to leave the conflict
            unresolved
        """


class ManualResolver(ConflictResolver):
    """Leave every conflict for the user."""

    def resolve(self, conflict: EntryDiff) -> Optional[EntryDiff]:
        return None


class PreferLocalResolver(ConflictResolver):
    """Local entry wins; the host is updated to match it."""

    def resolve(self, conflict: EntryDiff) -> Optional[EntryDiff]:
        return replace(
            conflict,
            action=DiffAction.UPDATE,
            description="Conflict resolved: using local version",
            target=conflict.local,
        )


class PreferRemoteResolver(ConflictResolver):
    """Host entry wins; apps.json is updated to match it."""

    def resolve(self, conflict: EntryDiff) -> Optional[EntryDiff]:
        return replace(
            conflict,
            action=DiffAction.UPDATE,
            description="Conflict resolved: using server version",
            target=conflict.remote,
        )


def create_conflict_resolver(policy: ConflictPolicy | str) -> ConflictResolver:
    """Return the resolver for a policy (or its CLI value)."""
    policy = ConflictPolicy(policy)
    if policy == ConflictPolicy.LOCAL_WINS:
        return PreferLocalResolver()
    if policy == ConflictPolicy.SERVER_WINS:
        return PreferRemoteResolver()
    return ManualResolver()


def resolve_conflicts(plan: SyncPlan, resolver: ConflictResolver) -> SyncPlan:
    """Move the conflicts the resolver settles into the plan's operations.

    Unresolved conflicts stay in ``plan.conflicts``. The plan is updated in
    place and returned.
    """
    unresolved = []

    for conflict in plan.conflicts:
        resolution = resolver.resolve(conflict)
        if resolution is None:
            unresolved.append(conflict)
            continue

        logger.debug(f"{conflict.name}: {resolution.description}")
        plan.add(resolution)

    plan.conflicts = unresolved
    return plan
