"""Synchronization between apps.json and an Apollo/Sunshine host.

This module provides:
- DiffEngine / SyncPlan: three-way classification of every app
- ConflictResolver: policies for apps changed on both sides
- TwoWaySyncEngine: apply a plan to both sides and record the baseline
- BaselineCache: the host's apps as of the last successful sync
- OneWaySync: fuzzy-matched push of apps.json to the host
"""

from apollo_sync.sync.baseline import BaselineCache, CachedState, calculate_checksum
from apollo_sync.sync.conflict_resolver import (
    ConflictPolicy,
    ConflictResolver,
    ManualResolver,
    PreferLocalResolver,
    PreferRemoteResolver,
    create_conflict_resolver,
    resolve_conflicts,
)
from apollo_sync.sync.diff import (
    DiffAction,
    DiffEngine,
    Direction,
    EntryDiff,
    FieldConflict,
    SyncPlan,
    classify,
    sync_fields_changed,
)
from apollo_sync.sync.engine import (
    TwoWaySyncEngine,
    TwoWaySyncOptions,
    TwoWaySyncResult,
    apply_local_operations,
)
from apollo_sync.sync.matcher import FuzzyNameMatcher, Match, find_match
from apollo_sync.sync.one_way import OneWaySync, OneWaySyncResult

__all__ = [
    # Baseline
    "BaselineCache",
    "CachedState",
    "calculate_checksum",
    # Diff
    "DiffAction",
    "DiffEngine",
    "Direction",
    "EntryDiff",
    "FieldConflict",
    "SyncPlan",
    "classify",
    "sync_fields_changed",
    # Conflicts
    "ConflictPolicy",
    "ConflictResolver",
    "ManualResolver",
    "PreferLocalResolver",
    "PreferRemoteResolver",
    "create_conflict_resolver",
    "resolve_conflicts",
    # Engines
    "TwoWaySyncEngine",
    "TwoWaySyncOptions",
    "TwoWaySyncResult",
    "apply_local_operations",
    "OneWaySync",
    "OneWaySyncResult",
    # Matching
    "FuzzyNameMatcher",
    "Match",
    "find_match",
]
