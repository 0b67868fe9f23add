"""Fuzzy name matching between local and remote entries.

The local catalog carries no durable identifier, so the one-way sync pairs
a local entry with a remote one by name. Matching is deliberately
conservative: a high similarity threshold, and names that differ in their
numbers ("Half-Life 2" / "Half-Life 3") are never paired.
"""

import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from apollo_sync.models import Entry, normalize_name

DEFAULT_THRESHOLD = 0.8

_DIGITS = re.compile(r"\d+")


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit-cost insertion, deletion and substitution."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + (char_a != char_b),  # substitution
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Similarity in [0, 1]: 1 - distance / length of the longer string."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longer


def numbers_agree(a: str, b: str) -> bool:
    """Whether two names carry the same sequence of numbers."""
    return _DIGITS.findall(a) == _DIGITS.findall(b)


@dataclass(frozen=True)
class Match:
    """A remote entry paired with a local one."""

    entry: Entry
    index: int  # position in the remote list
    score: float


class NameMatcher(Protocol):
    """Strategy for pairing a local entry with a remote one."""

    def find_match(self, entry: Entry, candidates: Sequence[Entry]) -> Optional[Match]:
        ...


class FuzzyNameMatcher:
    """Pair entries by normalized edit-distance similarity."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        self.threshold = threshold

    def find_match(self, entry: Entry, candidates: Sequence[Entry]) -> Optional[Match]:
        """Find the best remote match for a local entry.

        The candidate with the highest similarity strictly above the
        threshold wins; on ties the first candidate in list order is kept.

        Returns:
            Match, or None if the entry should be treated as new
        """
        name = normalize_name(entry["name"])
        best: Optional[Match] = None

        for index, candidate in enumerate(candidates):
            candidate_name = normalize_name(candidate["name"])
            if not numbers_agree(name, candidate_name):
                continue

            score = similarity(name, candidate_name)
            if score > self.threshold and (best is None or score > best.score):
                best = Match(entry=candidate, index=index, score=score)

        return best


def find_match(
    entry: Entry, candidates: Sequence[Entry], threshold: float = DEFAULT_THRESHOLD
) -> Optional[Match]:
    """Shortcut for ``FuzzyNameMatcher(threshold).find_match(...)``."""
    return FuzzyNameMatcher(threshold).find_match(entry, candidates)
