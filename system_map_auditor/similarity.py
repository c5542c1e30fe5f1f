"""Edit-distance and normalization primitives for near-match suggestions."""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_QUERY_PREFIX = re.compile(r"^query[:\s]*")
_KEY_SEPARATORS = re.compile(r"[/\-_\s:.]")
_SETTINGS = re.compile(r"settings?")
_VISIBILITY = re.compile(r"visibilit(?:y|ies)")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def levenshtein(s1: str, s2: str) -> int:
    """Levenshtein edit distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def kebab_case(name: str) -> str:
    """``UserProfileCard`` -> ``user-profile-card``."""
    return _CAMEL_BOUNDARY.sub("-", name).lower()


class SimilarityScorer:
    """Fuzzy matching for endpoint paths, names and cache keys.

    Args:
        max_distance: Largest edit distance still considered a near match.
        short_length: Strings up to this length are compared by edit distance;
            longer ones only by substring containment.
        min_key_length: Normalized cache keys must be longer than this before
            substring containment counts as similarity.
    """

    def __init__(self, max_distance: int = 2, short_length: int = 10, min_key_length: int = 5) -> None:
        self.max_distance = max_distance
        self.short_length = short_length
        self.min_key_length = min_key_length

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_path(path: str) -> str:
        return _NON_ALNUM.sub("", path.lower())

    def paths_similar(self, a: str, b: str) -> bool:
        na, nb = self.normalize_path(a), self.normalize_path(b)
        if not na or not nb:
            return False
        if na == nb or na in nb or nb in na:
            return True
        if max(len(na), len(nb)) <= self.short_length:
            return levenshtein(na, nb) <= self.max_distance
        return False

    def path_distance(self, a: str, b: str) -> int:
        return levenshtein(self.normalize_path(a), self.normalize_path(b))

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def closest(self, name: str, candidates: Iterable[str], limit: int = 3) -> List[str]:
        """Up to *limit* candidates within ``max_distance``, nearest first."""
        scored: List[Tuple[int, str]] = []
        for candidate in candidates:
            dist = levenshtein(name.lower(), candidate.lower())
            if dist <= self.max_distance:
                scored.append((dist, candidate))
        scored.sort(key=lambda x: (x[0], x[1]))
        return [s[1] for s in scored[:limit]]

    # ------------------------------------------------------------------
    # Cache keys
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_cache_key(key: str) -> str:
        normalized = _QUERY_PREFIX.sub("", key.lower())
        normalized = _KEY_SEPARATORS.sub("", normalized)
        normalized = _SETTINGS.sub("setting", normalized)
        normalized = _VISIBILITY.sub("visibility", normalized)
        return normalized

    def cache_keys_similar(self, a: str, b: str) -> bool:
        na, nb = self.normalize_cache_key(a), self.normalize_cache_key(b)
        if na == nb:
            return True
        if min(len(na), len(nb)) > self.min_key_length:
            return na in nb or nb in na
        return False

    def group_similar_keys(self, keys: Iterable[str]) -> List[List[str]]:
        """Groups of two or more distinct keys that are pairwise linked by similarity."""
        ordered = sorted(set(keys))
        groups: List[List[str]] = []
        seen = set()
        for key in ordered:
            if key in seen:
                continue
            group = [key]
            for other in ordered:
                if other != key and other not in seen and self.cache_keys_similar(key, other):
                    group.append(other)
            if len(group) > 1:
                seen.update(group)
                groups.append(group)
        return groups
