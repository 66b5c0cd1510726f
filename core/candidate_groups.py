"""
Generic candidate grouping.

Both conflict call sites have the same shape: key -> several candidates,
ranked by a policy, first one wins.
- install: target path -> package writers, ranked by priority
- save: universal path -> workspace variants, ranked by recency

Ranking policies are sort-key functions taking (candidate, registration index).
"""

from typing import Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar('T')

RankPolicy = Callable[[T, int], tuple]


def by_priority(priority: Callable[[T], int]) -> RankPolicy:
    """Highest priority first; equal priorities keep registration order."""
    return lambda candidate, index: (-priority(candidate), index)


def by_recency(mtime: Callable[[T], float], display: Callable[[T], str]) -> RankPolicy:
    """Newest first; equal mtimes are ordered alphabetically by display path."""
    return lambda candidate, index: (-mtime(candidate), display(candidate), index)


class CandidateGroups(Generic[T]):
    """
    Candidates grouped by key and ranked by one policy.

    Example:
        groups = CandidateGroups(by_priority(lambda w: w.priority))
        groups.add('rules/x.md', writer_a)
        groups.add('rules/x.md', writer_b)
        for key, ranked in groups.contested():
            winner = ranked[0]
    """

    def __init__(self, policy: RankPolicy):
        self.policy = policy
        self._groups: Dict[str, List[Tuple[int, T]]] = {}
        self._counter = 0

    def add(self, key: str, candidate: T):
        self._groups.setdefault(key, []).append((self._counter, candidate))
        self._counter += 1

    def keys(self) -> List[str]:
        return list(self._groups.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def candidates(self, key: str) -> List[T]:
        """Candidates for key in registration order."""
        return [candidate for _, candidate in self._groups.get(key, [])]

    def ranked(self, key: str) -> List[T]:
        """Candidates for key, best first."""
        entries = sorted(self._groups.get(key, []), key=lambda entry: self.policy(entry[1], entry[0]))
        return [candidate for _, candidate in entries]

    def winner(self, key: str) -> Optional[T]:
        ranked = self.ranked(key)
        return ranked[0] if ranked else None

    def contested(self) -> Iterator[Tuple[str, List[T]]]:
        """(key, ranked candidates) for every key with more than one candidate."""
        for key, entries in self._groups.items():
            if len(entries) > 1:
                yield key, self.ranked(key)


def rank(candidates: List[T], policy: RankPolicy) -> List[T]:
    """Rank a plain list with a policy; list position is the registration order."""
    return [candidate for _, candidate in sorted(enumerate(candidates), key=lambda e: policy(e[1], e[0]))]
