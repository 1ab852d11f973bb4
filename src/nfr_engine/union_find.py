"""Disjoint-set forest over contract ids."""

from collections import defaultdict


class UnionFind:
    """Union-find with path compression and union by rank.

    State is owned by the instance; create one per resolve call.
    """

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}

    def __contains__(self, item: str) -> bool:
        return item in self._parent

    def __len__(self) -> int:
        return len(self._parent)

    def find(self, item: str) -> str:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0
            return item
        if self._parent[item] != item:
            self._parent[item] = self.find(self._parent[item])
        return self._parent[item]

    def union(self, left: str, right: str) -> bool:
        """Merge the sets holding left and right; False if they were already one set."""
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left == root_right:
            return False
        if self._rank[root_left] < self._rank[root_right]:
            self._parent[root_left] = root_right
        elif self._rank[root_left] > self._rank[root_right]:
            self._parent[root_right] = root_left
        else:
            self._parent[root_right] = root_left
            self._rank[root_left] += 1
        return True

    def groups(self) -> dict[str, list[str]]:
        """Members by root, roots and members in registration order."""
        grouped: dict[str, list[str]] = defaultdict(list)
        for item in list(self._parent):
            grouped[self.find(item)].append(item)
        return dict(grouped)
