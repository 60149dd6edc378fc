"""Disjoint-set forest over integer positions."""

from __future__ import annotations


class DisjointSet:
    """Union by rank with path compression.

    Args:
        size: Number of elements, addressed as ``0..size-1``.
    """

    def __init__(self, size: int) -> None:
        self._parent = list(range(size))
        self._rank = [0] * size

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> bool:
        """Merge the sets containing ``a`` and ``b``.

        Returns:
            True if two distinct sets were merged.
        """
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self._rank[root_a] < self._rank[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        if self._rank[root_a] == self._rank[root_b]:
            self._rank[root_a] += 1
        return True

    def components(self, min_size: int = 1) -> list[list[int]]:
        """Return the sets as sorted lists, ordered by their smallest element."""
        by_root: dict[int, list[int]] = {}
        for item in range(len(self._parent)):
            by_root.setdefault(self.find(item), []).append(item)
        groups = [members for members in by_root.values() if len(members) >= min_size]
        return sorted(groups, key=lambda members: members[0])
