"""Lazy cache of fetched trees for one base-tree generation."""

from __future__ import annotations

from collections.abc import Callable

from .objects import Tree, TreeEntry

Fetch = Callable[[str], Tree]


class TreeCache:
    """Maps tree hashes to fetched :class:`~patch2pr.objects.Tree` objects.

    Entries are only added while the applier works against one base tree;
    the applier calls :meth:`clear` when it creates a new tree or resets.
    """

    def __init__(self):
        self._trees: dict[str, Tree] = {}

    def __len__(self) -> int:
        return len(self._trees)

    def __contains__(self, sha: str) -> bool:
        return sha in self._trees

    def get(self, sha: str, fetch: Fetch) -> Tree:
        """Return the tree for *sha*, calling ``fetch(sha)`` on a miss."""
        tree = self._trees.get(sha)
        if tree is None:
            tree = fetch(sha)
            self._trees[sha] = tree
        return tree

    def lookup(self, root: str, path: str, fetch: Fetch) -> TreeEntry | None:
        """Find the blob entry at *path* below the tree *root*.

        Returns ``None`` if a directory along the way is missing or the
        final name is not a blob.
        """
        *dirs, name = path.split("/")
        sha = root
        for segment in dirs:
            entry = self.get(sha, fetch).find(segment, "tree")
            if entry is None:
                return None
            sha = entry.sha
        return self.get(sha, fetch).find(name, "blob")

    def clear(self) -> None:
        self._trees.clear()
