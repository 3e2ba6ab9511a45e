"""Path-based tree reads and rebuilds over a dulwich object store."""

from __future__ import annotations

from collections import defaultdict

from dulwich.objects import Tree as _DTree

from ..objects import GIT_FILEMODE_TREE


def normalize_path(path: str) -> str:
    """Strip surrounding slashes and reject empty, ``.`` or ``..`` segments.

    Raises:
        ValueError: If the path is empty or has an invalid segment.
    """
    path = path.strip("/")
    if not path:
        raise ValueError("path must not be empty")
    for seg in path.split("/"):
        if seg in ("", ".", ".."):
            raise ValueError(f"invalid path segment {seg!r} in {path!r}")
    return path


def walk_to(store, tree_id: bytes, path: str) -> tuple[int, bytes] | None:
    """Return ``(mode, sha)`` of the object at *path* below *tree_id*.

    An empty *path* names the tree itself.  Returns ``None`` if any segment
    is missing or a non-final segment is not a tree.
    """
    mode, sha = GIT_FILEMODE_TREE, tree_id
    path = path.strip("/")
    if not path:
        return mode, sha
    for seg in path.split("/"):
        if mode != GIT_FILEMODE_TREE:
            return None
        tree = store[sha]
        try:
            mode, sha = tree[seg.encode()]
        except KeyError:
            return None
    return mode, sha


def iter_files(store, tree_id: bytes, prefix: str = ""):
    """Yield ``(path, mode, sha)`` for every non-tree entry, recursively."""
    for item in store[tree_id].iteritems():
        path = prefix + item.path.decode()
        if item.mode == GIT_FILEMODE_TREE:
            yield from iter_files(store, item.sha, path + "/")
        else:
            yield path, item.mode, item.sha


def rebuild_tree(
    store,
    base_tree_id: bytes | None,
    writes: dict[str, tuple[bytes, int]],
    removes: set[str],
) -> bytes:
    """Rebuild a tree with writes and removes applied.

    Only the chain of trees from changed leaves to the root is rebuilt;
    untouched subtrees are shared by hash.  Directories left empty are
    pruned and removes of missing paths are ignored.

    Args:
        store: The dulwich object store.
        base_tree_id: Hex id of the existing tree, or None for empty.
        writes: Mapping of normalized path to ``(blob id, filemode)``.
        removes: Set of normalized paths to remove.

    Returns:
        Hex id of the new root tree.
    """
    sub_writes: dict[str, dict[str, tuple[bytes, int]]] = defaultdict(dict)
    leaf_writes: dict[str, tuple[bytes, int]] = {}
    sub_removes: dict[str, set[str]] = defaultdict(set)
    leaf_removes: set[str] = set()

    for path, value in writes.items():
        head, sep, rest = path.partition("/")
        if sep:
            sub_writes[head][rest] = value
        else:
            leaf_writes[head] = value

    for path in removes:
        head, sep, rest = path.partition("/")
        if sep:
            sub_removes[head].add(rest)
        else:
            leaf_removes.add(head)

    entries: dict[bytes, tuple[int, bytes]] = {}
    if base_tree_id is not None:
        for item in store[base_tree_id].iteritems():
            entries[item.path] = (item.mode, item.sha)

    for name in leaf_removes:
        entries.pop(name.encode(), None)
    for name, (sha, mode) in leaf_writes.items():
        entries[name.encode()] = (mode, sha)

    for subdir in set(sub_writes) | set(sub_removes):
        key = subdir.encode()
        existing = entries.get(key)
        subtree_id = existing[1] if existing and existing[0] == GIT_FILEMODE_TREE else None
        if subtree_id is None and subdir not in sub_writes:
            continue
        new_id = rebuild_tree(
            store,
            subtree_id,
            sub_writes.get(subdir, {}),
            sub_removes.get(subdir, set()),
        )
        if len(store[new_id]) == 0:
            entries.pop(key, None)
        else:
            entries[key] = (GIT_FILEMODE_TREE, new_id)

    tree = _DTree()
    for name, (mode, sha) in entries.items():
        tree.add(name, mode, sha)
    store.add_object(tree)
    return tree.id
