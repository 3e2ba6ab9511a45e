"""Tests for the tree cache."""

from patch2pr.cache import TreeCache
from patch2pr.objects import Tree, TreeEntry

TREES = {
    "root": Tree("root", (
        TreeEntry("a.txt", sha="blob-a"),
        TreeEntry("dir", "040000", "tree", sha="dir"),
    )),
    "dir": Tree("dir", (
        TreeEntry("b.txt", sha="blob-b"),
        TreeEntry("sub", "040000", "tree", sha="sub"),
    )),
    "sub": Tree("sub", (TreeEntry("c.sh", "100755", sha="blob-c"),)),
}


class Fetcher:
    def __init__(self):
        self.fetched = []

    def __call__(self, sha):
        self.fetched.append(sha)
        return TREES[sha]


class TestTreeCache:
    def test_lookup_nested(self):
        cache, fetch = TreeCache(), Fetcher()
        entry = cache.lookup("root", "dir/sub/c.sh", fetch)
        assert entry.sha == "blob-c"
        assert entry.mode == "100755"
        assert fetch.fetched == ["root", "dir", "sub"]

    def test_each_tree_fetched_once(self):
        cache, fetch = TreeCache(), Fetcher()
        cache.lookup("root", "a.txt", fetch)
        cache.lookup("root", "dir/b.txt", fetch)
        cache.lookup("root", "dir/sub/c.sh", fetch)
        cache.lookup("root", "dir/b.txt", fetch)
        assert fetch.fetched == ["root", "dir", "sub"]
        assert len(cache) == 3
        assert "dir" in cache

    def test_missing_directory(self):
        cache, fetch = TreeCache(), Fetcher()
        assert cache.lookup("root", "nope/x.txt", fetch) is None
        assert fetch.fetched == ["root"]

    def test_missing_file(self):
        cache = TreeCache()
        assert cache.lookup("root", "dir/missing.txt", Fetcher()) is None

    def test_directory_is_not_a_file(self):
        cache = TreeCache()
        assert cache.lookup("root", "dir", Fetcher()) is None

    def test_file_is_not_a_directory(self):
        cache = TreeCache()
        assert cache.lookup("root", "a.txt/b.txt", Fetcher()) is None

    def test_clear(self):
        cache, fetch = TreeCache(), Fetcher()
        cache.get("root", fetch)
        cache.clear()
        assert len(cache) == 0
        cache.get("root", fetch)
        assert fetch.fetched == ["root", "root"]
