"""Shared fixtures for patch2pr tests."""

from collections import Counter

import pytest
from click.testing import CliRunner

from patch2pr import Repository
from patch2pr.local import LocalHost
from patch2pr.objects import GIT_FILEMODE_BLOB_EXECUTABLE

REPO = Repository("owner", "repo")

BASE_FILES = {
    "a.txt": b"hello\n",
    "old/name.go": b"package old\n\nfunc Name() string { return \"name\" }\n",
    "bin/run.sh": (b"#!/bin/sh\necho run\n", GIT_FILEMODE_BLOB_EXECUTABLE),
    "main/bits.go": b"package main\n\nconst bits = 8\n",
}


class CountingAPI:
    """Forwards to a host and counts calls by method name."""

    def __init__(self, host):
        self._host = host
        self.calls = Counter()

    def __getattr__(self, name):
        attr = getattr(self._host, name)
        if not callable(attr):
            return attr

        def counted(*args, **kwargs):
            self.calls[name] += 1
            return attr(*args, **kwargs)
        return counted

    def total(self) -> int:
        return sum(self.calls.values())


@pytest.fixture(autouse=True)
def _clean_git_env(monkeypatch):
    """Keep the caller's git identity out of commit metadata."""
    for kind in ("AUTHOR", "COMMITTER"):
        for field in ("NAME", "EMAIL", "DATE"):
            monkeypatch.delenv(f"GIT_{kind}_{field}", raising=False)
    monkeypatch.delenv("PATCH2PR_REMOTE", raising=False)


@pytest.fixture
def host(tmp_path):
    """A LocalHost rooted in a fresh directory."""
    return LocalHost(tmp_path / "remote")


@pytest.fixture
def repo(host):
    """owner/repo with a, old/name.go, bin/run.sh (755) and main/bits.go on main."""
    host.create_repository(REPO)
    host.commit_files(REPO, "main", BASE_FILES, "Add base files")
    return REPO


@pytest.fixture
def base(host, repo):
    """Hash of the commit main points at."""
    return host.get_ref(repo, "refs/heads/main")


@pytest.fixture
def api(host, repo):
    """The host wrapped so tests can count remote calls."""
    return CountingAPI(host)


# ---------------------------------------------------------------------------
# CLI fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def remote(host, repo):
    """Path of the host root, for --remote."""
    return host.root
