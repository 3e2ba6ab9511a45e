"""Protocols for the remote APIs the appliers consume.

Two capabilities are modelled.  :class:`ObjectGraphAPI` exposes the
immutable object graph one object at a time (blobs, trees, commits,
refs).  :class:`ContentCommitAPI` reads file content by path and creates a
commit from named file changes in a single request.

Implementations raise :class:`~patch2pr.exceptions.RemoteError` (or a
subclass) for every failure; ``NotFoundError`` signals a missing object,
ref, or repository.  :class:`patch2pr.local.LocalHost` implements both.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol, runtime_checkable

from .objects import (
    Commit,
    FileContent,
    NewPullRequest,
    PullRequest,
    RepositoryInfo,
    Signature,
    Tree,
    TreeEntry,
)
from .repository import Repository


@runtime_checkable
class ObjectGraphAPI(Protocol):
    """Per-object access to a remote repository's object graph."""

    def get_repository(self, repo: Repository) -> RepositoryInfo: ...

    def create_fork(self, repo: Repository, *, owner: str | None = None) -> Repository: ...

    def get_commit(self, repo: Repository, sha: str) -> Commit: ...

    def get_tree(self, repo: Repository, sha: str) -> Tree: ...

    def get_blob(self, repo: Repository, sha: str) -> bytes: ...

    def create_blob(self, repo: Repository, data: bytes) -> str: ...

    def create_tree(self, repo: Repository, base: str | None, entries: Sequence[TreeEntry]) -> str:
        """Create a tree from *base* with *entries* applied.

        Entry paths may contain slashes.  Deletions (no sha, no content)
        remove the path; pending entries become new blobs.
        """
        ...

    def create_commit(
        self,
        repo: Repository,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Signature | None = None,
        committer: Signature | None = None,
    ) -> Commit: ...

    def get_ref(self, repo: Repository, ref: str) -> str:
        """Return the hash *ref* points at; raise ``NotFoundError`` if absent."""
        ...

    def create_ref(self, repo: Repository, ref: str, sha: str) -> None: ...

    def update_ref(self, repo: Repository, ref: str, sha: str, *, force: bool = False) -> None:
        """Move *ref*; raise ``NotFastForwardError`` unless *force* or a fast-forward."""
        ...

    def create_pull_request(self, repo: Repository, spec: NewPullRequest) -> PullRequest: ...


@runtime_checkable
class ContentCommitAPI(Protocol):
    """Path-addressed reads and atomic multi-file commits."""

    def query_file(self, repo: Repository, commit: str, path: str) -> FileContent | None:
        """Return the blob at ``commit:path``, or ``None`` if there is none."""
        ...

    def query_directory(self, repo: Repository, commit: str, path: str) -> dict[str, str] | None:
        """Return ``{name: mode}`` for the directory at ``commit:path``.

        An empty *path* names the root directory.  Returns ``None`` if the
        path does not name a directory.
        """
        ...

    def create_commit_on_branch(
        self,
        repo: Repository,
        branch: str,
        expected_head: str,
        headline: str,
        body: str | None,
        additions: Mapping[str, bytes],
        deletions: Iterable[str],
    ) -> str:
        """Commit the changes on *branch* and return the new commit hash.

        Raises ``ConflictError`` if *branch* does not point at
        *expected_head*.
        """
        ...
