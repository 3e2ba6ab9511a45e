"""A single interface over the tree and content apply strategies."""

from __future__ import annotations

from collections.abc import Iterable

from ._remote import call
from .api import ContentCommitAPI, ObjectGraphAPI
from .applier import DEFAULT_COMMIT_MESSAGE, BlobPolicy, TreeApplier
from .cancel import CancelToken
from .content import ContentApplier
from .header import PatchHeader
from .objects import CommitTemplate
from .patch import FilePatch
from .repository import Repository

TREE = "tree"
CONTENT = "content"


class PatchApplier:
    """Applies patches and commits them with one of two strategies.

    Build one with :meth:`tree` or :meth:`content`.  The tree strategy
    creates blobs, trees, and commits and leaves moving a branch to the
    caller; the content strategy commits directly onto the branch it was
    built for.
    """

    def __init__(self, variant: TreeApplier | ContentApplier, *, branch: str | None = None):
        if isinstance(variant, ContentApplier) and branch is None:
            raise ValueError("content applier requires a branch")
        self._variant = variant
        self._branch = branch

    def __repr__(self) -> str:
        return f"PatchApplier({self._variant!r})"

    @classmethod
    def tree(
        cls,
        api: ObjectGraphAPI,
        repo: Repository,
        base: str,
        *,
        blob_policy: BlobPolicy = BlobPolicy.EAGER,
        default_message: str = DEFAULT_COMMIT_MESSAGE,
        cancel: CancelToken | None = None,
    ) -> PatchApplier:
        """Create a tree-strategy applier on top of commit *base*."""
        commit = call(cancel, "get commit", base, api.get_commit, repo, base)
        return cls(TreeApplier(api, repo, commit, blob_policy=blob_policy,
                               default_message=default_message))

    @classmethod
    def content(
        cls,
        api: ContentCommitAPI,
        repo: Repository,
        base: str,
        branch: str,
        *,
        object_api: ObjectGraphAPI | None = None,
        default_message: str = DEFAULT_COMMIT_MESSAGE,
    ) -> PatchApplier:
        """Create a content-strategy applier that commits onto *branch*.

        *branch* must exist and point at *base*.
        """
        variant = ContentApplier(api, repo, base, object_api=object_api,
                                 default_message=default_message)
        return cls(variant, branch=branch)

    @property
    def kind(self) -> str:
        return CONTENT if isinstance(self._variant, ContentApplier) else TREE

    @property
    def variant(self) -> TreeApplier | ContentApplier:
        return self._variant

    @property
    def base(self) -> str:
        return self._variant.base

    @property
    def branch(self) -> str | None:
        return self._branch

    def apply(self, patch: FilePatch, *, cancel: CancelToken | None = None) -> None:
        self._variant.apply(patch, cancel=cancel)

    def apply_all(self, patches: Iterable[FilePatch], *, cancel: CancelToken | None = None) -> int:
        """Apply each patch in order; stop at the first failure.

        Returns the number of patches applied.
        """
        count = 0
        for patch in patches:
            self._variant.apply(patch, cancel=cancel)
            count += 1
        return count

    def commit(
        self,
        header: PatchHeader | None = None,
        *,
        template: CommitTemplate | None = None,
        cancel: CancelToken | None = None,
    ) -> str:
        """Commit pending changes and return the new commit hash.

        *template* only applies to the tree strategy; the content strategy
        cannot set authors or committers.
        """
        if isinstance(self._variant, ContentApplier):
            return self._variant.commit(self._branch, header, cancel=cancel)
        return self._variant.commit(header, template=template, cancel=cancel).sha

    def reset(self, sha: str, *, cancel: CancelToken | None = None) -> None:
        """Rebase the applier onto commit *sha*, discarding pending changes."""
        if isinstance(self._variant, ContentApplier):
            self._variant.reset(sha)
            return
        variant = self._variant
        commit = call(cancel, "get commit", sha, variant.api.get_commit, variant.repository, sha)
        variant.reset(commit)
