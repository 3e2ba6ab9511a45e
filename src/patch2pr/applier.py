"""Apply file patches through a remote object-graph API."""

from __future__ import annotations

import enum
import logging
from functools import partial

from ._remote import call
from .api import ObjectGraphAPI
from .cache import TreeCache
from .cancel import CancelToken
from .exceptions import ExistingEntryError, MissingEntryError, NothingPendingError
from .header import PatchHeader, PatchIdentity
from .objects import DEFAULT_MODE, Commit, CommitTemplate, Signature, Tree, TreeEntry, format_mode
from .patch import FilePatch
from .repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE = "Apply patch with patch2pr"


class BlobPolicy(enum.Enum):
    """When modified file content becomes a remote blob."""

    #: Create a blob as soon as a patch is applied; only its hash is kept.
    EAGER = "eager"
    #: Keep the bytes in the pending entry and let ``create_tree`` upload them.
    DEFERRED = "deferred"


class TreeApplier:
    """Stages file patches as tree entries and turns them into commits.

    Patches are applied against the tree of *base_commit*.  Each call to
    :meth:`commit` creates one commit whose parent is the previous base and
    which becomes the new base.  An applier is owned by one caller at a
    time.

    Args:
        api: Remote object-graph API.
        repo: Repository to write to.
        base_commit: Commit whose tree the first patch applies to.
        blob_policy: See :class:`BlobPolicy`.
        default_message: Commit message when neither header nor template
            provides one.
    """

    def __init__(
        self,
        api: ObjectGraphAPI,
        repo: Repository,
        base_commit: Commit,
        *,
        blob_policy: BlobPolicy = BlobPolicy.EAGER,
        default_message: str = DEFAULT_COMMIT_MESSAGE,
    ):
        self._api = api
        self._repo = repo
        self._blob_policy = blob_policy
        self._default_message = default_message
        self._cache = TreeCache()
        self._pending: dict[str, TreeEntry] = {}
        self.reset(base_commit)

    def __repr__(self) -> str:
        return f"TreeApplier({self._repo}, base={self._base[:7]}, pending={len(self._pending)})"

    @property
    def api(self) -> ObjectGraphAPI:
        return self._api

    @property
    def repository(self) -> Repository:
        return self._repo

    @property
    def base(self) -> str:
        """Hash of the commit the next commit will use as its parent."""
        return self._base

    @property
    def tree(self) -> str:
        """Hash of the tree patches currently apply to."""
        return self._tree

    @property
    def entries(self) -> tuple[TreeEntry, ...]:
        """Pending entries, in the order they were first staged."""
        return tuple(self._pending.values())

    @property
    def uncommitted(self) -> bool:
        """True if a tree was created that no commit references yet."""
        return self._uncommitted

    def reset(self, commit: Commit) -> None:
        """Start over from *commit*, discarding pending entries and the cache.

        Does not modify the remote repository.
        """
        self._base = commit.sha
        self._tree = commit.tree
        self._cache.clear()
        self._pending.clear()
        self._uncommitted = False

    # -- apply ---------------------------------------------------------------

    def apply(self, patch: FilePatch, *, cancel: CancelToken | None = None) -> TreeEntry:
        """Stage the change described by *patch*.

        Returns the entry staged for the patch's target path, which is a
        deletion entry for deleted files.

        Raises:
            ExistingEntryError: If a created file already exists.
            MissingEntryError: If a modified or deleted file does not exist.
            PatchApplyError: If the patch does not apply to the content.
            RemoteError: If a remote call fails.
        """
        if patch.is_new:
            staged = self._apply_create(patch, cancel)
        elif patch.is_delete:
            staged = self._apply_delete(patch, cancel)
        else:
            staged = self._apply_modify(patch, cancel)

        self._pending.update(staged)
        return staged[patch.name]

    def _apply_create(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, TreeEntry]:
        path = patch.new_name
        if self._entry(path, cancel) is not None:
            raise ExistingEntryError(f"existing entry for new file: {path}")
        data = patch.apply(b"")
        entry = self._blob_entry(path, self._mode(patch, None), data, cancel)
        return {path: entry}

    def _apply_delete(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, TreeEntry]:
        path = patch.old_name
        existing = self._entry(path, cancel)
        if existing is None:
            raise MissingEntryError(f"missing entry for deleted file: {path}")
        if patch.fragments:
            # validates that the patch removes exactly the current content
            patch.apply(self._content(existing, cancel))
        return {path: TreeEntry.deletion(path, existing.mode)}

    def _apply_modify(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, TreeEntry]:
        existing = self._entry(patch.old_name, cancel)
        if existing is None:
            raise MissingEntryError(f"no entry for modified file: {patch.old_name}")

        mode = self._mode(patch, existing)
        if patch.has_fragments:
            data = patch.apply(self._content(existing, cancel))
            entry = self._blob_entry(patch.new_name, mode, data, cancel)
        else:
            entry = TreeEntry(patch.new_name, mode, sha=existing.sha, content=existing.content)

        staged = {}
        if patch.old_name != patch.new_name and not patch.is_copy:
            staged[patch.old_name] = TreeEntry.deletion(patch.old_name, existing.mode)
        staged[patch.new_name] = entry
        return staged

    def _mode(self, patch: FilePatch, existing: TreeEntry | None) -> str:
        if patch.new_mode:
            return format_mode(patch.new_mode)
        if existing is not None:
            return existing.mode
        if patch.old_mode:
            return format_mode(patch.old_mode)
        return DEFAULT_MODE

    def _entry(self, path: str, cancel: CancelToken | None) -> TreeEntry | None:
        """Resolve *path* against pending entries, then the base tree."""
        pending = self._pending.get(path)
        if pending is not None:
            return None if pending.is_deletion else pending
        return self._cache.lookup(self._tree, path, partial(self._fetch_tree, cancel))

    def _fetch_tree(self, cancel: CancelToken | None, sha: str) -> Tree:
        return call(cancel, "get tree", sha, self._api.get_tree, self._repo, sha)

    def _content(self, entry: TreeEntry, cancel: CancelToken | None) -> bytes:
        if entry.content is not None:
            return entry.content
        return call(cancel, "get blob", entry.sha, self._api.get_blob, self._repo, entry.sha)

    def _blob_entry(self, path: str, mode: str, data: bytes, cancel: CancelToken | None) -> TreeEntry:
        if self._blob_policy is BlobPolicy.DEFERRED:
            return TreeEntry(path, mode, content=data)
        sha = call(cancel, "create blob", path, self._api.create_blob, self._repo, data)
        return TreeEntry(path, mode, sha=sha)

    # -- tree and commit -----------------------------------------------------

    def create_tree(self, *, cancel: CancelToken | None = None) -> str:
        """Create a tree from the base tree and all pending entries.

        The new tree becomes the base tree for later patches and the tree
        of the next commit.

        Raises:
            NothingPendingError: If no entries are pending.
        """
        if not self._pending:
            raise NothingPendingError("no pending tree entries")

        entries = list(self._pending.values())
        sha = call(
            cancel, "create tree", self._tree,
            self._api.create_tree, self._repo, self._tree, entries,
        )
        logger.info("Created tree %s from %d entries", sha, len(entries))

        self._tree = sha
        self._cache.clear()
        self._pending.clear()
        self._uncommitted = True
        return sha

    def commit(
        self,
        header: PatchHeader | None = None,
        *,
        template: CommitTemplate | None = None,
        cancel: CancelToken | None = None,
    ) -> Commit:
        """Commit the latest tree, creating it first if entries are pending.

        Fields set in *header* take precedence over *template*; missing
        fields fall back to the default message and to the identity and
        time the remote assigns.  If tree creation succeeds but the commit
        fails, the new tree stays as the base tree.

        Raises:
            NothingPendingError: If there is neither a pending tree nor
                pending entries.
        """
        if not self._uncommitted and not self._pending:
            raise NothingPendingError("no pending tree or tree entries")
        if self._pending:
            self.create_tree(cancel=cancel)

        message, author, committer = _commit_details(header, template, self._default_message)
        commit = call(
            cancel, "create commit", self._tree,
            self._api.create_commit, self._repo, self._tree, [self._base],
            message, author, committer,
        )
        logger.info("Created commit %s on %s", commit.sha, self._base)

        self._base = commit.sha
        self._uncommitted = False
        return commit


def _signature(
    identity: PatchIdentity | None,
    date,
    fallback: Signature | None,
) -> Signature | None:
    """Merge header fields over *fallback* one field at a time."""
    name = identity.name if identity is not None else None
    email = identity.email if identity is not None else None
    if fallback is not None:
        name = name or fallback.name
        email = email or fallback.email
        date = date or fallback.date
    if name is None and email is None and date is None:
        return None
    return Signature(name, email, date)


def _commit_details(
    header: PatchHeader | None,
    template: CommitTemplate | None,
    default_message: str,
) -> tuple[str, Signature | None, Signature | None]:
    if header is None:
        header = PatchHeader()
    if template is None:
        template = CommitTemplate()
    message = header.message() or template.message
    author = _signature(header.author, header.author_date, template.author)
    committer = _signature(header.committer, header.committer_date, template.committer)
    return message or default_message, author, committer
