"""Apply file patches through a remote content-commit API.

Unlike :class:`~patch2pr.applier.TreeApplier`, this applier creates no
intermediate blobs or trees: pending file contents are kept in memory and
submitted in one commit request.  The request cannot express file modes,
so patches that need a mode other than ``100644`` are rejected with
:class:`~patch2pr.exceptions.UnsupportedError`.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from ._remote import call
from .api import ContentCommitAPI, ObjectGraphAPI
from .applier import DEFAULT_COMMIT_MESSAGE
from .cancel import CancelToken
from .exceptions import ExistingEntryError, MissingEntryError, NothingPendingError, UnsupportedError
from .header import PatchHeader
from .objects import DEFAULT_MODE, GIT_FILEMODE_BLOB, format_mode
from .patch import FilePatch
from .reference import qualify_ref
from .repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PendingChange:
    """New content for a path, or its deletion."""

    is_delete: bool = False
    content: bytes = b""


class ContentApplier:
    """Collects file changes and commits them to a branch in one request.

    Args:
        api: Remote content-commit API.
        repo: Repository to write to.
        base_sha: Commit the first patch applies to.  The branch passed to
            :meth:`commit` must point at this commit.
        object_api: Optional object-graph API used to read binary or large
            files that the content API does not return inline.
        default_message: Commit headline when no patch header is given.
    """

    def __init__(
        self,
        api: ContentCommitAPI,
        repo: Repository,
        base_sha: str,
        *,
        object_api: ObjectGraphAPI | None = None,
        default_message: str = DEFAULT_COMMIT_MESSAGE,
    ):
        self._api = api
        self._repo = repo
        self._object_api = object_api
        self._default_message = default_message
        self._changes: dict[str, PendingChange] = {}
        self._created: set[str] = set()
        self._modes: dict[str, str] = {}
        self._listed: set[str] = set()
        self.reset(base_sha)

    def __repr__(self) -> str:
        return f"ContentApplier({self._repo}, base={self._base[:7]}, pending={len(self._changes)})"

    @property
    def base(self) -> str:
        return self._base

    @property
    def changes(self) -> dict[str, PendingChange]:
        """A copy of the pending changes, keyed by path."""
        return dict(self._changes)

    def reset(self, base_sha: str) -> None:
        """Start over from *base_sha*, discarding pending changes."""
        self._base = base_sha
        self._changes.clear()
        self._created.clear()
        self._modes.clear()
        self._listed.clear()

    # -- apply ---------------------------------------------------------------

    def apply(self, patch: FilePatch, *, cancel: CancelToken | None = None) -> None:
        """Add the change described by *patch* to the pending changes.

        Raises:
            UnsupportedError: If the patch changes a file mode, uses a
                mode other than ``100644``, renames a file with another
                mode, or needs content the remote cannot provide.
            ExistingEntryError: If a created file already exists.
            MissingEntryError: If a modified or deleted file does not exist.
            PatchApplyError: If the patch does not apply to the content.
        """
        if patch.old_mode and patch.new_mode and patch.old_mode != patch.new_mode:
            raise UnsupportedError(f"{patch.name}: patch changes file modes")
        if patch.new_mode and patch.new_mode != GIT_FILEMODE_BLOB:
            raise UnsupportedError(f"{patch.name}: unsupported mode {format_mode(patch.new_mode)}")
        if patch.is_rename:
            mode = self._mode(patch.old_name, cancel)
            if mode is not None and mode != DEFAULT_MODE:
                raise UnsupportedError(f"{patch.old_name}: cannot rename file with mode {mode}")

        if patch.is_new:
            staged = self._apply_create(patch, cancel)
        elif patch.is_delete:
            staged = self._apply_delete(patch, cancel)
        else:
            staged = self._apply_modify(patch, cancel)
        # a re-created base path keeps its base mode on the remote
        created = (patch.is_new and patch.new_name not in self._changes
                   or patch.old_name in self._created)
        for path, change in staged.items():
            if change.is_delete:
                self._created.discard(path)
            elif created:
                self._created.add(path)
        self._changes.update(staged)

    def _apply_create(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, PendingChange]:
        if self._content(patch.new_name, cancel) is not None:
            raise ExistingEntryError(f"existing entry for new file: {patch.new_name}")
        return {patch.new_name: PendingChange(content=patch.apply(b""))}

    def _apply_delete(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, PendingChange]:
        data = self._content(patch.old_name, cancel)
        if data is None:
            raise MissingEntryError(f"missing entry for deleted file: {patch.old_name}")
        if patch.fragments:
            patch.apply(data)
        return {patch.old_name: PendingChange(is_delete=True)}

    def _apply_modify(self, patch: FilePatch, cancel: CancelToken | None) -> dict[str, PendingChange]:
        data = self._content(patch.old_name, cancel)
        if data is None:
            raise MissingEntryError(f"no entry for modified file: {patch.old_name}")
        if patch.has_fragments:
            data = patch.apply(data)

        staged = {}
        if patch.old_name != patch.new_name and not patch.is_copy:
            staged[patch.old_name] = PendingChange(is_delete=True)
        staged[patch.new_name] = PendingChange(content=data)
        return staged

    def _mode(self, path: str, cancel: CancelToken | None) -> str | None:
        """Return the mode of *path* in the base commit.

        Files created by this applier have the default mode.  Otherwise the
        containing directory is listed once and every mode in it is cached.
        """
        if path in self._created:
            return DEFAULT_MODE
        if path not in self._modes:
            directory = posixpath.dirname(path)
            if directory in self._listed:
                return None
            listing = call(
                cancel, "query directory", f"{self._base}:{directory}",
                self._api.query_directory, self._repo, self._base, directory,
            )
            self._listed.add(directory)
            for name, mode in (listing or {}).items():
                self._modes[posixpath.join(directory, name)] = mode
        return self._modes.get(path)

    def _content(self, path: str, cancel: CancelToken | None) -> bytes | None:
        """Return the current content of *path*, or ``None`` if it is absent."""
        change = self._changes.get(path)
        if change is not None:
            return None if change.is_delete else change.content

        target = f"{self._base}:{path}"
        blob = call(cancel, "query file", target, self._api.query_file, self._repo, self._base, path)
        if blob is None:
            return None
        if blob.available:
            return blob.text.encode("utf-8", "surrogateescape")

        if self._object_api is None:
            raise UnsupportedError(
                f"{path}: content is binary or too large and no object API is available"
            )
        logger.warning("Content of %s not available inline, fetching blob %s", path, blob.sha)
        return call(cancel, "get blob", blob.sha, self._object_api.get_blob, self._repo, blob.sha)

    # -- commit --------------------------------------------------------------

    def commit(
        self,
        ref: str,
        header: PatchHeader | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> str:
        """Commit all pending changes on the branch *ref*.

        The branch must exist and point at :attr:`base`.  Only the title
        and body of *header* are used; the remote sets author, committer,
        and date.  Returns the hash of the new commit, which becomes the
        new base.

        Raises:
            NothingPendingError: If there are no pending changes.
            ConflictError: If the branch does not point at the base commit.
        """
        if not self._changes:
            raise NothingPendingError("no pending file changes")

        headline = self._default_message
        body = None
        if header is not None and header.title:
            headline = header.title
            body = header.body or None

        additions = {p: c.content for p, c in self._changes.items() if not c.is_delete}
        deletions = [p for p, c in self._changes.items() if c.is_delete]
        branch = qualify_ref(ref)
        sha = call(
            cancel, "create commit on branch", branch,
            self._api.create_commit_on_branch, self._repo, branch, self._base,
            headline, body, additions, deletions,
        )
        logger.info("Created commit %s on %s with %d changes", sha, branch, len(self._changes))

        self._base = sha
        self._changes.clear()
        self._created.clear()
        self._modes.clear()
        self._listed.clear()
        return sha
