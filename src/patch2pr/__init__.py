from .repository import Repository, parse_repository
from .objects import (
    Commit, CommitTemplate, FileContent, NewPullRequest, PullRequest, RepositoryInfo,
    Signature, Tree, TreeEntry,
)
from .api import ContentCommitAPI, ObjectGraphAPI
from .cancel import CancelToken
from .exceptions import (
    Patch2PRError, ApplyError, ExistingEntryError, MissingEntryError, NothingPendingError,
    UnsupportedError, PatchApplyError, PatchParseError, RemoteError, NotFoundError,
    ConflictError, NotFastForwardError, CancelledError, DeadlineExceededError,
    ForkTimeoutError, is_unsupported,
)
from .patch import FilePatch, Fragment, parse_patch, split_patches
from .header import PatchHeader, PatchIdentity, parse_patch_header, split_message
from .applier import DEFAULT_COMMIT_MESSAGE, BlobPolicy, TreeApplier
from .content import ContentApplier, PendingChange
from .strategy import PatchApplier
from .reference import Reference, qualify_ref
from .fork import create_fork, wait_for_fork

__all__ = [
    "Repository", "parse_repository",
    "Commit", "CommitTemplate", "FileContent", "NewPullRequest", "PullRequest",
    "RepositoryInfo", "Signature", "Tree", "TreeEntry",
    "ContentCommitAPI", "ObjectGraphAPI", "CancelToken",
    "Patch2PRError", "ApplyError", "ExistingEntryError", "MissingEntryError",
    "NothingPendingError", "UnsupportedError", "PatchApplyError", "PatchParseError",
    "RemoteError", "NotFoundError", "ConflictError", "NotFastForwardError",
    "CancelledError", "DeadlineExceededError", "ForkTimeoutError", "is_unsupported",
    "FilePatch", "Fragment", "parse_patch", "split_patches",
    "PatchHeader", "PatchIdentity", "parse_patch_header", "split_message",
    "DEFAULT_COMMIT_MESSAGE", "BlobPolicy", "TreeApplier",
    "ContentApplier", "PendingChange", "PatchApplier",
    "Reference", "qualify_ref", "create_fork", "wait_for_fork",
]
