"""Value types exchanged with the remote APIs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .repository import Repository

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644
GIT_FILEMODE_BLOB_EXECUTABLE = 0o100755
GIT_FILEMODE_COMMIT = 0o160000

DEFAULT_MODE = "100644"


def format_mode(mode: int) -> str:
    """Format a git filemode as the six-digit octal string remotes report."""
    return f"{mode:06o}"


def parse_mode(mode: str) -> int:
    """Parse an octal filemode string (``"100644"``) into an integer."""
    return int(mode, 8)


def entry_type(mode: int) -> str:
    """Return the object type (``blob``, ``tree``, ``commit``) for a filemode."""
    if mode == GIT_FILEMODE_TREE:
        return "tree"
    if mode == GIT_FILEMODE_COMMIT:
        return "commit"
    return "blob"


@dataclass(frozen=True, slots=True)
class TreeEntry:
    """A tree entry, either persisted or pending.

    A persisted entry references its object by *sha*; a pending entry
    carries inline *content* that the remote turns into a blob when the
    tree is created.  An entry with neither is a deletion of *path*.
    """

    path: str
    mode: str = DEFAULT_MODE
    type: str = "blob"
    sha: str | None = None
    content: bytes | None = None

    def __post_init__(self):
        if self.sha is not None and self.content is not None:
            raise ValueError(f"Tree entry {self.path!r} has both sha and content")

    @property
    def is_deletion(self) -> bool:
        return self.sha is None and self.content is None

    @property
    def is_pending(self) -> bool:
        return self.content is not None

    @classmethod
    def deletion(cls, path: str, mode: str = DEFAULT_MODE) -> TreeEntry:
        return cls(path, mode)


@dataclass(frozen=True, slots=True)
class Tree:
    """A fetched tree listing; entry paths are single names."""

    sha: str
    entries: tuple[TreeEntry, ...] = ()

    def find(self, name: str, type: str) -> TreeEntry | None:
        for entry in self.entries:
            if entry.path == name and entry.type == type:
                return entry
        return None

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True, slots=True)
class Signature:
    """Commit author or committer.

    Any field left as ``None`` is filled in by the remote: the
    authenticated identity for name and email, the current time for date.
    """

    name: str | None = None
    email: str | None = None
    date: datetime | None = None


@dataclass(frozen=True, slots=True)
class Commit:
    """A commit object as returned by the remote."""

    sha: str
    tree: str
    parents: tuple[str, ...] = ()
    message: str = ""
    author: Signature | None = None
    committer: Signature | None = None


@dataclass(frozen=True, slots=True)
class FileContent:
    """Result of a content query for one path at one commit.

    *text* is ``None`` when the remote will not return the content inline,
    either because the file is binary or because it is larger than the
    remote's limit (*is_truncated*).
    """

    sha: str
    size: int
    text: str | None = None
    is_binary: bool = False
    is_truncated: bool = False

    @property
    def available(self) -> bool:
        return self.text is not None and not self.is_truncated


@dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Repository metadata returned by ``get_repository``."""

    repository: Repository
    default_branch: str
    parent: Repository | None = None


@dataclass(frozen=True, slots=True)
class NewPullRequest:
    """Fields for a pull request to create.

    *head* is usually filled in by :meth:`patch2pr.Reference.pull_request`.
    """

    title: str
    base: str
    body: str = ""
    head: str | None = None
    draft: bool = False
    maintainer_can_modify: bool = True


@dataclass(frozen=True, slots=True)
class PullRequest:
    """A created pull request."""

    number: int
    url: str
    title: str
    head: str
    base: str
    body: str = ""
    draft: bool = False


@dataclass(frozen=True, slots=True)
class CommitTemplate:
    """Default commit details, used where a patch header leaves gaps."""

    message: str = ""
    author: Signature | None = None
    committer: Signature | None = None
