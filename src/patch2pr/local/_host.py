"""Filesystem-backed host implementing both remote API protocols."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone

from dulwich.graph import can_fast_forward
from dulwich.objects import Blob as _DBlob
from dulwich.objects import Commit as _DCommit
from dulwich.objects import Tree as _DTree
from dulwich.refs import SYMREF, check_ref_format
from dulwich.repo import Repo as _DRepo

from ..exceptions import ConflictError, NotFastForwardError, NotFoundError, RemoteError
from ..objects import (
    GIT_FILEMODE_BLOB,
    GIT_FILEMODE_TREE,
    Commit,
    FileContent,
    NewPullRequest,
    PullRequest,
    RepositoryInfo,
    Signature,
    Tree,
    TreeEntry,
    entry_type,
    format_mode,
    parse_mode,
)
from ..reference import qualify_ref
from ..repository import Repository, parse_repository
from ._lock import repo_lock
from ._tree import iter_files, normalize_path, rebuild_tree, walk_to

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY = Signature("patch2pr", "patch2pr@localhost")
DEFAULT_TEXT_LIMIT = 512 * 1024

_PULLS_FILE = "patch2pr-pulls.json"
_FORK_FILE = "patch2pr-fork.json"
_BINARY_SNIFF = 8000

# status code the hosted APIs use for rejected input
_UNPROCESSABLE = 422


class LocalHost:
    """Bare repositories under *root*, served through the remote APIs.

    Repository ``owner/name`` lives at ``root/owner/name.git``.  The host
    implements :class:`~patch2pr.api.ObjectGraphAPI` and
    :class:`~patch2pr.api.ContentCommitAPI`, with the same failure modes a
    hosted service reports: missing objects raise ``NotFoundError``,
    non-fast-forward ref updates raise ``NotFastForwardError``, and a
    branch that moved raises ``ConflictError``.

    Args:
        root: Directory holding the repositories.
        identity: Name and email used where a commit does not set one, and
            the default owner of forks.
        text_limit: Largest file (in bytes) whose text ``query_file``
            returns inline.
        fork_ready_after: Number of ``get_repository`` calls that report a
            new fork as missing before it becomes visible.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        identity: Signature | None = None,
        text_limit: int = DEFAULT_TEXT_LIMIT,
        fork_ready_after: int = 0,
    ):
        self._root = os.fspath(root)
        self._identity = identity or DEFAULT_IDENTITY
        self._text_limit = text_limit
        self._fork_ready_after = fork_ready_after
        self._fork_polls: dict[Repository, int] = {}

    def __repr__(self) -> str:
        return f"LocalHost({self._root!r})"

    @property
    def root(self) -> str:
        return self._root

    # -- repositories -------------------------------------------------------

    def path(self, repo: Repository) -> str:
        """Return the filesystem path of *repo*'s bare repository."""
        return os.path.join(self._root, repo.owner, repo.name + ".git")

    def _open(self, repo: Repository) -> _DRepo:
        path = self.path(repo)
        if not os.path.isdir(path):
            raise NotFoundError(f"repository {repo} not found")
        return _DRepo(path)

    def create_repository(self, repo: Repository, default_branch: str = "main") -> str:
        """Create *repo* with one empty commit on *default_branch*.

        Returns the hash of the initial commit.
        """
        path = self.path(repo)
        if os.path.exists(path):
            raise RemoteError(f"repository {repo} already exists", status=_UNPROCESSABLE)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        r = _DRepo.init_bare(path, mkdir=True)

        tree = _DTree()
        r.object_store.add_object(tree)
        commit = self._new_commit(tree.id, [], "Initial commit", None, None)
        r.object_store.add_object(commit)

        branch = qualify_ref(default_branch).encode()
        r.refs[branch] = commit.id
        r.refs.set_symbolic_ref(b"HEAD", branch)
        logger.info("Created repository %s at %s", repo, path)
        return commit.id.decode()

    def get_repository(self, repo: Repository) -> RepositoryInfo:
        polls = self._fork_polls.get(repo)
        if polls is not None:
            if polls < self._fork_ready_after:
                self._fork_polls[repo] = polls + 1
                raise NotFoundError(f"repository {repo} not found")
            del self._fork_polls[repo]

        r = self._open(repo)
        head = r.refs.read_ref(b"HEAD") or b""
        default_branch = ""
        if head.startswith(SYMREF):
            default_branch = head[len(SYMREF):].decode().removeprefix("refs/heads/")

        parent = None
        fork_file = os.path.join(r.path, _FORK_FILE)
        if os.path.exists(fork_file):
            with open(fork_file) as f:
                parent = parse_repository(json.load(f)["parent"])
        return RepositoryInfo(repo, default_branch, parent)

    def create_fork(self, repo: Repository, *, owner: str | None = None) -> Repository:
        source = self._open(repo)
        fork = Repository(owner or self._identity.name, repo.name)
        if fork == repo:
            raise RemoteError(f"cannot fork {repo} into itself", status=_UNPROCESSABLE)

        path = self.path(fork)
        if os.path.isdir(path):
            logger.debug("Fork %s already exists", fork)
            return fork

        os.makedirs(os.path.dirname(path), exist_ok=True)
        target = _DRepo.init_bare(path, mkdir=True)
        for sha in source.object_store:
            target.object_store.add_object(source.object_store[sha])
        for name, sha in source.get_refs().items():
            if name != b"HEAD":
                target.refs[name] = sha
        head = source.refs.read_ref(b"HEAD")
        if head and head.startswith(SYMREF):
            target.refs.set_symbolic_ref(b"HEAD", head[len(SYMREF):])
        with open(os.path.join(path, _FORK_FILE), "w") as f:
            json.dump({"parent": str(repo)}, f)

        if self._fork_ready_after > 0:
            self._fork_polls[fork] = 0
        logger.info("Forked %s to %s", repo, fork)
        return fork

    # -- objects ------------------------------------------------------------

    def _object(self, r: _DRepo, sha: str, cls, kind: str):
        try:
            obj = r.object_store[sha.encode()]
        except (KeyError, ValueError):
            raise NotFoundError(f"{kind} {sha} not found") from None
        if not isinstance(obj, cls):
            raise NotFoundError(f"{sha} is not a {kind}")
        return obj

    def get_commit(self, repo: Repository, sha: str) -> Commit:
        r = self._open(repo)
        return _commit(self._object(r, sha, _DCommit, "commit"))

    def get_tree(self, repo: Repository, sha: str) -> Tree:
        r = self._open(repo)
        tree = self._object(r, sha, _DTree, "tree")
        entries = tuple(
            TreeEntry(
                item.path.decode(),
                format_mode(item.mode),
                entry_type(item.mode),
                sha=item.sha.decode(),
            )
            for item in tree.iteritems()
        )
        return Tree(sha, entries)

    def get_blob(self, repo: Repository, sha: str) -> bytes:
        r = self._open(repo)
        return self._object(r, sha, _DBlob, "blob").data

    def create_blob(self, repo: Repository, data: bytes) -> str:
        r = self._open(repo)
        blob = _DBlob.from_string(data)
        r.object_store.add_object(blob)
        return blob.id.decode()

    def create_tree(self, repo: Repository, base: str | None, entries: Sequence[TreeEntry]) -> str:
        r = self._open(repo)
        base_id = self._object(r, base, _DTree, "tree").id if base else None

        writes: dict[str, tuple[bytes, int]] = {}
        removes: set[str] = set()
        for entry in entries:
            path = _entry_path(entry.path)
            if entry.is_deletion:
                removes.add(path)
                continue
            if entry.content is not None:
                blob = _DBlob.from_string(entry.content)
                r.object_store.add_object(blob)
                sha = blob.id
            else:
                sha = entry.sha.encode()
                if sha not in r.object_store:
                    raise RemoteError(f"object {entry.sha} for {path} does not exist",
                                      status=_UNPROCESSABLE)
            writes[path] = (sha, parse_mode(entry.mode))

        return rebuild_tree(r.object_store, base_id, writes, removes).decode()

    def create_commit(
        self,
        repo: Repository,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Signature | None = None,
        committer: Signature | None = None,
    ) -> Commit:
        r = self._open(repo)
        for sha, kind, cls in [(tree, "tree", _DTree)] + [(p, "commit", _DCommit) for p in parents]:
            try:
                self._object(r, sha, cls, kind)
            except NotFoundError as exc:
                raise RemoteError(str(exc), status=_UNPROCESSABLE) from None

        commit = self._new_commit(tree.encode(), [p.encode() for p in parents], message,
                                  author, committer)
        r.object_store.add_object(commit)
        return _commit(commit)

    def _new_commit(self, tree: bytes, parents: list[bytes], message: str,
                    author: Signature | None, committer: Signature | None) -> _DCommit:
        now = datetime.now(timezone.utc)
        author_id, author_time, author_tz = self._signature(author, now)
        # committer defaults to the author, like the hosted API
        committer_id, commit_time, commit_tz = self._signature(committer or author, now)

        c = _DCommit()
        c.tree = tree
        c.parents = parents
        c.author = author_id
        c.committer = committer_id
        c.author_time, c.author_timezone = author_time, author_tz
        c.commit_time, c.commit_timezone = commit_time, commit_tz
        msg = message.encode()
        if not msg.endswith(b"\n"):
            msg += b"\n"
        c.message = msg
        c.encoding = b"UTF-8"
        return c

    def _signature(self, sig: Signature | None, now: datetime) -> tuple[bytes, int, int]:
        name = (sig.name if sig and sig.name else None) or self._identity.name
        email = (sig.email if sig and sig.email else None) or self._identity.email
        date = (sig.date if sig and sig.date else None) or now
        if date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)
        offset = int(date.utcoffset().total_seconds())
        return f"{name} <{email}>".encode(), int(date.timestamp()), offset

    # -- refs ---------------------------------------------------------------

    def _ref_name(self, ref: str) -> bytes:
        name = ref.encode()
        if not check_ref_format(name):
            raise RemoteError(f"invalid reference name {ref!r}", status=_UNPROCESSABLE)
        return name

    def get_ref(self, repo: Repository, ref: str) -> str:
        r = self._open(repo)
        try:
            return r.refs[self._ref_name(ref)].decode()
        except KeyError:
            raise NotFoundError(f"reference {ref} not found") from None

    def create_ref(self, repo: Repository, ref: str, sha: str) -> None:
        r = self._open(repo)
        name = self._ref_name(ref)
        self._require_commit(r, sha)
        with repo_lock(r.path):
            if not r.refs.add_if_new(name, sha.encode()):
                raise RemoteError(f"reference {ref} already exists", status=_UNPROCESSABLE)

    def update_ref(self, repo: Repository, ref: str, sha: str, *, force: bool = False) -> None:
        r = self._open(repo)
        name = self._ref_name(ref)
        self._require_commit(r, sha)
        with repo_lock(r.path):
            try:
                current = r.refs[name]
            except KeyError:
                raise NotFoundError(f"reference {ref} not found") from None
            if not force and not can_fast_forward(r, current, sha.encode()):
                raise NotFastForwardError(f"update of {ref} to {sha} is not a fast forward")
            if not r.refs.set_if_equals(name, current, sha.encode()):
                raise ConflictError(f"reference {ref} changed during update")

    def _require_commit(self, r: _DRepo, sha: str) -> None:
        try:
            self._object(r, sha, _DCommit, "commit")
        except NotFoundError as exc:
            raise RemoteError(str(exc), status=_UNPROCESSABLE) from None

    # -- pull requests ------------------------------------------------------

    def create_pull_request(self, repo: Repository, spec: NewPullRequest) -> PullRequest:
        r = self._open(repo)
        if not spec.head:
            raise RemoteError("pull request head is required", status=_UNPROCESSABLE)

        head_owner, sep, head_branch = spec.head.rpartition(":")
        head_repo = Repository(head_owner, repo.name) if sep else repo
        for owner_repo, branch in ((head_repo, head_branch), (repo, spec.base)):
            try:
                self.get_ref(owner_repo, qualify_ref(branch))
            except NotFoundError:
                raise RemoteError(f"branch {branch} not found in {owner_repo}",
                                  status=_UNPROCESSABLE) from None

        with repo_lock(r.path):
            pulls = self._read_pulls(r)
            number = len(pulls) + 1
            pr = PullRequest(
                number=number,
                url=f"local://{repo}/pull/{number}",
                title=spec.title,
                head=spec.head,
                base=spec.base,
                body=spec.body,
                draft=spec.draft,
            )
            pulls.append({
                "number": pr.number,
                "url": pr.url,
                "title": pr.title,
                "head": pr.head,
                "base": pr.base,
                "body": pr.body,
                "draft": pr.draft,
                "maintainer_can_modify": spec.maintainer_can_modify,
            })
            with open(os.path.join(r.path, _PULLS_FILE), "w") as f:
                json.dump(pulls, f, indent=2)
        return pr

    def _read_pulls(self, r: _DRepo) -> list[dict]:
        path = os.path.join(r.path, _PULLS_FILE)
        if not os.path.exists(path):
            return []
        with open(path) as f:
            return json.load(f)

    def list_pull_requests(self, repo: Repository) -> list[PullRequest]:
        """Return the pull requests opened against *repo*, oldest first."""
        r = self._open(repo)
        fields = ("number", "url", "title", "head", "base", "body", "draft")
        return [PullRequest(**{k: p[k] for k in fields}) for p in self._read_pulls(r)]

    # -- content API --------------------------------------------------------

    def _commit_tree(self, r: _DRepo, commit: str) -> bytes:
        return self._object(r, commit, _DCommit, "commit").tree

    def query_file(self, repo: Repository, commit: str, path: str) -> FileContent | None:
        r = self._open(repo)
        found = walk_to(r.object_store, self._commit_tree(r, commit), path)
        if found is None or found[0] == GIT_FILEMODE_TREE or not path.strip("/"):
            return None
        data = r.object_store[found[1]].data

        text = None
        is_binary = b"\0" in data[:_BINARY_SNIFF]
        if not is_binary:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                is_binary = True
        is_truncated = not is_binary and len(data) > self._text_limit
        if is_truncated:
            text = None
        return FileContent(found[1].decode(), len(data), text, is_binary, is_truncated)

    def query_directory(self, repo: Repository, commit: str, path: str) -> dict[str, str] | None:
        r = self._open(repo)
        found = walk_to(r.object_store, self._commit_tree(r, commit), path)
        if found is None or found[0] != GIT_FILEMODE_TREE:
            return None
        tree = r.object_store[found[1]]
        return {item.path.decode(): format_mode(item.mode) for item in tree.iteritems()}

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
        r = self._open(repo)
        name = self._ref_name(qualify_ref(branch))
        with repo_lock(r.path):
            try:
                current = r.refs[name]
            except KeyError:
                raise NotFoundError(f"branch {branch} not found") from None
            if current.decode() != expected_head:
                raise ConflictError(
                    f"expected branch {branch} at {expected_head}, found {current.decode()}"
                )

            base_tree = r.object_store[current].tree
            writes: dict[str, tuple[bytes, int]] = {}
            for path, data in additions.items():
                path = _entry_path(path)
                blob = _DBlob.from_string(data)
                r.object_store.add_object(blob)
                existing = walk_to(r.object_store, base_tree, path)
                mode = existing[0] if existing and existing[0] != GIT_FILEMODE_TREE else GIT_FILEMODE_BLOB
                writes[path] = (blob.id, mode)
            removes = {_entry_path(p) for p in deletions}
            tree_id = rebuild_tree(r.object_store, base_tree, writes, removes)

            message = f"{headline}\n\n{body}" if body else headline
            commit = self._new_commit(tree_id, [current], message, None, None)
            r.object_store.add_object(commit)
            if not r.refs.set_if_equals(name, current, commit.id):
                raise ConflictError(f"branch {branch} changed during commit")
        logger.info("Committed %s on %s in %s", commit.id.decode(), branch, repo)
        return commit.id.decode()

    # -- convenience --------------------------------------------------------

    def commit_files(
        self,
        repo: Repository,
        branch: str,
        files: Mapping[str, bytes | tuple[bytes, int]],
        message: str = "Update files",
        *,
        delete: Iterable[str] = (),
    ) -> str:
        """Commit *files* (``path -> data`` or ``(data, mode)``) onto *branch*.

        Creates the branch from the default branch if it does not exist.
        Returns the new commit hash.
        """
        r = self._open(repo)
        name = self._ref_name(qualify_ref(branch))
        with repo_lock(r.path):
            try:
                parent = r.refs[name]
            except KeyError:
                parent = r.refs[b"HEAD"]
            writes = {}
            for path, value in files.items():
                data, mode = value if isinstance(value, tuple) else (value, GIT_FILEMODE_BLOB)
                blob = _DBlob.from_string(data)
                r.object_store.add_object(blob)
                writes[_entry_path(path)] = (blob.id, mode)
            tree_id = rebuild_tree(r.object_store, r.object_store[parent].tree, writes,
                                   {_entry_path(p) for p in delete})
            commit = self._new_commit(tree_id, [parent], message, None, None)
            r.object_store.add_object(commit)
            r.refs[name] = commit.id
        return commit.id.decode()

    def snapshot(self, repo: Repository, rev: str) -> dict[str, tuple[str, bytes]]:
        """Return ``{path: (mode, data)}`` for every file at *rev*.

        *rev* is a commit hash or a reference name.
        """
        r = self._open(repo)
        if len(rev) == 40 and all(ch in "0123456789abcdef" for ch in rev):
            sha = rev
        else:
            sha = self.get_ref(repo, qualify_ref(rev))
        store = r.object_store
        return {
            path: (format_mode(mode), store[blob].data)
            for path, mode, blob in iter_files(store, self._commit_tree(r, sha))
        }


def _entry_path(path: str) -> str:
    try:
        return normalize_path(path)
    except ValueError as exc:
        raise RemoteError(str(exc), status=_UNPROCESSABLE) from None


def _signature(identity: bytes, stamp: int, offset: int) -> Signature:
    name, _, email = identity.decode("utf-8", "replace").partition(" <")
    date = datetime.fromtimestamp(stamp, timezone(timedelta(seconds=offset)))
    return Signature(name, email.rstrip(">"), date)


def _commit(c: _DCommit) -> Commit:
    return Commit(
        sha=c.id.decode(),
        tree=c.tree.decode(),
        parents=tuple(p.decode() for p in c.parents),
        message=c.message.decode("utf-8", "replace"),
        author=_signature(c.author, c.author_time, c.author_timezone),
        committer=_signature(c.committer, c.commit_time, c.commit_timezone),
    )
