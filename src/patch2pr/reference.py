"""Create or move branch references and open pull requests."""

from __future__ import annotations

import dataclasses
import logging

from ._remote import call
from .api import ObjectGraphAPI
from .cancel import CancelToken
from .exceptions import NotFoundError
from .objects import NewPullRequest, PullRequest
from .repository import Repository

logger = logging.getLogger(__name__)

_REFS_PREFIX = "refs/"
_BRANCH_PREFIX = "refs/heads/"


def qualify_ref(name: str) -> str:
    """Return *name* with a ``refs/`` prefix, adding ``refs/heads/`` if missing."""
    if name.startswith(_REFS_PREFIX):
        return name
    return _BRANCH_PREFIX + name


class Reference:
    """A named reference in a repository.

    Names without a ``refs/`` prefix are treated as branch names.
    """

    def __init__(self, api: ObjectGraphAPI, repo: Repository, ref: str):
        self._api = api
        self._repo = repo
        self._ref = qualify_ref(ref)

    def __repr__(self) -> str:
        return f"Reference({self._repo}, {self._ref!r})"

    @property
    def name(self) -> str:
        """The fully qualified reference name."""
        return self._ref

    @property
    def repository(self) -> Repository:
        return self._repo

    @property
    def branch(self) -> str | None:
        """The branch name, or ``None`` if this is not a branch reference."""
        if self._ref.startswith(_BRANCH_PREFIX):
            return self._ref[len(_BRANCH_PREFIX):]
        return None

    def set(self, sha: str, force: bool = False, *, cancel: CancelToken | None = None) -> None:
        """Point the reference at *sha*, creating it if it does not exist.

        An existing reference only moves if *sha* is a fast-forward, unless
        *force* is set.

        Raises:
            NotFastForwardError: If the update is not a fast-forward.
        """
        try:
            current = call(cancel, "get ref", self._ref, self._api.get_ref, self._repo, self._ref)
        except NotFoundError:
            current = None

        if current is None:
            call(cancel, "create ref", self._ref, self._api.create_ref, self._repo, self._ref, sha)
            logger.info("Created %s at %s", self._ref, sha)
        else:
            call(
                cancel, "update ref", self._ref,
                self._api.update_ref, self._repo, self._ref, sha, force=force,
            )
            logger.info("Updated %s from %s to %s", self._ref, current, sha)

    def pull_request(
        self,
        spec: NewPullRequest,
        *,
        upstream: Repository | None = None,
        cancel: CancelToken | None = None,
    ) -> PullRequest:
        """Open a pull request with this branch as its head.

        With *upstream*, this reference lives in a fork and the pull
        request is opened in *upstream* with head ``owner:branch``.  Other
        fields of *spec* are used as given.

        Raises:
            ValueError: If the reference is not a branch.
        """
        branch = self.branch
        if branch is None:
            raise ValueError(f"pull request head must be a branch: {self._ref}")

        target = self._repo
        head = branch
        if upstream is not None and upstream != self._repo:
            target = upstream
            head = f"{self._repo.owner}:{branch}"

        spec = dataclasses.replace(spec, head=head)
        pr = call(
            cancel, "create pull request", str(target),
            self._api.create_pull_request, target, spec,
        )
        logger.info("Created pull request #%d: %s", pr.number, pr.url)
        return pr
