"""Fork a repository and wait until the fork can be written to."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ._remote import call
from .api import ObjectGraphAPI
from .cancel import CancelToken
from .exceptions import ForkTimeoutError, NotFoundError
from .objects import RepositoryInfo
from .repository import Repository

logger = logging.getLogger(__name__)


def create_fork(
    api: ObjectGraphAPI,
    repo: Repository,
    *,
    owner: str | None = None,
    cancel: CancelToken | None = None,
) -> Repository:
    """Request a fork of *repo* owned by *owner* (the caller by default).

    Forks are created asynchronously; use :func:`wait_for_fork` before
    writing to the returned repository.
    """
    fork = call(cancel, "create fork", str(repo), api.create_fork, repo, owner=owner)
    logger.info("Requested fork %s of %s", fork, repo)
    return fork


def wait_for_fork(
    api: ObjectGraphAPI,
    fork: Repository,
    *,
    timeout: float = 60.0,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    cancel: CancelToken | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] | None = None,
) -> RepositoryInfo:
    """Poll until *fork* exists and return its metadata.

    The delay between polls starts at *initial_delay* and doubles up to
    *max_delay*, never sleeping past the deadline.

    Raises:
        ForkTimeoutError: If the fork is not ready within *timeout* seconds.
        CancelledError: If *cancel* is cancelled while waiting.
    """
    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep

    deadline = clock() + timeout
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        try:
            info = call(cancel, "get repository", str(fork), api.get_repository, fork)
        except NotFoundError:
            logger.debug("Fork %s not ready (attempt %d)", fork, attempt)
        else:
            logger.info("Fork %s ready after %d attempt(s)", fork, attempt)
            return info

        remaining = deadline - clock()
        if remaining <= 0:
            raise ForkTimeoutError(f"fork {fork} not ready after {timeout:g}s ({attempt} attempts)")
        sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)
