"""Remote-call helper shared by the appliers and references."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from .cancel import CancelToken
from .exceptions import RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call(
    cancel: CancelToken | None,
    operation: str,
    target: str | None,
    fn: Callable[..., T],
    *args,
    **kwargs,
) -> T:
    """Issue one remote round trip.

    Checks *cancel* first, so a cancelled unit of work never starts another
    request.  Remote failures keep their class and gain the operation and
    target in their message.
    """
    if cancel is not None:
        cancel.check()
    logger.debug("%s %s", operation, target or "")
    try:
        return fn(*args, **kwargs)
    except RemoteError as exc:
        exc.annotate(operation, target)
        raise
