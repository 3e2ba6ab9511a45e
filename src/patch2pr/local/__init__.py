"""Local, dulwich-backed implementation of the remote repository APIs.

Used by the test suite and by ``patch2pr apply --remote DIR`` to apply
patches to bare repositories on disk.
"""

from ._host import DEFAULT_IDENTITY, DEFAULT_TEXT_LIMIT, LocalHost

__all__ = ["LocalHost", "DEFAULT_IDENTITY", "DEFAULT_TEXT_LIMIT"]
