"""Unified-diff parsing and strict fragment application.

Hunks are parsed with :mod:`unidiff`; git's extended header lines
(modes, renames, copies) are read from each file's patch info.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from unidiff import PatchSet
from unidiff.constants import (
    DEV_NULL,
    LINE_TYPE_ADDED,
    LINE_TYPE_CONTEXT,
    LINE_TYPE_NO_NEWLINE,
    LINE_TYPE_REMOVED,
)
from unidiff.errors import UnidiffParseError

from .exceptions import PatchApplyError, PatchParseError

__all__ = ["Fragment", "FilePatch", "parse_patch", "split_patches"]

_RE_OLD_MODE = re.compile(r"^old mode ([0-7]+)\s*$")
_RE_NEW_MODE = re.compile(r"^new mode ([0-7]+)\s*$")
_RE_NEW_FILE = re.compile(r"^new file mode ([0-7]+)\s*$")
_RE_DELETED_FILE = re.compile(r"^deleted file mode ([0-7]+)\s*$")
_RE_INDEX = re.compile(r"^index [0-9a-f]+\.\.[0-9a-f]+ ([0-7]+)\s*$")
_RE_RENAME = re.compile(r"^rename (from|to) (.+?)\s*$")
_RE_COPY = re.compile(r"^copy (from|to) (.+?)\s*$")

_MBOX_FROM = "From "

_PATH_PREFIXES = ("a/", "b/")


@dataclass(frozen=True, slots=True)
class Fragment:
    """One hunk: line ranges plus ``(op, text)`` lines.

    *op* is ``" "``, ``"-"``, or ``"+"``; *text* keeps its line ending,
    which is absent on a last line marked "No newline at end of file".
    """

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[tuple[str, str], ...] = ()

    def old_lines(self) -> list[str]:
        return [text for op, text in self.lines if op != LINE_TYPE_ADDED]

    def new_lines(self) -> list[str]:
        return [text for op, text in self.lines if op != LINE_TYPE_REMOVED]


@dataclass(frozen=True, slots=True)
class FilePatch:
    """The parsed change to one file.

    *old_name* is ``None`` for created files and *new_name* is ``None`` for
    deleted files.  Modes are integer git filemodes, or ``None`` when the
    patch does not state them.
    """

    old_name: str | None
    new_name: str | None
    old_mode: int | None = None
    new_mode: int | None = None
    is_new: bool = False
    is_delete: bool = False
    is_copy: bool = False
    is_binary: bool = False
    fragments: tuple[Fragment, ...] = ()

    def __repr__(self) -> str:
        return f"FilePatch({self.old_name!r} -> {self.new_name!r})"

    @property
    def name(self) -> str:
        return self.new_name or self.old_name or ""

    @property
    def is_rename(self) -> bool:
        return (
            not self.is_new
            and not self.is_delete
            and not self.is_copy
            and self.old_name != self.new_name
        )

    @property
    def has_fragments(self) -> bool:
        return bool(self.fragments) or self.is_binary

    def apply(self, data: bytes) -> bytes:
        """Apply the fragments to *data* and return the new content.

        Fragments must match exactly at the line numbers they state.

        Raises:
            PatchApplyError: If a fragment does not match, the patch is
                binary, or a deletion leaves content behind.
        """
        if self.is_binary:
            raise PatchApplyError(f"{self.name}: binary patches are not supported")

        lines = _split_lines(data.decode("utf-8", "surrogateescape"))
        out: list[str] = []
        pos = 0
        for i, frag in enumerate(self.fragments, 1):
            old = frag.old_lines()
            start = frag.old_start - 1 if frag.old_count > 0 else frag.old_start
            if start < pos or start > len(lines) or lines[start:start + len(old)] != old:
                raise PatchApplyError(
                    f"{self.name}: fragment {i} does not match at line {frag.old_start}"
                )
            out.extend(lines[pos:start])
            out.extend(frag.new_lines())
            pos = start + len(old)
        out.extend(lines[pos:])

        if self.is_delete and out:
            raise PatchApplyError(f"{self.name}: deleted file still has content")
        return "".join(out).encode("utf-8", "surrogateescape")


def _split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, keeping line endings."""
    parts = text.split("\n")
    last = parts.pop()
    lines = [p + "\n" for p in parts]
    if last:
        lines.append(last)
    return lines


def _unquote(name: str) -> str:
    """Undo git's C-style quoting of unusual path names."""
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        raw = name[1:-1].encode("utf-8", "surrogateescape").decode("unicode_escape")
        return raw.encode("latin-1").decode("utf-8", "surrogateescape")
    return name


def _clean_name(name: str | None) -> str | None:
    if name is None or name == DEV_NULL:
        return None
    name = _unquote(name)
    if name.startswith(_PATH_PREFIXES):
        name = name[2:]
    return name


def _fragment(hunk) -> Fragment:
    lines: list[tuple[str, str]] = []
    for line in hunk:
        if line.line_type == LINE_TYPE_NO_NEWLINE:
            if lines:
                op, text = lines[-1]
                if text.endswith("\n"):
                    lines[-1] = (op, text[:-1])
            continue
        if line.line_type not in (LINE_TYPE_ADDED, LINE_TYPE_REMOVED, LINE_TYPE_CONTEXT):
            continue
        lines.append((line.line_type, line.value))
    return Fragment(
        hunk.source_start, hunk.source_length,
        hunk.target_start, hunk.target_length,
        tuple(lines),
    )


def _file_patch(patched) -> FilePatch:
    old_name = _clean_name(patched.source_file)
    new_name = _clean_name(patched.target_file)
    old_mode = new_mode = index_mode = None
    is_new = patched.source_file == DEV_NULL
    is_delete = patched.target_file == DEV_NULL
    is_copy = False

    for info in patched.patch_info or ():
        if m := _RE_NEW_FILE.match(info):
            is_new, new_mode = True, int(m.group(1), 8)
        elif m := _RE_DELETED_FILE.match(info):
            is_delete, old_mode = True, int(m.group(1), 8)
        elif m := _RE_OLD_MODE.match(info):
            old_mode = int(m.group(1), 8)
        elif m := _RE_NEW_MODE.match(info):
            new_mode = int(m.group(1), 8)
        elif m := _RE_INDEX.match(info):
            index_mode = int(m.group(1), 8)
        elif m := _RE_RENAME.match(info) or _RE_COPY.match(info):
            is_copy = is_copy or info.startswith("copy ")
            if m.group(1) == "from":
                old_name = _unquote(m.group(2))
            else:
                new_name = _unquote(m.group(2))

    if index_mode is not None:
        if old_mode is None and not is_new:
            old_mode = index_mode
        if new_mode is None and not is_delete:
            new_mode = index_mode

    if is_new:
        old_name = None
    if is_delete:
        new_name = None

    return FilePatch(
        old_name=old_name,
        new_name=new_name,
        old_mode=old_mode,
        new_mode=new_mode,
        is_new=is_new,
        is_delete=is_delete,
        is_copy=is_copy,
        is_binary=patched.is_binary_file,
        fragments=tuple(_fragment(h) for h in patched),
    )


def _split_preamble(lines: list[str]) -> int:
    """Return the index of the first line that belongs to a file diff."""
    for i, line in enumerate(lines):
        if line.startswith("diff --git "):
            return i
        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            return i
    return len(lines)


def _strip_signature(lines: list[str]) -> list[str]:
    """Drop the ``-- `` signature git format-patch appends after the diff."""
    end = len(lines)
    while end and not lines[end - 1].strip():
        end -= 1
    if end >= 2 and lines[end - 2] == "-- \n":
        return lines[:end - 2]
    return lines


def parse_patch(text: str | bytes) -> tuple[list[FilePatch], str]:
    """Parse a patch into file patches and the preamble before the first diff.

    The preamble holds the commit header for ``git format-patch`` and
    ``git log -p`` output; see :func:`patch2pr.header.parse_patch_header`.

    Raises:
        PatchParseError: If the diff portion cannot be parsed.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", "surrogateescape")
    lines = _split_lines(text)
    start = _split_preamble(lines)
    preamble = "".join(lines[:start])
    try:
        patch_set = PatchSet("".join(_strip_signature(lines[start:])))
    except UnidiffParseError as exc:
        raise PatchParseError(f"invalid patch: {exc}") from exc
    return [_file_patch(p) for p in patch_set], preamble


def split_patches(text: str | bytes) -> list[str]:
    """Split an mbox stream into individual patch messages.

    The stream is a mailbox only if its first non-blank line starts with
    ``From ``; in that case every line starting with ``From `` begins a new
    message.  Any other text is returned as a single patch.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", "surrogateescape")
    if not text.lstrip().startswith(_MBOX_FROM):
        return [text] if text.strip() else []

    messages: list[str] = []
    current: list[str] = []
    for line in _split_lines(text):
        if line.startswith(_MBOX_FROM) and any(s.strip() for s in current):
            messages.append("".join(current))
            current = []
        current.append(line)
    if current:
        messages.append("".join(current))
    return [m for m in messages if m.strip()]
