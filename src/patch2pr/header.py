"""Commit metadata parsed from the text before a patch's first diff."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email import message_from_string, policy
from email.utils import parseaddr, parsedate_to_datetime

__all__ = [
    "PatchIdentity",
    "PatchHeader",
    "parse_identity",
    "parse_date",
    "parse_patch_header",
    "split_message",
]

_RE_IDENTITY = re.compile(r"^\s*(.*?)\s*<([^>]*)>\s*$")
_RE_SUBJECT_TAGS = re.compile(r"^(\s*\[[^\]]*\])+\s*")
_RE_UNIX_DATE = re.compile(r"^@?(\d+)(?:\s+([+-]\d{4}))?$")

_GIT_DATE_FORMATS = (
    "%a %b %d %H:%M:%S %Y %z",
    "%a %b %d %H:%M:%S %Y",
    "%Y-%m-%d %H:%M:%S %z",
)


@dataclass(frozen=True, slots=True)
class PatchIdentity:
    """A commit author or committer named in a patch header."""

    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True, slots=True)
class PatchHeader:
    """Commit metadata from a patch preamble.

    Any field may be empty when the patch format does not carry it; mail
    patches, for instance, have no committer.
    """

    title: str = ""
    body: str = ""
    author: PatchIdentity | None = None
    author_date: datetime | None = None
    committer: PatchIdentity | None = None
    committer_date: datetime | None = None

    def message(self) -> str:
        """Return the full commit message: title, blank line, body."""
        if self.body:
            return f"{self.title}\n\n{self.body}"
        return self.title


def parse_identity(value: str) -> PatchIdentity:
    """Parse ``Name <email>``.

    Raises:
        ValueError: If *value* has no ``<email>`` part.
    """
    m = _RE_IDENTITY.match(value)
    if not m:
        raise ValueError(f"invalid identity: {value!r}")
    return PatchIdentity(m.group(1), m.group(2))


def parse_date(value: str) -> datetime | None:
    """Parse a date in any format git prints or accepts.

    Handles the default ``git log`` format, ISO 8601, RFC 2822 and raw
    ``<unix-seconds> <offset>`` timestamps.  Returns ``None`` if *value*
    matches none of them.
    """
    value = value.strip()
    if not value:
        return None

    if m := _RE_UNIX_DATE.match(value):
        tz = datetime.strptime(m.group(2), "%z").tzinfo if m.group(2) else timezone.utc
        return datetime.fromtimestamp(int(m.group(1)), tz)

    for fmt in _GIT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def split_message(message: str) -> tuple[str, str]:
    """Split a commit message into its title and body.

    The title is the first paragraph, with its lines joined by spaces;
    the body is everything after the first blank line.
    """
    lines = message.strip().splitlines()
    title: list[str] = []
    i = 0
    while i < len(lines) and lines[i].strip():
        title.append(lines[i].strip())
        i += 1
    body = "\n".join(lines[i:]).strip()
    return " ".join(title), body


def parse_patch_header(text: str) -> PatchHeader | None:
    """Parse the preamble returned by :func:`patch2pr.patch.parse_patch`.

    Recognizes ``git format-patch`` mail output and ``git log`` output in
    the medium and fuller formats.  Returns ``None`` for an empty preamble.

    Raises:
        ValueError: If the preamble is in neither format.
    """
    text = text.lstrip()
    if not text.strip():
        return None

    first = text.split("\n", 1)[0]
    if first.startswith(("From ", "From:")):
        return _parse_mail(text)
    if first.startswith("commit "):
        return _parse_log(text)
    raise ValueError(f"unrecognized patch header: {first!r}")


def _parse_mail(text: str) -> PatchHeader:
    msg = message_from_string(text, policy=policy.default)

    author = None
    if msg["From"] is not None:
        name, addr = parseaddr(str(msg["From"]))
        if not addr:
            raise ValueError(f"invalid From header: {msg['From']!r}")
        author = PatchIdentity(name, addr)

    author_date = None
    if msg["Date"] is not None:
        author_date = parse_date(str(msg["Date"]))

    subject = _RE_SUBJECT_TAGS.sub("", str(msg["Subject"] or "")).strip()

    payload = msg.get_payload(decode=True)
    if isinstance(payload, bytes):
        content = payload.decode(msg.get_content_charset() or "utf-8", "replace")
    else:
        content = ""
    body_lines = []
    for line in content.splitlines():
        if line.rstrip() == "---":
            break
        body_lines.append(line)

    title, rest = split_message(subject + "\n\n" + "\n".join(body_lines))
    return PatchHeader(title=title, body=rest, author=author, author_date=author_date)


def _parse_log(text: str) -> PatchHeader:
    lines = text.splitlines()
    fields: dict[str, str] = {}
    i = 1
    while i < len(lines) and lines[i].strip():
        key, sep, value = lines[i].partition(":")
        if not sep:
            raise ValueError(f"invalid header line: {lines[i]!r}")
        fields[key.strip()] = value.strip()
        i += 1

    message = []
    for line in lines[i:]:
        if line.strip() and not line.startswith((" ", "\t")):
            break
        message.append(line[4:] if line.startswith("    ") else line.strip())
    title, body = split_message("\n".join(message))

    author = parse_identity(fields["Author"]) if "Author" in fields else None
    committer = parse_identity(fields["Commit"]) if "Commit" in fields else None
    author_date = fields.get("AuthorDate") or fields.get("Date")
    committer_date = fields.get("CommitDate")

    return PatchHeader(
        title=title,
        body=body,
        author=author,
        author_date=parse_date(author_date) if author_date else None,
        committer=committer,
        committer_date=parse_date(committer_date) if committer_date else None,
    )
