"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
from datetime import datetime

import click

from ..header import PatchHeader, PatchIdentity, parse_date, split_message
from ..local import LocalHost
from ..repository import Repository, parse_repository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _store_remote(ctx, param, value):
    """Click callback: store --remote value in the context."""
    ctx.ensure_object(dict)
    if value is not None:
        ctx.obj["remote"] = value
    return value


def _remote_option(f):
    """Shared --remote option decorator."""
    return click.option(
        "--remote", type=click.Path(file_okay=False), envvar="PATCH2PR_REMOTE",
        help="Directory of bare repositories to write to (or set PATCH2PR_REMOTE).",
        expose_value=False, callback=_store_remote, is_eager=True,
    )(f)


def _require_remote(ctx) -> LocalHost:
    """Return the host for --remote, raising a clear error if missing."""
    root = ctx.obj.get("remote")
    if not root:
        raise click.ClickException(
            "No remote specified. Use --remote or set PATCH2PR_REMOTE."
        )
    if not os.path.isdir(root):
        raise click.ClickException(f"Remote directory not found: {root}")
    return LocalHost(root)


def _parse_repository(ctx, param, value) -> Repository | None:
    """Click callback: parse an ``owner/name`` repository value."""
    if value is None:
        return None
    try:
        return parse_repository(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param)


def _read_patch(path: str) -> tuple[bytes, str]:
    """Read patch bytes from *path* (``-`` for stdin) and a default message."""
    if path == "-":
        return sys.stdin.buffer.read(), "Apply patch from stdin"
    try:
        with open(path, "rb") as f:
            return f.read(), f"Apply {path}"
    except OSError as exc:
        raise click.ClickException(f"Failed to open patch file: {path}: {exc.strerror}")


def _env_identity(kind: str) -> tuple[PatchIdentity | None, datetime | None]:
    """Read ``GIT_<KIND>_NAME``, ``_EMAIL`` and ``_DATE`` from the environment."""
    name = os.environ.get(f"GIT_{kind}_NAME")
    email = os.environ.get(f"GIT_{kind}_EMAIL")
    identity = None
    if name is not None or email is not None:
        identity = PatchIdentity(name or "", email or "")
    return identity, parse_date(os.environ.get(f"GIT_{kind}_DATE", ""))


def _override_header(header: PatchHeader | None, message: str | None) -> PatchHeader | None:
    """Apply --message and the git identity environment variables to *header*."""
    changes = {}
    if message:
        changes["title"], changes["body"] = split_message(message)
    for kind, field in (("AUTHOR", "author"), ("COMMITTER", "committer")):
        identity, date = _env_identity(kind)
        if identity is not None:
            changes[field] = identity
        if date is not None:
            changes[f"{field}_date"] = date
    if not changes:
        return header
    return dataclasses.replace(header or PatchHeader(), **changes)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--remote", type=click.Path(file_okay=False), envvar="PATCH2PR_REMOTE",
              help="Directory of bare repositories to write to (or set PATCH2PR_REMOTE).",
              expose_value=False, callback=_store_remote, is_eager=True)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, verbose):
    """patch2pr: apply patches to a repository and open pull requests.

    Patches are applied through the repository API without a local
    clone: each patch in the input becomes one commit on the head branch,
    and a pull request is opened from the head branch to the base branch.

    \b
    Quick start:
      patch2pr apply --remote repos -R owner/name changes.patch
      git format-patch --stdout main | patch2pr apply -R owner/name

    \b
    By default, author and committer come from the patch header. Override
    them with GIT_AUTHOR_NAME, GIT_AUTHOR_EMAIL, GIT_AUTHOR_DATE,
    GIT_COMMITTER_NAME, GIT_COMMITTER_EMAIL, and GIT_COMMITTER_DATE.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
