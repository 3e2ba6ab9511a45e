"""The apply command: patch file in, commits and a pull request out."""

from __future__ import annotations

import json
import logging
import re

import click

from .._remote import call
from ..cancel import CancelToken
from ..exceptions import Patch2PRError, is_unsupported
from ..fork import create_fork, wait_for_fork
from ..header import parse_patch_header, split_message
from ..objects import NewPullRequest
from ..patch import parse_patch, split_patches
from ..reference import Reference, qualify_ref
from ..strategy import CONTENT, TREE, PatchApplier
from ._helpers import (
    _override_header,
    _parse_repository,
    _read_patch,
    _remote_option,
    _require_remote,
    _status,
    main,
)

logger = logging.getLogger(__name__)

_RE_SHA = re.compile(r"^[0-9a-f]{40}$")


def _resolve_base(api, repo, rev: str, cancel: CancelToken) -> str:
    """Return the commit hash for *rev*: a full hash, a ref, or a branch name."""
    if _RE_SHA.match(rev):
        return rev
    ref = qualify_ref(rev)
    return call(cancel, "get ref", ref, api.get_ref, repo, ref)


def _load_messages(data: bytes):
    """Yield ``(files, header)`` for each patch message in *data*."""
    for text in split_patches(data):
        files, preamble = parse_patch(text)
        header = None
        if preamble.strip():
            try:
                header = parse_patch_header(preamble)
            except ValueError as exc:
                logger.warning("Ignoring invalid patch header: %s", exc)
        yield files, header


@main.command("apply")
@_remote_option
@click.argument("patch_file", default="-", type=click.Path(dir_okay=False, allow_dash=True))
@click.option("--repository", "-R", "repository", required=True, callback=_parse_repository,
              help="Repository to apply to, as owner/name.")
@click.option("--patch-base", default=None,
              help="Commit, ref, or branch the patch applies to [default: base branch].")
@click.option("--base-branch", default=None,
              help="Branch the pull request merges into [default: repository default].")
@click.option("--head-branch", default="patch2pr", show_default=True,
              help="Branch to create or update with the new commits.")
@click.option("-m", "--message", default=None,
              help="Commit message; overrides the patch header.")
@click.option("-f", "--force", is_flag=True, default=False,
              help="Move the head branch even if the update is not a fast forward.")
@click.option("--json", "output_json", is_flag=True, default=False,
              help="Print the result as JSON.")
@click.option("--no-pull-request", is_flag=True, default=False,
              help="Only update the head branch.")
@click.option("--pull-title", default=None,
              help="Pull request title [default: from the commit message].")
@click.option("--pull-body", default=None,
              help="Pull request body [default: from the commit message].")
@click.option("--strategy", type=click.Choice([TREE, CONTENT]), default=TREE, show_default=True,
              help="Create objects one by one (tree) or commit file contents (content).")
@click.option("--fork", is_flag=True, default=False,
              help="Push the head branch to a fork and open the pull request upstream.")
@click.option("--fork-owner", default=None,
              help="Owner of the fork [default: the authenticated user].")
@click.pass_context
def apply_cmd(ctx, patch_file, repository, patch_base, base_branch, head_branch, message,
              force, output_json, no_pull_request, pull_title, pull_body, strategy,
              fork, fork_owner):
    """Apply PATCH_FILE to a repository and open a pull request.

    Reads the patch from stdin when PATCH_FILE is omitted or '-'. A
    mailbox of several patches (git format-patch --stdout) creates one
    commit per patch.

    \b
    Examples:
      patch2pr apply -R owner/name fix.patch
      patch2pr apply -R owner/name --strategy content --head-branch fix fix.patch
      patch2pr apply -R owner/name --fork --json < series.mbox
    """
    host = _require_remote(ctx)
    data, default_message = _read_patch(patch_file)
    cancel = CancelToken()

    try:
        messages = [m for m in _load_messages(data) if m[0]]
        if not messages:
            raise click.ClickException("No file changes found in patch")

        info = call(cancel, "get repository", str(repository), host.get_repository, repository)
        base_branch = base_branch or info.default_branch
        base_sha = _resolve_base(host, repository, patch_base or base_branch, cancel)

        target = repository
        if fork:
            target = create_fork(host, repository, owner=fork_owner, cancel=cancel)
            _status(ctx, f"Waiting for fork {target}")
            wait_for_fork(host, target, cancel=cancel)

        head = Reference(host, target, head_branch)
        if strategy == CONTENT:
            sha = _apply_content(ctx, host, target, head, base_sha, messages, message,
                                 default_message, force, cancel)
        else:
            sha = _apply_tree(ctx, host, target, base_sha, messages, message,
                              default_message, cancel)
            head.set(sha, force=force, cancel=cancel)
        _status(ctx, f"Updated {head.name} to {sha[:7]}")

        commit = call(cancel, "get commit", sha, host.get_commit, target, sha)
        pr = None
        if not no_pull_request:
            title, body = split_message(message or commit.message)
            spec = NewPullRequest(
                title=pull_title or title,
                base=base_branch,
                body=body if pull_body is None else pull_body,
            )
            pr = head.pull_request(spec, upstream=repository if fork else None, cancel=cancel)
            _status(ctx, f"Opened pull request #{pr.number}")
    except Patch2PRError as exc:
        raise click.ClickException(str(exc)) from exc

    if output_json:
        result = {"commit": commit.sha, "tree": commit.tree}
        if pr is not None:
            result["pull_request"] = {"number": pr.number, "url": pr.url}
        click.echo(json.dumps(result, indent=2))
    elif pr is not None:
        click.echo(pr.url)
    else:
        click.echo(commit.sha)


def _apply_tree(ctx, host, target, base_sha, messages, message, default_message, cancel) -> str:
    applier = PatchApplier.tree(host, target, base_sha, default_message=default_message,
                                cancel=cancel)
    for files, header in messages:
        applier.apply_all(files, cancel=cancel)
        sha = applier.commit(_override_header(header, message), cancel=cancel)
        _status(ctx, f"Committed {len(files)} file(s) as {sha[:7]}")
    return applier.base


def _apply_content(ctx, host, target, head, base_sha, messages, message, default_message,
                   force, cancel) -> str:
    # the content commit request requires the branch to exist at the base
    head.set(base_sha, force=force, cancel=cancel)
    applier = PatchApplier.content(host, target, base_sha, head.name, object_api=host,
                                   default_message=default_message)
    for files, header in messages:
        header = _override_header(header, message)
        try:
            applier.apply_all(files, cancel=cancel)
            sha = applier.commit(header, cancel=cancel)
        except Patch2PRError as exc:
            if not is_unsupported(exc):
                raise
            logger.warning("Falling back to tree strategy: %s", exc)
            _status(ctx, f"Falling back to tree strategy: {exc}")
            fallback = PatchApplier.tree(host, target, applier.base,
                                         default_message=default_message, cancel=cancel)
            fallback.apply_all(files, cancel=cancel)
            sha = fallback.commit(header, cancel=cancel)
            head.set(sha, cancel=cancel)
            applier.reset(sha)
        _status(ctx, f"Committed {len(files)} file(s) as {sha[:7]}")
    return applier.base
