"""Tests for branch references and pull requests."""

import pytest

from patch2pr.exceptions import NotFastForwardError, RemoteError
from patch2pr.objects import NewPullRequest
from patch2pr.reference import Reference, qualify_ref


class TestQualifyRef:
    @pytest.mark.parametrize("name, expected", [
        ("main", "refs/heads/main"),
        ("feature/x", "refs/heads/feature/x"),
        ("refs/heads/main", "refs/heads/main"),
        ("refs/tags/v1", "refs/tags/v1"),
    ])
    def test_qualify(self, name, expected):
        assert qualify_ref(name) == expected


class TestReference:
    def test_names(self, host, repo):
        ref = Reference(host, repo, "patch")
        assert ref.name == "refs/heads/patch"
        assert ref.branch == "patch"
        assert ref.repository == repo
        assert Reference(host, repo, "refs/tags/v1").branch is None

    def test_set_creates(self, api, host, repo, base):
        Reference(api, repo, "patch").set(base)
        assert host.get_ref(repo, "refs/heads/patch") == base
        assert api.calls["create_ref"] == 1
        assert api.calls["update_ref"] == 0

    def test_set_fast_forward(self, api, host, repo, base):
        ref = Reference(api, repo, "patch")
        ref.set(base)
        child = host.commit_files(repo, "main", {"c.txt": b"c\n"})
        ref.set(child)
        assert host.get_ref(repo, "refs/heads/patch") == child
        assert api.calls["update_ref"] == 1

    def test_set_not_fast_forward(self, host, repo, base):
        child = host.commit_files(repo, "patch", {"c.txt": b"c\n"})
        ref = Reference(host, repo, "patch")
        with pytest.raises(NotFastForwardError) as exc_info:
            ref.set(base)
        assert exc_info.value.status == 422
        assert "update ref refs/heads/patch failed" in str(exc_info.value)
        assert host.get_ref(repo, "refs/heads/patch") == child

    def test_set_force(self, host, repo, base):
        host.commit_files(repo, "patch", {"c.txt": b"c\n"})
        Reference(host, repo, "patch").set(base, force=True)
        assert host.get_ref(repo, "refs/heads/patch") == base

    def test_set_unknown_commit(self, host, repo):
        with pytest.raises(RemoteError) as exc_info:
            Reference(host, repo, "patch").set("1" * 40)
        assert exc_info.value.status == 422


class TestPullRequest:
    def test_same_repository(self, host, repo, base):
        host.commit_files(repo, "patch", {"c.txt": b"c\n"})
        pr = Reference(host, repo, "patch").pull_request(
            NewPullRequest("Add c", "main", body="Adds c.txt."))
        assert pr.number == 1
        assert pr.url == "local://owner/repo/pull/1"
        assert pr.head == "patch"
        assert pr.base == "main"
        assert host.list_pull_requests(repo) == [pr]

    def test_numbers_increase(self, host, repo):
        host.commit_files(repo, "patch", {"c.txt": b"c\n"})
        ref = Reference(host, repo, "patch")
        ref.pull_request(NewPullRequest("one", "main"))
        assert ref.pull_request(NewPullRequest("two", "main", draft=True)).number == 2
        assert [p.draft for p in host.list_pull_requests(repo)] == [False, True]

    def test_from_fork(self, host, repo):
        fork = host.create_fork(repo, owner="contrib")
        host.commit_files(fork, "patch", {"c.txt": b"c\n"})
        pr = Reference(host, fork, "patch").pull_request(
            NewPullRequest("Add c", "main"), upstream=repo)
        assert pr.head == "contrib:patch"
        assert pr.url.startswith("local://owner/repo/")
        assert host.list_pull_requests(fork) == []

    def test_upstream_same_as_repository(self, host, repo):
        host.commit_files(repo, "patch", {"c.txt": b"c\n"})
        pr = Reference(host, repo, "patch").pull_request(
            NewPullRequest("Add c", "main"), upstream=repo)
        assert pr.head == "patch"

    def test_missing_head_branch(self, host, repo):
        with pytest.raises(RemoteError, match="branch patch not found"):
            Reference(host, repo, "patch").pull_request(NewPullRequest("x", "main"))

    def test_not_a_branch(self, host, repo):
        with pytest.raises(ValueError, match="must be a branch"):
            Reference(host, repo, "refs/tags/v1").pull_request(NewPullRequest("x", "main"))
