"""Tests for the tree-strategy applier."""

from datetime import datetime, timezone

import pytest
from dulwich.objects import Blob

from patch2pr.applier import DEFAULT_COMMIT_MESSAGE, BlobPolicy, TreeApplier
from patch2pr.cancel import CancelToken
from patch2pr.exceptions import (
    CancelledError,
    ExistingEntryError,
    MissingEntryError,
    NotFoundError,
    NothingPendingError,
    PatchApplyError,
    RemoteError,
)
from patch2pr.header import PatchHeader, PatchIdentity
from patch2pr.objects import Commit, CommitTemplate, Signature
from patch2pr.patch import FilePatch, Fragment, parse_patch

from conftest import BASE_FILES

MODIFY = """\
diff --git a/a.txt b/a.txt
index ce01362..94954ab 100644
--- a/a.txt
+++ b/a.txt
@@ -1 +1,2 @@
 hello
+world
"""

CREATE = """\
diff --git a/b.txt b/b.txt
new file mode 100755
index 0000000..3b18e51
--- /dev/null
+++ b/b.txt
@@ -0,0 +1 @@
+hello world
"""

RENAME = """\
diff --git a/old/name.go b/new/name.go
similarity index 100%
rename from old/name.go
rename to new/name.go
"""

DELETE = """\
diff --git a/main/bits.go b/main/bits.go
deleted file mode 100644
index 5d1c2a3..0000000
--- a/main/bits.go
+++ /dev/null
@@ -1,3 +0,0 @@
-package main
-
-const bits = 8
"""

MODE_CHANGE = """\
diff --git a/bin/run.sh b/bin/run.sh
old mode 100755
new mode 100644
"""


def one(text):
    files, _ = parse_patch(text)
    assert len(files) == 1
    return files[0]


def blob_id(data):
    return Blob.from_string(data).id.decode()


@pytest.fixture(params=[BlobPolicy.EAGER, BlobPolicy.DEFERRED], ids=["eager", "deferred"])
def applier(request, api, host, repo, base):
    """A TreeApplier on main, for each blob policy."""
    return TreeApplier(api, repo, host.get_commit(repo, base), blob_policy=request.param)


class TestApply:
    def test_modify(self, applier, host, repo, base):
        entry = applier.apply(one(MODIFY))
        assert entry.path == "a.txt"
        assert entry.mode == "100644"

        commit = applier.commit()
        assert commit.parents == (base,)
        files = host.snapshot(repo, commit.sha)
        assert files["a.txt"] == ("100644", b"hello\nworld\n")
        assert files["old/name.go"] == ("100644", BASE_FILES["old/name.go"])

    def test_create_with_mode(self, applier, host, repo):
        entry = applier.apply(one(CREATE))
        assert entry.mode == "100755"
        commit = applier.commit()
        assert host.snapshot(repo, commit.sha)["b.txt"] == ("100755", b"hello world\n")

    def test_rename_keeps_hash_and_mode(self, applier, host, repo):
        entry = applier.apply(one(RENAME))
        original = BASE_FILES["old/name.go"]
        assert entry.path == "new/name.go"
        assert entry.sha == blob_id(original)
        assert entry.mode == "100644"

        deletion, addition = applier.entries
        assert deletion.path == "old/name.go"
        assert deletion.is_deletion
        assert addition is entry

        files = host.snapshot(repo, applier.commit().sha)
        assert files["new/name.go"] == ("100644", original)
        assert not any(path.startswith("old/") for path in files)

    def test_delete(self, applier, host, repo):
        entry = applier.apply(one(DELETE))
        assert entry.is_deletion
        assert entry.path == "main/bits.go"
        files = host.snapshot(repo, applier.commit().sha)
        assert "main/bits.go" not in files
        assert set(files) == {"a.txt", "old/name.go", "bin/run.sh"}

    def test_delete_checks_content(self, applier):
        patch = FilePatch("a.txt", None, is_delete=True,
                          fragments=(Fragment(1, 1, 0, 0, (("-", "bye\n"),)),))
        with pytest.raises(PatchApplyError):
            applier.apply(patch)
        assert applier.entries == ()

    def test_several_patches_one_commit(self, applier, host, repo):
        for text in (MODIFY, CREATE, RENAME, DELETE):
            applier.apply(one(text))
        commit = applier.commit()
        assert set(host.snapshot(repo, commit.sha)) == {
            "a.txt", "b.txt", "new/name.go", "bin/run.sh",
        }

    def test_existing_entry(self, applier):
        patch = FilePatch(None, "a.txt", is_new=True,
                          fragments=(Fragment(0, 0, 1, 1, (("+", "x\n"),)),))
        with pytest.raises(ExistingEntryError, match="existing entry for new file: a.txt"):
            applier.apply(patch)

    def test_missing_modified_entry(self, applier):
        patch = FilePatch("nope.txt", "nope.txt",
                          fragments=(Fragment(1, 1, 1, 1, (("-", "a\n"), ("+", "b\n"))),))
        with pytest.raises(MissingEntryError, match="no entry for modified file: nope.txt"):
            applier.apply(patch)

    def test_missing_deleted_entry(self, applier):
        with pytest.raises(MissingEntryError, match="missing entry for deleted file"):
            applier.apply(FilePatch("main/gone.go", None, is_delete=True))

    def test_directory_is_not_a_file(self, applier):
        with pytest.raises(MissingEntryError):
            applier.apply(FilePatch("old", "old"))

    def test_patch_does_not_apply(self, applier):
        patch = FilePatch("a.txt", "a.txt",
                          fragments=(Fragment(1, 1, 1, 1, (("-", "bye\n"), ("+", "x\n"))),))
        with pytest.raises(PatchApplyError):
            applier.apply(patch)
        assert applier.entries == ()


class TestPendingEntries:
    def test_modify_pending_file(self, applier, host, repo):
        applier.apply(one(CREATE))
        patch = FilePatch("b.txt", "b.txt", fragments=(
            Fragment(1, 1, 1, 2, ((" ", "hello world\n"), ("+", "again\n"))),
        ))
        entry = applier.apply(patch)
        assert entry.mode == "100755"
        assert len(applier.entries) == 1
        files = host.snapshot(repo, applier.commit().sha)
        assert files["b.txt"] == ("100755", b"hello world\nagain\n")

    def test_pending_deletion_means_absent(self, applier, host, repo):
        applier.apply(one(DELETE))
        with pytest.raises(MissingEntryError):
            applier.apply(one(DELETE))

        recreate = FilePatch(None, "main/bits.go", is_new=True,
                             fragments=(Fragment(0, 0, 1, 1, (("+", "package bits\n"),)),))
        applier.apply(recreate)
        files = host.snapshot(repo, applier.commit().sha)
        assert files["main/bits.go"] == ("100644", b"package bits\n")

    def test_renamed_source_is_gone(self, applier):
        applier.apply(one(RENAME))
        with pytest.raises(MissingEntryError):
            applier.apply(one(RENAME))

    def test_last_write_wins(self, applier):
        applier.apply(one(MODIFY))
        applier.apply(FilePatch("a.txt", "a.txt", fragments=(
            Fragment(2, 1, 2, 1, (("-", "world\n"), ("+", "there\n"))),
        )))
        (entry,) = applier.entries
        assert entry.path == "a.txt"


class TestModes:
    def test_mode_change_only(self, applier, host, repo):
        entry = applier.apply(one(MODE_CHANGE))
        assert entry.mode == "100644"
        assert entry.sha == blob_id(BASE_FILES["bin/run.sh"][0])
        files = host.snapshot(repo, applier.commit().sha)
        assert files["bin/run.sh"] == ("100644", BASE_FILES["bin/run.sh"][0])

    def test_existing_mode_kept(self, applier):
        patch = FilePatch("bin/run.sh", "bin/run.sh", fragments=(
            Fragment(2, 1, 2, 1, (("-", "echo run\n"), ("+", "echo ran\n"))),
        ))
        assert applier.apply(patch).mode == "100755"

    def test_old_mode_used_for_new_file(self, applier):
        patch = FilePatch(None, "tool.sh", old_mode=0o100755, is_new=True)
        assert applier.apply(patch).mode == "100755"

    def test_default_mode(self, applier):
        patch = FilePatch(None, "c.txt", is_new=True,
                          fragments=(Fragment(0, 0, 1, 1, (("+", "c\n"),)),))
        assert applier.apply(patch).mode == "100644"


class TestBlobPolicy:
    def test_eager_creates_blobs(self, api, host, repo, base):
        applier = TreeApplier(api, repo, host.get_commit(repo, base), blob_policy=BlobPolicy.EAGER)
        entry = applier.apply(one(MODIFY))
        assert api.calls["create_blob"] == 1
        assert entry.sha == blob_id(b"hello\nworld\n")
        assert entry.content is None

    def test_deferred_keeps_content(self, api, host, repo, base):
        applier = TreeApplier(api, repo, host.get_commit(repo, base),
                              blob_policy=BlobPolicy.DEFERRED)
        entry = applier.apply(one(MODIFY))
        assert api.calls["create_blob"] == 0
        assert entry.is_pending
        assert entry.content == b"hello\nworld\n"

    def test_rename_uploads_nothing(self, applier, api):
        applier.apply(one(RENAME))
        assert api.calls["create_blob"] == 0
        assert api.calls["get_blob"] == 0


class TestTreeCache:
    def test_trees_fetched_once_per_generation(self, applier, api):
        applier.apply(one(MODIFY))
        applier.apply(FilePatch("main/bits.go", "main/bits.go"))
        applier.apply(FilePatch(None, "main/more.go", is_new=True))
        assert api.calls["get_tree"] == 2

        applier.create_tree()
        applier.apply(FilePatch("main/bits.go", "main/bits.go"))
        assert api.calls["get_tree"] == 4


class TestCreateTreeAndCommit:
    def test_nothing_pending(self, applier):
        with pytest.raises(NothingPendingError, match="no pending tree entries"):
            applier.create_tree()
        with pytest.raises(NothingPendingError, match="no pending tree or tree entries"):
            applier.commit()

    def test_create_tree_then_commit(self, applier, base):
        applier.apply(one(MODIFY))
        tree = applier.create_tree()
        assert applier.uncommitted
        assert applier.tree == tree
        assert applier.entries == ()

        commit = applier.commit()
        assert commit.tree == tree
        assert applier.base == commit.sha
        assert not applier.uncommitted
        with pytest.raises(NothingPendingError):
            applier.commit()

    def test_commits_chain(self, applier, host, repo, base):
        applier.apply(one(MODIFY))
        first = applier.commit()
        applier.apply(one(CREATE))
        second = applier.commit()
        assert second.parents == (first.sha,)
        assert first.parents == (base,)
        assert host.snapshot(repo, second.sha)["a.txt"][1] == b"hello\nworld\n"

    def test_default_message(self, applier):
        applier.apply(one(MODIFY))
        assert applier.commit().message.rstrip("\n") == DEFAULT_COMMIT_MESSAGE

    def test_header(self, applier):
        when = datetime(2023, 10, 3, 8, 15, tzinfo=timezone.utc)
        header = PatchHeader(
            title="Add world",
            body="Say hello to everyone.",
            author=PatchIdentity("Jane Doe", "jane@example.com"),
            author_date=when,
        )
        applier.apply(one(MODIFY))
        commit = applier.commit(header)
        assert commit.message.rstrip("\n") == "Add world\n\nSay hello to everyone."
        assert commit.author.name == "Jane Doe"
        assert commit.author.email == "jane@example.com"
        assert commit.author.date == when

    def test_template_fills_gaps(self, applier):
        template = CommitTemplate(
            message="From template",
            author=Signature("Tem Plate", "tem@example.com"),
            committer=Signature("Bot", "bot@example.com"),
        )
        header = PatchHeader(author=PatchIdentity("Jane Doe", "jane@example.com"))
        applier.apply(one(MODIFY))
        commit = applier.commit(header, template=template)
        assert commit.message.rstrip("\n") == "From template"
        assert commit.author.name == "Jane Doe"
        assert commit.committer.name == "Bot"

    def test_header_date_keeps_template_identity(self, applier):
        when = datetime(2020, 1, 1, tzinfo=timezone.utc)
        template = CommitTemplate(author=Signature("Tem Plate", "tem@example.com"))
        applier.apply(one(MODIFY))
        commit = applier.commit(PatchHeader(title="Dated", author_date=when), template=template)
        assert commit.author.name == "Tem Plate"
        assert commit.author.email == "tem@example.com"
        assert commit.author.date == when

    def test_failed_commit_keeps_tree(self, applier, host, monkeypatch):
        def reject(*args, **kwargs):
            raise RemoteError("service unavailable", status=503)

        applier.apply(one(MODIFY))
        base = applier.base
        with monkeypatch.context() as m:
            m.setattr(host, "create_commit", reject)
            with pytest.raises(RemoteError, match="create commit"):
                applier.commit()
        assert applier.uncommitted
        assert applier.base == base
        assert applier.entries == ()

        commit = applier.commit()
        assert commit.tree == applier.tree

    def test_reset(self, applier, host, repo, base):
        applier.apply(one(MODIFY))
        applier.reset(host.get_commit(repo, base))
        assert applier.entries == ()
        assert not applier.uncommitted
        with pytest.raises(NothingPendingError):
            applier.commit()


class TestCancellation:
    def test_cancelled_apply_leaves_state(self, applier, api):
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            applier.apply(one(MODIFY), cancel=token)
        assert applier.entries == ()
        assert api.total() == 0

    def test_cancelled_commit_keeps_pending(self, applier, base):
        applier.apply(one(MODIFY))
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            applier.commit(cancel=token)
        assert len(applier.entries) == 1
        assert applier.base == base
        assert not applier.uncommitted


class TestRemoteErrors:
    def test_error_names_operation(self, api, repo, base):
        missing = "0" * 40
        applier = TreeApplier(api, repo, Commit(base, missing))
        with pytest.raises(NotFoundError) as exc_info:
            applier.apply(one(MODIFY))
        assert str(exc_info.value).startswith(f"get tree {missing} failed:")
