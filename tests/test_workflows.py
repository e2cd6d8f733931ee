"""
Tests for the multi-step repository workflows, run against the in-memory GitHub fake.
"""

import base64

import pytest

from repo_push.errors import OwnershipError, WorkflowError
from repo_push.models import MoveItem, UploadFile
from repo_push.workflows import (
    SyncOperation,
    create_or_get_branch,
    delete_directory,
    destination_path,
    move_batch,
    move_entry,
    sync_tree,
    upload_batch,
)


def _b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class TestDeleteDirectory:
    """Directory delete rewrites the tree in one commit."""

    @pytest.fixture
    def tip(self, fake_github):
        fake_github.add_repo("site")
        return fake_github.seed_tree(
            "site",
            "main",
            [
                {"path": "a", "mode": "040000", "type": "tree", "sha": "t-a"},
                {"path": "a/b.txt", "mode": "100644", "type": "blob", "sha": "b-1"},
                {"path": "a/c/d.txt", "mode": "100644", "type": "blob", "sha": "b-2"},
                {"path": "e.txt", "mode": "100644", "type": "blob", "sha": "b-3"},
            ],
        )

    async def test_removes_everything_under_prefix(self, github, fake_github, tip):
        new_commit = await delete_directory(github, "octocat", "site", "main", "a")

        assert fake_github.refs[("site", "main")] == new_commit
        commit = fake_github.commits[new_commit]
        assert commit["parents"] == [{"sha": tip}]
        assert commit["message"] == "Delete directory a"
        new_tree = fake_github.trees[commit["tree"]["sha"]]
        assert [entry["path"] for entry in new_tree] == ["e.txt"]
        assert new_tree[0] == {"path": "e.txt", "mode": "100644", "type": "blob", "sha": "b-3"}

    async def test_trailing_slash_is_ignored(self, github, fake_github, tip):
        new_commit = await delete_directory(github, "octocat", "site", "main", "a/")

        tree_sha = fake_github.commits[new_commit]["tree"]["sha"]
        assert [entry["path"] for entry in fake_github.trees[tree_sha]] == ["e.txt"]

    async def test_sibling_with_shared_prefix_survives(self, github, fake_github):
        fake_github.add_repo("site")
        fake_github.seed_tree(
            "site",
            "main",
            [
                {"path": "a/x.txt", "mode": "100644", "type": "blob", "sha": "b-1"},
                {"path": "ab.txt", "mode": "100644", "type": "blob", "sha": "b-2"},
            ],
        )

        new_commit = await delete_directory(github, "octocat", "site", "main", "a")

        tree_sha = fake_github.commits[new_commit]["tree"]["sha"]
        assert [entry["path"] for entry in fake_github.trees[tree_sha]] == ["ab.txt"]

    async def test_first_failing_step_status_is_reported(self, github, fake_github, tip):
        fake_github.fail("POST", "/repos/octocat/site/git/trees", 422)

        with pytest.raises(WorkflowError) as excinfo:
            await delete_directory(github, "octocat", "site", "main", "a")

        assert excinfo.value.status_code == 422
        assert excinfo.value.message == "Failed to create new tree"
        assert fake_github.refs[("site", "main")] == tip
        assert not fake_github.calls_to("POST", "/repos/octocat/site/git/commits")
        assert not fake_github.calls_to("PATCH")

    async def test_missing_branch_fails_at_ref_lookup(self, github, fake_github, tip):
        with pytest.raises(WorkflowError) as excinfo:
            await delete_directory(github, "octocat", "site", "nope", "a")

        assert excinfo.value.status_code == 404
        assert excinfo.value.message == "Failed to get branch reference"

    async def test_truncated_listing_is_refused_before_any_write(self, github, fake_github, tip):
        fake_github.truncated_trees.add(fake_github.commits[tip]["tree"]["sha"])

        with pytest.raises(WorkflowError) as excinfo:
            await delete_directory(github, "octocat", "site", "main", "zzz")

        assert excinfo.value.status_code == 422
        assert not fake_github.calls_to("POST")
        assert not fake_github.calls_to("PATCH")
        assert fake_github.refs[("site", "main")] == tip


class TestMove:
    """Moves are read, write, then delete, one item at a time."""

    @pytest.fixture
    def old_sha(self, fake_github):
        fake_github.add_repo("site")
        return fake_github.add_file("site", "x/old.txt", b"hello")

    async def test_write_precedes_delete(self, github, fake_github, old_sha):
        result = await move_batch(
            github,
            "octocat",
            "site",
            "main",
            [MoveItem(path="x/old.txt", sha=old_sha, type="file")],
            "y",
        )

        assert result.moved == ["x/old.txt"]
        mutations = [c for c in fake_github.calls if c.method in {"PUT", "DELETE"}]
        assert [(c.method, c.path) for c in mutations] == [
            ("PUT", "/repos/octocat/site/contents/y/old.txt"),
            ("DELETE", "/repos/octocat/site/contents/x/old.txt"),
        ]
        assert base64.b64decode(mutations[0].body["content"]) == b"hello"
        assert mutations[1].body["sha"] == old_sha
        assert fake_github.files[("site", "main")] == {"y/old.txt": b"hello"}

    async def test_large_file_is_moved_with_its_content(self, github, fake_github, old_sha):
        fake_github.large_files.add("x/old.txt")

        result = await move_batch(
            github,
            "octocat",
            "site",
            "main",
            [MoveItem(path="x/old.txt", sha=old_sha, type="file")],
            "y",
        )

        assert result.moved == ["x/old.txt"]
        assert fake_github.calls_to("GET", f"/repos/octocat/site/git/blobs/{old_sha}")
        assert fake_github.files[("site", "main")] == {"y/old.txt": b"hello"}

    async def test_unreadable_large_file_is_not_deleted(self, github, fake_github, old_sha):
        fake_github.large_files.add("x/old.txt")
        fake_github.fail("GET", f"/repos/octocat/site/git/blobs/{old_sha}", 403)

        outcome = await move_entry(github, "octocat", "site", "main", "x/old.txt", "y/old.txt", old_sha)

        assert outcome.status == "read_failed"
        assert not fake_github.calls_to("PUT")
        assert fake_github.files[("site", "main")] == {"x/old.txt": b"hello"}

    async def test_items_run_strictly_in_order(self, github, fake_github, old_sha):
        second_sha = fake_github.add_file("site", "x/two.txt", b"two")

        await move_batch(
            github,
            "octocat",
            "site",
            "main",
            [
                MoveItem(path="x/old.txt", sha=old_sha),
                MoveItem(path="x/two.txt", sha=second_sha),
            ],
            "y",
        )

        mutations = [(c.method, c.path.rsplit("/", 2)[-2:]) for c in fake_github.calls if c.method != "GET"]
        assert mutations == [
            ("PUT", ["y", "old.txt"]),
            ("DELETE", ["x", "old.txt"]),
            ("PUT", ["y", "two.txt"]),
            ("DELETE", ["x", "two.txt"]),
        ]

    async def test_unreadable_item_is_skipped(self, github, fake_github, old_sha):
        result = await move_batch(
            github,
            "octocat",
            "site",
            "main",
            [MoveItem(path="x/missing.txt", sha="deadbeef"), MoveItem(path="x/old.txt", sha=old_sha)],
            "",
        )

        assert result.failed == ["x/missing.txt"]
        assert result.moved == ["x/old.txt"]
        assert fake_github.files[("site", "main")] == {"old.txt": b"hello"}

    async def test_write_failure_keeps_old_file(self, github, fake_github, old_sha):
        fake_github.fail("PUT", "/repos/octocat/site/contents/y/old.txt", 409)

        outcome = await move_entry(github, "octocat", "site", "main", "x/old.txt", "y/old.txt", old_sha)

        assert outcome.status == "write_failed"
        assert outcome.error.status_code == 409
        assert not fake_github.calls_to("DELETE")
        assert "x/old.txt" in fake_github.files[("site", "main")]

    async def test_delete_failure_leaves_duplicate(self, github, fake_github, old_sha):
        outcome = await move_entry(github, "octocat", "site", "main", "x/old.txt", "y/old.txt", "stale")

        assert outcome.status == "delete_failed"
        assert set(fake_github.files[("site", "main")]) == {"x/old.txt", "y/old.txt"}

    async def test_directories_are_not_moved(self, github, fake_github, old_sha):
        result = await move_batch(
            github, "octocat", "site", "main", [MoveItem(path="x", sha="t-1", type="dir")], "y"
        )

        assert result.failed == ["x"]
        assert fake_github.calls == []

    @pytest.mark.parametrize(
        ("destination", "path", "expected"),
        [("y", "x/old.txt", "y/old.txt"), ("", "x/old.txt", "old.txt"), ("y/z/", "old.txt", "y/z/old.txt")],
    )
    def test_destination_path(self, destination, path, expected):
        assert destination_path(destination, path) == expected


class TestSync:
    """Tree sync copies source blobs onto the destination branch."""

    @pytest.fixture
    def repos(self, fake_github):
        fake_github.add_repo("source")
        fake_github.add_repo("dest")
        fake_github.add_file("source", "README.md", b"# new readme")
        fake_github.add_file("source", "src/app.py", b"print('hi')")

    def _op(self, dest_branch="main"):
        return SyncOperation(
            account="octocat",
            source_repo="source",
            dest_repo="dest",
            source_branch="main",
            dest_branch=dest_branch,
        )

    async def test_existing_destination_file_is_overwritten_with_its_sha(self, github, fake_github, repos):
        existing_sha = fake_github.add_file("dest", "README.md", b"# old readme")

        result = await sync_tree(github, self._op())

        assert (result.files_synced, result.total_files) == (2, 2)
        writes = {c.path: c.body for c in fake_github.calls_to("PUT")}
        assert writes["/repos/octocat/dest/contents/README.md"]["sha"] == existing_sha
        assert "sha" not in writes["/repos/octocat/dest/contents/src/app.py"]
        assert fake_github.files[("dest", "main")]["README.md"] == b"# new readme"

    async def test_new_destination_branch_is_created_from_default(self, github, fake_github, repos):
        fake_github.add_file("dest", "keep.txt", b"keep")

        result = await sync_tree(github, self._op("feature/sync"))

        assert result.files_synced == 2
        assert fake_github.calls_to("POST", "/repos/octocat/dest/git/refs")[0].body["ref"] == (
            "refs/heads/feature/sync"
        )
        assert set(fake_github.files[("dest", "feature/sync")]) == {"keep.txt", "README.md", "src/app.py"}
        assert fake_github.files[("dest", "main")] == {"keep.txt": b"keep"}

    async def test_per_file_failure_does_not_stop_the_loop(self, github, fake_github, repos):
        fake_github.fail("PUT", "/repos/octocat/dest/contents/README.md", 500)

        result = await sync_tree(github, self._op())

        assert (result.files_synced, result.total_files) == (1, 2)
        assert result.failed == ["README.md"]
        assert len(fake_github.calls_to("PUT")) == 2

    async def test_cap_limits_attempted_files(self, github, fake_github, repos):
        for i in range(5):
            fake_github.add_file("source", f"docs/{i}.md", b"doc")

        result = await sync_tree(github, self._op(), max_files=3)

        assert result.total_files == 7
        assert result.files_synced == 3
        assert len(fake_github.calls_to("PUT")) == 3

    async def test_large_source_file_is_copied_in_full(self, github, fake_github, repos):
        fake_github.large_files.add("README.md")

        result = await sync_tree(github, self._op())

        assert result.failed == []
        assert fake_github.files[("dest", "main")]["README.md"] == b"# new readme"

    async def test_truncated_source_listing_is_reported(self, github, fake_github, repos):
        fake_github.truncated_trees.add("main")

        result = await sync_tree(github, self._op())

        assert result.truncated is True
        assert (result.files_synced, result.total_files) == (1, 1)

    async def test_symlinks_are_skipped(self, github, fake_github, repos):
        fake_github.add_symlink("source", "docs/latest", "../README.md")

        result = await sync_tree(github, self._op())

        assert result.skipped == ["docs/latest"]
        assert (result.files_synced, result.total_files) == (2, 2)
        assert not fake_github.calls_to("PUT", "/repos/octocat/dest/contents/docs/latest")
        assert not fake_github.calls_to("GET", "/repos/octocat/source/contents/docs/latest")

    async def test_repo_owned_by_someone_else_is_rejected(self, github, fake_github, repos):
        fake_github.add_repo("dest", owner="someone-else")

        with pytest.raises(OwnershipError):
            await sync_tree(github, self._op())

        assert not fake_github.calls_to("PUT")
        assert not fake_github.calls_to("GET", "/repos/octocat/source/git/trees")

    async def test_missing_source_repo_is_rejected(self, github, fake_github):
        fake_github.add_repo("dest")

        with pytest.raises(OwnershipError, match="source not found"):
            await sync_tree(github, self._op())

    async def test_branch_creation_failure_is_400(self, github, fake_github, repos):
        fake_github.fail("POST", "/repos/octocat/dest/git/refs", 422)

        with pytest.raises(WorkflowError) as excinfo:
            await sync_tree(github, self._op("feature"))

        assert excinfo.value.status_code == 400
        assert excinfo.value.message.startswith("Failed to create/access destination branch")


class TestCreateOrGetBranch:
    async def test_existing_branch_is_returned(self, github, fake_github):
        fake_github.add_repo("site")

        sha = await create_or_get_branch(github, "octocat", "site", "main")

        assert sha == fake_github.refs[("site", "main")]
        assert not fake_github.calls_to("POST")


class TestUploadBatch:
    """Batch uploads attempt every file and report each outcome."""

    async def test_one_failure_is_reported_without_aborting(self, github, fake_github):
        fake_github.add_repo("site")
        fake_github.fail("PUT", "/repos/octocat/site/contents/c.txt", 500)
        files = [UploadFile(path=f"{name}.txt", content=_b64(name)) for name in "abcde"]

        response = await upload_batch(github, "octocat", "site", "main", files)

        assert response.summary.model_dump() == {"total": 5, "successful": 4, "failed": 1}
        failed = [r for r in response.results if not r.success]
        assert [r.path for r in failed] == ["c.txt"]
        assert failed[0].error
        assert len(fake_github.calls_to("PUT")) == 5

    async def test_default_message_is_per_file(self, github, fake_github):
        fake_github.add_repo("site")
        files = [UploadFile(path="docs/a.md", content=_b64("a"))]

        await upload_batch(github, "octocat", "site", "main", files)

        put = fake_github.calls_to("PUT")[0]
        assert put.body["message"] == "Upload docs/a.md"
        assert put.body["branch"] == "main"
        assert fake_github.files[("site", "main")]["docs/a.md"] == b"a"

    async def test_shared_message_is_used_for_all(self, github, fake_github):
        fake_github.add_repo("site")
        files = [UploadFile(path=p, content=_b64(p)) for p in ("a", "b")]

        await upload_batch(github, "octocat", "site", "main", files, message="Bulk upload")

        assert {c.body["message"] for c in fake_github.calls_to("PUT")} == {"Bulk upload"}
