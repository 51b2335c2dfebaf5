"""Tests for remote branch cleanup."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shipyard.clean import clean_remote_branch
from shipyard.errors import GitError, UserInputError
from shipyard.scm.git import GitClient


@pytest.fixture
def git() -> MagicMock:
    mock = MagicMock(spec=GitClient)
    mock.remote_branch_exists.return_value = True
    return mock


def test_deletes_from_every_remote(git, tmp_path: Path):
    remotes = ["https://github.com/octo/a.git", "https://github.com/octo/b.git"]

    results = clean_remote_branch(remotes, "feature", "webapp", tmp_path, git=git)

    assert [r.deleted for r in results] == [True, True]
    assert [c.args[1] for c in git.clone.call_args_list] == remotes
    git.delete_remote_branch.assert_called_with(tmp_path / "webapp", "feature")
    assert git.delete_remote_branch.call_count == 2


def test_missing_branch_is_skipped(git, tmp_path: Path, caplog):
    git.remote_branch_exists.side_effect = [False, True]
    remotes = ["https://github.com/octo/a.git", "https://github.com/octo/b.git"]

    results = clean_remote_branch(remotes, "feature", "webapp", tmp_path, git=git)

    assert [(r.remote_url, r.deleted) for r in results] == [
        (remotes[0], False),
        (remotes[1], True),
    ]
    assert results[0].reason == "branch not found"
    assert git.delete_remote_branch.call_count == 1
    assert "Branch does not exist on remote https://github.com/octo/a.git" in caplog.text


def test_clone_directory_is_reset(git, tmp_path: Path):
    stale = tmp_path / "webapp" / "stale.txt"
    stale.parent.mkdir()
    stale.write_text("old")

    clean_remote_branch(["https://github.com/octo/a.git"], "feature", "webapp", tmp_path, git=git)

    assert not stale.exists()


def test_scratch_directory_is_removed(git):
    clean_remote_branch(["https://github.com/octo/a.git"], "feature", "webapp", git=git)

    clone_dir = git.clone.call_args.args[0]
    assert not clone_dir.parent.exists()


def test_git_failure_propagates(git, tmp_path: Path):
    git.clone.side_effect = GitError("Command failed: git clone")

    with pytest.raises(GitError):
        clean_remote_branch(
            ["https://github.com/octo/a.git"], "feature", "webapp", tmp_path, git=git
        )


def test_requires_remotes(git):
    with pytest.raises(UserInputError):
        clean_remote_branch([], "feature", "webapp", git=git)
