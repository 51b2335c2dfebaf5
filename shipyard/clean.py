"""Delete a branch from one or more git remotes."""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shipyard.errors import UserInputError
from shipyard.scm.git import GitClient

logger = logging.getLogger(__name__)


@dataclass
class BranchCleanResult:
    """Outcome for a single remote."""

    remote_url: str
    branch_name: str
    deleted: bool
    reason: str = ""


def _reset_directory(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


def clean_remote_branch(
    remote_urls: list[str],
    branch_name: str,
    repo_name: str,
    output_dir: Optional[Path] = None,
    git: Optional[GitClient] = None,
) -> list[BranchCleanResult]:
    """
    Delete branch_name from every remote.

    Each remote is cloned into output_dir/repo_name (a scratch directory
    by default). A remote without the branch is skipped with a warning.

    Args:
        remote_urls: Remotes to clean
        branch_name: Branch to delete
        repo_name: Directory name of the clone
        output_dir: Parent directory for clones
        git: git client (default: GitClient())

    Returns:
        One result per remote, in order

    Raises:
        UserInputError: If no remotes are given
        GitError: If cloning or deleting fails
    """
    if not remote_urls:
        raise UserInputError("No remotes given; nothing to clean")

    git = git or GitClient()
    results: list[BranchCleanResult] = []
    scratch = output_dir is None
    base_dir = output_dir if output_dir is not None else Path(tempfile.mkdtemp(prefix="shipyard-"))

    try:
        for remote_url in remote_urls:
            clone_dir = base_dir / repo_name
            _reset_directory(clone_dir)
            git.clone(clone_dir, remote_url)

            if not git.remote_branch_exists(remote_url, branch_name):
                logger.warning(
                    f"Cannot delete remote branch {branch_name}. "
                    f"Branch does not exist on remote {remote_url}"
                )
                results.append(
                    BranchCleanResult(remote_url, branch_name, False, "branch not found")
                )
                continue

            git.delete_remote_branch(clone_dir, branch_name)
            logger.info(f"Branch {branch_name} deleted from remote {remote_url}")
            results.append(BranchCleanResult(remote_url, branch_name, True))
    finally:
        if scratch:
            shutil.rmtree(base_dir, ignore_errors=True)

    return results
