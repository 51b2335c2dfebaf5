"""git command-line client."""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from shipyard.errors import GitError

logger = logging.getLogger(__name__)


def run_git(args: list[str], cwd: Optional[Path] = None) -> str:
    """
    Run a git command and return its stdout.

    Args:
        args: Command arguments (excluding 'git')
        cwd: Working directory

    Returns:
        stdout as string (stripped)

    Raises:
        GitError: If git fails or is not installed
    """
    cmd = ["git", *args]
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            encoding="utf-8",
        )
    except FileNotFoundError:
        raise GitError("git not installed") from None

    if result.returncode != 0:
        error_msg = f"Command failed: {' '.join(cmd)}"
        if result.stderr:
            error_msg += f"\n{result.stderr.strip()}"
        logger.error(error_msg)
        raise GitError(error_msg)

    return result.stdout.strip()


class GitClient:
    """Thin wrapper around the git binary; failures are surfaced, never retried."""

    def clone(self, destination_dir: Path, remote_url: str) -> Path:
        """
        Clone remote_url into destination_dir.

        Returns:
            Path of the clone
        """
        destination_dir.parent.mkdir(parents=True, exist_ok=True)
        run_git(["clone", remote_url, str(destination_dir)])
        logger.debug(f"Cloned {remote_url} into {destination_dir}")
        return destination_dir

    def remote_branch_exists(self, remote_url: str, branch_name: str) -> bool:
        """Check whether branch_name exists on remote_url."""
        output = run_git(["ls-remote", "--heads", remote_url, branch_name])
        return any(
            line.split("\t", 1)[-1] == f"refs/heads/{branch_name}"
            for line in output.splitlines()
            if line
        )

    def delete_remote_branch(
        self, repo_dir: Path, branch_name: str, remote_name: str = "origin"
    ) -> None:
        """Delete branch_name on the remote of the clone at repo_dir."""
        run_git(["push", remote_name, "--delete", branch_name], cwd=repo_dir)
        logger.debug(f"Deleted remote branch {branch_name} via {remote_name}")

    def get_remote_url(self, repo_dir: Path, remote_name: str = "origin") -> Optional[str]:
        """
        Get the URL of a remote.

        Returns:
            URL, or None if the remote is not configured
        """
        try:
            return run_git(["remote", "get-url", remote_name], cwd=repo_dir) or None
        except GitError:
            logger.debug(f"No remote {remote_name} in {repo_dir}")
            return None

    def add_remote(self, repo_dir: Path, remote_url: str, remote_name: str = "origin") -> None:
        """Add a remote to the repository at repo_dir."""
        run_git(["remote", "add", remote_name, remote_url], cwd=repo_dir)

    def current_branch(self, repo_dir: Path) -> str:
        """Name of the checked-out branch."""
        return run_git(["branch", "--show-current"], cwd=repo_dir)

    def push(
        self,
        repo_dir: Path,
        branch_name: str,
        remote_name: str = "origin",
        set_upstream: bool = True,
    ) -> None:
        """Push branch_name to the remote."""
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([remote_name, branch_name])
        run_git(args, cwd=repo_dir)
        logger.debug(f"Pushed {branch_name} to {remote_name}")
