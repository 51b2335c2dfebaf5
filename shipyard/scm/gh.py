"""GitHub CLI (gh) wrapper."""

import json
import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Any, Optional

from shipyard.errors import GitHubCliError, HostingApiError
from shipyard.scm.utils import classify_remote_error

HTTP_STATUS_PATTERN = re.compile(r"\(HTTP (\d{3})\)")

logger = logging.getLogger(__name__)


def run_gh(
    args: list[str],
    token: Optional[str] = None,
    input_text: Optional[str] = None,
    cwd: Optional[Path] = None,
) -> str:
    """
    Run GitHub CLI command and return output.

    Args:
        args: Command arguments (excluding 'gh')
        token: Token exported to gh as GH_TOKEN
        input_text: Data written to stdin (secrets, JSON bodies)
        cwd: Working directory

    Returns:
        Command stdout

    Raises:
        RemoteConflictError: If the name is already taken
        RemoteValidationError: If GitHub rejected a name
        GitHubCliError: If gh fails otherwise or is not installed
    """
    env = dict(os.environ)
    if token:
        env["GH_TOKEN"] = token

    logger.debug(f"Running: gh {' '.join(args)}")
    try:
        result = subprocess.run(
            ["gh", *args],
            cwd=cwd,
            input=input_text,
            capture_output=True,
            text=True,
            check=True,
            encoding="utf-8",
            env=env,
        )
        return result.stdout
    except subprocess.CalledProcessError as e:
        error_msg = e.stderr.strip() if e.stderr else str(e)
        status_match = HTTP_STATUS_PATTERN.search(error_msg)
        status_code = int(status_match.group(1)) if status_match else None
        classified = classify_remote_error(error_msg, status_code)
        if type(classified) is HostingApiError:
            raise GitHubCliError(f"gh command failed: {error_msg}", status_code) from e
        raise classified from e
    except FileNotFoundError:
        raise GitHubCliError("GitHub CLI (gh) not installed") from None


def gh_api(
    path: str,
    token: Optional[str] = None,
    method: str = "GET",
    body: Optional[dict[str, Any]] = None,
) -> Any:
    """
    Call the GitHub REST API through `gh api`.

    Returns:
        Decoded JSON response (None for empty bodies)

    Raises:
        GitHubCliError: If gh fails or prints something other than JSON
    """
    args = ["api", "--method", method, path]
    input_text = None
    if body is not None:
        args.extend(["--input", "-"])
        input_text = json.dumps(body)
    output = run_gh(args, token=token, input_text=input_text)
    if not output.strip():
        return None
    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise GitHubCliError(f"gh api {path} returned invalid JSON: {e}") from e
