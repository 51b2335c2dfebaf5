"""Test fixtures and utilities."""

from pathlib import Path
from typing import Callable, Sequence

import click.testing
import pytest

from shipyard.config import Config
from shipyard.environment import Environment

# Keys the code falls back to in the process environment
ISOLATED_ENV_KEYS = (
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "GITHUB_OWNER",
    "AZURE_DEVOPS_EXT_PAT",
    "AZURE_DEVOPS_ORG_NAME",
    "AZURE_DEVOPS_PROJECT_NAME",
    "AZURE_DEVOPS_PROJECT_ID",
    "AZURE_CREDENTIALS",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
    "AZURE_TENANT_ID",
    "AZURE_SUBSCRIPTION_ID",
    "SHIPYARD_DEFAULT_BRANCH",
    "SHIPYARD_PROVIDER",
    "SHIPYARD_POLL_INTERVAL",
    "SHIPYARD_POLL_MAX_ATTEMPTS",
    "SHIPYARD_HTTP_TIMEOUT",
)


@pytest.fixture(autouse=True)
def isolated_environ(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove credential variables from the process environment."""
    for key in ISOLATED_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class FakeConsole:
    """Scripted console: answers come from queues, output is recorded."""

    def __init__(
        self,
        prompts: Sequence[str] = (),
        selections: Sequence[int] = (),
        confirms: Sequence[bool] = (),
        interactive: bool = True,
    ) -> None:
        self.interactive = interactive
        self._prompts = list(prompts)
        self._selections = list(selections)
        self._confirms = list(confirms)
        self.prompt_calls: list[tuple[str, str]] = []
        self.select_calls: list[tuple[str, list[str]]] = []
        self.messages: list[str] = []

    def prompt(self, message: str, default: str = "", secret: bool = False) -> str:
        self.prompt_calls.append((message, default))
        if not self._prompts:
            raise AssertionError(f"Unexpected prompt: {message}")
        return self._prompts.pop(0) or default

    def select(self, message: str, options: Sequence[str]) -> int:
        self.select_calls.append((message, list(options)))
        if not self._selections:
            raise AssertionError(f"Unexpected selection: {message}")
        return self._selections.pop(0)

    def confirm(self, message: str, default: bool = False) -> bool:
        if not self._confirms:
            return default
        return self._confirms.pop(0)

    def message(self, text: str) -> None:
        self.messages.append(text)


@pytest.fixture
def make_console() -> Callable[..., FakeConsole]:
    """Factory for scripted consoles."""

    def _make(
        prompts: Sequence[str] = (),
        selections: Sequence[int] = (),
        confirms: Sequence[bool] = (),
        interactive: bool = True,
    ) -> FakeConsole:
        return FakeConsole(prompts, selections, confirms, interactive)

    return _make


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Project directory with a 'dev' environment selected as default."""
    root = tmp_path / "myapp"
    env_dir = root / ".azure" / "dev"
    env_dir.mkdir(parents=True)
    (root / ".azure" / "config.json").write_text('{"version": 1, "defaultEnvironment": "dev"}')
    (env_dir / ".env").write_text('AZURE_ENV_NAME="dev"\nAZURE_LOCATION="eastus2"\n')
    return root


@pytest.fixture
def env_path(project_root: Path) -> Path:
    return project_root / ".azure" / "dev" / ".env"


@pytest.fixture
def env(env_path: Path) -> Environment:
    """Environment loaded from the project's 'dev' .env file."""
    return Environment.from_file(env_path)


@pytest.fixture
def config(project_root: Path) -> Config:
    """Config with fast polling."""
    return Config(project_root=project_root, poll_interval_seconds=0.001, poll_max_attempts=3)


@pytest.fixture
def runner() -> click.testing.CliRunner:
    """Click CliRunner for testing CLI commands."""
    return click.testing.CliRunner()

