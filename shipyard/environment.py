"""File-backed environment key/value store (.azure/<name>/.env)."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, set_key

from shipyard.errors import ConfigError, NotFoundError

ENVIRONMENT_DIR_NAME = ".azure"
DOT_ENV_FILE_NAME = ".env"
CONFIG_FILE_NAME = "config.json"

ENV_NAME_KEY = "AZURE_ENV_NAME"
LOCATION_KEY = "AZURE_LOCATION"
SUBSCRIPTION_ID_KEY = "AZURE_SUBSCRIPTION_ID"

logger = logging.getLogger(__name__)


def read_dot_env(path: Path) -> dict[str, str]:
    """
    Read KEY=value pairs from a .env file.

    Quoted values may span lines and unquoted values may carry a trailing
    `# comment`. Variable references are kept literally.

    Raises:
        ConfigError: If the file cannot be read
    """
    try:
        values = dotenv_values(path, interpolate=False, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read environment file {path}: {e}") from e
    return {key: value or "" for key, value in values.items()}


class Environment:
    """
    Named environment backed by a .env file.

    Writes are merge-writes: save() re-reads the file, overlays the keys set
    through this instance (last write wins per key) and keeps every other
    key already on disk.
    """

    def __init__(self, path: Optional[Path], values: Optional[dict[str, str]] = None) -> None:
        self.path = path
        self.values: dict[str, str] = dict(values or {})
        self._dirty: set[str] = set()

    @classmethod
    def from_file(cls, path: Path) -> "Environment":
        """
        Load an environment from a .env file.

        Args:
            path: Path to the .env file

        Returns:
            Environment (empty if the file does not exist yet)
        """
        if not path.exists():
            logger.debug(f"Environment file does not exist yet: {path}")
            return cls(path)
        return cls(path, read_dot_env(path))

    def get(self, key: str, default: str = "") -> str:
        """Get a value from this environment only (not the process environment)."""
        return self.values.get(key, default)

    def lookup(self, key: str) -> str:
        """
        Get a value from this environment, falling back to the process environment.

        Returns:
            Value, or empty string if neither defines a non-empty value
        """
        value = self.values.get(key, "")
        if value:
            return value
        return os.environ.get(key, "")

    def set(self, key: str, value: str) -> None:
        """Set a value (persisted on the next save())."""
        self.values[key] = value
        self._dirty.add(key)

    def update(self, values: dict[str, str]) -> None:
        """Set several values at once."""
        for key, value in values.items():
            self.set(key, value)

    @property
    def name(self) -> str:
        """Environment name (AZURE_ENV_NAME)."""
        return self.values.get(ENV_NAME_KEY, "")

    @property
    def location(self) -> str:
        """Azure location (AZURE_LOCATION)."""
        return self.values.get(LOCATION_KEY, "")

    @property
    def subscription_id(self) -> str:
        """Azure subscription (AZURE_SUBSCRIPTION_ID)."""
        return self.values.get(SUBSCRIPTION_ID_KEY, "")

    def save(self) -> None:
        """
        Merge-write pending keys to the backing file.

        The current file is copied, pending keys are upserted into the copy
        and the copy replaces the file. Lines of untouched keys and comments
        are kept as they are.

        Raises:
            ConfigError: If the environment has no file or the write fails
        """
        if self.path is None:
            raise ConfigError("Environment has no backing file")

        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            current = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
            temp_path.write_text(current, encoding="utf-8")
            for key in sorted(self._dirty):
                set_key(temp_path, key, self.values[key], quote_mode="always")
            temp_path.replace(self.path)
        except OSError as e:
            raise ConfigError(f"Failed to write environment file {self.path}: {e}") from e

        logger.debug(f"Saved {len(self._dirty)} keys to {self.path}")
        # Pick up keys written by others since load
        self.values = {**read_dot_env(self.path), **{k: self.values[k] for k in self._dirty}}
        self._dirty.clear()


def environment_root(project_root: Path) -> Path:
    """Directory holding all environments of a project."""
    return project_root / ENVIRONMENT_DIR_NAME


def default_environment_name(project_root: Path) -> Optional[str]:
    """
    Read the default environment name from .azure/config.json.

    Returns:
        Name, or None if no default is configured
    """
    config_path = environment_root(project_root) / CONFIG_FILE_NAME
    if not config_path.exists():
        return None
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read {config_path}: {e}")
        return None
    name = data.get("defaultEnvironment")
    return str(name) if name else None


def list_environment_names(project_root: Path) -> list[str]:
    """List environments that have a .env file."""
    root = environment_root(project_root)
    if not root.exists():
        return []
    return sorted(p.parent.name for p in root.glob(f"*/{DOT_ENV_FILE_NAME}"))


def dot_env_path(project_root: Path, name: Optional[str] = None) -> Path:
    """
    Resolve the .env file of a named or default environment.

    Args:
        project_root: Project directory
        name: Environment name (default environment when None)

    Returns:
        Path to the .env file

    Raises:
        NotFoundError: If no environment exists, the named one is missing,
            or no default is configured
    """
    names = list_environment_names(project_root)
    if not names:
        raise NotFoundError("environment", "(any)", str(environment_root(project_root)))

    target = name or default_environment_name(project_root)
    if target is None:
        raise NotFoundError("default environment", "(unset)", str(project_root))
    if target not in names:
        raise NotFoundError("environment", target, str(project_root))

    return environment_root(project_root) / target / DOT_ENV_FILE_NAME


def load_environment(project_root: Path, name: Optional[str] = None) -> Environment:
    """Load a named or default environment of a project."""
    return Environment.from_file(dot_env_path(project_root, name))
