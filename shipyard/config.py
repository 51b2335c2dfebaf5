"""Configuration loader."""

import configparser
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from shipyard.errors import ConfigError

DEFAULT_BRANCH = "main"
DEFAULT_PROVIDER = "github"
DEFAULT_POLL_INTERVAL_SECONDS = 0.7
DEFAULT_POLL_MAX_ATTEMPTS = 10
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
VALID_PROVIDERS = ("github", "azdo")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AzureDevOpsSettings:
    """Azure DevOps host names and environment key names."""

    host: str = "dev.azure.com"
    ssh_host: str = "ssh.dev.azure.com"
    api_version: str = "7.1"
    pat_key: str = "AZURE_DEVOPS_EXT_PAT"
    org_key: str = "AZURE_DEVOPS_ORG_NAME"
    project_id_key: str = "AZURE_DEVOPS_PROJECT_ID"
    project_name_key: str = "AZURE_DEVOPS_PROJECT_NAME"
    repo_id_key: str = "AZURE_DEVOPS_REPOSITORY_ID"
    repo_name_key: str = "AZURE_DEVOPS_REPOSITORY_NAME"
    repo_web_url_key: str = "AZURE_DEVOPS_REPOSITORY_WEB_URL"
    pipeline_yaml_path: str = ".azdo/pipelines/azure-dev.yml"
    project_description: str = "Azure Dev CLI Project"
    service_connection_name: str = "azconnection"
    policy_display_name: str = "Azure Dev Deploy PR"


@dataclass(frozen=True)
class GitHubSettings:
    """GitHub host names and environment key names."""

    host: str = "github.com"
    token_key: str = "GITHUB_TOKEN"
    owner_key: str = "GITHUB_OWNER"
    repo_name_key: str = "GITHUB_REPOSITORY_NAME"
    repo_web_url_key: str = "GITHUB_REPOSITORY_WEB_URL"
    workflow_path: str = ".github/workflows/azure-dev.yml"
    credentials_secret_name: str = "AZURE_CREDENTIALS"


@dataclass(frozen=True)
class Config:
    """
    Shipyard configuration.

    Built once at startup and passed to the components that need it.
    """

    project_root: Path
    default_branch: str = DEFAULT_BRANCH
    default_provider: str = DEFAULT_PROVIDER
    pipeline_name: str = "Azure Dev Deploy"
    cloud_environment: str = "AzureCloud"
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    remote_name: str = "origin"
    azdo: AzureDevOpsSettings = field(default_factory=AzureDevOpsSettings)
    github: GitHubSettings = field(default_factory=GitHubSettings)

    @property
    def config_path(self) -> Path:
        """Get config file path."""
        return self.project_root / ".shipyard" / "config"

    def config_exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def _parse_config_file(config_path: Path) -> dict[str, str]:
    """
    Parse INI-style config file.

    Returns:
        Dict of config values (flattened: DEFAULT keys upper-cased,
        section keys as section.key)
    """
    if not config_path.exists():
        return {}

    parser = configparser.ConfigParser()
    try:
        parser.read(config_path)
    except configparser.Error as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    config = {}

    for key, value in parser["DEFAULT"].items():
        config[key.upper()] = value

    for section in parser.sections():
        for key, value in parser[section].items():
            config[f"{section}.{key}"] = value

    return config


def _parse_float(name: str, raw: Optional[str], default: float) -> float:
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value, using default: {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} must be >0, using default: {default}")
        return default
    return value


def _parse_int(name: str, raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value, using default: {default}")
        return default
    if value < 1:
        logger.warning(f"{name} must be >=1, using default: {default}")
        return default
    return value


def get_config(project_root: Optional[Path] = None) -> Config:
    """
    Get current configuration.

    Resolves from:
    1. Built-in defaults
    2. Config file (.shipyard/config)
    3. Environment variables (SHIPYARD_*)

    Args:
        project_root: Project directory (defaults to cwd)

    Returns:
        Immutable Config

    Raises:
        ConfigError: If the provider kind is not supported
    """
    root = (project_root or Path.cwd()).resolve()
    file_config = _parse_config_file(root / ".shipyard" / "config")

    default_branch = (
        os.environ.get("SHIPYARD_DEFAULT_BRANCH")
        or file_config.get("DEFAULT_BRANCH")
        or DEFAULT_BRANCH
    )

    provider = (
        os.environ.get("SHIPYARD_PROVIDER") or file_config.get("PROVIDER") or DEFAULT_PROVIDER
    ).lower()
    if provider not in VALID_PROVIDERS:
        raise ConfigError(
            f"Invalid provider: {provider}. Must be one of: {', '.join(VALID_PROVIDERS)}"
        )

    poll_interval = _parse_float(
        "SHIPYARD_POLL_INTERVAL",
        os.environ.get("SHIPYARD_POLL_INTERVAL") or file_config.get("POLL_INTERVAL"),
        DEFAULT_POLL_INTERVAL_SECONDS,
    )
    poll_attempts = _parse_int(
        "SHIPYARD_POLL_MAX_ATTEMPTS",
        os.environ.get("SHIPYARD_POLL_MAX_ATTEMPTS") or file_config.get("POLL_MAX_ATTEMPTS"),
        DEFAULT_POLL_MAX_ATTEMPTS,
    )
    http_timeout = _parse_float(
        "SHIPYARD_HTTP_TIMEOUT",
        os.environ.get("SHIPYARD_HTTP_TIMEOUT") or file_config.get("HTTP_TIMEOUT"),
        DEFAULT_HTTP_TIMEOUT_SECONDS,
    )

    extra: dict[str, str] = {}
    pipeline_name = file_config.get("pipeline.name")
    if pipeline_name:
        extra["pipeline_name"] = pipeline_name
    remote_name = file_config.get("git.remote")
    if remote_name:
        extra["remote_name"] = remote_name

    azdo = AzureDevOpsSettings()
    azdo_yaml = file_config.get("azdo.pipeline_yaml_path")
    if azdo_yaml:
        azdo = replace(azdo, pipeline_yaml_path=azdo_yaml)

    github = GitHubSettings()
    workflow_path = file_config.get("github.workflow_path")
    if workflow_path:
        github = replace(github, workflow_path=workflow_path)

    logger.debug(f"Project root: {root}")
    logger.debug(f"Default branch: {default_branch}")
    logger.debug(f"Provider: {provider}")
    logger.debug(f"Polling: {poll_attempts} x {poll_interval}s")

    return Config(
        project_root=root,
        default_branch=default_branch,
        default_provider=provider,
        poll_interval_seconds=poll_interval,
        poll_max_attempts=poll_attempts,
        http_timeout_seconds=http_timeout,
        azdo=azdo,
        github=github,
        **extra,  # type: ignore[arg-type]
    )
