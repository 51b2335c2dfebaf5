"""SCM provider abstraction layer."""

import logging
import threading
from typing import Optional

from shipyard.config import Config
from shipyard.environment import Environment
from shipyard.errors import UserInputError, WrongHostError
from shipyard.scm.azdo import AzureDevOpsProvider
from shipyard.scm.git import GitClient
from shipyard.scm.github import GitHubProvider
from shipyard.scm.protocol import (
    BranchPolicy,
    GitRepository,
    PipelineDefinition,
    PipelineVariable,
    ProjectContext,
    ProviderKind,
    RepositoryDetails,
    ScmProvider,
    ServiceConnection,
    ServicePrincipalCredentials,
)

logger = logging.getLogger(__name__)


def build_providers(
    config: Config,
    env: Environment,
    cancel_event: Optional[threading.Event] = None,
) -> list[ScmProvider]:
    """All known providers, in detection order."""
    return [
        GitHubProvider(config, env),
        AzureDevOpsProvider(config, env, cancel_event=cancel_event),
    ]


def select_provider(
    providers: list[ScmProvider],
    kind: Optional[str] = None,
    remote_url: Optional[str] = None,
    default_kind: str = "github",
) -> ScmProvider:
    """
    Pick the provider for a project.

    Order: explicit kind, then the first provider that accepts remote_url,
    then default_kind.

    Raises:
        UserInputError: If kind is unknown, or the remote belongs to no provider
    """
    by_kind = {p.kind: p for p in providers}

    if kind:
        if kind not in by_kind:
            raise UserInputError(f"Unknown provider: {kind}. Must be one of: {', '.join(by_kind)}")
        return by_kind[kind]

    if remote_url:
        for provider in providers:
            try:
                provider.detect_repository(remote_url)
            except WrongHostError:
                continue
            logger.debug(f"Remote {remote_url} detected as {provider.display_name}")
            return provider
        raise UserInputError(
            f"Remote {remote_url} is not hosted by a supported provider "
            f"({', '.join(p.display_name for p in providers)})"
        )

    return by_kind[default_kind]


__all__ = [
    "AzureDevOpsProvider",
    "BranchPolicy",
    "GitClient",
    "GitHubProvider",
    "GitRepository",
    "PipelineDefinition",
    "PipelineVariable",
    "ProjectContext",
    "ProviderKind",
    "RepositoryDetails",
    "ScmProvider",
    "ServiceConnection",
    "ServicePrincipalCredentials",
    "build_providers",
    "select_provider",
]
