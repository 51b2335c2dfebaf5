"""SCM provider abstraction for pipeline configuration."""

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Protocol

from shipyard.console import Console
from shipyard.environment import Environment
from shipyard.errors import ConfigError, PartialAuthorizationFailure

ProviderKind = Literal["github", "azdo"]


@dataclass(frozen=True)
class RepositoryDetails:
    """Remote repository coordinates parsed from a git remote URL."""

    owner: str
    repo_name: str
    remote_url: str = ""
    project: Optional[str] = None
    repo_id: Optional[str] = None
    web_url: Optional[str] = None
    push_needed: bool = False


@dataclass(frozen=True)
class GitRepository:
    """Repository as reported by the hosting service."""

    name: str
    id: str
    remote_url: str
    web_url: str = ""
    ssh_url: str = ""


@dataclass(frozen=True)
class ServicePrincipalCredentials:
    """Service principal used by pipelines to deploy to a subscription."""

    client_id: str
    client_secret: str = field(repr=False)
    tenant_id: str
    subscription_id: str

    @classmethod
    def from_json(cls, document: str) -> "ServicePrincipalCredentials":
        """
        Parse an `az ad sp create-for-rbac --sdk-auth` style JSON document.

        Raises:
            ConfigError: If the document is not JSON or a field is missing
        """
        try:
            data = json.loads(document)
            return cls(
                client_id=data["clientId"],
                client_secret=data["clientSecret"],
                tenant_id=data["tenantId"],
                subscription_id=data["subscriptionId"],
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ConfigError(f"Invalid service principal credentials: {e}") from e

    def to_json(self) -> str:
        """Render in the --sdk-auth shape consumed by azure/login."""
        return json.dumps(
            {
                "clientId": self.client_id,
                "clientSecret": self.client_secret,
                "subscriptionId": self.subscription_id,
                "tenantId": self.tenant_id,
            }
        )


@dataclass(frozen=True)
class ProjectContext:
    """Organization/project the pipeline lives in, plus deploy credentials."""

    organization_or_owner: str
    project_name_or_id: Optional[str]
    credentials: ServicePrincipalCredentials


@dataclass(frozen=True)
class PipelineVariable:
    """Pipeline-scoped variable."""

    value: str = field(repr=False)
    is_secret: bool = False
    allow_override: bool = False


@dataclass
class PipelineDefinition:
    """CI pipeline created for the repository."""

    name: str
    id: Optional[str]
    repository: str
    variables: dict[str, PipelineVariable] = field(default_factory=dict)
    trigger_config: dict[str, Any] = field(default_factory=dict)
    agent_pool: Optional[str] = None


@dataclass
class ServiceConnection:
    """Credential binding the pipeline backend uses against the subscription."""

    name: str
    type: str
    id: Optional[str] = None
    authorized: bool = False
    authorization_error: Optional[PartialAuthorizationFailure] = None


@dataclass(frozen=True)
class BranchPolicy:
    """Blocking, PR-required build policy on a branch."""

    target_branch: str
    required_pipeline: str
    blocking: bool = True
    id: Optional[str] = None


class ScmProvider(Protocol):
    """Git hosting backend that can be configured for continuous deployment."""

    kind: ProviderKind
    display_name: str

    def detect_repository(self, remote_url: str) -> RepositoryDetails:
        """
        Parse a remote URL belonging to this provider's host.

        Args:
            remote_url: HTTPS or SSH git remote URL

        Returns:
            RepositoryDetails

        Raises:
            WrongHostError: If the URL belongs to another host
        """

    def pre_configure_check(self, console: Console) -> None:
        """
        Ensure access token and organization/owner are available.

        Prompts and persists only values that are missing.

        Raises:
            MissingCredentialError: If a value is missing and prompting is off
        """

    def resolve_or_create_project(self, console: Console) -> tuple[str, str]:
        """
        Look up the configured project, or let the operator choose or create one.

        Returns:
            (project_name, project_id)

        Raises:
            NotFoundError: If a configured project does not exist
        """

    def resolve_or_create_repository(self, console: Console) -> GitRepository:
        """
        Pick an existing remote repository or create a new one.

        Returns:
            GitRepository
        """

    def persist_repository(self, details: RepositoryDetails) -> RepositoryDetails:
        """
        Upsert detected repository coordinates into the environment store.

        Returns:
            Details completed with identifiers looked up remotely
        """

    def configure_pipeline(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        env: Environment,
        console: Console,
    ) -> PipelineDefinition:
        """
        Create the deployment pipeline with credentials as pipeline variables.

        Returns:
            PipelineDefinition
        """

    def create_and_authorize_service_connection(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        console: Console,
    ) -> ServiceConnection:
        """
        Create the service connection, then authorize it for all pipelines.

        An authorization failure is recorded on the result, not raised.

        Returns:
            ServiceConnection
        """

    def apply_branch_protection_policy(
        self,
        pipeline: PipelineDefinition,
        repo_details: RepositoryDetails,
    ) -> BranchPolicy:
        """
        Require the pipeline to pass before merging into the default branch.

        Returns:
            BranchPolicy
        """

    def queue_build(self, pipeline: PipelineDefinition) -> Optional[str]:
        """
        Start a pipeline run, where the backend does not start one on push.

        Returns:
            Run identifier, or None if the push itself triggers the run
        """

    def close(self) -> None:
        """Release connections held by the provider."""
