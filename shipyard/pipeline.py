"""Pipeline configuration state machine."""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from shipyard.config import Config, get_config
from shipyard.console import Console
from shipyard.credentials import resolve_credentials
from shipyard.environment import Environment
from shipyard.errors import ConfigurationStepError, ShipyardError
from shipyard.scm import build_providers, select_provider
from shipyard.scm.git import GitClient
from shipyard.scm.protocol import (
    BranchPolicy,
    PipelineDefinition,
    ProjectContext,
    RepositoryDetails,
    ScmProvider,
    ServiceConnection,
    ServicePrincipalCredentials,
)

CredentialsResolver = Callable[[Environment], ServicePrincipalCredentials]

logger = logging.getLogger(__name__)


class ConfigurationState(str, Enum):
    """Pipeline configuration states, in the only order they can be reached."""

    START = "start"
    CREDENTIALS_VERIFIED = "credentials_verified"
    REPOSITORY_RESOLVED = "repository_resolved"
    PROJECT_RESOLVED = "project_resolved"
    SERVICE_CONNECTION_READY = "service_connection_ready"
    PIPELINE_CREATED = "pipeline_created"
    POLICY_APPLIED = "policy_applied"
    DONE = "done"


@dataclass
class StateTransition:
    """Single state transition in history."""

    ts: str
    from_state: ConfigurationState
    to_state: ConfigurationState
    context: dict[str, object]


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid configuration transition: {from_state} -> {to_state}")


@dataclass
class ConfigurationResult:
    """Everything a configuration run produced."""

    provider: str
    repository: Optional[RepositoryDetails] = None
    project_name: Optional[str] = None
    project_id: Optional[str] = None
    service_connection: Optional[ServiceConnection] = None
    pipeline: Optional[PipelineDefinition] = None
    policy: Optional[BranchPolicy] = None
    pushed: bool = False
    build_id: Optional[str] = None
    context: Optional[ProjectContext] = None
    history: list[StateTransition] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True when some remote object needs manual fixing."""
        return (
            self.service_connection is not None
            and self.service_connection.authorization_error is not None
        )


class PipelineConfigurator:
    """
    Drives one SCM provider from pre-flight checks to branch policy.

    Provider-agnostic: every backend-specific call goes through the
    ScmProvider protocol.
    """

    VALID_TRANSITIONS: dict[ConfigurationState, set[ConfigurationState]] = {
        ConfigurationState.START: {ConfigurationState.CREDENTIALS_VERIFIED},
        ConfigurationState.CREDENTIALS_VERIFIED: {ConfigurationState.REPOSITORY_RESOLVED},
        ConfigurationState.REPOSITORY_RESOLVED: {ConfigurationState.PROJECT_RESOLVED},
        ConfigurationState.PROJECT_RESOLVED: {ConfigurationState.SERVICE_CONNECTION_READY},
        ConfigurationState.SERVICE_CONNECTION_READY: {ConfigurationState.PIPELINE_CREATED},
        ConfigurationState.PIPELINE_CREATED: {ConfigurationState.POLICY_APPLIED},
        ConfigurationState.POLICY_APPLIED: {ConfigurationState.DONE},
        ConfigurationState.DONE: set(),
    }

    def __init__(
        self,
        provider: ScmProvider,
        config: Config,
        env: Environment,
        console: Console,
        git: Optional[GitClient] = None,
        credentials: Optional[ServicePrincipalCredentials] = None,
        credentials_resolver: Optional[CredentialsResolver] = None,
    ) -> None:
        """Initialize configurator.

        Args:
            provider: Backend to configure
            config: Shipyard config
            env: Environment store (read and upserted)
            console: Operator console
            git: git client (default: GitClient())
            credentials: Deployment credentials; resolved from env when None
            credentials_resolver: Overrides how credentials are resolved
        """
        self.provider = provider
        self._config = config
        self._env = env
        self._console = console
        self._git = git or GitClient()
        self._credentials = credentials
        self._credentials_resolver = credentials_resolver or resolve_credentials
        self.state = ConfigurationState.START
        self.result = ConfigurationResult(provider=provider.kind)

    @property
    def history(self) -> list[StateTransition]:
        return self.result.history

    def can_transition(self, from_state: ConfigurationState, to_state: ConfigurationState) -> bool:
        """Check if a state transition is valid."""
        return to_state in self.VALID_TRANSITIONS.get(from_state, set())

    def _advance(self, to_state: ConfigurationState, context: dict[str, object]) -> None:
        if not self.can_transition(self.state, to_state):
            raise InvalidStateTransitionError(self.state.value, to_state.value)

        self.history.append(
            StateTransition(
                ts=datetime.now(timezone.utc).isoformat(),
                from_state=self.state,
                to_state=to_state,
                context=context,
            )
        )
        logger.info(f"Pipeline configuration: {self.state.value} -> {to_state.value}")
        self.state = to_state

    def run(self) -> ConfigurationResult:
        """
        Run every step in order.

        Returns:
            ConfigurationResult

        Raises:
            ConfigurationStepError: If a step fails; carries the state reached
        """
        steps: list[tuple[ConfigurationState, Callable[[], dict[str, object]]]] = [
            (ConfigurationState.CREDENTIALS_VERIFIED, self._verify_credentials),
            (ConfigurationState.REPOSITORY_RESOLVED, self._resolve_repository),
            (ConfigurationState.PROJECT_RESOLVED, self._resolve_project),
            (ConfigurationState.SERVICE_CONNECTION_READY, self._create_service_connection),
            (ConfigurationState.PIPELINE_CREATED, self._create_pipeline),
            (ConfigurationState.POLICY_APPLIED, self._apply_policy),
            (ConfigurationState.DONE, self._finish),
        ]

        for target, step in steps:
            try:
                context = step()
            except (ShipyardError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Step {target.value} failed after {self.state.value}: {e}")
                raise ConfigurationStepError(self.state.value, target.value, e) from e
            self._advance(target, context)

        return self.result

    # Steps

    def _verify_credentials(self) -> dict[str, object]:
        self.provider.pre_configure_check(self._console)
        if self._credentials is None:
            self._credentials = self._credentials_resolver(self._env)
        return {"provider": self.provider.kind}

    def _resolve_repository(self) -> dict[str, object]:
        root = self._config.project_root
        remote_name = self._config.remote_name
        remote_url = self._git.get_remote_url(root, remote_name)

        if remote_url:
            details = self.provider.detect_repository(remote_url)
        else:
            self._console.message(
                f"No '{remote_name}' remote found; "
                f"configuring a {self.provider.display_name} repository"
            )
            self.provider.resolve_or_create_project(self._console)
            repo = self.provider.resolve_or_create_repository(self._console)
            self._git.add_remote(root, repo.remote_url, remote_name)
            details = replace(
                self.provider.detect_repository(repo.remote_url),
                repo_id=repo.id or None,
                web_url=repo.web_url or None,
                push_needed=True,
            )

        details = self.provider.persist_repository(details)
        self.result.repository = details
        return {"owner": details.owner, "repo": details.repo_name}

    def _resolve_project(self) -> dict[str, object]:
        name, project_id = self.provider.resolve_or_create_project(self._console)
        self.result.project_name = name
        self.result.project_id = project_id
        self.result.context = ProjectContext(
            organization_or_owner=self._require_repository().owner,
            project_name_or_id=project_id or name,
            credentials=self._require_credentials(),
        )
        return {"project": name}

    def _require_repository(self) -> RepositoryDetails:
        assert self.result.repository is not None
        return self.result.repository

    def _require_credentials(self) -> ServicePrincipalCredentials:
        assert self._credentials is not None
        return self._credentials

    def _require_context(self) -> ProjectContext:
        assert self.result.context is not None
        return self.result.context

    def _create_service_connection(self) -> dict[str, object]:
        connection = self.provider.create_and_authorize_service_connection(
            self._require_context().credentials, self._require_repository(), self._console
        )
        self.result.service_connection = connection
        return {"connection": connection.name, "authorized": connection.authorized}

    def _create_pipeline(self) -> dict[str, object]:
        pipeline = self.provider.configure_pipeline(
            self._require_context().credentials,
            self._require_repository(),
            self._env,
            self._console,
        )
        self.result.pipeline = pipeline
        return {"pipeline": pipeline.name, "id": pipeline.id}

    def _apply_policy(self) -> dict[str, object]:
        assert self.result.pipeline is not None
        policy = self.provider.apply_branch_protection_policy(
            self.result.pipeline, self._require_repository()
        )
        self.result.policy = policy
        return {"branch": policy.target_branch}

    def _finish(self) -> dict[str, object]:
        details = self._require_repository()
        assert self.result.pipeline is not None

        if details.push_needed and self._console.confirm(
            f"Would you like to push the current branch to {details.repo_name}?", default=True
        ):
            root = self._config.project_root
            branch = self._git.current_branch(root) or self._config.default_branch
            self._git.push(root, branch, self._config.remote_name)
            self.result.pushed = True
            self.result.build_id = self.provider.queue_build(self.result.pipeline)

        self._console.message(
            f"\nSuccessfully configured {self.provider.display_name} repository "
            f"{details.web_url or details.repo_name}\n"
        )
        return {"pushed": self.result.pushed, "build": self.result.build_id}


def configure_pipeline(
    project_root: Path,
    environment: Environment,
    console: Console,
    provider_kind: Optional[str] = None,
    config: Optional[Config] = None,
    credentials: Optional[ServicePrincipalCredentials] = None,
    credentials_resolver: Optional[CredentialsResolver] = None,
    git: Optional[GitClient] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ConfigurationResult:
    """
    Configure continuous deployment for the project at project_root.

    The provider is picked from provider_kind, else from the git remote,
    else from the configured default.

    Raises:
        ConfigurationStepError: If a configuration step fails
        UserInputError: If the provider cannot be determined
    """
    config = config or get_config(project_root)
    git = git or GitClient()
    remote_url = git.get_remote_url(config.project_root, config.remote_name)

    providers = build_providers(config, environment, cancel_event=cancel_event)
    try:
        provider = select_provider(
            providers,
            kind=provider_kind,
            remote_url=remote_url,
            default_kind=config.default_provider,
        )
        logger.debug(f"Configuring pipeline with {provider.display_name}")

        configurator = PipelineConfigurator(
            provider,
            config,
            environment,
            console,
            git=git,
            credentials=credentials,
            credentials_resolver=credentials_resolver,
        )
        return configurator.run()
    finally:
        for each in providers:
            each.close()
