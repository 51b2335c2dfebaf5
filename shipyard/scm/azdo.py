"""Azure DevOps SCM provider."""

import logging
import re
import threading
from dataclasses import replace
from typing import Any, Callable, Literal, Optional
from urllib.parse import unquote

from shipyard.config import Config
from shipyard.console import Console
from shipyard.environment import Environment
from shipyard.errors import (
    HostingApiError,
    NotFoundError,
    OperationCancelledError,
    PartialAuthorizationFailure,
    ProjectCreationTimeoutError,
    WrongHostError,
)
from shipyard.scm.azdo_client import AzureDevOpsClient
from shipyard.scm.protocol import (
    BranchPolicy,
    GitRepository,
    PipelineDefinition,
    RepositoryDetails,
    ServiceConnection,
    ServicePrincipalCredentials,
)
from shipyard.scm.utils import (
    classify_remote_error,
    ensure_config_value,
    persist_values,
    pipeline_variables,
    prompt_until_created,
)

PROJECT_NAMING_HELP = (
    "https://learn.microsoft.com/azure/devops/organizations/settings/naming-restrictions"
    "#project-names"
)
DEFAULT_AGENT_QUEUE = "Default"
BUILD_POLICY_TYPE = "Build"

ClientFactory = Callable[[str, str], AzureDevOpsClient]

logger = logging.getLogger(__name__)


class AzureDevOpsProvider:
    """Azure DevOps implementation of the SCM provider protocol."""

    kind: Literal["github", "azdo"] = "azdo"
    display_name = "Azure DevOps"

    def __init__(
        self,
        config: Config,
        env: Environment,
        client_factory: Optional[ClientFactory] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Initialize provider.

        Args:
            config: Shipyard config
            env: Environment store holding organization/project/repo keys
            client_factory: Builds a client from (organization, pat)
            cancel_event: Set by the caller to abort operation polling
        """
        self._config = config
        self._settings = config.azdo
        self._env = env
        self._client_factory = client_factory or self._default_client
        self._client: Optional[AzureDevOpsClient] = None
        self._cancel_event = cancel_event or threading.Event()
        self._project_created = False

        host = re.escape(self._settings.host)
        ssh_host = re.escape(self._settings.ssh_host)
        segment = r"[^/]+"
        self._https_pattern = re.compile(
            rf"^https://(?:[^@/]+@)?{host}/(?P<org>{segment})/(?P<project>{segment})"
            rf"/_git/(?P<repo>{segment}?)/?$"
        )
        self._ssh_pattern = re.compile(
            rf"^(?:ssh://)?git@{ssh_host}[:/]v3/(?P<org>{segment})/(?P<project>{segment})"
            rf"/(?P<repo>{segment}?)/?$"
        )

    def _default_client(self, organization: str, pat: str) -> AzureDevOpsClient:
        return AzureDevOpsClient(
            organization,
            pat,
            host=self._settings.host,
            api_version=self._settings.api_version,
            timeout=self._config.http_timeout_seconds,
        )

    @property
    def client(self) -> AzureDevOpsClient:
        """REST client for the configured organization (created on first use)."""
        if self._client is None:
            organization = self._env.lookup(self._settings.org_key)
            pat = self._env.lookup(self._settings.pat_key)
            if not organization or not pat:
                raise NotFoundError(
                    "Azure DevOps credentials",
                    f"{self._settings.org_key}/{self._settings.pat_key}",
                    "environment",
                )
            self._client = self._client_factory(organization, pat)
        return self._client

    @property
    def organization(self) -> str:
        return self._env.lookup(self._settings.org_key)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def detect_repository(self, remote_url: str) -> RepositoryDetails:
        """
        Parse an Azure DevOps remote URL.

        Supported shapes:
          https://org@dev.azure.com/org/project/_git/repo
          https://dev.azure.com/org/project/_git/repo
          git@ssh.dev.azure.com:v3/org/project/repo

        Raises:
            WrongHostError: If the URL is not an Azure DevOps remote
        """
        url = remote_url.strip()
        match = self._https_pattern.match(url) or self._ssh_pattern.match(url)
        if not match:
            raise WrongHostError(remote_url, self.display_name)

        org = unquote(match.group("org"))
        project = unquote(match.group("project"))
        repo = unquote(match.group("repo"))
        return RepositoryDetails(
            owner=org,
            repo_name=repo,
            remote_url=url,
            project=project,
            web_url=f"https://{self._settings.host}/{match.group('org')}/"
            f"{match.group('project')}/_git/{match.group('repo')}",
        )

    def pre_configure_check(self, console: Console) -> None:
        ensure_config_value(
            self._env,
            console,
            self._settings.pat_key,
            "azure devops personal access token",
            secret=True,
        )
        ensure_config_value(
            self._env,
            console,
            self._settings.org_key,
            "azure devops organization name",
        )

    # Projects

    def resolve_or_create_project(self, console: Console) -> tuple[str, str]:
        configured = self._env.lookup(self._settings.project_name_key)
        if configured:
            project = self._get_project_by_name(configured)
            logger.debug(f"Using configured Azure DevOps project {configured}")
        else:
            choice = console.select(
                "How would you like to configure your project?",
                ["Create a new Azure DevOps Project", "Choose an existing Azure DevOps Project"],
            )
            if choice == 0:
                project = self._create_project_interactive(console)
                self._project_created = True
            else:
                project = self._choose_existing_project(console)

        name, project_id = str(project["name"]), str(project["id"])
        if (
            self._env.get(self._settings.project_name_key) != name
            or self._env.get(self._settings.project_id_key) != project_id
        ):
            persist_values(
                self._env,
                {
                    self._settings.project_name_key: name,
                    self._settings.project_id_key: project_id,
                },
            )
        return name, project_id

    def _get_project_by_name(self, name: str) -> dict[str, Any]:
        for project in self.client.get_projects():
            if project.get("name") == name:
                return project
        raise NotFoundError("Azure DevOps project", name, self.organization)

    def _choose_existing_project(self, console: Console) -> dict[str, Any]:
        projects = self.client.get_projects()
        if not projects:
            raise NotFoundError("Azure DevOps project", "(any)", self.organization)
        options = [str(p["name"]) for p in projects]
        idx = console.select("Please choose an existing Azure DevOps Project", options)
        return projects[idx]

    def _create_project_interactive(self, console: Console) -> dict[str, Any]:
        return prompt_until_created(
            console,
            noun="project",
            message=(
                "Enter the name for your new Azure DevOps Project OR Hit enter to use this name"
            ),
            default=self._config.project_root.name,
            create=self.create_project,
            naming_help=PROJECT_NAMING_HELP,
        )

    def _process_template_id(self) -> str:
        processes = self.client.get_processes()
        if not processes:
            raise NotFoundError("process template", "(any)", self.organization)
        default = next((p for p in processes if p.get("isDefault")), processes[0])
        return str(default["id"])

    def create_project(self, name: str) -> dict[str, Any]:
        """
        Create a project and wait until the service reports it created.

        Raises:
            RemoteConflictError: If the name is taken
            RemoteValidationError: If the name is not allowed
            ProjectCreationTimeoutError: If polling exhausts its attempts
        """
        operation = self.client.queue_create_project(
            name, self._settings.project_description, self._process_template_id()
        )
        self._wait_for_operation(str(operation["id"]), name)
        return self._get_project_by_name(name)

    def _wait_for_operation(self, operation_id: str, project_name: str) -> None:
        interval = self._config.poll_interval_seconds
        max_attempts = self._config.poll_max_attempts

        for attempt in range(1, max_attempts + 1):
            operation = self.client.get_operation(operation_id)
            status = str(operation.get("status", "")).lower()
            logger.debug(f"Project {project_name} creation status ({attempt}): {status}")

            if status == "succeeded":
                return
            if status in ("failed", "cancelled"):
                message = operation.get("resultMessage") or f"project creation {status}"
                raise classify_remote_error(str(message))

            if attempt < max_attempts and self._cancel_event.wait(interval):
                raise OperationCancelledError(f"Stopped waiting for project {project_name}")

        raise ProjectCreationTimeoutError(project_name, max_attempts, interval)

    # Repositories

    def _project(self, console: Console) -> tuple[str, str]:
        name = self._env.lookup(self._settings.project_name_key)
        project_id = self._env.lookup(self._settings.project_id_key)
        if name and project_id:
            return name, project_id
        return self.resolve_or_create_project(console)

    def resolve_or_create_repository(self, console: Console) -> GitRepository:
        project_name, project_id = self._project(console)
        repos = self.client.get_repositories(project_id)

        if self._project_created:
            # New projects come with a repository named after the project
            repo = next((r for r in repos if r.get("name") == project_name), None)
            if repo is None:
                raise NotFoundError("default git repository", project_name, project_name)
        else:
            choice = console.select(
                "How would you like to configure your git repository?",
                [
                    "Select an existing Azure DevOps Repository",
                    "Create a new Azure DevOps Repository",
                ],
            )
            if choice == 0:
                if not repos:
                    raise NotFoundError("git repository", "(any)", project_name)
                options = [str(r["name"]) for r in repos]
                repo = repos[
                    console.select("Please choose an existing Azure DevOps Repository", options)
                ]
            else:
                repo = prompt_until_created(
                    console,
                    noun="repository",
                    message="Enter the name for your new Azure DevOps Repository",
                    default=self._config.project_root.name,
                    create=lambda name: self.client.create_repository(project_id, name),
                )

        git_repo = _to_git_repository(repo)
        persist_values(
            self._env,
            {
                self._settings.repo_name_key: git_repo.name,
                self._settings.repo_id_key: git_repo.id,
                self._settings.repo_web_url_key: git_repo.web_url,
            },
        )
        return git_repo

    def persist_repository(self, details: RepositoryDetails) -> RepositoryDetails:
        """
        Record detected coordinates in the environment and fill in the repo id.

        Raises:
            NotFoundError: If the repository does not exist in the project
        """
        project = details.project or self._env.lookup(self._settings.project_name_key)
        repo_id, web_url = details.repo_id, details.web_url
        if not repo_id:
            repos = self.client.get_repositories(project)
            match = next((r for r in repos if r.get("name") == details.repo_name), None)
            if match is None:
                raise NotFoundError("git repository", details.repo_name, project)
            repo_id = str(match["id"])
            web_url = match.get("webUrl") or web_url

        persist_values(
            self._env,
            {
                self._settings.org_key: details.owner,
                self._settings.project_name_key: project,
                self._settings.repo_name_key: details.repo_name,
                self._settings.repo_id_key: repo_id,
                self._settings.repo_web_url_key: web_url or "",
            },
        )
        return replace(details, project=project, repo_id=repo_id, web_url=web_url)

    # Pipelines

    def _require_project_id(self) -> str:
        project_id = self._env.lookup(self._settings.project_id_key)
        if not project_id:
            raise NotFoundError(
                "Azure DevOps project id", self._settings.project_id_key, "environment"
            )
        return project_id

    def _get_agent_queue(self, project_id: str) -> dict[str, Any]:
        for queue in self.client.get_agent_queues(project_id):
            if queue.get("name") == DEFAULT_AGENT_QUEUE:
                return queue
        raise NotFoundError("default agent queue", DEFAULT_AGENT_QUEUE, f"project {project_id}")

    def configure_pipeline(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        env: Environment,
        console: Console,
    ) -> PipelineDefinition:
        project_id = self._require_project_id()
        variables = pipeline_variables(credentials, env)
        queue = self._get_agent_queue(project_id)

        trigger = {
            "batchChanges": False,
            "maxConcurrentBuildsPerBranch": 1,
            "pollingInterval": 0,
            "isSettingsSourceOptionSupported": True,
            "defaultSettingsSourceType": 2,
            "settingsSourceType": 2,
            "triggerType": 2,
        }
        repository: dict[str, Any] = {
            "type": "tfsgit",
            "name": repo_details.repo_name,
            "defaultBranch": f"refs/heads/{self._config.default_branch}",
        }
        if repo_details.repo_id:
            repository["id"] = repo_details.repo_id

        definition = {
            "name": self._config.pipeline_name,
            "type": "build",
            "queueStatus": "enabled",
            "repository": repository,
            "process": {"type": 2, "yamlFilename": self._settings.pipeline_yaml_path},
            "queue": {"id": queue["id"], "name": queue["name"]},
            "variables": {
                name: {
                    "value": variable.value,
                    "isSecret": variable.is_secret,
                    "allowOverride": variable.allow_override,
                }
                for name, variable in variables.items()
            },
            "triggers": [trigger],
        }

        created = self.client.create_definition(project_id, definition)
        logger.info(f"Created pipeline {created.get('name')} ({created.get('id')})")
        return PipelineDefinition(
            name=str(created.get("name", self._config.pipeline_name)),
            id=str(created["id"]),
            repository=repo_details.repo_name,
            variables=variables,
            trigger_config=trigger,
            agent_pool=str(queue["name"]),
        )

    def create_and_authorize_service_connection(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        console: Console,
    ) -> ServiceConnection:
        project_id = self._require_project_id()
        project_name = self._env.lookup(self._settings.project_name_key)
        name = self._settings.service_connection_name

        endpoint = {
            "type": "azurerm",
            "owner": "library",
            "url": "https://management.azure.com/",
            "name": name,
            "isShared": False,
            "authorization": {
                "scheme": "ServicePrincipal",
                "parameters": {
                    "serviceprincipalid": credentials.client_id,
                    "serviceprincipalkey": credentials.client_secret,
                    "authenticationType": "spnKey",
                    "tenantid": credentials.tenant_id,
                },
            },
            "data": {
                "environment": self._config.cloud_environment,
                "subscriptionId": credentials.subscription_id,
                "subscriptionName": "azure subscription",
                "scopeLevel": "Subscription",
                "creationMode": "Manual",
            },
            "serviceEndpointProjectReferences": [
                {"projectReference": {"id": project_id, "name": project_name}, "name": name}
            ],
        }
        created = self.client.create_service_endpoint(project_id, endpoint)
        connection = ServiceConnection(name=name, type="azurerm", id=str(created["id"]))

        try:
            self.client.authorize_project_resources(
                project_id,
                [{"type": "endpoint", "authorized": True, "id": connection.id}],
            )
            connection.authorized = True
        except HostingApiError as e:
            failure = PartialAuthorizationFailure(name, connection.id, str(e))
            logger.warning(failure.message)
            console.message(
                f"warning: {failure.message}\n"
                "Authorize it for all pipelines in the project settings "
                "before running the pipeline."
            )
            connection.authorization_error = failure

        return connection

    def apply_branch_protection_policy(
        self,
        pipeline: PipelineDefinition,
        repo_details: RepositoryDetails,
    ) -> BranchPolicy:
        if not pipeline.id:
            raise NotFoundError("pipeline definition id", pipeline.name)
        project_id = self._require_project_id()
        repo_id = repo_details.repo_id or self._env.lookup(self._settings.repo_id_key)
        if not repo_id:
            raise NotFoundError("repository id", repo_details.repo_name)

        policy_types = self.client.get_policy_types(project_id)
        policy_type = next(
            (t for t in policy_types if t.get("displayName") == BUILD_POLICY_TYPE), None
        )
        if policy_type is None:
            raise NotFoundError("policy type", BUILD_POLICY_TYPE, f"project {project_id}")

        ref_name = f"refs/heads/{self._config.default_branch}"
        configuration = {
            "type": {"id": policy_type["id"]},
            "revision": 1,
            "isDeleted": False,
            "isBlocking": True,
            "isEnabled": True,
            "settings": {
                "buildDefinitionId": int(pipeline.id),
                "displayName": self._settings.policy_display_name,
                "manualQueueOnly": False,
                "queueOnSourceUpdateOnly": True,
                "validDuration": 720,
                "scope": [{"repositoryId": repo_id, "refName": ref_name, "matchKind": "Exact"}],
            },
        }
        created = self.client.create_policy_configuration(project_id, configuration)
        return BranchPolicy(
            target_branch=self._config.default_branch,
            required_pipeline=pipeline.id,
            blocking=True,
            id=str(created.get("id")) if created.get("id") is not None else None,
        )

    def queue_build(self, pipeline: PipelineDefinition) -> Optional[str]:
        if not pipeline.id:
            raise NotFoundError("pipeline definition id", pipeline.name)
        build = self.client.queue_build(self._require_project_id(), pipeline.id)
        return str(build.get("id"))


def _to_git_repository(repo: dict[str, Any]) -> GitRepository:
    return GitRepository(
        name=str(repo["name"]),
        id=str(repo["id"]),
        remote_url=str(repo.get("remoteUrl", "")),
        web_url=str(repo.get("webUrl", "")),
        ssh_url=str(repo.get("sshUrl", "")),
    )
