"""GitHub SCM provider (driven through the gh CLI)."""

import json
import logging
import re
from dataclasses import replace
from typing import Any, Literal, Optional

from shipyard.config import Config
from shipyard.console import Console
from shipyard.environment import Environment
from shipyard.errors import GitHubCliError, NotFoundError, WrongHostError
from shipyard.scm.gh import gh_api, run_gh
from shipyard.scm.protocol import (
    BranchPolicy,
    GitRepository,
    PipelineDefinition,
    RepositoryDetails,
    ServiceConnection,
    ServicePrincipalCredentials,
)
from shipyard.scm.utils import (
    ensure_config_value,
    persist_values,
    pipeline_variables,
    prompt_until_created,
)

REPO_JSON_FIELDS = "name,id,url,sshUrl"

logger = logging.getLogger(__name__)


class GitHubProvider:
    """GitHub implementation of the SCM provider protocol."""

    kind: Literal["github", "azdo"] = "github"
    display_name = "GitHub"

    def __init__(self, config: Config, env: Environment) -> None:
        self._config = config
        self._settings = config.github
        self._env = env

        host = re.escape(self._settings.host)
        name = r"[A-Za-z0-9_.-]+?"
        path = rf"(?P<owner>{name})/(?P<repo>{name})(?:\.git)?/?$"
        self._patterns = [
            re.compile(rf"^https://(?:[^@/]+@)?{host}/{path}"),
            re.compile(rf"^git@{host}:{path}"),
            re.compile(rf"^ssh://git@{host}/{path}"),
        ]

    @property
    def _token(self) -> str:
        return self._env.lookup(self._settings.token_key)

    def _gh(self, args: list[str], input_text: Optional[str] = None) -> str:
        return run_gh(args, token=self._token or None, input_text=input_text)

    def _gh_json(self, args: list[str]) -> Any:
        output = self._gh(args)
        try:
            return json.loads(output or "null")
        except json.JSONDecodeError as e:
            raise GitHubCliError(f"gh {' '.join(args[:2])} returned invalid JSON: {e}") from e

    def _api(self, path: str, method: str = "GET", body: Optional[dict[str, Any]] = None) -> Any:
        return gh_api(path, token=self._token or None, method=method, body=body)

    def detect_repository(self, remote_url: str) -> RepositoryDetails:
        """
        Parse a GitHub remote URL.

        Supported shapes:
          https://github.com/owner/repo(.git)
          git@github.com:owner/repo(.git)
          ssh://git@github.com/owner/repo(.git)

        Raises:
            WrongHostError: If the URL is not a GitHub remote
        """
        url = remote_url.strip()
        for pattern in self._patterns:
            match = pattern.match(url)
            if match:
                owner, repo = match.group("owner"), match.group("repo")
                return RepositoryDetails(
                    owner=owner,
                    repo_name=repo,
                    remote_url=url,
                    web_url=f"https://{self._settings.host}/{owner}/{repo}",
                )
        raise WrongHostError(remote_url, self.display_name)

    def pre_configure_check(self, console: Console) -> None:
        ensure_config_value(
            self._env,
            console,
            self._settings.token_key,
            "github personal access token",
            secret=True,
        )
        ensure_config_value(self._env, console, self._settings.owner_key, "github owner name")

    # Owners stand in for projects: GitHub has no project container

    def resolve_or_create_project(self, console: Console) -> tuple[str, str]:
        owner = self._env.lookup(self._settings.owner_key)
        if owner:
            try:
                account = self._api(f"users/{owner}")
            except GitHubCliError as e:
                if e.status_code == 404:
                    raise NotFoundError("GitHub owner", owner) from e
                raise
        else:
            user = self._api("user")
            orgs = self._api("user/orgs") or []
            accounts = [user, *orgs]
            options = [str(a["login"]) for a in accounts]
            account = accounts[console.select("Please choose the GitHub owner", options)]

        login, account_id = str(account["login"]), str(account["id"])
        if self._env.get(self._settings.owner_key) != login:
            persist_values(self._env, {self._settings.owner_key: login})
        return login, account_id

    def _owner(self, console: Console) -> str:
        owner = self._env.lookup(self._settings.owner_key)
        if owner:
            return owner
        return self.resolve_or_create_project(console)[0]

    def _view_repository(self, full_name: str) -> GitRepository:
        data = self._gh_json(["repo", "view", full_name, "--json", REPO_JSON_FIELDS])
        return _to_git_repository(data)

    def create_repository(self, owner: str, name: str) -> GitRepository:
        """
        Create a private repository.

        Raises:
            RemoteConflictError: If the name is taken
            RemoteValidationError: If the name is not allowed
        """
        self._gh(["repo", "create", f"{owner}/{name}", "--private"])
        return self._view_repository(f"{owner}/{name}")

    def resolve_or_create_repository(self, console: Console) -> GitRepository:
        owner = self._owner(console)
        choice = console.select(
            "How would you like to configure your remote?",
            ["Create a new private GitHub repository", "Select an existing GitHub repository"],
        )

        if choice == 0:
            repo = prompt_until_created(
                console,
                noun="repository",
                message="Enter the name for your new repository OR Hit enter to use this name",
                default=self._config.project_root.name,
                create=lambda name: self.create_repository(owner, name),
            )
        else:
            listed = self._gh_json(
                ["repo", "list", owner, "--json", REPO_JSON_FIELDS, "--limit", "1000"]
            )
            repos = [_to_git_repository(r) for r in listed or []]
            if not repos:
                raise NotFoundError("GitHub repository", "(any)", owner)
            options = [r.name for r in repos]
            repo = repos[console.select("Please choose an existing GitHub repository", options)]

        persist_values(
            self._env,
            {
                self._settings.repo_name_key: repo.name,
                self._settings.repo_web_url_key: repo.web_url,
            },
        )
        return repo

    def persist_repository(self, details: RepositoryDetails) -> RepositoryDetails:
        """Record detected coordinates in the environment."""
        web_url = (
            details.web_url or f"https://{self._settings.host}/{details.owner}/{details.repo_name}"
        )
        persist_values(
            self._env,
            {
                self._settings.owner_key: details.owner,
                self._settings.repo_name_key: details.repo_name,
                self._settings.repo_web_url_key: web_url,
            },
        )
        return replace(details, web_url=web_url)

    # Pipelines

    def configure_pipeline(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        env: Environment,
        console: Console,
    ) -> PipelineDefinition:
        workflow = self._config.project_root / self._settings.workflow_path
        if not workflow.exists():
            raise NotFoundError(
                "workflow file", self._settings.workflow_path, str(self._config.project_root)
            )

        full_name = f"{repo_details.owner}/{repo_details.repo_name}"
        variables = pipeline_variables(credentials, env)
        for name, variable in variables.items():
            kind = "secret" if variable.is_secret else "variable"
            # Values are passed on stdin, never as arguments
            self._gh([kind, "set", name, "--repo", full_name], input_text=variable.value)
            logger.debug(f"Set {kind} {name} on {full_name}")

        return PipelineDefinition(
            name=workflow.name,
            id=self._settings.workflow_path,
            repository=full_name,
            variables=variables,
            trigger_config={"push": {"branches": [self._config.default_branch]}},
        )

    def create_and_authorize_service_connection(
        self,
        credentials: ServicePrincipalCredentials,
        repo_details: RepositoryDetails,
        console: Console,
    ) -> ServiceConnection:
        name = self._settings.credentials_secret_name
        full_name = f"{repo_details.owner}/{repo_details.repo_name}"
        self._gh(["secret", "set", name, "--repo", full_name], input_text=credentials.to_json())
        # Repository secrets are readable by every workflow of the repository
        return ServiceConnection(name=name, type="github-secret", authorized=True)

    def apply_branch_protection_policy(
        self,
        pipeline: PipelineDefinition,
        repo_details: RepositoryDetails,
    ) -> BranchPolicy:
        if not pipeline.id:
            raise NotFoundError("pipeline definition id", pipeline.name)

        branch = self._config.default_branch
        # Rulesets match by ref name and apply before the branch exists
        ruleset = {
            "name": f"{self._config.pipeline_name} PR",
            "target": "branch",
            "enforcement": "active",
            "conditions": {"ref_name": {"include": [f"refs/heads/{branch}"], "exclude": []}},
            "rules": [
                {
                    "type": "pull_request",
                    "parameters": {
                        "required_approving_review_count": 0,
                        "dismiss_stale_reviews_on_push": False,
                        "require_code_owner_review": False,
                        "require_last_push_approval": False,
                        "required_review_thread_resolution": False,
                    },
                },
                {
                    "type": "required_status_checks",
                    "parameters": {
                        "strict_required_status_checks_policy": False,
                        "required_status_checks": [{"context": self._config.pipeline_name}],
                    },
                },
            ],
        }
        created = self._api(
            f"repos/{repo_details.owner}/{repo_details.repo_name}/rulesets",
            method="POST",
            body=ruleset,
        )
        return BranchPolicy(
            target_branch=branch,
            required_pipeline=pipeline.id,
            blocking=True,
            id=str(created["id"]) if created and created.get("id") is not None else None,
        )

    def queue_build(self, pipeline: PipelineDefinition) -> Optional[str]:
        # The workflow runs on push
        return None

    def close(self) -> None:
        """Nothing to release: gh keeps no connection between calls."""


def _to_git_repository(repo: dict[str, Any]) -> GitRepository:
    web_url = str(repo.get("url", ""))
    return GitRepository(
        name=str(repo["name"]),
        id=str(repo.get("id", "")),
        remote_url=f"{web_url}.git" if web_url else "",
        web_url=web_url,
        ssh_url=str(repo.get("sshUrl", "")),
    )
