"""Tests for the GitHub provider."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from shipyard.config import Config
from shipyard.environment import Environment
from shipyard.errors import (
    GitHubCliError,
    MissingCredentialError,
    NotFoundError,
    RemoteConflictError,
    WrongHostError,
)
from shipyard.scm.github import GitHubProvider
from shipyard.scm.protocol import (
    PipelineDefinition,
    RepositoryDetails,
    ServicePrincipalCredentials,
)

CREDENTIALS = ServicePrincipalCredentials(
    client_id="client-id",
    client_secret="client-secret",
    tenant_id="tenant-id",
    subscription_id="sub-id",
)

REPO_VIEW = {
    "name": "webapp",
    "id": "R_kgDO123",
    "url": "https://github.com/octo/webapp",
    "sshUrl": "git@github.com:octo/webapp.git",
}


@pytest.fixture
def gh_env(env_path: Path) -> Environment:
    env = Environment.from_file(env_path)
    env.update({"GITHUB_TOKEN": "ghp_token", "GITHUB_OWNER": "octo"})
    env.save()
    return env


@pytest.fixture
def provider(config: Config, gh_env: Environment) -> GitHubProvider:
    return GitHubProvider(config, gh_env)


@pytest.fixture
def repo_details() -> RepositoryDetails:
    return RepositoryDetails(owner="octo", repo_name="webapp")


class TestDetectRepository:
    """Tests for remote URL parsing."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/octo/webapp",
            "https://github.com/octo/webapp.git",
            "https://user@github.com/octo/webapp.git",
            "git@github.com:octo/webapp.git",
            "git@github.com:octo/webapp",
            "ssh://git@github.com/octo/webapp.git",
        ],
    )
    def test_supported_shapes(self, provider, url):
        """Every supported shape yields the same coordinates."""
        details = provider.detect_repository(url)

        assert (details.owner, details.repo_name) == ("octo", "webapp")
        assert details.web_url == "https://github.com/octo/webapp"
        assert details.project is None

    def test_dotted_repository_name(self, provider):
        details = provider.detect_repository("git@github.com:octo/my.site.git")

        assert details.repo_name == "my.site"

    @pytest.mark.parametrize(
        "url",
        [
            "https://dev.azure.com/org/project/_git/repo",
            "https://gitlab.com/octo/webapp.git",
            "git@ssh.dev.azure.com:v3/org/project/repo",
            "https://github.com/octo",
        ],
    )
    def test_foreign_hosts(self, provider, url):
        with pytest.raises(WrongHostError) as exc_info:
            provider.detect_repository(url)

        assert exc_info.value.provider == "GitHub"


class TestPreConfigureCheck:
    """Tests for credential pre-flight checks."""

    def test_present_values_no_prompt_no_write(self, provider, env_path, make_console):
        before = env_path.read_text()
        console = make_console()

        provider.pre_configure_check(console)
        provider.pre_configure_check(console)

        assert console.prompt_calls == []
        assert env_path.read_text() == before

    def test_missing_token_without_prompting(self, config, tmp_path, make_console):
        provider = GitHubProvider(config, Environment.from_file(tmp_path / "empty.env"))

        with pytest.raises(MissingCredentialError) as exc_info:
            provider.pre_configure_check(make_console(interactive=False))

        assert exc_info.value.key == "GITHUB_TOKEN"


class TestResolveOrCreateProject:
    """Tests for owner resolution."""

    def test_configured_owner(self, provider, make_console):
        with patch("shipyard.scm.github.gh_api") as mock_api:
            mock_api.return_value = {"login": "octo", "id": 7}

            assert provider.resolve_or_create_project(make_console()) == ("octo", "7")

        mock_api.assert_called_once_with("users/octo", token="ghp_token", method="GET", body=None)

    def test_configured_owner_missing(self, provider, make_console):
        with patch("shipyard.scm.github.gh_api") as mock_api:
            mock_api.side_effect = GitHubCliError("gh command failed: Not Found (HTTP 404)", 404)

            with pytest.raises(NotFoundError):
                provider.resolve_or_create_project(make_console())

    def test_choose_owner(self, config, env_path, make_console):
        env = Environment.from_file(env_path)
        env.set("GITHUB_TOKEN", "ghp_token")
        provider = GitHubProvider(config, env)
        console = make_console(selections=[1])

        with patch("shipyard.scm.github.gh_api") as mock_api:
            mock_api.side_effect = [
                {"login": "octo", "id": 7},
                [{"login": "octo-org", "id": 8}],
            ]

            assert provider.resolve_or_create_project(console) == ("octo-org", "8")

        assert console.select_calls[0][1] == ["octo", "octo-org"]
        assert Environment.from_file(env_path).get("GITHUB_OWNER") == "octo-org"


class TestRepositories:
    """Tests for repository creation and selection."""

    def test_create_reprompts_on_conflict(self, provider, make_console):
        """A taken name sends the operator back to the prompt."""
        console = make_console(selections=[0], prompts=["webapp", "webapp2"])
        view = {**REPO_VIEW, "name": "webapp2", "url": "https://github.com/octo/webapp2"}

        with patch("shipyard.scm.github.run_gh") as mock_gh:
            mock_gh.side_effect = [
                RemoteConflictError("Name already exists on this account", 422),
                "",
                json.dumps(view),
            ]

            repo = provider.resolve_or_create_repository(console)

        assert repo.name == "webapp2"
        assert repo.remote_url == "https://github.com/octo/webapp2.git"
        assert "error: the repository name 'webapp' is already in use\n" in console.messages
        create_args = mock_gh.call_args_list[1].args[0]
        assert create_args == ["repo", "create", "octo/webapp2", "--private"]

    def test_select_existing(self, provider, env_path, make_console):
        console = make_console(selections=[1, 0])

        with patch("shipyard.scm.github.run_gh") as mock_gh:
            mock_gh.return_value = json.dumps([REPO_VIEW])

            repo = provider.resolve_or_create_repository(console)

        assert repo.name == "webapp"
        saved = Environment.from_file(env_path)
        assert saved.get("GITHUB_REPOSITORY_NAME") == "webapp"
        assert saved.get("GITHUB_REPOSITORY_WEB_URL") == "https://github.com/octo/webapp"

    def test_select_existing_none(self, provider, make_console):
        with patch("shipyard.scm.github.run_gh") as mock_gh:
            mock_gh.return_value = "[]"

            with pytest.raises(NotFoundError):
                provider.resolve_or_create_repository(make_console(selections=[1]))

    def test_select_existing_garbled_output(self, provider, make_console):
        with patch("shipyard.scm.github.run_gh") as mock_gh:
            mock_gh.return_value = "webapp\tprivate"

            with pytest.raises(GitHubCliError, match="gh repo list returned invalid JSON"):
                provider.resolve_or_create_repository(make_console(selections=[1]))

    def test_persist_repository(self, provider, env_path):
        details = provider.detect_repository("git@github.com:octo/webapp.git")

        persisted = provider.persist_repository(details)

        assert persisted.web_url == "https://github.com/octo/webapp"
        saved = Environment.from_file(env_path)
        assert saved.get("GITHUB_OWNER") == "octo"
        assert saved.get("GITHUB_REPOSITORY_NAME") == "webapp"


class TestConfigurePipeline:
    """Tests for workflow variables and secrets."""

    def test_requires_workflow_file(self, provider, gh_env, repo_details, make_console):
        with pytest.raises(NotFoundError) as exc_info:
            provider.configure_pipeline(CREDENTIALS, repo_details, gh_env, make_console())

        assert exc_info.value.identifier == ".github/workflows/azure-dev.yml"

    def test_sets_secrets_and_variables(
        self, provider, project_root, gh_env, repo_details, make_console
    ):
        workflow = project_root / ".github" / "workflows" / "azure-dev.yml"
        workflow.parent.mkdir(parents=True)
        workflow.write_text("on: push\n")

        with patch("shipyard.scm.github.run_gh") as mock_gh:
            mock_gh.return_value = ""
            pipeline = provider.configure_pipeline(
                CREDENTIALS, repo_details, gh_env, make_console()
            )

        calls = {c.args[0][2]: (c.args[0], c.kwargs) for c in mock_gh.call_args_list}
        args, kwargs = calls["ARM_CLIENT_SECRET"]
        assert args == ["secret", "set", "ARM_CLIENT_SECRET", "--repo", "octo/webapp"]
        assert kwargs["input_text"] == "client-secret"
        assert calls["AZURE_LOCATION"][0][0] == "variable"
        assert calls["AZURE_LOCATION"][1]["input_text"] == "eastus2"
        assert calls["ARM_CLIENT_ID"][0][0] == "secret"
        assert len(calls) == 6
        assert pipeline.name == "azure-dev.yml"
        assert pipeline.repository == "octo/webapp"
        # Secret values never appear on the command line
        assert all("client-secret" not in c.args[0] for c in mock_gh.call_args_list)


def test_service_connection_is_credentials_secret(provider, repo_details, make_console):
    with patch("shipyard.scm.github.run_gh") as mock_gh:
        mock_gh.return_value = ""
        connection = provider.create_and_authorize_service_connection(
            CREDENTIALS, repo_details, make_console()
        )

    assert connection.name == "AZURE_CREDENTIALS"
    assert connection.authorized is True
    args, kwargs = mock_gh.call_args.args, mock_gh.call_args.kwargs
    assert args[0] == ["secret", "set", "AZURE_CREDENTIALS", "--repo", "octo/webapp"]
    assert json.loads(kwargs["input_text"])["clientSecret"] == "client-secret"


def test_branch_protection_ruleset(provider, repo_details):
    pipeline = PipelineDefinition(
        name="azure-dev.yml", id=".github/workflows/azure-dev.yml", repository="octo/webapp"
    )

    with patch("shipyard.scm.github.gh_api") as mock_api:
        mock_api.return_value = {"id": 314}
        policy = provider.apply_branch_protection_policy(pipeline, repo_details)

    assert policy.id == "314"
    assert policy.target_branch == "main"
    path = mock_api.call_args.args[0]
    body = mock_api.call_args.kwargs["body"]
    assert path == "repos/octo/webapp/rulesets"
    assert mock_api.call_args.kwargs["method"] == "POST"
    assert body["conditions"]["ref_name"]["include"] == ["refs/heads/main"]
    assert [r["type"] for r in body["rules"]] == ["pull_request", "required_status_checks"]


def test_queue_build_is_noop(provider):
    pipeline = PipelineDefinition(name="azure-dev.yml", id="x", repository="octo/webapp")

    assert provider.queue_build(pipeline) is None
