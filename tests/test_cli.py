"""Tests for the shipyard CLI."""

import json
from unittest.mock import patch

from shipyard.cli import shipyard
from shipyard.clean import BranchCleanResult
from shipyard.errors import (
    ConfigurationStepError,
    DeploymentQueryError,
    HostingApiError,
    PartialAuthorizationFailure,
)
from shipyard.infra.az_cli import DeploymentOperation
from shipyard.pipeline import ConfigurationResult, ConfigurationState, StateTransition
from shipyard.scm.protocol import (
    BranchPolicy,
    PipelineDefinition,
    RepositoryDetails,
    ServiceConnection,
)


def _result(authorized: bool = True) -> ConfigurationResult:
    connection = ServiceConnection(name="azconnection", type="azurerm", id="se-1")
    if authorized:
        connection.authorized = True
    else:
        connection.authorization_error = PartialAuthorizationFailure(
            "azconnection", "se-1", "forbidden"
        )
    return ConfigurationResult(
        provider="azdo",
        repository=RepositoryDetails(owner="org", repo_name="app", web_url="https://web/app"),
        project_name="proj",
        service_connection=connection,
        pipeline=PipelineDefinition(name="Azure Dev Deploy", id="42", repository="app"),
        policy=BranchPolicy(target_branch="main", required_pipeline="42"),
        history=[
            StateTransition(
                ts="2026-01-01T00:00:00+00:00",
                from_state=ConfigurationState.START,
                to_state=ConfigurationState.CREDENTIALS_VERIFIED,
                context={"provider": "azdo"},
            )
        ],
    )


class TestPipelineConfig:
    """Tests for `shipyard pipeline config`."""

    def test_success_json(self, runner, project_root):
        with patch("shipyard.cli.configure_pipeline") as mock_configure:
            mock_configure.return_value = _result()
            result = runner.invoke(
                shipyard,
                ["pipeline", "config", "--cwd", str(project_root), "--provider", "azdo", "--json"],
            )

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        assert output["provider"] == "azdo"
        assert output["pipeline"] == "Azure Dev Deploy"
        assert output["authorized"] is True
        assert output["history"][0]["to_state"] == "credentials_verified"
        kwargs = mock_configure.call_args.kwargs
        assert kwargs["provider_kind"] == "azdo"
        assert mock_configure.call_args.args[1].name == "dev"

    def test_no_prompt_disables_console(self, runner, project_root):
        with patch("shipyard.cli.configure_pipeline") as mock_configure:
            mock_configure.return_value = _result()
            runner.invoke(
                shipyard, ["pipeline", "config", "--cwd", str(project_root), "--no-prompt"]
            )

        console = mock_configure.call_args.args[2]
        assert console.interactive is False

    def test_partial_authorization_exit_code(self, runner, project_root):
        with patch("shipyard.cli.configure_pipeline") as mock_configure:
            mock_configure.return_value = _result(authorized=False)
            result = runner.invoke(shipyard, ["pipeline", "config", "--cwd", str(project_root)])

        assert result.exit_code == 4
        assert "not authorized" in result.output

    def test_step_failure(self, runner, project_root):
        error = ConfigurationStepError(
            "service_connection_ready", "pipeline_created", HostingApiError("boom", 500)
        )
        with patch("shipyard.cli.configure_pipeline") as mock_configure:
            mock_configure.side_effect = error
            result = runner.invoke(shipyard, ["pipeline", "config", "--cwd", str(project_root)])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "service_connection_ready" in result.output

    def test_unknown_environment(self, runner, project_root):
        result = runner.invoke(
            shipyard, ["pipeline", "config", "--cwd", str(project_root), "-e", "staging"]
        )

        assert result.exit_code == 1
        assert "staging" in result.output

    def test_invalid_provider_choice(self, runner, project_root):
        result = runner.invoke(
            shipyard, ["pipeline", "config", "--cwd", str(project_root), "--provider", "gitlab"]
        )

        assert result.exit_code == 2


class TestDeployment:
    """Tests for `shipyard deployment`."""

    def test_resources(self, runner):
        resources = [
            DeploymentOperation(
                target_resource_type="Microsoft.Web/sites",
                target_resource_name="app",
                provisioning_operation="Create",
                parent_deployment_name="resources",
            )
        ]
        with patch("shipyard.cli.resolve_deployment_resources") as mock_resolve:
            mock_resolve.return_value = resources
            result = runner.invoke(
                shipyard, ["deployment", "resources", "dev", "--subscription", "sub"]
            )

        assert result.exit_code == 0, result.output
        assert "Microsoft.Web/sites\tapp" in result.output
        mock_resolve.assert_called_once_with("sub", "dev")

    def test_resources_json(self, runner):
        with patch("shipyard.cli.resolve_deployment_resources") as mock_resolve:
            mock_resolve.return_value = []
            result = runner.invoke(
                shipyard, ["deployment", "resources", "dev", "--subscription", "sub", "--json"]
            )

        assert json.loads(result.output) == []

    def test_defaults_from_environment(self, runner, project_root, env_path):
        env_path.write_text(env_path.read_text() + 'AZURE_SUBSCRIPTION_ID="sub-from-env"\n')

        with patch("shipyard.cli.resolve_resource_groups") as mock_resolve:
            mock_resolve.return_value = ["rg-dev"]
            result = runner.invoke(shipyard, ["deployment", "groups", "--cwd", str(project_root)])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "rg-dev"
        mock_resolve.assert_called_once_with("sub-from-env", "dev")

    def test_missing_subscription(self, runner, project_root):
        result = runner.invoke(shipyard, ["deployment", "groups", "--cwd", str(project_root)])

        assert result.exit_code == 5
        assert "--subscription" in result.output

    def test_query_failure(self, runner):
        with patch("shipyard.cli.resolve_resource_groups") as mock_resolve:
            mock_resolve.side_effect = DeploymentQueryError("fetching current deployment: denied")
            result = runner.invoke(
                shipyard, ["deployment", "groups", "dev", "--subscription", "sub"]
            )

        assert result.exit_code == 1
        assert "denied" in result.output


def test_clean_branch(runner, tmp_path):
    results = [
        BranchCleanResult("https://github.com/octo/a.git", "feature", True),
        BranchCleanResult("https://github.com/octo/b.git", "feature", False, "branch not found"),
    ]
    with patch("shipyard.cli.clean_remote_branch") as mock_clean:
        mock_clean.return_value = results
        result = runner.invoke(
            shipyard,
            [
                "clean-branch",
                "feature",
                "--remote",
                "https://github.com/octo/a.git",
                "--remote",
                "https://github.com/octo/b.git",
                "--repo-name",
                "webapp",
                "--output",
                str(tmp_path),
            ],
        )

    assert result.exit_code == 0, result.output
    assert "has been deleted from remote https://github.com/octo/a.git" in result.output
    assert "Skipped https://github.com/octo/b.git" in result.output
    mock_clean.assert_called_once_with(
        ["https://github.com/octo/a.git", "https://github.com/octo/b.git"],
        "feature",
        "webapp",
        tmp_path,
    )
