"""Shipyard CLI entrypoint."""

import json
import logging
import signal
import sys
import threading
from functools import partial
from pathlib import Path
from typing import NoReturn, Optional

import click

from shipyard.clean import clean_remote_branch
from shipyard.config import VALID_PROVIDERS, get_config
from shipyard.console import ClickConsole
from shipyard.credentials import resolve_credentials
from shipyard.environment import load_environment
from shipyard.errors import (
    EXIT_PARTIAL,
    ConfigurationInterrupted,
    ShipyardError,
    UserInputError,
)
from shipyard.infra.az_cli import AzCli
from shipyard.infra.resource_manager import resolve_deployment_resources, resolve_resource_groups
from shipyard.logging import setup_logging
from shipyard.pipeline import ConfigurationResult, configure_pipeline

logger = logging.getLogger(__name__)

_cancel_event = threading.Event()


def _handle_interrupt(signum: int, frame: object) -> None:
    """Handle SIGINT (Ctrl+C)."""
    logger.info("Interrupted by user")
    _cancel_event.set()
    raise ConfigurationInterrupted()


def _fail(error: ShipyardError) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(error.exit_code)


def _project_root(cwd: Optional[Path]) -> Path:
    return (cwd or Path.cwd()).resolve()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.version_option(package_name="shipyard")
def shipyard(verbose: bool) -> None:
    """Shipyard - continuous deployment setup for Azure projects."""
    setup_logging(verbose=verbose)
    _cancel_event.clear()
    signal.signal(signal.SIGINT, _handle_interrupt)


@shipyard.group()
def pipeline() -> None:
    """Manage deployment pipelines."""


def _render_result(result: ConfigurationResult) -> dict[str, object]:
    connection = result.service_connection
    return {
        "provider": result.provider,
        "owner": result.repository.owner if result.repository else None,
        "repository": result.repository.repo_name if result.repository else None,
        "web_url": result.repository.web_url if result.repository else None,
        "project": result.project_name,
        "pipeline": result.pipeline.name if result.pipeline else None,
        "service_connection": connection.name if connection else None,
        "authorized": connection.authorized if connection else None,
        "policy_branch": result.policy.target_branch if result.policy else None,
        "pushed": result.pushed,
        "build_id": result.build_id,
        "history": [
            {
                "ts": h.ts,
                "from_state": h.from_state.value,
                "to_state": h.to_state.value,
                "context": h.context,
            }
            for h in result.history
        ],
    }


@pipeline.command("config")
@click.option(
    "--provider",
    type=click.Choice(VALID_PROVIDERS),
    default=None,
    help="Backend to configure (default: detected from the git remote)",
)
@click.option("-e", "--environment", "environment_name", default=None, help="Environment name")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project directory",
)
@click.option("--no-prompt", is_flag=True, help="Fail instead of prompting for missing values")
@click.option(
    "--credentials-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Service principal credentials (az ad sp create-for-rbac --sdk-auth output)",
)
@click.option(
    "--create-sp",
    "app_name",
    default=None,
    help="Create a service principal with this name when no credentials are found",
)
@click.option("--json", "json_output", is_flag=True, help="JSON output")
def pipeline_config(
    provider: Optional[str],
    environment_name: Optional[str],
    cwd: Optional[Path],
    no_prompt: bool,
    credentials_file: Optional[Path],
    app_name: Optional[str],
    json_output: bool,
) -> None:
    """
    Configure a deployment pipeline for the project.

    Creates (or reuses) the hosted repository, stores deployment
    credentials, creates the pipeline and protects the default branch.

    \b
    Exit codes:
        0: Pipeline configured
        1: A configuration step failed
        2: Missing credentials or interrupted
        4: Configured, but the service connection needs manual authorization
        5: Invalid arguments
    """
    project_root = _project_root(cwd)
    console = ClickConsole(interactive=not no_prompt)

    try:
        config = get_config(project_root)
        environment = load_environment(project_root, environment_name)
        resolver = partial(
            resolve_credentials,
            credentials_file=credentials_file,
            az_cli=AzCli() if app_name else None,
            app_name=app_name,
        )
        result = configure_pipeline(
            project_root,
            environment,
            console,
            provider_kind=provider,
            config=config,
            credentials_resolver=resolver,
            cancel_event=_cancel_event,
        )
    except ShipyardError as e:
        _fail(e)

    if json_output:
        click.echo(json.dumps(_render_result(result), sort_keys=True, indent=2))
    else:
        for h in result.history:
            click.echo(f"  {h.from_state.value} → {h.to_state.value}")

    connection = result.service_connection
    if result.partial and connection is not None:
        click.echo(f"Warning: {connection.authorization_error}", err=True)
        sys.exit(EXIT_PARTIAL)


@shipyard.group()
def deployment() -> None:
    """Inspect provisioned deployments."""


def _deployment_target(
    subscription_id: Optional[str],
    deployment_name: Optional[str],
    environment_name: Optional[str],
    cwd: Optional[Path],
) -> tuple[str, str]:
    if subscription_id and deployment_name:
        return subscription_id, deployment_name

    environment = load_environment(_project_root(cwd), environment_name)
    subscription_id = subscription_id or environment.subscription_id
    deployment_name = deployment_name or environment.name
    if not subscription_id:
        raise UserInputError("No subscription id; pass --subscription")
    if not deployment_name:
        raise UserInputError("No deployment name; pass DEPLOYMENT_NAME")
    return subscription_id, deployment_name


@deployment.command("resources")
@click.argument("deployment_name", required=False)
@click.option("--subscription", "subscription_id", default=None, help="Subscription id")
@click.option("-e", "--environment", "environment_name", default=None, help="Environment name")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project directory",
)
@click.option("--json", "json_output", is_flag=True, help="JSON output")
def deployment_resources(
    deployment_name: Optional[str],
    subscription_id: Optional[str],
    environment_name: Optional[str],
    cwd: Optional[Path],
    json_output: bool,
) -> None:
    """
    List resources created by a subscription deployment.

    Walks every nested deployment. Subscription and deployment name default
    to the environment's AZURE_SUBSCRIPTION_ID and AZURE_ENV_NAME.

    \b
    Non-mutating.
    """
    try:
        sub, name = _deployment_target(subscription_id, deployment_name, environment_name, cwd)
        resources = resolve_deployment_resources(sub, name)
    except ShipyardError as e:
        _fail(e)

    if json_output:
        output = [
            {
                "resource_type": op.target_resource_type,
                "resource_name": op.target_resource_name,
                "deployment": op.parent_deployment_name,
                "provisioning_state": op.provisioning_state,
            }
            for op in resources
        ]
        click.echo(json.dumps(output, indent=2))
        return

    if not resources:
        click.echo("No provisioned resources found")
        return
    for op in resources:
        click.echo(f"{op.target_resource_type}\t{op.target_resource_name}")


@deployment.command("groups")
@click.argument("deployment_name", required=False)
@click.option("--subscription", "subscription_id", default=None, help="Subscription id")
@click.option("-e", "--environment", "environment_name", default=None, help="Environment name")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project directory",
)
@click.option("--json", "json_output", is_flag=True, help="JSON output")
def deployment_groups(
    deployment_name: Optional[str],
    subscription_id: Optional[str],
    environment_name: Optional[str],
    cwd: Optional[Path],
    json_output: bool,
) -> None:
    """
    List resource groups a subscription deployment depends on.

    \b
    Non-mutating.
    """
    try:
        sub, name = _deployment_target(subscription_id, deployment_name, environment_name, cwd)
        groups = resolve_resource_groups(sub, name)
    except ShipyardError as e:
        _fail(e)

    if json_output:
        click.echo(json.dumps(groups, indent=2))
    else:
        for group in groups:
            click.echo(group)


@shipyard.command("clean-branch")
@click.argument("branch_name")
@click.option(
    "--remote", "remote_urls", multiple=True, required=True, help="Remote URL (repeatable)"
)
@click.option("--repo-name", required=True, help="Directory name for the clone")
@click.option(
    "--output",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where to clone (default: a temporary directory)",
)
def clean_branch(
    branch_name: str,
    remote_urls: tuple[str, ...],
    repo_name: str,
    output_dir: Optional[Path],
) -> None:
    """
    Delete a branch from every given remote.

    Remotes without the branch are skipped with a warning.

    \b
    Exit codes:
        0: Done (including skipped remotes)
        1: A git operation failed
    """
    try:
        results = clean_remote_branch(list(remote_urls), branch_name, repo_name, output_dir)
    except ShipyardError as e:
        _fail(e)

    for result in results:
        if result.deleted:
            click.echo(f"Branch {branch_name} has been deleted from remote {result.remote_url}.")
        else:
            click.echo(
                f"Skipped {result.remote_url}: branch {branch_name} does not exist", err=True
            )

