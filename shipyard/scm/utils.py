"""Helpers shared by the SCM provider backends."""

import logging
import os
from typing import Callable, Optional, TypeVar

from shipyard.console import Console
from shipyard.environment import Environment
from shipyard.errors import (
    HostingApiError,
    MissingCredentialError,
    RemoteConflictError,
    RemoteValidationError,
)
from shipyard.scm.protocol import PipelineVariable, ServicePrincipalCredentials

T = TypeVar("T")

CONFLICT_MARKERS = ("already exists", "already in use")
VALIDATION_MARKERS = ("is not valid", "name is invalid", "invalid name")

logger = logging.getLogger(__name__)


def classify_remote_error(message: str, status_code: Optional[int] = None) -> HostingApiError:
    """
    Map a hosting-service error message to the matching exception type.

    Args:
        message: Error text from the service
        status_code: HTTP status, if known

    Returns:
        RemoteConflictError, RemoteValidationError or HostingApiError
    """
    lowered = message.lower()
    if status_code == 409 or any(marker in lowered for marker in CONFLICT_MARKERS):
        return RemoteConflictError(message, status_code)
    if any(marker in lowered for marker in VALIDATION_MARKERS):
        return RemoteValidationError(message, status_code)
    return HostingApiError(message, status_code)


def ensure_config_value(
    env: Environment,
    console: Console,
    key: str,
    label: str,
    secret: bool = False,
) -> str:
    """
    Make sure a configuration value exists in the environment or process env.

    Present values are never overwritten. A missing value is prompted for
    and saved to the environment file.

    Args:
        env: Environment store
        console: Console used for prompting
        key: Environment key (e.g., "AZURE_DEVOPS_EXT_PAT")
        label: Human-readable name used in prompts and errors
        secret: Hide the prompted input

    Returns:
        The value

    Raises:
        MissingCredentialError: If the value is missing and prompting is off
            or the operator gave an empty answer
    """
    value = env.get(key)
    if value:
        return value

    value = os.environ.get(key, "")
    if value:
        logger.debug(f"Using {key} from process environment")
        return value

    if not console.interactive:
        raise MissingCredentialError(key, label)

    value = console.prompt(f"Please enter the {label}", secret=secret)
    if not value:
        raise MissingCredentialError(key, label)

    persist_values(env, {key: value})
    return value


def persist_values(env: Environment, values: dict[str, str]) -> None:
    """Upsert values into the environment file; other keys are preserved."""
    env.update(values)
    env.save()
    logger.debug(f"Persisted environment keys: {', '.join(sorted(values))}")


def prompt_until_created(
    console: Console,
    noun: str,
    message: str,
    default: str,
    create: Callable[[str], T],
    naming_help: str = "",
) -> T:
    """
    Prompt for a name and create the remote object, re-prompting on rejection.

    Name conflicts and invalid names send the operator back to the prompt;
    the loop has no attempt ceiling. Any other error propagates.

    Args:
        console: Console used for prompting
        noun: Object kind used in messages (e.g., "project")
        message: Prompt text
        default: Default name
        create: Callable that creates the object from a name

    Returns:
        Whatever create returned
    """
    while True:
        name = console.prompt(message, default=default)
        try:
            return create(name)
        except RemoteConflictError:
            console.message(f"error: the {noun} name '{name}' is already in use\n")
        except RemoteValidationError:
            hint = f" See {naming_help}" if naming_help else ""
            console.message(f"error: the {noun} name '{name}' is not valid.{hint}\n")


def pipeline_variables(
    credentials: ServicePrincipalCredentials, env: Environment
) -> dict[str, PipelineVariable]:
    """Pipeline-scoped variables carrying the deployment identity; none overridable."""
    return {
        "AZURE_SUBSCRIPTION_ID": PipelineVariable(credentials.subscription_id),
        "ARM_TENANT_ID": PipelineVariable(credentials.tenant_id),
        "ARM_CLIENT_ID": PipelineVariable(credentials.client_id, is_secret=True),
        "ARM_CLIENT_SECRET": PipelineVariable(credentials.client_secret, is_secret=True),
        "AZURE_LOCATION": PipelineVariable(env.location),
        "AZURE_ENV_NAME": PipelineVariable(env.name),
    }
