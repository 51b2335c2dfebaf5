"""Shipyard exception hierarchy with exit codes and recovery metadata."""

from typing import Optional

# Exit code constants
EXIT_SUCCESS = 0  # Operation succeeded
EXIT_ERROR = 1  # Generic error / failure
EXIT_NOT_READY = 2  # Precondition failed (missing credentials, interrupted)
EXIT_PARTIAL = 4  # Partial success (some remote objects need manual fixing)
EXIT_USAGE = 5  # Invalid usage / arguments


class ShipyardError(Exception):
    """Base exception for all Shipyard errors."""

    def __init__(self, message: str, exit_code: int = EXIT_ERROR):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class ConfigError(ShipyardError):
    """Configuration errors (invalid values, unreadable files)."""

    exit_code = EXIT_ERROR

    def __init__(self, message: str = "Configuration error"):
        super().__init__(message, exit_code=self.exit_code)


class UserInputError(ShipyardError):
    """Invalid CLI usage / arguments."""

    exit_code = EXIT_USAGE

    def __init__(self, message: str = "Invalid arguments"):
        super().__init__(message, exit_code=self.exit_code)


class WrongHostError(ShipyardError):
    """
    Remote URL does not belong to the provider that parsed it.

    Used for provider auto-detection: callers move on to the next provider.
    """

    def __init__(self, remote_url: str, provider: str):
        super().__init__(f"remote host is not {provider}: {remote_url}")
        self.remote_url = remote_url
        self.provider = provider


class MissingCredentialError(ShipyardError):
    """A required credential is absent and cannot be prompted for."""

    exit_code = EXIT_NOT_READY

    def __init__(self, key: str, label: str):
        super().__init__(
            f"{label} not found in environment variable {key}", exit_code=self.exit_code
        )
        self.key = key
        self.label = label


class HostingApiError(ShipyardError):
    """Error returned by a hosting service (REST API or CLI)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteConflictError(HostingApiError):
    """Remote object name is already in use."""


class RemoteValidationError(HostingApiError):
    """Remote service rejected a name or payload shape."""


class NotFoundError(ShipyardError):
    """A lookup against a remote service found nothing."""

    def __init__(self, kind: str, identifier: str, scope: Optional[str] = None):
        message = f"{kind} {identifier} not found"
        if scope:
            message += f" in {scope}"
        super().__init__(message)
        self.kind = kind
        self.identifier = identifier
        self.scope = scope


class OperationTimeoutError(ShipyardError):
    """A long-running remote operation did not finish within its attempt ceiling."""

    def __init__(self, message: str, attempts: int, interval_seconds: float):
        super().__init__(message)
        self.attempts = attempts
        self.interval_seconds = interval_seconds


class ProjectCreationTimeoutError(OperationTimeoutError):
    """Project creation was queued but never reported success."""

    def __init__(self, project_name: str, attempts: int, interval_seconds: float):
        super().__init__(
            f"error creating project {project_name}: still not created after {attempts} checks",
            attempts=attempts,
            interval_seconds=interval_seconds,
        )
        self.project_name = project_name


class OperationCancelledError(ShipyardError):
    """Waiting on a remote operation was cancelled by the caller."""

    exit_code = EXIT_NOT_READY

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message, exit_code=self.exit_code)


class PartialAuthorizationFailure(ShipyardError):
    """
    Service connection was created but could not be authorized.

    Non-fatal: the connection is left in place for the operator to authorize
    manually, so this is recorded on the result instead of raised.
    """

    exit_code = EXIT_PARTIAL

    def __init__(self, connection_name: str, connection_id: Optional[str], cause: str):
        super().__init__(
            f"service connection {connection_name} was created but not authorized "
            f"for all pipelines: {cause}",
            exit_code=self.exit_code,
        )
        self.connection_name = connection_name
        self.connection_id = connection_id
        self.cause = cause


class GitError(ShipyardError):
    """git command failed."""


class GitHubCliError(HostingApiError):
    """gh command failed."""


class AzCliError(ShipyardError):
    """az command failed."""


class DeploymentQueryError(ShipyardError):
    """Reading deployment operations failed."""


class ConfigurationStepError(ShipyardError):
    """
    Pipeline configuration halted.

    Carries the last state reached and the state that was being entered so
    the operator knows how far configuration got before retrying.
    """

    def __init__(self, reached: str, attempted: str, cause: Exception):
        exit_code = cause.exit_code if isinstance(cause, ShipyardError) else EXIT_ERROR
        super().__init__(
            f"pipeline configuration stopped after '{reached}' while entering "
            f"'{attempted}': {cause}",
            exit_code=exit_code,
        )
        self.reached = reached
        self.attempted = attempted
        self.cause = cause


class ConfigurationInterrupted(ShipyardError):
    """Configuration interrupted by user (Ctrl+C)."""

    exit_code = EXIT_NOT_READY

    def __init__(self, message: str = "Interrupted by user"):
        super().__init__(message, exit_code=self.exit_code)
