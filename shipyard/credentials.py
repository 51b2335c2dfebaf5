"""Service principal credentials for deployment pipelines."""

import json
import logging
from pathlib import Path
from typing import Optional

from shipyard.environment import SUBSCRIPTION_ID_KEY, Environment
from shipyard.errors import ConfigError, MissingCredentialError
from shipyard.infra.az_cli import AzCli
from shipyard.scm.protocol import ServicePrincipalCredentials

CREDENTIALS_KEY = "AZURE_CREDENTIALS"
CLIENT_ID_KEY = "AZURE_CLIENT_ID"
CLIENT_SECRET_KEY = "AZURE_CLIENT_SECRET"
TENANT_ID_KEY = "AZURE_TENANT_ID"

logger = logging.getLogger(__name__)


def resolve_credentials(
    env: Environment,
    credentials_file: Optional[Path] = None,
    az_cli: Optional[AzCli] = None,
    app_name: Optional[str] = None,
) -> ServicePrincipalCredentials:
    """
    Find service principal credentials for the pipeline.

    Resolves from:
    1. credentials_file (az --sdk-auth JSON)
    2. AZURE_CREDENTIALS (JSON) in the environment or process env
    3. AZURE_CLIENT_ID / AZURE_CLIENT_SECRET / AZURE_TENANT_ID / AZURE_SUBSCRIPTION_ID
    4. A new service principal created with az, when az_cli and app_name are given

    Raises:
        MissingCredentialError: If nothing provides credentials
        ConfigError: If a credentials document is malformed
    """
    if credentials_file is not None:
        try:
            document = credentials_file.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read credentials file {credentials_file}: {e}") from e
        logger.debug(f"Using credentials from {credentials_file}")
        return ServicePrincipalCredentials.from_json(document)

    document = env.lookup(CREDENTIALS_KEY)
    if document:
        logger.debug(f"Using credentials from {CREDENTIALS_KEY}")
        return ServicePrincipalCredentials.from_json(document)

    parts = {
        key: env.lookup(key)
        for key in (CLIENT_ID_KEY, CLIENT_SECRET_KEY, TENANT_ID_KEY, SUBSCRIPTION_ID_KEY)
    }
    if all(parts.values()):
        logger.debug("Using credentials from AZURE_CLIENT_* variables")
        return ServicePrincipalCredentials(
            client_id=parts[CLIENT_ID_KEY],
            client_secret=parts[CLIENT_SECRET_KEY],
            tenant_id=parts[TENANT_ID_KEY],
            subscription_id=parts[SUBSCRIPTION_ID_KEY],
        )

    subscription_id = parts[SUBSCRIPTION_ID_KEY]
    if az_cli is not None and app_name and subscription_id:
        logger.info(f"Creating service principal {app_name}")
        created = az_cli.create_service_principal(app_name, subscription_id)
        return ServicePrincipalCredentials.from_json(json.dumps(created))

    raise MissingCredentialError(CREDENTIALS_KEY, "service principal credentials")
