"""Cloud deployment inspection."""

from shipyard.infra.az_cli import AzCli, DeploymentOperation, SubscriptionDeployment
from shipyard.infra.resource_manager import (
    ResourceManager,
    resolve_deployment_resources,
    resolve_resource_groups,
)

__all__ = [
    "AzCli",
    "DeploymentOperation",
    "ResourceManager",
    "SubscriptionDeployment",
    "resolve_deployment_resources",
    "resolve_resource_groups",
]
