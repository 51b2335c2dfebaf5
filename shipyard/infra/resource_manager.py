"""Resolve provisioned resources from nested deployments."""

import logging
from typing import Optional, Protocol

from shipyard.errors import AzCliError, DeploymentQueryError
from shipyard.infra.az_cli import AzCli, DeploymentOperation, SubscriptionDeployment

RESOURCE_TYPE_RESOURCE_GROUP = "Microsoft.Resources/resourceGroups"
RESOURCE_TYPE_DEPLOYMENT = "Microsoft.Resources/deployments"
PROVISIONING_CREATE = "Create"

logger = logging.getLogger(__name__)


class DeploymentReader(Protocol):
    """Read-only access to deployment operation logs."""

    def list_subscription_deployment_operations(
        self, subscription_id: str, deployment_name: str
    ) -> list[DeploymentOperation]: ...

    def get_subscription_deployment(
        self, subscription_id: str, deployment_name: str
    ) -> SubscriptionDeployment: ...

    def list_resource_group_deployment_operations(
        self, subscription_id: str, resource_group_name: str, deployment_name: str
    ) -> list[DeploymentOperation]: ...


class ResourceManager:
    """
    Expands a subscription deployment into the resources it provisioned.

    Reads only; every call fetches fresh state, so calls are safe to repeat.
    """

    def __init__(self, reader: Optional[DeploymentReader] = None) -> None:
        self._reader: DeploymentReader = reader or AzCli()

    def list_provisioned_resources(
        self, subscription_id: str, deployment_name: str
    ) -> list[DeploymentOperation]:
        """
        List Create operations of all deployments nested under a subscription deployment.

        The first resource group the subscription deployment touches scopes
        every nested lookup. Order is depth-first pre-order.

        Args:
            subscription_id: Subscription id
            deployment_name: Subscription-level deployment name

        Returns:
            Operations (empty if no resource group was provisioned yet)

        Raises:
            DeploymentQueryError: If reading operations fails
        """
        try:
            sub_operations = self._reader.list_subscription_deployment_operations(
                subscription_id, deployment_name
            )
        except AzCliError as e:
            raise DeploymentQueryError(f"getting subscription deployment: {e}") from e

        resource_group = next(
            (
                op.target_resource_name
                for op in sub_operations
                if op.target_resource_type == RESOURCE_TYPE_RESOURCE_GROUP
            ),
            "",
        )
        if not resource_group.strip():
            logger.debug(f"No resource group in deployment {deployment_name} yet")
            return []

        resources: list[DeploymentOperation] = []
        for op in sub_operations:
            if op.target_resource_type == RESOURCE_TYPE_DEPLOYMENT:
                self._append_deployment_resources(
                    subscription_id, resource_group, op.target_resource_name, resources
                )

        logger.debug(f"Deployment {deployment_name} provisioned {len(resources)} resources")
        return resources

    def _append_deployment_resources(
        self,
        subscription_id: str,
        resource_group: str,
        deployment_name: str,
        resources: list[DeploymentOperation],
    ) -> None:
        try:
            operations = self._reader.list_resource_group_deployment_operations(
                subscription_id, resource_group, deployment_name
            )
        except AzCliError as e:
            raise DeploymentQueryError(
                f"getting operations of deployment {deployment_name} in {resource_group}: {e}"
            ) from e

        for op in operations:
            if op.target_resource_type == RESOURCE_TYPE_DEPLOYMENT:
                self._append_deployment_resources(
                    subscription_id, resource_group, op.target_resource_name, resources
                )
            elif (
                op.provisioning_operation == PROVISIONING_CREATE
                and op.target_resource_type.strip()
            ):
                resources.append(op)

    def list_resource_groups(self, subscription_id: str, deployment_name: str) -> set[str]:
        """
        Names of the resource groups a subscription deployment depends on.

        A resource group may appear on several dependency edges; it is
        reported once.

        Raises:
            DeploymentQueryError: If reading the deployment fails
        """
        try:
            deployment = self._reader.get_subscription_deployment(subscription_id, deployment_name)
        except AzCliError as e:
            raise DeploymentQueryError(f"fetching current deployment: {e}") from e

        return {
            dependent.resource_name
            for dependency in deployment.dependencies
            for dependent in dependency.depends_on
            if dependent.resource_type == RESOURCE_TYPE_RESOURCE_GROUP
        }


def resolve_deployment_resources(
    subscription_id: str,
    deployment_name: str,
    reader: Optional[DeploymentReader] = None,
) -> list[DeploymentOperation]:
    """Resources provisioned by a subscription deployment and its nested deployments."""
    return ResourceManager(reader).list_provisioned_resources(subscription_id, deployment_name)


def resolve_resource_groups(
    subscription_id: str,
    deployment_name: str,
    reader: Optional[DeploymentReader] = None,
) -> list[str]:
    """Resource groups of a subscription deployment, sorted for stable output."""
    return sorted(ResourceManager(reader).list_resource_groups(subscription_id, deployment_name))
