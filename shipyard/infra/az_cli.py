"""Azure CLI (az) wrapper."""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Any, Optional

from shipyard.errors import AzCliError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentOperation:
    """One unit of provisioning work reported by a deployment's operation log."""

    target_resource_type: str
    target_resource_name: str
    provisioning_operation: str
    parent_deployment_name: Optional[str] = None
    operation_id: str = ""
    provisioning_state: str = ""

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], parent_deployment_name: Optional[str] = None
    ) -> "DeploymentOperation":
        """
        Build from the ARM operation JSON shape.

        Missing fields become empty strings: operations that only report a
        status (e.g., EvaluateDeploymentOutput) have no target resource.
        """
        properties = data.get("properties") or {}
        target = properties.get("targetResource") or {}
        return cls(
            target_resource_type=str(target.get("resourceType") or ""),
            target_resource_name=str(target.get("resourceName") or ""),
            provisioning_operation=str(properties.get("provisioningOperation") or ""),
            parent_deployment_name=parent_deployment_name,
            operation_id=str(data.get("operationId") or ""),
            provisioning_state=str(properties.get("provisioningState") or ""),
        )


@dataclass(frozen=True)
class ResourceReference:
    """Dependency edge target."""

    resource_type: str
    resource_name: str


@dataclass(frozen=True)
class DeploymentDependency:
    """A resource and what it depends on."""

    resource_type: str
    resource_name: str
    depends_on: list[ResourceReference] = field(default_factory=list)


@dataclass(frozen=True)
class SubscriptionDeployment:
    """Subscription-scoped deployment with its declared dependency graph."""

    name: str
    provisioning_state: str
    dependencies: list[DeploymentDependency] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubscriptionDeployment":
        properties = data.get("properties") or {}
        dependencies = [
            DeploymentDependency(
                resource_type=str(dep.get("resourceType") or ""),
                resource_name=str(dep.get("resourceName") or ""),
                depends_on=[
                    ResourceReference(
                        resource_type=str(ref.get("resourceType") or ""),
                        resource_name=str(ref.get("resourceName") or ""),
                    )
                    for ref in dep.get("dependsOn") or []
                ],
            )
            for dep in properties.get("dependencies") or []
        ]
        return cls(
            name=str(data.get("name") or ""),
            provisioning_state=str(properties.get("provisioningState") or ""),
            dependencies=dependencies,
        )


class AzCli:
    """Read deployment state and manage service principals via the az binary."""

    def _run(self, args: list[str]) -> Any:
        cmd = ["az", *args, "--output", "json"]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                encoding="utf-8",
            )
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.strip() if e.stderr else str(e)
            raise AzCliError(f"az command failed: {error_msg}") from e
        except FileNotFoundError:
            raise AzCliError("Azure CLI (az) not installed") from None

        if not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise AzCliError(f"az returned invalid JSON: {e}") from e

    def list_subscription_deployment_operations(
        self, subscription_id: str, deployment_name: str
    ) -> list[DeploymentOperation]:
        data = self._run(
            [
                "deployment",
                "operation",
                "sub",
                "list",
                "--subscription",
                subscription_id,
                "--name",
                deployment_name,
            ]
        )
        return [DeploymentOperation.from_dict(op) for op in data or []]

    def get_subscription_deployment(
        self, subscription_id: str, deployment_name: str
    ) -> SubscriptionDeployment:
        data = self._run(
            [
                "deployment",
                "sub",
                "show",
                "--subscription",
                subscription_id,
                "--name",
                deployment_name,
            ]
        )
        return SubscriptionDeployment.from_dict(data or {})

    def list_resource_group_deployment_operations(
        self, subscription_id: str, resource_group_name: str, deployment_name: str
    ) -> list[DeploymentOperation]:
        data = self._run(
            [
                "deployment",
                "operation",
                "group",
                "list",
                "--subscription",
                subscription_id,
                "--resource-group",
                resource_group_name,
                "--name",
                deployment_name,
            ]
        )
        return [
            DeploymentOperation.from_dict(op, parent_deployment_name=deployment_name)
            for op in data or []
        ]

    def create_service_principal(self, app_name: str, subscription_id: str) -> dict[str, Any]:
        """
        Create (or reset) a contributor service principal scoped to the subscription.

        Returns:
            --sdk-auth style credentials document
        """
        data = self._run(
            [
                "ad",
                "sp",
                "create-for-rbac",
                "--name",
                app_name,
                "--role",
                "Contributor",
                "--scopes",
                f"/subscriptions/{subscription_id}",
                "--sdk-auth",
            ]
        )
        return dict(data or {})
