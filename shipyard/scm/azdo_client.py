"""Azure DevOps REST API client."""

import logging
from typing import Any, Optional

import httpx

from shipyard.errors import HostingApiError
from shipyard.scm.utils import classify_remote_error

logger = logging.getLogger(__name__)


class AzureDevOpsClient:
    """Minimal Azure DevOps REST client authenticated with a personal access token."""

    def __init__(
        self,
        organization: str,
        personal_access_token: str,
        host: str = "dev.azure.com",
        api_version: str = "7.1",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize Azure DevOps client.

        Args:
            organization: Organization name
            personal_access_token: PAT used for basic auth
            host: Azure DevOps host
            api_version: REST API version sent with every request
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.organization = organization
        self.api_version = api_version
        self.organization_url = f"https://{host}/{organization}"
        self._client = httpx.Client(
            base_url=self.organization_url + "/",
            auth=("", personal_access_token),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "AzureDevOpsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        api_version: Optional[str] = None,
    ) -> Any:
        query = {"api-version": api_version or self.api_version, **(params or {})}
        logger.debug(f"{method} {self.organization_url}/{path}")
        try:
            response = self._client.request(method, path, json=json, params=query)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.debug(f"Azure DevOps API error: {e.response.status_code} - {message}")
            raise classify_remote_error(message, e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"Azure DevOps request error: {e}")
            raise HostingApiError(f"request to {self.organization_url} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise HostingApiError(
                f"invalid JSON from {self.organization_url}/{path}", response.status_code
            ) from e

    def _list(self, path: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        data = self._request("GET", path, params=params)
        return list((data or {}).get("value", []))

    # Core

    def get_processes(self) -> list[dict[str, Any]]:
        """List process templates (Basic, Agile, Scrum...)."""
        return self._list("_apis/process/processes")

    def queue_create_project(
        self, name: str, description: str, process_template_id: str
    ) -> dict[str, Any]:
        """
        Queue creation of a private git project.

        Returns:
            Operation reference ({"id", "status", "url"})
        """
        payload = {
            "name": name,
            "description": description,
            "visibility": "private",
            "capabilities": {
                "versioncontrol": {"sourceControlType": "Git"},
                "processTemplate": {"templateTypeId": process_template_id},
            },
        }
        return dict(self._request("POST", "_apis/projects", json=payload))

    def get_operation(self, operation_id: str) -> dict[str, Any]:
        """Get status of a long-running operation."""
        return dict(self._request("GET", f"_apis/operations/{operation_id}"))

    def get_projects(self) -> list[dict[str, Any]]:
        """List projects in the organization."""
        return self._list("_apis/projects")

    # Git

    def get_repositories(self, project: str) -> list[dict[str, Any]]:
        """List repositories of a project (by name or id)."""
        return self._list(
            f"{project}/_apis/git/repositories",
            params={"includeLinks": "true", "includeAllUrls": "true"},
        )

    def create_repository(self, project_id: str, name: str) -> dict[str, Any]:
        """Create a git repository in the project."""
        payload = {"name": name, "project": {"id": project_id}}
        return dict(self._request("POST", f"{project_id}/_apis/git/repositories", json=payload))

    # Build

    def get_agent_queues(self, project_id: str) -> list[dict[str, Any]]:
        """List agent queues available to the project."""
        return self._list(f"{project_id}/_apis/distributedtask/queues")

    def create_definition(self, project_id: str, definition: dict[str, Any]) -> dict[str, Any]:
        """Create a build definition."""
        return dict(self._request("POST", f"{project_id}/_apis/build/definitions", json=definition))

    def queue_build(self, project_id: str, definition_id: str) -> dict[str, Any]:
        """Queue a run of a build definition."""
        payload = {"definition": {"id": int(definition_id)}}
        return dict(self._request("POST", f"{project_id}/_apis/build/builds", json=payload))

    def authorize_project_resources(
        self, project_id: str, resources: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Authorize resources (e.g., service endpoints) for all pipelines."""
        data = self._request(
            "PATCH",
            f"{project_id}/_apis/build/authorizedresources",
            json=resources,
            api_version=f"{self.api_version}-preview.1",
        )
        return list((data or {}).get("value", []))

    # Service endpoints

    def create_service_endpoint(self, project_id: str, endpoint: dict[str, Any]) -> dict[str, Any]:
        """Create a service endpoint (service connection)."""
        return dict(
            self._request(
                "POST",
                f"{project_id}/_apis/serviceendpoint/endpoints",
                json=endpoint,
                api_version=f"{self.api_version}-preview.4",
            )
        )

    # Policy

    def get_policy_types(self, project_id: str) -> list[dict[str, Any]]:
        """List policy types of the project."""
        return self._list(f"{project_id}/_apis/policy/types")

    def create_policy_configuration(
        self, project_id: str, configuration: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a policy configuration."""
        return dict(
            self._request("POST", f"{project_id}/_apis/policy/configurations", json=configuration)
        )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or response.reason_phrase
