"""
GitLab connector for managing project groups and group access tokens.

Only the v4 REST endpoints needed for tenant provisioning are covered: group
search/create/delete and the access-token lifecycle of a group. Every create
is preceded by a search so that a retried reconciliation reuses what an
earlier, interrupted attempt already created.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import httpx

from project_operator.core.errors import IdentityApiError

logger = logging.getLogger(__name__)

IMAGE_PULL_SCOPES = ["read_registry"]
TOKEN_LIFETIME_DAYS = 365


@dataclass
class AccessToken:
    """Group access token as returned by the API. `token` is only set right after creation."""

    id: int
    name: str
    token: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "AccessToken":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            token=data.get("token"),
            scopes=list(data.get("scopes") or []),
            expires_at=data.get("expires_at"),
        )

    def __repr__(self) -> str:
        return f"AccessToken(id={self.id}, name={self.name!r}, scopes={self.scopes}, expires_at={self.expires_at!r})"


class GitlabConnector:
    """Connector for the group and access-token endpoints of the GitLab v4 API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the GitLab connector.

        Args:
            base_url: Base URL of the GitLab instance (e.g. https://gitlab.example.com)
            token: Personal or group token sent as PRIVATE-TOKEN
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

        logger.debug(f"Initialized GitlabConnector for {self.base_url}")

    async def _api_request(
        self, method: str, path: str, json_data: dict[str, Any] | None = None, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: API path below /api/v4
            json_data: JSON data for request body
            params: Query parameters

        Returns:
            Response data or None for responses without content

        Raises:
            IdentityApiError: If the request fails or returns an error status
        """
        url = f"{self.base_url}/api/v4{path}"
        headers = {"PRIVATE-TOKEN": self.token, "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method=method, url=url, headers=headers, json=json_data, params=params)

                if response.status_code == 204:  # No content
                    return None

                response.raise_for_status()

                if response.headers.get("content-type", "").startswith("application/json"):
                    return response.json()

                return None
        except httpx.HTTPStatusError as e:
            raise IdentityApiError(
                f"GitLab {method} {path} failed with {e.response.status_code}: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise IdentityApiError(f"GitLab {method} {path} failed: {e}") from e

    async def find_group(self, name: str) -> dict[str, Any] | None:
        """
        Find a group whose name or path equals `name`.

        The search endpoint matches substrings, so results are filtered for an
        exact match before they are trusted.
        """
        groups = await self._api_request("GET", "/groups", params={"search": name}) or []
        for group in groups:
            if group.get("name") == name or group.get("path") == name:
                return group
        return None

    async def create_group(self, name: str) -> int:
        """
        Create a private group for the project, or reuse an existing one.

        Args:
            name: Group name, also used as its path

        Returns:
            The group id
        """
        existing = await self.find_group(name)
        if existing:
            logger.info(f"Group {name} already exists with id {existing['id']}, reusing it")
            return existing["id"]

        logger.info(f"Creating GitLab group: {name}")
        group = await self._api_request("POST", "/groups", json_data={"name": name, "path": name, "visibility": "private"})
        if not isinstance(group, dict) or "id" not in group:
            raise IdentityApiError(f"Unexpected response creating group {name}: {group}")

        logger.info(f"Successfully created group {name} with id {group['id']}")
        return group["id"]

    async def delete_group(self, name: str) -> bool:
        """
        Returns:
            True if a group was deleted, False if none existed
        """
        existing = await self.find_group(name)
        if not existing:
            logger.debug(f"Group {name} does not exist, nothing to delete")
            return False

        try:
            await self._api_request("DELETE", f"/groups/{existing['id']}")
        except IdentityApiError as e:
            if e.status_code == 404:
                return False
            raise

        logger.info(f"Deleted group {name} ({existing['id']})")
        return True

    async def list_access_tokens(self, group_id: int) -> list[AccessToken]:
        tokens = await self._api_request("GET", f"/groups/{group_id}/access_tokens") or []
        # Revoked tokens stay listed but can never authenticate again
        return [AccessToken.from_response(t) for t in tokens if not t.get("revoked") and t.get("active", True)]

    async def get_access_token_id(self, name: str, group_id: int) -> int | None:
        """
        Returns:
            The id of the group's token with display name `name`, or None
        """
        for token in await self.list_access_tokens(group_id):
            if token.name == name:
                return token.id
        return None

    async def create_access_token(self, name: str, group_id: int) -> AccessToken:
        """
        Create a registry-read token valid for a year from today.

        Returns:
            The new token, including its secret value
        """
        expires_at = (date.today() + timedelta(days=TOKEN_LIFETIME_DAYS)).strftime("%Y-%m-%d")
        logger.info(f"Creating access token {name} for group {group_id} (expires {expires_at})")

        data = await self._api_request(
            "POST",
            f"/groups/{group_id}/access_tokens",
            json_data={"name": name, "scopes": IMAGE_PULL_SCOPES, "expires_at": expires_at},
        )
        if not isinstance(data, dict) or not data.get("token"):
            raise IdentityApiError(f"Access token {name} for group {group_id} was created without a token value")

        return AccessToken.from_response(data)

    async def delete_access_token(self, token_id: int, group_id: int) -> None:
        try:
            await self._api_request("DELETE", f"/groups/{group_id}/access_tokens/{token_id}")
        except IdentityApiError as e:
            if e.status_code != 404:
                raise
            logger.debug(f"Access token {token_id} of group {group_id} was already gone")

    async def rotate_access_token(self, name: str, group_id: int) -> AccessToken | None:
        """
        Replace the token named `name` with a fresh one.

        The old token stops working before the new one exists.

        Returns:
            The replacement token, or None if no token with that name existed
        """
        token_id = await self.get_access_token_id(name, group_id)
        if token_id is None:
            logger.debug(f"No access token {name} in group {group_id} to rotate")
            return None

        await self.delete_access_token(token_id, group_id)
        logger.info(f"Revoked access token {name} ({token_id}) of group {group_id}")
        return await self.create_access_token(name, group_id)
