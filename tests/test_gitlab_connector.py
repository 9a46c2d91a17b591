"""
Tests for the GitLab connector against an in-memory stand-in of the v4 API.
"""

from datetime import date, timedelta

import httpx
import pytest

from project_operator.connectors.gitlab import GitlabConnector
from project_operator.core.errors import IdentityApiError
from tests.conftest import FakeGitlab


@pytest.fixture
def fake() -> FakeGitlab:
    return FakeGitlab()


@pytest.fixture
def connector(fake) -> GitlabConnector:
    return GitlabConnector("https://gitlab.example.com/", "glpat-test", transport=httpx.MockTransport(fake.handler))


@pytest.mark.asyncio
async def test_create_group_creates_private_group(connector, fake):
    group_id = await connector.create_group("acme-prod")

    assert [g["name"] for g in fake.groups] == ["acme-prod"]
    assert fake.groups[0]["id"] == group_id
    assert ("POST", "/api/v4/groups") in fake.requests


@pytest.mark.asyncio
async def test_create_group_reuses_exact_match(connector, fake):
    existing = fake.add_group("acme-prod")

    assert await connector.create_group("acme-prod") == existing["id"]
    assert len(fake.groups) == 1


@pytest.mark.asyncio
async def test_create_group_ignores_substring_matches(connector, fake):
    fake.add_group("acme-prod-legacy")

    group_id = await connector.create_group("acme-prod")

    assert len(fake.groups) == 2
    assert fake.groups[1]["id"] == group_id


@pytest.mark.asyncio
async def test_access_token_lifecycle(connector, fake):
    group_id = await connector.create_group("acme-prod")

    assert await connector.get_access_token_id("acme-prod-image-puller", group_id) is None

    token = await connector.create_access_token("acme-prod-image-puller", group_id)
    assert token.token
    assert token.scopes == ["read_registry"]
    assert token.expires_at == (date.today() + timedelta(days=365)).strftime("%Y-%m-%d")
    assert await connector.get_access_token_id("acme-prod-image-puller", group_id) == token.id


@pytest.mark.asyncio
async def test_rotate_replaces_token(connector, fake):
    group = fake.add_group("acme-prod")
    first = await connector.create_access_token("acme-prod-image-puller", group["id"])

    rotated = await connector.rotate_access_token("acme-prod-image-puller", group["id"])

    assert rotated is not None
    assert rotated.token != first.token
    assert rotated.id != first.id
    assert await connector.get_access_token_id("acme-prod-image-puller", group["id"]) == rotated.id
    assert [t["id"] for t in fake.tokens[group["id"]]] == [rotated.id]


@pytest.mark.asyncio
async def test_rotate_without_token_returns_none(connector, fake):
    group = fake.add_group("acme-prod")

    assert await connector.rotate_access_token("acme-prod-image-puller", group["id"]) is None
    assert fake.tokens[group["id"]] == []


@pytest.mark.asyncio
async def test_revoked_tokens_are_ignored(connector, fake):
    group = fake.add_group("acme-prod")
    fake.add_token(group["id"], "acme-prod-image-puller", revoked=True, active=False)

    assert await connector.get_access_token_id("acme-prod-image-puller", group["id"]) is None


@pytest.mark.asyncio
async def test_delete_access_token_tolerates_missing(connector, fake):
    group = fake.add_group("acme-prod")

    await connector.delete_access_token(12345, group["id"])


@pytest.mark.asyncio
async def test_delete_group(connector, fake):
    fake.add_group("acme-prod")

    assert await connector.delete_group("acme-prod") is True
    assert fake.groups == []
    assert await connector.delete_group("acme-prod") is False


@pytest.mark.asyncio
async def test_http_errors_become_identity_api_errors(connector, fake):
    fake.fail_with = 500

    with pytest.raises(IdentityApiError) as exc_info:
        await connector.create_group("acme-prod")

    assert exc_info.value.status_code == 500
    assert exc_info.value.permanent is False


@pytest.mark.asyncio
async def test_network_errors_become_identity_api_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    connector = GitlabConnector("https://gitlab.example.com", "glpat-test", transport=httpx.MockTransport(handler))

    with pytest.raises(IdentityApiError):
        await connector.find_group("acme-prod")
