"""
End-to-end Create/Delete of a Project against in-memory stand-ins of the
cluster and the identity provider, and real bare repositories.
"""

import copy
from typing import Any

import httpx
import pytest

from project_operator.connectors.gitlab import GitlabConnector
from project_operator.core.reconciler import Action, ReconcileContext, Reconciler
from project_operator.core.state import OperatorState
from project_operator.generation.access_control import AccessControlDocument
from project_operator.utils.yaml_util import load_yaml_from_string
from tests.conftest import (
    ACCESS_CONTROL_VALUES,
    DEPLOYMENT_RBAC,
    FakeGitlab,
    make_remote,
    project_body,
    read_remote_file,
    remote_log,
    requires_git,
)

OWNER = "kyotu-project-operator"
PROJECT_TYPE = "projects.kyotu.tech"
PROJECT_KEY = (PROJECT_TYPE, "projects", "acme-prod")
VALUES_PATH = "namespaces/vault/vault/rbac_values.yaml"
RBAC_PATH = "namespaces/argocd/argocd-operator/rbac.yaml"


def _merge(target: dict[str, Any], patch: dict[str, Any]) -> None:
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeKubectl:
    """Object store with the subset of kubectl the reconciler uses."""

    def __init__(self):
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.events: list[tuple[str, str, str]] = []

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [obj for (k, _, _), obj in self.objects.items() if k == kind]

    async def get_object(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    async def create_manifest(self, manifest: dict[str, Any]) -> bool:
        metadata = manifest["metadata"]
        key = (manifest["kind"].lower(), metadata.get("namespace"), metadata["name"])
        if key in self.objects:
            return False
        self.objects[key] = copy.deepcopy(manifest)
        return True

    async def apply_manifest(self, manifest: dict[str, Any]) -> None:
        metadata = manifest["metadata"]
        self.objects[(manifest["kind"].lower(), metadata.get("namespace"), metadata["name"])] = copy.deepcopy(manifest)

    async def delete_resource(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.objects.pop((kind, namespace, name), None)

    async def patch_merge(self, kind: str, name: str, patch: dict[str, Any], namespace: str | None = None) -> None:
        _merge(self.objects[(kind, namespace, name)], patch)

    async def create_event(self, involved_object, reason, message, reporter, event_type="Normal") -> None:
        self.events.append((event_type, reason, message))


@pytest.fixture
def kubectl() -> FakeKubectl:
    fake = FakeKubectl()
    fake.objects[PROJECT_KEY] = project_body()
    return fake


@pytest.fixture
def gitlab() -> FakeGitlab:
    return FakeGitlab()


@pytest.fixture
def remotes(tmp_path) -> tuple[str, str]:
    gitops = make_remote(str(tmp_path / "gitops"), {"README.md": "gitops\n"})
    rbac = make_remote(str(tmp_path / "rbac"), {VALUES_PATH: ACCESS_CONTROL_VALUES, RBAC_PATH: DEPLOYMENT_RBAC})
    return gitops, rbac


@pytest.fixture
def reconciler(make_settings, kubectl, gitlab, remotes) -> Reconciler:
    gitops_remote, rbac_remote = remotes
    settings = make_settings(GITOPS_REPO_URL=gitops_remote, RBAC_REPO_URL=rbac_remote)
    connector = GitlabConnector(settings.GITLAB_URL, settings.GITLAB_TOKEN, transport=httpx.MockTransport(gitlab.handler))
    return Reconciler(ReconcileContext.create(settings, kubectl, connector, OperatorState(OWNER)))


def _access_control(rbac_remote: str) -> AccessControlDocument:
    return AccessControlDocument.from_data(load_yaml_from_string(read_remote_file(rbac_remote, VALUES_PATH)))


@requires_git
@pytest.mark.asyncio
async def test_create_twice_provisions_everything_once(reconciler, kubectl, gitlab, remotes):
    gitops_remote, rbac_remote = remotes

    assert await reconciler.reconcile(project_body()) == Action.requeue(10.0)
    # a replayed snapshot from before the finalizer was added runs Create again
    assert await reconciler.reconcile(project_body()) == Action.requeue(10.0)

    namespaces = kubectl.of_kind("namespace")
    assert [ns["metadata"]["name"] for ns in namespaces] == ["acme-prod"]
    assert namespaces[0]["metadata"]["labels"] == {"app": OWNER}

    secrets = kubectl.of_kind("secret")
    assert [(s["metadata"]["namespace"], s["metadata"]["name"]) for s in secrets] == [
        ("acme-prod", "gitlab-registry-image-pull-secret")
    ]

    assert [g["name"] for g in gitlab.groups] == ["acme-prod"]
    tokens = gitlab.tokens[gitlab.groups[0]["id"]]
    assert [t["name"] for t in tokens] == ["acme-prod-image-puller"]

    assert read_remote_file(gitops_remote, "applications/acme-prod.yaml") is not None
    assert len(remote_log(gitops_remote)) == 2
    assert len(remote_log(rbac_remote)) == 2

    document = _access_control(rbac_remote)
    assert [p.name for p in document.policies] == ["admin", "acme_prod_access"]
    assert document.get_group("eng-acme").policies == ["acme_prod_access"]
    assert document.get_alias("eng-acme").mountpath == "oidc"
    assert read_remote_file(rbac_remote, RBAC_PATH).count("g, eng-acme, role:acme-prod") == 1

    project = kubectl.objects[PROJECT_KEY]["metadata"]
    assert project["finalizers"] == ["project.kyotu.tech/finalizer"]
    assert project["annotations"] == {"project.kyotu.tech/provisioned": "true"}
    assert ("Normal", "Create", "Creating `acme-prod`") in kubectl.events


@requires_git
@pytest.mark.asyncio
async def test_provisioned_project_is_left_alone(reconciler, kubectl, gitlab, remotes):
    gitops_remote, _ = remotes
    await reconciler.reconcile(project_body())
    requests = len(gitlab.requests)

    assert await reconciler.reconcile(copy.deepcopy(kubectl.objects[PROJECT_KEY])) == Action.await_change()

    assert len(gitlab.requests) == requests
    assert len(remote_log(gitops_remote)) == 2


@requires_git
@pytest.mark.asyncio
async def test_create_then_delete_leaves_nothing_behind(reconciler, kubectl, gitlab, remotes):
    gitops_remote, rbac_remote = remotes
    await reconciler.reconcile(project_body())

    body = copy.deepcopy(kubectl.objects[PROJECT_KEY])
    body["metadata"]["deletionTimestamp"] = "2026-10-19T12:00:00Z"
    assert await reconciler.reconcile(body) == Action.await_change()

    assert kubectl.of_kind("namespace") == []
    assert kubectl.of_kind("secret") == []
    assert gitlab.groups == []
    assert all(tokens == [] for tokens in gitlab.tokens.values())

    assert read_remote_file(gitops_remote, "manifests/acme-prod/.gitkeep") is None
    assert read_remote_file(gitops_remote, "applications/acme-prod.yaml") is None

    document = _access_control(rbac_remote)
    assert document.get_policy("acme_prod_access") is None
    assert document.get_group("eng-acme") is None
    assert document.get_alias("eng-acme") is None
    assert read_remote_file(rbac_remote, RBAC_PATH) == DEPLOYMENT_RBAC

    assert kubectl.objects[PROJECT_KEY]["metadata"]["finalizers"] == []
    assert ("Normal", "DeleteRequested", "Delete `acme-prod`") in kubectl.events
