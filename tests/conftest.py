import json
import os
import re
import shutil
import subprocess

import httpx
import pytest

from project_operator.core.config import Settings

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

AUTHOR_ARGS = ["-c", "user.name=test", "-c", "user.email=test@example.com"]

ACCESS_CONTROL_VALUES = """\
# managed by the platform team
vault:
  image: hashicorp/vault
  externalConfig:
    policies:
      - name: admin
        rules: |-
          path "*" {
            capabilities = ["sudo"]
          }
    groups:
      - name: platform-admins
        policies:
          - admin
        metadata:
          privileged: "true"
        type: external
    group-aliases:
      - name: platform-admins
        mountpath: oidc
        group: platform-admins
"""

DEPLOYMENT_RBAC = """\
apiVersion: argoproj.io/v1beta1
kind: ArgoCD
metadata:
  name: argocd
spec:
  rbac:
    defaultPolicy: role:readonly
    policy: |
      g, platform-admins, role:admin
"""


def _git(*args: str, cwd: str | None = None) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout


def make_remote(base_dir: str, files: dict[str, str], branch: str = "main") -> str:
    """Create a bare repository whose `branch` holds `files`."""
    remote = os.path.join(base_dir, "remote.git")
    seed = os.path.join(base_dir, "seed")
    _git("init", "--bare", remote)
    _git("init", seed)
    for path, content in files.items():
        full_path = os.path.join(seed, path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "w") as f:
            f.write(content)
    _git("add", "-A", cwd=seed)
    _git(*AUTHOR_ARGS, "commit", "-m", "initial", cwd=seed)
    _git("push", remote, f"HEAD:refs/heads/{branch}", cwd=seed)
    shutil.rmtree(seed)
    return remote


def read_remote_file(remote: str, path: str, branch: str = "main") -> str | None:
    try:
        return _git("--git-dir", remote, "show", f"{branch}:{path}")
    except subprocess.CalledProcessError:
        return None


def remote_log(remote: str, branch: str = "main") -> list[str]:
    return _git("--git-dir", remote, "log", "--format=%an <%ae>|%s", branch).splitlines()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "GITOPS_REPO_URL": str(tmp_path / "gitops.git"),
            "RBAC_REPO_URL": str(tmp_path / "rbac.git"),
            "GITLAB_URL": "https://gitlab.example.com",
            "GITLAB_TOKEN": "glpat-test",
            "TEMP_DIR": str(tmp_path / "work"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


def project_body(
    name: str = "acme-prod",
    namespace: str = "projects",
    project_id: str = "acme",
    environment_type: str = "prod",
    google_group: str = "eng-acme",
    finalizers: list[str] | None = None,
    deletion_timestamp: str | None = None,
    annotations: dict[str, str] | None = None,
) -> dict:
    metadata = {"name": name, "namespace": namespace, "uid": "uid-1", "finalizers": finalizers or []}
    if annotations:
        metadata["annotations"] = annotations
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    return {
        "apiVersion": "kyotu.tech/v1",
        "kind": "Project",
        "metadata": metadata,
        "spec": {"projectId": project_id, "environmentType": environment_type, "googleGroup": google_group},
    }


class FakeGitlab:
    """Minimal group and group-access-token endpoints."""

    def __init__(self):
        self.groups: list[dict] = []
        self.tokens: dict[int, list[dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.next_id = 100
        self.fail_with: int | None = None

    def _id(self) -> int:
        self.next_id += 1
        return self.next_id

    def add_group(self, name: str, path: str | None = None) -> dict:
        group = {"id": self._id(), "name": name, "path": path or name, "visibility": "private"}
        self.groups.append(group)
        self.tokens[group["id"]] = []
        return group

    def add_token(self, group_id: int, name: str, **extra) -> dict:
        token = {"id": self._id(), "name": name, "scopes": ["read_registry"], "active": True, "revoked": False}
        token.update(extra)
        self.tokens[group_id].append(token)
        return token

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        assert request.headers["PRIVATE-TOKEN"] == "glpat-test"

        if self.fail_with:
            return httpx.Response(self.fail_with, json={"message": "boom"})

        path = request.url.path.removeprefix("/api/v4")

        if path == "/groups" and request.method == "GET":
            search = request.url.params.get("search", "")
            return httpx.Response(200, json=[g for g in self.groups if search in g["name"] or search in g["path"]])

        if path == "/groups" and request.method == "POST":
            payload = json.loads(request.content)
            assert payload["visibility"] == "private"
            return httpx.Response(201, json=self.add_group(payload["name"], payload["path"]))

        match = re.fullmatch(r"/groups/(\d+)", path)
        if match and request.method == "DELETE":
            group_id = int(match.group(1))
            self.groups = [g for g in self.groups if g["id"] != group_id]
            return httpx.Response(202, json={"message": "202 Accepted"})

        match = re.fullmatch(r"/groups/(\d+)/access_tokens", path)
        if match:
            group_id = int(match.group(1))
            if group_id not in self.tokens:
                return httpx.Response(404, json={"message": "404 Group Not Found"})
            if request.method == "GET":
                return httpx.Response(200, json=self.tokens[group_id])
            payload = json.loads(request.content)
            token = self.add_token(group_id, payload["name"], scopes=payload["scopes"], expires_at=payload["expires_at"])
            return httpx.Response(201, json={**token, "token": f"glpat-secret-{token['id']}"})

        match = re.fullmatch(r"/groups/(\d+)/access_tokens/(\d+)", path)
        if match and request.method == "DELETE":
            group_id, token_id = int(match.group(1)), int(match.group(2))
            before = len(self.tokens.get(group_id, []))
            self.tokens[group_id] = [t for t in self.tokens.get(group_id, []) if t["id"] != token_id]
            if len(self.tokens[group_id]) == before:
                return httpx.Response(404, json={"message": "404 Not Found"})
            return httpx.Response(204)

        return httpx.Response(404, json={"message": "404 Not Found"})
