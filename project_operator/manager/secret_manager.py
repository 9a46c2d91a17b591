"""Image-pull secret provisioning for project namespaces."""

import base64
import json
import logging
from typing import Any

from project_operator.connectors.kubectl import KubectlConnector
from project_operator.utils.naming import generate_image_puller_name
from project_operator.utils.ownership import OWNER_LABEL, is_owned, owner_labels

logger = logging.getLogger(__name__)

DOCKER_CONFIG_KEY = ".dockerconfigjson"
DOCKER_CONFIG_TYPE = "kubernetes.io/dockerconfigjson"


def build_docker_config(registry_url: str, username: str, password: str) -> str:
    """
    Build a registry pull-credential document.

    Returns:
        JSON of the form {"auths": {registry_url: {"username", "password", "auth"}}}
    """
    auth = base64.b64encode(f"{username}:{password}".encode()).decode("utf-8")
    return json.dumps(
        {"auths": {registry_url: {"username": username, "password": password, "auth": auth}}},
        indent=2,
    )


class SecretManager:
    """Keeps the registry pull secret of a project namespace in sync with its access token."""

    def __init__(self, kubectl: KubectlConnector, owner: str, secret_name: str, registry_url: str):
        self.kubectl = kubectl
        self.owner = owner
        self.secret_name = secret_name
        self.registry_url = registry_url

    def build_secret_manifest(self, namespace: str, name: str, token: str) -> dict[str, Any]:
        docker_config = build_docker_config(self.registry_url, generate_image_puller_name(name), token)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": DOCKER_CONFIG_TYPE,
            "metadata": {"name": self.secret_name, "namespace": namespace, "labels": owner_labels(self.owner)},
            "data": {DOCKER_CONFIG_KEY: base64.b64encode(docker_config.encode()).decode("utf-8")},
        }

    async def create_or_update_secret(self, namespace: str, name: str, token: str) -> str:
        """
        Install `token` as the pull credential in `namespace`.

        A missing secret is created. An owned secret gets its data replaced. A
        same-named secret without the ownership label is left untouched.

        Returns:
            "created", "updated" or "skipped"
        """
        manifest = self.build_secret_manifest(namespace, name, token)
        existing = await self.kubectl.get_object("secret", self.secret_name, namespace)

        if existing is None:
            if await self.kubectl.create_manifest(manifest):
                logger.info(f"Created secret {self.secret_name} in namespace {namespace}")
                return "created"
            existing = await self.kubectl.get_object("secret", self.secret_name, namespace) or {}

        if not is_owned(existing, self.owner):
            logger.warning(
                f"Secret {self.secret_name} in namespace {namespace} does not have label "
                f"{OWNER_LABEL}={self.owner}, leaving it untouched"
            )
            return "skipped"

        await self.kubectl.apply_manifest(manifest)
        logger.info(f"Updated secret {self.secret_name} in namespace {namespace} with the current token")
        return "updated"

    async def delete_secret(self, namespace: str) -> bool:
        """
        Delete the pull secret if it exists and is owned.

        Returns:
            True if a delete was issued
        """
        existing = await self.kubectl.get_object("secret", self.secret_name, namespace)
        if existing is None:
            logger.warning(f"Secret {self.secret_name} does not exist in namespace {namespace}")
            return False

        if not is_owned(existing, self.owner):
            logger.warning(
                f"Secret {self.secret_name} in namespace {namespace} does not have label {OWNER_LABEL}={self.owner}"
            )
            return False

        await self.kubectl.delete_resource("secret", self.secret_name, namespace)
        logger.info(f"Deleted secret {self.secret_name} in namespace {namespace}")
        return True
