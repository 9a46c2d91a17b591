"""Namespace provisioning for projects."""

import logging

from project_operator.connectors.kubectl import KubectlConnector
from project_operator.utils.ownership import OWNER_LABEL, is_owned, owner_labels

logger = logging.getLogger(__name__)


class NamespaceManager:
    def __init__(self, kubectl: KubectlConnector, owner: str):
        self.kubectl = kubectl
        self.owner = owner

    async def create_namespace(self, name: str) -> bool:
        """
        Create the project namespace with the ownership label.

        An existing namespace is left alone, whoever created it.

        Returns:
            True if the namespace was created
        """
        if await self.kubectl.get_object("namespace", name) is not None:
            logger.warning(f"Namespace {name} already exists")
            return False

        manifest = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": name, "labels": owner_labels(self.owner)},
        }
        created = await self.kubectl.create_manifest(manifest)
        if created:
            logger.info(f"Created namespace {name}")
        return created

    async def delete_namespace(self, name: str) -> bool:
        """
        Delete the namespace, but only if it carries the ownership label.

        Returns:
            True if a delete was issued
        """
        namespace = await self.kubectl.get_object("namespace", name)
        if namespace is None:
            logger.warning(f"Namespace {name} does not exist")
            return False

        if not is_owned(namespace, self.owner):
            logger.warning(f"Namespace {name} does not have label {OWNER_LABEL}={self.owner}, not deleting it")
            return False

        await self.kubectl.delete_resource("namespace", name)
        logger.info(f"Deleted namespace {name}")
        return True
