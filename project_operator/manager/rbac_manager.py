"""
Access-control entries for projects in the RBAC configuration repository.

Two files are kept in step: the secrets-broker values file (policies, groups
and aliases) and the deployment engine's rbac.yaml (a rendered text block).
"""

import logging
import os

from project_operator.connectors.git import GitTransaction, create_git_transaction_for_rbac
from project_operator.core.config import Settings
from project_operator.core.errors import DocumentFormatError
from project_operator.generation.access_control import AccessControlDocument
from project_operator.generation.manifests import ManifestGenerator
from project_operator.generation.rbac_block import add_rbac_block, remove_rbac_block
from project_operator.utils.yaml_util import load_yaml_from_path, save_yaml_to_path

logger = logging.getLogger(__name__)


class RbacManager:
    def __init__(self, settings: Settings, generator: ManifestGenerator):
        self.settings = settings
        self.generator = generator

    def _render_block(self, name: str, google_group: str) -> str:
        return self.generator.render_template(self.settings.RBAC_TEMPLATE, {"name": name, "google_group": google_group})

    def _update_access_control(self, tx: GitTransaction, name: str, google_group: str, add: bool) -> bool:
        values_path = tx.path(self.settings.ACCESS_CONTROL_VALUES_PATH)
        data = load_yaml_from_path(values_path)
        document = AccessControlDocument.from_data(data)

        changed = document.add_project(name, google_group) if add else document.remove_project(name, google_group)
        if changed:
            document.apply_to(data)
            save_yaml_to_path(values_path, data)
            logger.debug(f"Updated access-control document {self.settings.ACCESS_CONTROL_VALUES_PATH}")
        return changed

    def _update_deployment_rbac(self, tx: GitTransaction, name: str, google_group: str, add: bool) -> bool:
        rbac_path = tx.path(self.settings.DEPLOYMENT_RBAC_PATH)
        if not os.path.exists(rbac_path):
            raise DocumentFormatError(f"Deployment RBAC file not found: {self.settings.DEPLOYMENT_RBAC_PATH}")

        with open(rbac_path, encoding="utf-8") as f:
            content = f.read()

        block = self._render_block(name, google_group)
        content, changed = add_rbac_block(content, block) if add else remove_rbac_block(content, block)
        if changed:
            with open(rbac_path, "w", encoding="utf-8") as f:
                f.write(content)
            logger.debug(f"Updated deployment RBAC file {self.settings.DEPLOYMENT_RBAC_PATH}")
        return changed

    async def add_rbacs(self, name: str, google_group: str) -> bool:
        """
        Grant `google_group` access to project `name` and push the change.

        Returns:
            True if anything was committed

        Raises:
            DocumentFormatError: If either file is missing or malformed
            GitTransactionError: If clone, commit or push fails
        """
        async with create_git_transaction_for_rbac(self.settings) as tx:
            self._update_access_control(tx, name, google_group, add=True)
            self._update_deployment_rbac(tx, name, google_group, add=True)
            committed = await tx.commit_and_push(f"Created rbac for {name}")

        logger.info(f"Added rbacs for project {name} (group {google_group}){'' if committed else ', already present'}")
        return committed

    async def remove_rbacs(self, name: str, google_group: str) -> bool:
        """
        Revoke the project's access entries, prune unused groups and aliases, and push the change.

        Returns:
            True if anything was committed
        """
        async with create_git_transaction_for_rbac(self.settings) as tx:
            self._update_access_control(tx, name, google_group, add=False)
            self._update_deployment_rbac(tx, name, google_group, add=False)
            committed = await tx.commit_and_push(f"Removed rbac for {name}")

        logger.info(f"Removed rbacs for project {name} (group {google_group}){'' if committed else ', nothing to remove'}")
        return committed
