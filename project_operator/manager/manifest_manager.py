"""GitOps manifests for projects: a manifest folder plus an application definition."""

import logging
import os
import shutil

from project_operator.connectors.git import create_git_transaction_for_gitops
from project_operator.core.config import Settings
from project_operator.generation.manifests import ManifestGenerator
from project_operator.utils.naming import generate_application_file_name

logger = logging.getLogger(__name__)

PLACEHOLDER_FILE = ".gitkeep"


class ManifestManager:
    def __init__(self, settings: Settings, generator: ManifestGenerator):
        self.settings = settings
        self.generator = generator

    def _template_variables(self, name: str) -> dict[str, str]:
        return {
            "project_name": name,
            "repo_url": self.settings.GITOPS_REPO_URL,
            "branch": self.settings.GITOPS_REPO_BRANCH,
            "manifests_path": self.settings.MANIFESTS_PATH.strip("/"),
        }

    async def create_project_manifests(self, name: str) -> bool:
        """
        Create manifests/{name}/ and the rendered application definition, then commit and push.

        Returns:
            True if anything was committed
        """
        async with create_git_transaction_for_gitops(self.settings) as tx:
            project_dir = tx.path(os.path.join(self.settings.MANIFESTS_PATH, name))
            os.makedirs(project_dir, exist_ok=True)
            placeholder = os.path.join(project_dir, PLACEHOLDER_FILE)
            if not os.path.exists(placeholder):
                open(placeholder, "w").close()
            logger.debug(f"Project folder ready: {project_dir}")

            application_path = tx.path(os.path.join(self.settings.APPLICATIONS_PATH, generate_application_file_name(name)))
            self.generator.create_manifest_file(
                self.settings.APPLICATION_TEMPLATE, self._template_variables(name), application_path
            )

            committed = await tx.commit_and_push(f"Created project {name}")

        if committed:
            logger.info(f"Created GitOps manifests for project {name}")
        return committed

    async def delete_project_manifests(self, name: str) -> bool:
        """
        Remove manifests/{name}/ and the application definition, then commit and push.

        Missing files are not an error.

        Returns:
            True if anything was committed
        """
        async with create_git_transaction_for_gitops(self.settings) as tx:
            project_dir = tx.path(os.path.join(self.settings.MANIFESTS_PATH, name))
            if os.path.isdir(project_dir):
                shutil.rmtree(project_dir)
                logger.debug(f"Deleted project folder {project_dir}")
            else:
                logger.warning(f"Project folder {project_dir} does not exist")

            application_path = tx.path(os.path.join(self.settings.APPLICATIONS_PATH, generate_application_file_name(name)))
            if os.path.exists(application_path):
                os.remove(application_path)
            else:
                logger.warning(f"Application file {application_path} does not exist")

            committed = await tx.commit_and_push(f"Deleted project {name}")

        if committed:
            logger.info(f"Deleted GitOps manifests for project {name}")
        return committed
