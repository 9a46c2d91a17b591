"""Finalizer and provisioning marker handling for Project resources."""

import logging

from project_operator.connectors.kubectl import KubectlConnector
from project_operator.core.models import ProjectResource

logger = logging.getLogger(__name__)


class FinalizerManager:
    """
    Adds and removes the operator's deletion guard on a Project.

    Also owns the annotation that marks a completed Create: a Project that
    carries the finalizer but not the annotation was interrupted half-way.
    """

    def __init__(
        self,
        kubectl: KubectlConnector,
        finalizer: str,
        resource_type: str,
        provisioned_annotation: str = "project.kyotu.tech/provisioned",
    ):
        """
        Args:
            kubectl: Connector used for the merge patches
            finalizer: Marker string owned by this operator
            resource_type: kubectl resource type of the Project CRD (e.g. "projects.kyotu.tech")
            provisioned_annotation: Annotation key set once provisioning has completed
        """
        self.kubectl = kubectl
        self.finalizer = finalizer
        self.resource_type = resource_type
        self.provisioned_annotation = provisioned_annotation

    def is_provisioned(self, project: ProjectResource) -> bool:
        return project.annotations.get(self.provisioned_annotation) == "true"

    def provisioning_incomplete(self, project: ProjectResource) -> bool:
        """True if Create added the finalizer but did not get to the end."""
        return self.finalizer in project.finalizers and not self.is_provisioned(project)

    async def mark_provisioned(self, project: ProjectResource) -> bool:
        """
        Set the provisioned annotation.

        Returns:
            True if the resource was patched, False if it was already marked
        """
        if self.is_provisioned(project):
            return False

        await self.kubectl.patch_merge(
            self.resource_type,
            project.resource_name,
            {"metadata": {"annotations": {self.provisioned_annotation: "true"}}},
            namespace=project.namespace,
        )
        project.annotations[self.provisioned_annotation] = "true"
        logger.info(f"Marked {project.key} as provisioned")
        return True

    async def add(self, project: ProjectResource) -> bool:
        """
        Append the marker to the resource's finalizers.

        Returns:
            True if the resource was patched, False if the marker was already present
        """
        if self.finalizer in project.finalizers:
            logger.debug(f"Finalizer already present on {project.key}")
            return False

        finalizers = project.finalizers + [self.finalizer]
        await self.kubectl.patch_merge(
            self.resource_type,
            project.resource_name,
            {"metadata": {"finalizers": finalizers}},
            namespace=project.namespace,
        )
        project.finalizers = finalizers
        logger.info(f"Added finalizer {self.finalizer} to {project.key}")
        return True

    async def remove(self, project: ProjectResource) -> bool:
        """
        Drop the marker; finalizers of other controllers stay in place.

        Returns:
            True if the resource was patched, False if the marker was already absent
        """
        if self.finalizer not in project.finalizers:
            logger.debug(f"Finalizer not present on {project.key}")
            return False

        finalizers = [f for f in project.finalizers if f != self.finalizer]
        await self.kubectl.patch_merge(
            self.resource_type,
            project.resource_name,
            {"metadata": {"finalizers": finalizers}},
            namespace=project.namespace,
        )
        project.finalizers = finalizers
        logger.info(f"Removed finalizer {self.finalizer} from {project.key}")
        return True
