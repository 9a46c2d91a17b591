"""
Reconciler for Project resources.

The finalizer marks a Project the operator has taken on:

    deletionTimestamp set              -> Delete
    no deletionTimestamp, no finalizer -> Create
    otherwise                          -> NoOp

A NoOp snapshot that carries the finalizer but not the provisioned
annotation belongs to a Create that failed half-way; it runs Create again.

Create and Delete run a fixed sequence of idempotent steps. Any failure stops
the sequence; the next reconciliation starts again from the top and the steps
that already succeeded run again harmlessly.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from project_operator.connectors.gitlab import AccessToken, GitlabConnector
from project_operator.connectors.kubectl import KubectlConnector
from project_operator.core.config import Settings
from project_operator.core.errors import OperatorError, PlatformApiError
from project_operator.core.models import ProjectResource
from project_operator.core.state import OperatorState
from project_operator.generation.manifests import ManifestGenerator
from project_operator.manager.finalizer_manager import FinalizerManager
from project_operator.manager.manifest_manager import ManifestManager
from project_operator.manager.namespace_manager import NamespaceManager
from project_operator.manager.rbac_manager import RbacManager
from project_operator.manager.secret_manager import SecretManager
from project_operator.utils.naming import generate_image_puller_name

logger = logging.getLogger(__name__)


class ProjectAction(Enum):
    CREATE = "Create"
    DELETE = "Delete"
    NOOP = "NoOp"


def determine_action(project: ProjectResource) -> ProjectAction:
    """Decide what a snapshot requires, from its deletion timestamp and finalizers only."""
    if project.deletion_timestamp:
        return ProjectAction.DELETE
    if not project.finalizers:
        return ProjectAction.CREATE
    return ProjectAction.NOOP


@dataclass(frozen=True)
class Action:
    """What the controller loop should do after a reconciliation."""

    requeue_after: float | None = None

    @classmethod
    def requeue(cls, seconds: float) -> "Action":
        return cls(requeue_after=seconds)

    @classmethod
    def await_change(cls) -> "Action":
        return cls()


@dataclass(frozen=True)
class ReconcileContext:
    """Collaborators shared by every reconciliation, built once at startup."""

    settings: Settings
    kubectl: KubectlConnector
    gitlab: GitlabConnector
    state: OperatorState
    finalizers: FinalizerManager
    namespaces: NamespaceManager
    secrets: SecretManager
    manifests: ManifestManager
    rbac: RbacManager

    @classmethod
    def create(
        cls, settings: Settings, kubectl: KubectlConnector, gitlab: GitlabConnector, state: OperatorState
    ) -> "ReconcileContext":
        generator = ManifestGenerator(settings.TEMPLATES_DIR)
        return cls(
            settings=settings,
            kubectl=kubectl,
            gitlab=gitlab,
            state=state,
            finalizers=FinalizerManager(
                kubectl,
                settings.FINALIZER,
                f"{settings.PROJECT_PLURAL}.{settings.PROJECT_GROUP}",
                provisioned_annotation=settings.PROVISIONED_ANNOTATION,
            ),
            namespaces=NamespaceManager(kubectl, settings.OPERATOR_NAME),
            secrets=SecretManager(kubectl, settings.OPERATOR_NAME, settings.IMAGE_PULL_SECRET_NAME, settings.registry_url),
            manifests=ManifestManager(settings, generator),
            rbac=RbacManager(settings, generator),
        )


def _object_reference(body: dict[str, Any]) -> dict[str, Any] | None:
    metadata = body.get("metadata") or {}
    if not metadata.get("name") or not metadata.get("namespace"):
        return None
    return {
        "apiVersion": body.get("apiVersion"),
        "kind": body.get("kind") or "Project",
        "name": metadata["name"],
        "namespace": metadata["namespace"],
        "uid": metadata.get("uid"),
    }


class Reconciler:
    def __init__(self, context: ReconcileContext):
        self.context = context
        self.settings = context.settings

    async def reconcile(self, body: dict[str, Any]) -> Action:
        """
        Reconcile one Project snapshot.

        Never raises: every failure is logged, counted and turned into a directive.

        Args:
            body: Raw resource body as delivered by the watch

        Returns:
            requeue(n) or await_change()
        """
        state = self.context.state
        state.diagnostics.touch()

        with state.metrics.count_and_measure():
            try:
                project = ProjectResource.from_body(body)
                action = determine_action(project)
                logger.debug(f"Project {project.key} ({project.name}): {action.value}")

                if action is ProjectAction.CREATE:
                    return await self._create(project)
                if action is ProjectAction.DELETE:
                    return await self._delete(project)
                if self.context.finalizers.provisioning_incomplete(project):
                    logger.warning(f"Project {project.key} was not fully provisioned, resuming Create")
                    return await self._create(project)
                return Action.await_change()
            except OperatorError as e:
                return await self._handle_error(body, e)
            except Exception as e:
                logger.exception(f"Unexpected error reconciling {self._describe(body)}: {e}")
                state.metrics.reconcile_failure("unexpected")
                return Action.requeue(self.settings.REQUEUE_ERROR_SECONDS)

    async def _create(self, project: ProjectResource) -> Action:
        ctx = self.context
        name = project.name
        logger.info(f"Project {project.spec.project_id} {project.spec.environment_type} is being created ({project.key})")

        await ctx.finalizers.add(project)
        await ctx.namespaces.create_namespace(name)

        group_id = await ctx.gitlab.create_group(name)
        token = await self._ensure_pull_token(name, group_id)
        await ctx.secrets.create_or_update_secret(name, name, token.token)

        await ctx.manifests.create_project_manifests(name)
        await ctx.rbac.add_rbacs(name, project.google_group)
        await ctx.finalizers.mark_provisioned(project)

        await self._publish_event(project, "Create", f"Creating `{name}`")
        logger.info(f"Project {project.key} provisioned as {name}")
        return Action.requeue(self.settings.REQUEUE_SUCCESS_SECONDS)

    async def _ensure_pull_token(self, name: str, group_id: int) -> AccessToken:
        gitlab = self.context.gitlab
        token_name = generate_image_puller_name(name)

        token = None
        if await gitlab.get_access_token_id(token_name, group_id) is not None:
            token = await gitlab.rotate_access_token(token_name, group_id)
        # Rotation returns nothing when the token vanished in between
        if token is None:
            token = await gitlab.create_access_token(token_name, group_id)
        return token

    async def _delete(self, project: ProjectResource) -> Action:
        ctx = self.context
        name = project.name
        logger.info(f"Project {project.key} is being deleted, tearing down {name}")

        await ctx.rbac.remove_rbacs(name, project.google_group)
        await ctx.manifests.delete_project_manifests(name)
        await ctx.secrets.delete_secret(name)
        await self._revoke_pull_token(name)
        await ctx.gitlab.delete_group(name)
        await ctx.namespaces.delete_namespace(name)
        await ctx.finalizers.remove(project)

        await self._publish_event(project, "DeleteRequested", f"Delete `{name}`")
        logger.info(f"Project {project.key} cleaned up")
        return Action.await_change()

    async def _revoke_pull_token(self, name: str) -> None:
        gitlab = self.context.gitlab
        group = await gitlab.find_group(name)
        if group is None:
            logger.debug(f"No identity group {name}, no pull token to revoke")
            return

        token_name = generate_image_puller_name(name)
        token_id = await gitlab.get_access_token_id(token_name, group["id"])
        if token_id is not None:
            await gitlab.delete_access_token(token_id, group["id"])
            logger.info(f"Revoked access token {token_name} of group {name}")

    async def _publish_event(
        self, project: ProjectResource | dict[str, Any], reason: str, message: str, event_type: str = "Normal"
    ) -> None:
        reference = project.object_reference() if isinstance(project, ProjectResource) else _object_reference(project)
        if reference is None:
            return
        try:
            await self.context.kubectl.create_event(
                reference, reason, message, reporter=self.settings.OPERATOR_NAME, event_type=event_type
            )
        except PlatformApiError as e:
            logger.warning(f"Failed to record event {reason} for {reference['namespace']}/{reference['name']}: {e}")

    async def _handle_error(self, body: dict[str, Any], error: OperatorError) -> Action:
        self.context.state.metrics.reconcile_failure(error.metric_label)
        description = self._describe(body)

        if error.permanent:
            logger.critical(f"Reconciliation of {description} failed permanently ({error.kind}): {error}")
            await self._publish_event(body, "ReconcileFailed", str(error)[:1024], event_type="Warning")
            return Action.await_change()

        logger.error(f"Reconciliation of {description} failed ({error.kind}), retrying: {error}")
        return Action.requeue(self.settings.REQUEUE_ERROR_SECONDS)

    @staticmethod
    def _describe(body: dict[str, Any]) -> str:
        metadata = body.get("metadata") or {}
        return f"Project {metadata.get('namespace') or '<no namespace>'}/{metadata.get('name') or '<unnamed>'}"
