"""
Process entry point.

Loads settings, wires the connectors into a reconciler, registers the kopf
watch for Project resources and serves the HTTP surface with uvicorn, all in
one event loop.
"""

import asyncio
import logging
import sys

import kopf
import uvicorn
from fastapi import FastAPI

from project_operator import PROJECT_NAME, VERSION
from project_operator.api.router import api_router
from project_operator.connectors.gitlab import GitlabConnector
from project_operator.connectors.kubectl import KubectlConnector
from project_operator.core.config import Settings, load_settings
from project_operator.core.controller import ProjectController
from project_operator.core.early_logging import initialize_logging
from project_operator.core.errors import ConfigurationError, PlatformApiError
from project_operator.core.reconciler import ReconcileContext, Reconciler
from project_operator.core.state import OperatorState
from project_operator.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(state: OperatorState) -> FastAPI:
    app = FastAPI(
        title="Project Operator",
        description="Health, metrics and diagnostics of the project operator",
        version=VERSION,
        docs_url=None,
        redoc_url=None,
    )
    app.state.operator_state = state
    app.include_router(api_router)
    return app


def register_handlers(config: Settings, controller: ProjectController) -> None:
    """Register the Project watch on kopf's default registry."""

    @kopf.on.startup()
    def configure(settings: kopf.OperatorSettings, **_) -> None:
        # Events are recorded by the reconciler itself
        settings.posting.enabled = False

    @kopf.on.event(config.PROJECT_GROUP, config.PROJECT_VERSION, config.PROJECT_PLURAL)
    async def on_project_event(type: str | None, body: kopf.Body, **_) -> None:
        await controller.handle_event(type, body)

    @kopf.on.cleanup()
    async def cleanup(**_) -> None:
        await controller.shutdown()


async def run(settings: Settings) -> None:
    state = OperatorState(reporter=settings.OPERATOR_NAME)
    kubectl = KubectlConnector(timeout=settings.KUBECTL_TIMEOUT)
    gitlab = GitlabConnector(settings.GITLAB_URL, settings.GITLAB_TOKEN, timeout=settings.GITLAB_TIMEOUT)

    await kubectl.wait_until_connected()

    reconciler = Reconciler(ReconcileContext.create(settings, kubectl, gitlab, state))
    controller = ProjectController(
        reconciler,
        kubectl,
        f"{settings.PROJECT_PLURAL}.{settings.PROJECT_GROUP}",
        error_delay=settings.REQUEUE_ERROR_SECONDS,
    )
    register_handlers(settings, controller)

    server = uvicorn.Server(
        uvicorn.Config(create_app(state), host=settings.HTTP_HOST, port=settings.HTTP_PORT, log_config=None)
    )

    logger.info(f"Starting {PROJECT_NAME} version {VERSION}")
    await asyncio.gather(kopf.operator(clusterwide=True), server.serve())


def main() -> None:
    initialize_logging()

    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)

    setup_logging(log_to_file=settings.LOG_TO_FILE, log_file_path=settings.LOG_FILE_PATH, log_level=settings.LOG_LEVEL)

    try:
        asyncio.run(run(settings))
    except PlatformApiError as e:
        logger.critical(f"Kubernetes API is not reachable: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"Stopping {PROJECT_NAME} version {VERSION}")


if __name__ == "__main__":
    main()
