import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from project_operator.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_DIR = str(Path(__file__).resolve().parent.parent / "templates")


def _get_env_files() -> list[str]:
    """
    Get list of environment files to load in order of precedence.

    Configuration hierarchy (container env vars take highest precedence):
    1. Container environment variables (from Kubernetes secrets) - HIGHEST PRECEDENCE
    2. .env.{ENVIRONMENT} (environment-specific files)
    3. .env (base configuration file) - LOWEST PRECEDENCE

    ENVIRONMENT is read from the system environment only and may be a
    comma-separated list (e.g. "production,kubernetes").

    Returns:
        List of environment file paths that exist
    """
    env_files = []

    environment_var = os.environ.get("ENVIRONMENT", "local")
    environments = [env.strip() for env in environment_var.split(",") if env.strip()]
    logger.debug(f"Using ENVIRONMENT={environment_var} -> environments={environments}")

    if os.path.exists(".env"):
        env_files.append(".env")
        logger.debug("Found base env file: .env")

    for environment in environments:
        env_specific = f".env.{environment}"
        if os.path.exists(env_specific):
            env_files.append(env_specific)
            logger.debug(f"Found environment-specific env file: {env_specific}")

    logger.info(f"Configuration loading order: {env_files or ['<process environment only>']}")
    return env_files


def _is_token_url(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def _is_local_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme == "file" or (not parsed.scheme and "@" not in url)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file_encoding="utf-8", extra="ignore")

    ENVIRONMENT: str = "local"

    # Operator identity
    OPERATOR_NAME: str = "kyotu-project-operator"  # ownership label value and event reporter
    FINALIZER: str = "project.kyotu.tech/finalizer"
    PROVISIONED_ANNOTATION: str = "project.kyotu.tech/provisioned"  # set once the Create sequence has completed

    # Project custom resource coordinates
    PROJECT_GROUP: str = "kyotu.tech"
    PROJECT_VERSION: str = "v1"
    PROJECT_PLURAL: str = "projects"
    PROJECT_KIND: str = "Project"

    # GitOps (application manifest) repository
    GITOPS_REPO_URL: str
    GITOPS_REPO_BRANCH: str = "main"
    GITOPS_DEPLOY_TOKEN: str | None = None
    GITOPS_USERNAME: str | None = None
    GITOPS_SSH_KEY_PATH: str | None = None
    GITOPS_SSH_KEY: str | None = None  # private key content, alternative to GITOPS_SSH_KEY_PATH
    GITOPS_WORK_DIR: str | None = None

    # Access-control (RBAC) configuration repository
    RBAC_REPO_URL: str
    RBAC_REPO_BRANCH: str = "main"
    RBAC_DEPLOY_TOKEN: str | None = None
    RBAC_USERNAME: str | None = None
    RBAC_SSH_KEY_PATH: str | None = None
    RBAC_SSH_KEY: str | None = None
    RBAC_WORK_DIR: str | None = None

    # Repository layout, relative to the clone root
    ACCESS_CONTROL_VALUES_PATH: str = "namespaces/vault/vault/rbac_values.yaml"
    DEPLOYMENT_RBAC_PATH: str = "namespaces/argocd/argocd-operator/rbac.yaml"
    MANIFESTS_PATH: str = "manifests"
    APPLICATIONS_PATH: str = "applications"
    TEMPLATES_DIR: str = DEFAULT_TEMPLATES_DIR
    RBAC_TEMPLATE: str = "rbac_tmpl.yaml"
    APPLICATION_TEMPLATE: str = "argo_tmpl.yaml"

    # Identity provider (GitLab-style v4 REST API)
    GITLAB_URL: str
    GITLAB_TOKEN: str
    GITLAB_TIMEOUT: float = 30.0

    # Kubernetes
    KUBECTL_TIMEOUT: float = 60.0
    IMAGE_PULL_SECRET_NAME: str = "gitlab-registry-image-pull-secret"

    # Reconcile directives
    REQUEUE_SUCCESS_SECONDS: float = 10.0
    REQUEUE_ERROR_SECONDS: float = 5.0

    # HTTP surface
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8080

    # Logging configuration
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "log.txt"

    # Temporary directory for git working copies
    TEMP_DIR: str = "/tmp"

    @model_validator(mode="after")
    def _check_repository_credentials(self) -> "Settings":
        for prefix in ("GITOPS", "RBAC"):
            url = getattr(self, f"{prefix}_REPO_URL")
            token = getattr(self, f"{prefix}_DEPLOY_TOKEN")
            key_path = getattr(self, f"{prefix}_SSH_KEY_PATH")
            key = getattr(self, f"{prefix}_SSH_KEY")
            if _is_local_url(url):
                continue
            if _is_token_url(url) and not token:
                raise ValueError(f"{prefix}_DEPLOY_TOKEN is required for HTTPS repository {prefix}_REPO_URL")
            if not _is_token_url(url) and not (key_path or key):
                raise ValueError(f"{prefix}_SSH_KEY_PATH or {prefix}_SSH_KEY is required for SSH repository {prefix}_REPO_URL")
        return self

    @property
    def registry_url(self) -> str:
        """Container registry host derived from the identity provider's base URL."""
        return self.GITLAB_URL.rstrip("/").replace("https://", "https://registry.", 1)


def load_settings(**overrides) -> Settings:
    """
    Build and validate the settings once at startup.

    Raises:
        ConfigurationError: If required configuration is missing or invalid
    """
    try:
        settings = Settings(_env_file=_get_env_files(), **overrides)
    except ValidationError as e:
        missing = [".".join(str(part) for part in error["loc"]) or error["msg"] for error in e.errors()]
        raise ConfigurationError(f"Invalid operator configuration: {', '.join(missing)}: {e}") from e

    logger.info(f"Settings loaded for operator {settings.OPERATOR_NAME} (environment={settings.ENVIRONMENT})")
    logger.debug(f"GitOps repository: {settings.GITOPS_REPO_URL} ({settings.GITOPS_REPO_BRANCH})")
    logger.debug(f"RBAC repository: {settings.RBAC_REPO_URL} ({settings.RBAC_REPO_BRANCH})")
    logger.debug(f"Identity provider: {settings.GITLAB_URL}, token: {settings.GITLAB_TOKEN[:4]}...")
    return settings
