"""
Centralized naming utilities.

Every object the operator creates is named deterministically from the project
name, so a Create that is re-run after a crash finds the partial state of the
previous attempt instead of duplicating it.
"""

import re

_POLICY_SEPARATORS = re.compile(r"[^A-Za-z0-9_]")


def generate_project_name(project_id: str, environment_type: str) -> str:
    """
    Generate the project name from the Project spec.

    Example:
        generate_project_name("acme", "prod") -> "acme-prod"
    """
    return f"{project_id}-{environment_type}"


def sanitize_policy_identifier(name: str) -> str:
    """
    Replace separator characters that are not valid in a secrets-broker policy identifier.

    Example:
        sanitize_policy_identifier("acme-prod") -> "acme_prod"
    """
    return _POLICY_SEPARATORS.sub("_", name)


def generate_policy_name(name: str) -> str:
    """
    Example:
        generate_policy_name("acme-prod") -> "acme_prod_access"
    """
    return f"{sanitize_policy_identifier(name)}_access"


def generate_image_puller_name(name: str) -> str:
    """
    Name of the group access token and of the registry user in the pull secret.

    Example:
        generate_image_puller_name("acme-prod") -> "acme-prod-image-puller"
    """
    return f"{name}-image-puller"


def generate_application_file_name(name: str) -> str:
    return f"{name}.yaml"
