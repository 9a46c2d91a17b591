"""
Template rendering for the files the operator writes into its repositories.

Templates are looked up in a single directory (the packaged defaults unless
TEMPLATES_DIR points elsewhere) and rendered with Jinja2. Undefined variables
are errors rather than empty strings.
"""

import logging
import os
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound

from project_operator.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ManifestGenerator:
    """Renders templates from a directory and writes the results into a working copy."""

    def __init__(self, templates_dir: str):
        self.templates_dir = templates_dir
        self.env = Environment(
            loader=FileSystemLoader(templates_dir),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        logger.debug(f"ManifestGenerator initialized with templates from {templates_dir}")

    def render_template(self, template_name: str, variables: dict[str, Any]) -> str:
        """
        Render a template file with Jinja2.

        Args:
            template_name: File name relative to the templates directory
            variables: Template variables

        Returns:
            The rendered content, always ending with a newline

        Raises:
            ConfigurationError: If the template is missing or cannot be rendered with the given variables
        """
        logger.debug(f"Rendering template {template_name} with variables: {list(variables.keys())}")

        try:
            result = self.env.get_template(template_name).render(**variables)
        except TemplateNotFound as e:
            raise ConfigurationError(f"Template not found: {os.path.join(self.templates_dir, template_name)}") from e
        except TemplateError as e:
            raise ConfigurationError(f"Error rendering template {template_name}: {e}") from e

        # convention: files should end with a newline
        if not result.endswith("\n"):
            result += "\n"
        return result

    def create_manifest_file(self, template_name: str, variables: dict[str, Any], output_path: str) -> str:
        """
        Render a template and write it to `output_path`, creating parent directories.

        Returns:
            The path of the written file
        """
        content = self.render_template(template_name, variables)

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content)

        logger.debug(f"Manifest written to: {output_path}")
        return output_path
