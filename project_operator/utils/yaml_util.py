"""
YAML utility module for loading and saving YAML documents with ruamel.yaml.

Round-trip mode is used throughout so comments and key order of the files
we touch in the configuration repositories survive a rewrite.
"""

import logging
import os
from io import StringIO
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from project_operator.core.errors import DocumentFormatError

logger = logging.getLogger(__name__)


def _create_yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    yaml.default_flow_style = False
    yaml.indent(mapping=2, sequence=4, offset=2)
    return yaml


def load_yaml_from_path(file_path: str) -> Any:
    """
    Load YAML content from a file path.

    Args:
        file_path: Path to the YAML file

    Returns:
        Parsed YAML data

    Raises:
        DocumentFormatError: If the file does not exist or is not valid YAML
    """
    if not os.path.exists(file_path):
        raise DocumentFormatError(f"YAML file not found: {file_path}")

    with open(file_path, encoding="utf-8") as f:
        content = f.read()

    try:
        return load_yaml_from_string(content)
    except DocumentFormatError as e:
        raise DocumentFormatError(f"Error parsing YAML file {file_path}: {e}") from e


def save_yaml_to_path(file_path: str, data: Any) -> None:
    """
    Save YAML data to a file path, creating parent directories as needed.

    Args:
        file_path: Path where to save the YAML file
        data: YAML data (plain or ruamel round-trip types)
    """
    content = dump_yaml_to_string(data)
    os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)

    with open(file_path, "w", encoding="utf-8") as f:
        f.write(content)

    logger.debug(f"Successfully saved YAML to: {file_path}")


def load_yaml_from_string(yaml_string: str) -> Any:
    """
    Load YAML content from a string.

    Raises:
        DocumentFormatError: If the content is not valid YAML
    """
    try:
        return _create_yaml().load(StringIO(yaml_string))
    except YAMLError as e:
        raise DocumentFormatError(f"Error parsing YAML string: {e}") from e


def dump_yaml_to_string(data: Any) -> str:
    output = StringIO()
    _create_yaml().dump(data, output)
    return output.getvalue()
