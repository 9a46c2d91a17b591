"""
Plain-text RBAC block in the deployment engine's rbac.yaml.

The block is appended verbatim on add and removed line by line on delete, so
its rendered lines must be unique to the project.
"""

import logging

logger = logging.getLogger(__name__)


def _block_lines(block: str) -> list[str]:
    return [line for line in block.splitlines() if line.strip()]


def add_rbac_block(content: str, block: str) -> tuple[str, bool]:
    """
    Append `block` to `content` unless all of its lines are already present.

    Returns:
        Tuple of (new content, changed)
    """
    existing = set(content.splitlines())
    lines = _block_lines(block)
    if lines and all(line in existing for line in lines):
        logger.debug("RBAC block already present")
        return content, False

    if content and not content.endswith("\n"):
        content += "\n"
    if not block.endswith("\n"):
        block += "\n"
    return content + block, True


def remove_rbac_block(content: str, block: str) -> tuple[str, bool]:
    """
    Delete every line of `content` that equals a non-blank line of `block`.

    Returns:
        Tuple of (new content, changed)
    """
    block_lines = set(_block_lines(block))
    lines = content.splitlines()
    kept = [line for line in lines if line not in block_lines]

    if len(kept) == len(lines):
        logger.debug("RBAC block not present")
        return content, False

    result = "\n".join(kept)
    if kept and content.endswith("\n"):
        result += "\n"
    logger.debug(f"Removed {len(lines) - len(kept)} RBAC line(s)")
    return result, True
