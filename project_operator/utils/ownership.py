"""Ownership labels on cluster objects created by the operator."""

from typing import Any

OWNER_LABEL = "app"


def owner_labels(owner: str) -> dict[str, str]:
    return {OWNER_LABEL: owner}


def is_owned(obj: dict[str, Any], owner: str) -> bool:
    """True if `obj` carries the label app=<owner>."""
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return labels.get(OWNER_LABEL) == owner
