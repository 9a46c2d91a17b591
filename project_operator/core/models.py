"""
Typed view of a Project custom resource snapshot.

The wire format uses camelCase (projectId, environmentType, googleGroup);
attributes are snake_case.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from project_operator.core.errors import UserInputError
from project_operator.utils.naming import generate_project_name

# The project name becomes a namespace name
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

ENVIRONMENT_TYPES = ("dev", "qa", "test", "stage", "prod")


class ProjectSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: str = Field(alias="projectId", min_length=1)
    environment_type: str = Field(alias="environmentType", min_length=1)
    google_group: str = Field(alias="googleGroup", min_length=1)

    @field_validator("environment_type")
    @classmethod
    def _known_environment_type(cls, value: str) -> str:
        if value not in ENVIRONMENT_TYPES:
            raise ValueError(f"must be one of {', '.join(ENVIRONMENT_TYPES)}")
        return value


class ProjectResource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    resource_name: str
    namespace: str
    uid: str | None = None
    api_version: str | None = None
    kind: str = "Project"
    deletion_timestamp: str | None = None
    finalizers: list[str] = Field(default_factory=list)
    annotations: dict[str, str] = Field(default_factory=dict)
    spec: ProjectSpec

    @property
    def name(self) -> str:
        """Project name every provisioned object is derived from."""
        return generate_project_name(self.spec.project_id, self.spec.environment_type)

    @property
    def google_group(self) -> str:
        return self.spec.google_group

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.resource_name}"

    def object_reference(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.resource_name,
            "namespace": self.namespace,
            "uid": self.uid,
        }

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "ProjectResource":
        """
        Parse a raw resource body as delivered by the watch.

        Raises:
            UserInputError: If metadata or spec fields are missing or the derived name is unusable
        """
        metadata = body.get("metadata") or {}
        resource_name = metadata.get("name") or "<unnamed>"

        if not metadata.get("namespace"):
            raise UserInputError(f"Project {resource_name} has no namespace")

        try:
            resource = cls(
                resource_name=metadata.get("name"),
                namespace=metadata["namespace"],
                uid=metadata.get("uid"),
                api_version=body.get("apiVersion"),
                kind=body.get("kind") or "Project",
                deletion_timestamp=metadata.get("deletionTimestamp"),
                finalizers=list(metadata.get("finalizers") or []),
                annotations=dict(metadata.get("annotations") or {}),
                spec=body.get("spec") or {},
            )
        except ValidationError as e:
            fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
            raise UserInputError(f"Project {resource_name} is invalid: {', '.join(fields)}") from e

        if len(resource.name) > 63 or not _DNS_LABEL.match(resource.name):
            raise UserInputError(f"Project {resource.key} derives name {resource.name!r}, which is not a valid namespace name")

        return resource
