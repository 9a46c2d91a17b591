"""
Access-control document model and the merge/prune rules applied to it.

The document lives at vault.externalConfig in the secrets-broker values file:

    vault:
      externalConfig:
        policies:       [{name, rules}]
        groups:         [{name, policies, metadata?, type}]
        group-aliases:  [{name, mountpath, group}]

Entries are ordered by insertion. Group policy lists behave as sets.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.scalarstring import LiteralScalarString

from project_operator.core.errors import DocumentFormatError
from project_operator.utils.naming import generate_policy_name, sanitize_policy_identifier

logger = logging.getLogger(__name__)

ALIAS_MOUNT_PATH = "oidc"
EXTERNAL_GROUP_TYPE = "external"
POLICY_CAPABILITIES = ["create", "read", "update", "delete", "list"]


def render_policy_rules(name: str) -> str:
    """
    Policy rules granting full access below the project's secret path.

    Example:
        render_policy_rules("acme-prod") ->
            path "secret/acme_prod/*" {
              capabilities = ["create", "read", "update", "delete", "list"]
            }
    """
    capabilities = ", ".join(f'"{c}"' for c in POLICY_CAPABILITIES)
    return f'path "secret/{sanitize_policy_identifier(name)}/*" {{\n  capabilities = [{capabilities}]\n}}'


def _require_str(entry: dict[str, Any], key: str, section: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str):
        raise DocumentFormatError(f"Entry in {section} has no string '{key}': {dict(entry)}")
    return value


def _require_list(container: dict[str, Any], key: str, section: str) -> list[Any]:
    if key not in container:
        raise DocumentFormatError(f"Missing '{key}' in {section}")
    value = container[key]
    if value is None:
        return []
    if not isinstance(value, list):
        raise DocumentFormatError(f"'{key}' in {section} must be a list, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, dict):
            raise DocumentFormatError(f"'{key}' in {section} must only contain mappings, got {item!r}")
    return value


@dataclass
class Policy:
    name: str
    rules: str
    source: dict[str, Any] | None = field(default=None, repr=False, compare=False)

    def to_data(self) -> dict[str, Any]:
        data = self.source if self.source is not None else CommentedMap()
        data["name"] = self.name
        if not isinstance(data.get("rules"), str) or data["rules"] != self.rules:
            data["rules"] = LiteralScalarString(self.rules)
        return data


@dataclass
class Group:
    name: str
    policies: list[str] = field(default_factory=list)
    type: str = EXTERNAL_GROUP_TYPE
    metadata: dict[str, Any] | None = None
    source: dict[str, Any] | None = field(default=None, repr=False, compare=False)

    def to_data(self) -> dict[str, Any]:
        data = self.source if self.source is not None else CommentedMap()
        data["name"] = self.name
        data["policies"] = list(self.policies)
        if self.metadata is not None:
            data["metadata"] = self.metadata
        data["type"] = self.type
        return data


@dataclass
class GroupAlias:
    name: str
    mountpath: str
    group: str
    source: dict[str, Any] | None = field(default=None, repr=False, compare=False)

    def to_data(self) -> dict[str, Any]:
        data = self.source if self.source is not None else CommentedMap()
        data["name"] = self.name
        data["mountpath"] = self.mountpath
        data["group"] = self.group
        return data


@dataclass
class AccessControlDocument:
    policies: list[Policy] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    group_aliases: list[GroupAlias] = field(default_factory=list)

    @staticmethod
    def _external_config(data: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise DocumentFormatError("Access-control document must be a mapping")
        vault = data.get("vault")
        if not isinstance(vault, dict):
            raise DocumentFormatError("Access-control document has no 'vault' mapping")
        external = vault.get("externalConfig")
        if not isinstance(external, dict):
            raise DocumentFormatError("Access-control document has no 'vault.externalConfig' mapping")
        return external

    @classmethod
    def from_data(cls, data: Any) -> "AccessControlDocument":
        """
        Build the model from a parsed values file.

        Raises:
            DocumentFormatError: If the document does not have the expected shape
        """
        external = cls._external_config(data)
        section = "vault.externalConfig"

        policies = [
            Policy(name=_require_str(p, "name", "policies"), rules=_require_str(p, "rules", "policies"), source=p)
            for p in _require_list(external, "policies", section)
        ]

        groups = []
        for g in _require_list(external, "groups", section):
            group_policies = g.get("policies") or []
            if not isinstance(group_policies, list) or not all(isinstance(p, str) for p in group_policies):
                raise DocumentFormatError(f"Group {g.get('name')!r} has an invalid policy list: {group_policies!r}")
            groups.append(
                Group(
                    name=_require_str(g, "name", "groups"),
                    policies=list(dict.fromkeys(group_policies)),
                    type=g.get("type", EXTERNAL_GROUP_TYPE),
                    metadata=g.get("metadata"),
                    source=g,
                )
            )

        aliases = [
            GroupAlias(
                name=_require_str(a, "name", "group-aliases"),
                mountpath=_require_str(a, "mountpath", "group-aliases"),
                group=_require_str(a, "group", "group-aliases"),
                source=a,
            )
            for a in _require_list(external, "group-aliases", section)
        ]

        return cls(policies=policies, groups=groups, group_aliases=aliases)

    def apply_to(self, data: Any) -> None:
        """Write the model back into the parsed values file, keeping every unrelated key."""
        external = self._external_config(data)
        external["policies"] = [p.to_data() for p in self.policies]
        external["groups"] = [g.to_data() for g in self.groups]
        external["group-aliases"] = [a.to_data() for a in self.group_aliases]

    def get_policy(self, name: str) -> Policy | None:
        return next((p for p in self.policies if p.name == name), None)

    def get_group(self, name: str) -> Group | None:
        return next((g for g in self.groups if g.name == name), None)

    def get_alias(self, group: str) -> GroupAlias | None:
        return next((a for a in self.group_aliases if a.name == group), None)

    def add_project(self, name: str, group: str) -> bool:
        """
        Grant `group` access to the project's secret path.

        Creates the policy, the external group and its alias as needed. Adding
        the same project twice is a no-op.

        Returns:
            True if the document changed
        """
        policy_name = generate_policy_name(name)
        changed = False

        if self.get_policy(policy_name) is None:
            self.policies.append(Policy(name=policy_name, rules=render_policy_rules(name)))
            logger.debug(f"Added policy {policy_name}")
            changed = True

        existing_group = self.get_group(group)
        if existing_group is None:
            self.groups.append(Group(name=group, policies=[policy_name]))
            logger.debug(f"Added group {group} with policy {policy_name}")
            changed = True
        elif policy_name not in existing_group.policies:
            existing_group.policies.append(policy_name)
            logger.debug(f"Added policy {policy_name} to group {group}")
            changed = True

        if self.get_alias(group) is None:
            self.group_aliases.append(GroupAlias(name=group, mountpath=ALIAS_MOUNT_PATH, group=group))
            logger.debug(f"Added group alias {group} -> {ALIAS_MOUNT_PATH}")
            changed = True

        return changed

    def remove_project(self, name: str, group: str) -> bool:
        """
        Revoke `group`'s access to the project and prune what becomes unused.

        The policy goes once no group references it any more. Groups left
        without policies are removed, and the alias for `group` goes once no
        group of that name remains.

        Returns:
            True if the document changed
        """
        policy_name = generate_policy_name(name)
        changed = False

        target = self.get_group(group)
        if target is not None and policy_name in target.policies:
            target.policies = [p for p in target.policies if p != policy_name]
            logger.debug(f"Removed policy {policy_name} from group {group}")
            changed = True

        pruned = [g.name for g in self.groups if not g.policies]
        if pruned:
            self.groups = [g for g in self.groups if g.policies]
            logger.debug(f"Pruned groups without policies: {pruned}")
            changed = True

        still_referenced = any(policy_name in g.policies for g in self.groups)
        if not still_referenced and self.get_policy(policy_name) is not None:
            self.policies = [p for p in self.policies if p.name != policy_name]
            logger.debug(f"Removed policy {policy_name}")
            changed = True

        if self.get_group(group) is None and self.get_alias(group) is not None:
            self.group_aliases = [a for a in self.group_aliases if a.name != group]
            logger.debug(f"Removed group alias {group}")
            changed = True

        return changed
