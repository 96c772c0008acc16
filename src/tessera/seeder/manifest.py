"""
Declarative RBAC manifests.

A manifest is a YAML (or JSON) document describing roles, permissions,
policies and field restrictions. Loading is idempotent: every entry goes
through the registry's create-or-get operations, so applying the same
manifest twice leaves the database unchanged.

Example::

    roles:
      - name: Editor
        slug: editor
        permissions: [posts.view, posts.update]
    permissions:
      posts: {view: View posts, update: Update posts}
    policies:
      - permission: posts.update
        type: ownership
    field_restrictions:
      - permission: users.view
        field: email
        type: masked
        mask_pattern: "***@***"
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate

from tessera.exceptions import ValidationError
from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)

MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "permissions": {
            "type": "object",
            "additionalProperties": {
                "oneOf": [
                    {"type": "array", "items": {"type": "string", "minLength": 1}},
                    {
                        "type": "object",
                        "additionalProperties": {"type": ["string", "null"]},
                    },
                ]
            },
        },
        "roles": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "slug": {"type": "string", "minLength": 1},
                    "description": {"type": ["string", "null"]},
                    "permissions": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "policies": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["permission", "type"],
                "additionalProperties": False,
                "properties": {
                    "permission": {"type": "string"},
                    "type": {"type": "string"},
                    "conditions": {"type": "object"},
                    "priority": {"type": "integer"},
                },
            },
        },
        "field_restrictions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["permission", "field"],
                "additionalProperties": False,
                "properties": {
                    "permission": {"type": "string"},
                    "field": {"type": "string", "minLength": 1},
                    "type": {"type": "string"},
                    "mask_pattern": {"type": ["string", "null"]},
                },
            },
        },
    },
}


def load_manifest(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a manifest file; `.yaml`/`.yml` are parsed as YAML, anything else as JSON."""
    manifest_path = Path(path)
    with open(manifest_path, "r", encoding="utf-8") as f:
        try:
            if manifest_path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Cannot parse manifest {manifest_path.name}: {exc}") from exc
    return data or {}


def validate_manifest(data: Any) -> Dict[str, Any]:
    try:
        validate(instance=data, schema=MANIFEST_SCHEMA)
    except JSONSchemaValidationError as exc:
        field_name = ".".join(str(p) for p in exc.path) or None
        raise ValidationError(f"Invalid manifest: {exc.message}", field=field_name) from exc
    return data


def apply_manifest(registry: PermissionRegistry, data: Dict[str, Any]) -> Dict[str, int]:
    """
    Apply a validated manifest through the registry.

    Permissions are created first so role grants, policies and restrictions
    can reference them. Malformed policy trees raise MisconfiguredError from
    the registry; the caller owns the transaction.
    """
    validate_manifest(data)
    counts = {"permissions": 0, "roles": 0, "policies": 0, "field_restrictions": 0}

    for resource, actions in (data.get("permissions") or {}).items():
        counts["permissions"] += len(registry.create_resource_permissions(resource, actions))

    for entry in data.get("roles") or []:
        role = registry.create_role(entry["name"], entry.get("slug"), entry.get("description"))
        for name in entry.get("permissions") or []:
            registry.grant_permission_to_role(role, name)
        counts["roles"] += 1

    for entry in data.get("policies") or []:
        registry.add_policy(
            entry["permission"],
            entry["type"],
            entry.get("conditions"),
            entry.get("priority"),
        )
        counts["policies"] += 1

    for entry in data.get("field_restrictions") or []:
        registry.add_field_restriction(
            entry["permission"],
            entry["field"],
            entry.get("type", "hidden"),
            entry.get("mask_pattern"),
        )
        counts["field_restrictions"] += 1

    logger.info("Applied RBAC manifest: %s", counts)
    return counts
