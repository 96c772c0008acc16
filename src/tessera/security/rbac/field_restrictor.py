"""
Field-level restrictions applied when records are serialized or written.

- hidden:   key removed from the output
- masked:   value replaced according to the restriction's mask pattern
- readonly: value kept on read; rejected by the write-path helpers
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

from tessera.security.rbac.models import DEFAULT_MASK_PATTERN, FieldRestriction, RestrictionType
from tessera.security.rbac.registry import PermissionRegistry


def mask_value(value: Any, pattern: str = DEFAULT_MASK_PATTERN) -> Any:
    """
    Mask a value.

    A pattern containing `#` keeps the last N characters (N = number of `#`)
    and stars the rest: `"XXX-XX-####"` turns `"123456789"` into
    `"*****6789"`. Any other pattern replaces the value verbatim.
    """
    if value is None:
        return None
    if "#" in pattern:
        show = pattern.count("#")
        text = str(value)
        hide = max(0, len(text) - show)
        return "*" * hide + text[-show:]
    return pattern


def _as_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, Mapping):
        return dict(record)
    to_dict = getattr(record, "to_dict", None)
    if callable(to_dict):
        return dict(to_dict())
    return dict(vars(record))


class FieldRestrictor:
    def __init__(self, registry: PermissionRegistry):
        self.registry = registry

    def _restrictions(self, permission_name: str) -> List[FieldRestriction]:
        # Unknown permission names are a NotFoundError, not "no restrictions".
        permission = self.registry.find_permission(permission_name)
        return self.registry.field_restrictions_for(permission.name)

    def _fields(self, permission_name: str, rtype: RestrictionType) -> List[str]:
        return [
            r.field_name
            for r in self._restrictions(permission_name)
            if r.restriction_type == rtype.value
        ]

    def apply_restrictions(self, permission_name: str, record: Any) -> Dict[str, Any]:
        """Return a restricted copy of `record`; the input is never modified."""
        restrictions = self._restrictions(permission_name)
        data = _as_dict(record)
        if not restrictions:
            return data

        for r in restrictions:
            if r.restriction_type == RestrictionType.hidden.value:
                data.pop(r.field_name, None)

        for r in restrictions:
            if r.restriction_type == RestrictionType.masked.value and r.field_name in data:
                data[r.field_name] = mask_value(data[r.field_name], r.effective_mask_pattern)

        return data

    def apply_restrictions_to_many(
        self, permission_name: str, records: Iterable[Any]
    ) -> List[Dict[str, Any]]:
        return [self.apply_restrictions(permission_name, record) for record in records]

    def is_field_readonly(self, permission_name: str, field: str) -> bool:
        return field in self.readonly_fields(permission_name)

    def readonly_fields(self, permission_name: str) -> List[str]:
        return self._fields(permission_name, RestrictionType.readonly)

    def hidden_fields(self, permission_name: str) -> List[str]:
        return self._fields(permission_name, RestrictionType.hidden)

    def filter_readonly_fields(
        self, permission_name: str, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        readonly = set(self.readonly_fields(permission_name))
        return {k: v for k, v in payload.items() if k not in readonly}
