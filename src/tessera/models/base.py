from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import inspect
from sqlalchemy.orm import declarative_base


class _DictMixin:
    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        mapper = inspect(type(self))
        return {attr.key: getattr(self, attr.key) for attr in mapper.column_attrs}


Base = declarative_base(cls=_DictMixin)
