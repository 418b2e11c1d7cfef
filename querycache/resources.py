"""
Resource definitions and their virtual-field registries.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError


@dataclass(frozen=True)
class Resource:
    """
    A queryable resource (a model/table) and its computed fields.

    virtual_fields maps a field name to an expression the query engine
    evaluates, e.g. a correlated subquery. SQL strings take part in the
    cache key by their text. Other expressions are keyed by their
    cache_token attribute when they have one, otherwise by field name only.
    """
    name: str
    table: Optional[str] = None
    primary_key: str = "id"
    virtual_fields: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("Resource name must be a non-empty string", details={"name": self.name})
        object.__setattr__(self, "virtual_fields", MappingProxyType(dict(self.virtual_fields)))

    @property
    def table_name(self) -> str:
        return self.table or self.name

    def is_virtual(self, field_name: str) -> bool:
        return field_name in self.virtual_fields

    def partition_fields(self, fields: Iterable[str]) -> Tuple[List[str], List[Tuple[str, Any]]]:
        """Split field names into ordinary columns and (name, expression) virtual pairs."""
        columns: List[str] = []
        virtual: List[Tuple[str, Any]] = []
        for name in fields:
            if not isinstance(name, str) or not name:
                raise ConfigurationError("Field names must be non-empty strings", details={"field": name})
            if name in self.virtual_fields:
                virtual.append((name, self.virtual_fields[name]))
            else:
                columns.append(name)
        return columns, virtual
