"""
Immutable description of a read query's shape.

A QueryDescriptor is what the builder accumulates, what the cache key is
derived from and what the query engine receives (as an EngineQuery).
"""

import dataclasses
import datetime
import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union
from uuid import UUID

from pydantic import BaseModel

from .errors import ConfigurationError


class SortDirection(str, Enum):
    """Sort directions."""
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: Union[str, "SortDirection"]) -> "SortDirection":
        if isinstance(value, SortDirection):
            return value
        if isinstance(value, str):
            try:
                return cls(value.upper())
            except ValueError:
                pass
        raise ConfigurationError("Sort direction must be ASC or DESC", details={"direction": value})


@dataclass(frozen=True)
class SortSpec:
    """A single (field, direction) sort term."""
    field: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class VirtualProjection:
    """A computed field: its name and the engine expression producing it."""
    name: str
    expression: Any


@dataclass(frozen=True)
class RelationSpec:
    """
    A related resource to load alongside each row.

    Related rows are those whose foreign_key equals the parent row's
    local_key. many=False attaches a single row (or None) instead of a list.
    """
    resource: str
    fields: Tuple[str, ...] = ()
    foreign_key: Optional[str] = None
    local_key: str = "id"
    many: bool = True
    alias: Optional[str] = None

    @property
    def attribute(self) -> str:
        return self.alias or self.resource


@dataclass(frozen=True)
class QueryDescriptor:
    """Snapshot of filters, projection, relations, sort order and pagination."""
    filters: Mapping[str, Any] = field(default_factory=dict)
    columns: Tuple[str, ...] = ()
    virtual: Tuple[VirtualProjection, ...] = ()
    relations: Tuple[RelationSpec, ...] = ()
    sort: Tuple[SortSpec, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))

    @property
    def projected_fields(self) -> Optional[Tuple[str, ...]]:
        """Ordinary columns to select, or None for all columns."""
        return self.columns or None

    @property
    def virtual_fields(self) -> Dict[str, Any]:
        return {v.name: v.expression for v in self.virtual}

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "QueryDescriptor":
        """Return a copy with top-level fields replaced by overrides."""
        if not overrides:
            return self

        unknown = set(overrides) - OVERRIDABLE_FIELDS
        if unknown:
            raise ConfigurationError(
                "Unknown query overrides",
                details={"overrides": sorted(unknown), "allowed": sorted(OVERRIDABLE_FIELDS)},
            )

        changes: Dict[str, Any] = {}
        for name, value in overrides.items():
            if name == "filters":
                changes[name] = dict(value or {})
            elif name == "columns":
                changes[name] = tuple(value or ())
            elif name == "virtual":
                changes[name] = tuple(
                    v if isinstance(v, VirtualProjection) else VirtualProjection(*v)
                    for v in (value or ())
                )
            elif name == "relations":
                changes[name] = tuple(parse_relation(r) for r in (value or ()))
            elif name == "sort":
                changes[name] = parse_sort(value or ())
            else:
                changes[name] = _non_negative_or_none(name, value)
        return dataclasses.replace(self, **changes)

    def canonical(self) -> Dict[str, Any]:
        """JSON-compatible form with deterministic ordering."""
        return {
            "filters": canonicalize(self.filters),
            "columns": list(self.columns),
            "virtual": [[v.name, expression_token(v.expression)] for v in self.virtual],
            "relations": [canonicalize(r) for r in self.relations],
            "sort": [[s.field, s.direction.value] for s in self.sort],
            "limit": self.limit,
            "offset": self.offset,
        }


OVERRIDABLE_FIELDS = frozenset(f.name for f in dataclasses.fields(QueryDescriptor))


def parse_sort(order: Iterable[Any]) -> Tuple[SortSpec, ...]:
    """Parse [("field", "DESC"), "other", SortSpec(...)] into SortSpecs."""
    if isinstance(order, (str, bytes)):
        order = [order]
    specs = []
    for term in order:
        if isinstance(term, SortSpec):
            specs.append(term)
        elif isinstance(term, str) and term:
            specs.append(SortSpec(term))
        elif isinstance(term, (tuple, list)) and len(term) == 2 and isinstance(term[0], str) and term[0]:
            specs.append(SortSpec(term[0], SortDirection.parse(term[1])))
        else:
            raise ConfigurationError("Invalid sort term", details={"term": repr(term)})
    return tuple(specs)


def parse_relation(relation: Any) -> RelationSpec:
    """Accept a RelationSpec, a mapping of its fields, or a bare resource name."""
    if isinstance(relation, RelationSpec):
        return relation
    if isinstance(relation, str) and relation:
        return RelationSpec(resource=relation)
    if isinstance(relation, Mapping):
        data = dict(relation)
        if "fields" in data:
            data["fields"] = tuple(data["fields"] or ())
        try:
            spec = RelationSpec(**data)
        except TypeError as exc:
            raise ConfigurationError("Invalid relation spec", details={"relation": repr(relation)}) from exc
        if not isinstance(spec.resource, str) or not spec.resource:
            raise ConfigurationError("Relation resource must be a non-empty string", details={"relation": repr(relation)})
        return spec
    raise ConfigurationError("Invalid relation spec", details={"relation": repr(relation)})


def canonicalize(value: Any) -> Any:
    """
    Reduce a value to JSON-compatible data with a stable ordering.

    Values JSON cannot represent are wrapped in a tag object, so e.g. bytes
    never canonicalize to the same data as a string. Objects without a
    repr of their own are rejected since object.__repr__ embeds an address.
    """
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        if all(isinstance(k, str) for k in value) and not _RESERVED_KEYS.intersection(value):
            return {k: canonicalize(v) for k, v in sorted(value.items())}
        pairs = [[canonicalize(k), canonicalize(v)] for k, v in value.items()]
        return {"__map__": sorted(pairs, key=_sort_token)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((canonicalize(v) for v in value), key=_sort_token)
    if isinstance(value, BaseModel):
        return canonicalize(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {"__type__": type(value).__name__, **canonicalize(dataclasses.asdict(value))}
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": bytes(value).hex()}
    if isinstance(value, (datetime.date, datetime.time)):
        return {"__value__": [_qualname(value), value.isoformat()]}
    if isinstance(value, (Decimal, UUID, datetime.timedelta)):
        return {"__value__": [_qualname(value), str(value)]}
    if type(value).__repr__ is object.__repr__:
        raise ConfigurationError(
            "Value has no stable form for cache keys",
            details={"type": _qualname(value)},
        )
    return {"__repr__": [_qualname(value), repr(value)]}


def expression_token(expression: Any) -> Any:
    """
    Cache key form of a virtual field expression.

    SQL strings are keyed by their text and objects exposing cache_token by
    that token. Any other expression is opaque and only its field name
    takes part in the key.
    """
    if isinstance(expression, str):
        return expression
    token = getattr(expression, "cache_token", None)
    return None if token is None else canonicalize(token)


_RESERVED_KEYS = frozenset({"__type__", "__map__", "__bytes__", "__value__", "__repr__"})


def _qualname(value: Any) -> str:
    cls = type(value)
    return f"{cls.__module__}.{cls.__qualname__}"


def _sort_token(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _non_negative_or_none(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative integer", details={name: value})
    return value
