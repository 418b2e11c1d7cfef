"""
Fluent query builder with optional result caching.

Example:

    users = await (
        cache.query(User)
        .select(["id", "name", "totalViews"])   # totalViews is virtual
        .filter({"status": "active"})
        .sort([("createdAt", "DESC")])
        .paginate(page=1, page_size=10)
        .cache_for(60)
        .fetch_many()
    )
"""

import copy
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .descriptor import QueryDescriptor, RelationSpec, SortSpec, VirtualProjection, parse_relation, parse_sort
from .errors import ConfigurationError, PreconditionError
from .executor import Operation, Row
from .resources import Resource

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .client import QueryCache


class QueryBuilder:
    """Accumulates a query descriptor through chained calls, then executes it."""

    def __init__(self, resource: Resource, client: Optional["QueryCache"]):
        if client is None:
            raise PreconditionError("QueryCache client not set. Build queries with QueryCache.query().")
        if not isinstance(resource, Resource):
            raise ConfigurationError("resource must be a Resource", details={"resource": repr(resource)})

        self.resource = resource
        self.client = client

        self._filters: Dict[str, Any] = {}
        self._columns: List[str] = []
        self._virtual: List[VirtualProjection] = []
        self._relations: List[RelationSpec] = []
        self._sort: Tuple[SortSpec, ...] = ()
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None

        self.cache_ttl: Optional[int] = None
        self.logging: Optional[bool] = None

    def log(self, enabled: bool = True) -> "QueryBuilder":
        """Enable or disable event logging for this query only."""
        self.logging = bool(enabled)
        return self

    def filter(self, filters: Optional[Mapping[str, Any]] = None) -> "QueryBuilder":
        """Merge filter conditions; a later value for the same field wins."""
        if filters is None:
            return self
        if not isinstance(filters, Mapping):
            raise ConfigurationError("filters must be a mapping", details={"filters": repr(filters)})
        self._filters.update(filters)
        return self

    def select(self, fields: Iterable[str] = ()) -> "QueryBuilder":
        """
        Add fields to the projection.

        Names registered as virtual fields on the resource are projected
        through their expression; everything else is an ordinary column.
        Repeated calls add to the projection.
        """
        if isinstance(fields, str):
            fields = [fields]
        columns, virtual = self.resource.partition_fields(fields)

        for name in columns:
            if name not in self._columns:
                self._columns.append(name)

        selected = {v.name for v in self._virtual}
        for name, expression in virtual:
            if name not in selected:
                self._virtual.append(VirtualProjection(name, expression))
                selected.add(name)
        return self

    def include(self, relations: Iterable[Any] = ()) -> "QueryBuilder":
        """Append related resources to load; repeated calls accumulate."""
        if isinstance(relations, (str, RelationSpec, Mapping)):
            relations = [relations]
        self._relations.extend(parse_relation(r) for r in relations)
        return self

    def sort(self, order: Iterable[Any] = ()) -> "QueryBuilder":
        """Replace the sort order, e.g. [("createdAt", "DESC"), "name"]."""
        self._sort = parse_sort(order)
        return self

    def paginate(self, page: int = 1, page_size: int = 10) -> "QueryBuilder":
        """Set limit/offset from a 1-based page number and page size."""
        _require_positive_int("page", page)
        _require_positive_int("page_size", page_size)
        self._limit = page_size
        self._offset = (page - 1) * page_size
        return self

    def cache_for(self, ttl_seconds: Optional[int] = None) -> "QueryBuilder":
        """Cache results for ttl_seconds (default from settings)."""
        if ttl_seconds is None:
            ttl_seconds = self.client.settings.default_ttl
        _require_positive_int("ttl_seconds", ttl_seconds)
        self.cache_ttl = ttl_seconds
        return self

    def descriptor(self) -> QueryDescriptor:
        return QueryDescriptor(
            filters=dict(self._filters),
            columns=tuple(self._columns),
            virtual=tuple(self._virtual),
            relations=tuple(self._relations),
            sort=self._sort,
            limit=self._limit,
            offset=self._offset,
        )

    def clone(self) -> "QueryBuilder":
        """Independent copy sharing only the resource and client."""
        other = copy.copy(self)
        other._filters = dict(self._filters)
        other._columns = list(self._columns)
        other._virtual = list(self._virtual)
        other._relations = list(self._relations)
        return other

    async def fetch_many(self, **overrides) -> List[Row]:
        """Execute and return all matching rows."""
        return await self._execute(Operation.FETCH_MANY, overrides)

    async def fetch_one(self, **overrides) -> Optional[Row]:
        """Execute and return the first matching row, or None."""
        rows = await self._execute(Operation.FETCH_ONE, overrides)
        return rows[0] if rows else None

    async def _execute(self, operation: Operation, overrides: Dict[str, Any]) -> List[Row]:
        return await self.client.executor.execute_read(
            operation,
            self.resource,
            self.descriptor(),
            overrides,
            ttl=self.cache_ttl,
            log=self.logging,
        )

    def __repr__(self) -> str:
        return f"<QueryBuilder resource={self.resource.name!r} ttl={self.cache_ttl!r}>"


def _require_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer", details={name: value})
