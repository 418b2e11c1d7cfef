"""
PostgreSQL query engine for the query cache layer.

Renders an EngineQuery into a single parameterized SELECT, then loads each
requested relation with one extra `WHERE fk = ANY($1)` query and attaches
the related rows to their parents.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import asyncpg

from ..descriptor import RelationSpec
from ..errors import PreconditionError, QueryEngineError
from ..executor import EngineQuery, Row
from ..logging import get_logger
from ..resources import Resource

OPERATORS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "ilike": "ILIKE",
}


def quote_ident(name: str) -> str:
    """Quote an identifier, keeping dotted schema/table qualifiers."""
    if not isinstance(name, str) or not name:
        raise QueryEngineError("Identifiers must be non-empty strings", details={"identifier": repr(name)})
    return ".".join('"' + part.replace('"', '""') + '"' for part in name.split("."))


def implicit_columns(query: EngineQuery) -> List[str]:
    """Relation local keys an explicit projection lacks; selected for joining only."""
    if not query.projected_fields:
        return []
    return [
        key for key in dict.fromkeys(relation.local_key for relation in query.relations)
        if key not in query.projected_fields
    ]


class _Params:
    """Collects bind parameters and hands out $n placeholders."""

    def __init__(self):
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def build_select(resource: Resource, query: EngineQuery, *, limit: Optional[int] = None) -> Tuple[str, List[Any]]:
    """Render the parent SELECT for query; limit overrides query.limit."""
    params = _Params()

    if query.projected_fields:
        columns = list(query.projected_fields) + implicit_columns(query)
        select_list = [quote_ident(c) for c in columns]
    else:
        select_list = ["*"]

    for name, expression in query.virtual_fields.items():
        if not isinstance(expression, str) or not expression.strip():
            raise QueryEngineError(
                "Virtual field expressions must be SQL strings",
                details={"field": name, "expression": repr(expression)},
            )
        select_list.append(f"({expression}) AS {quote_ident(name)}")

    sql = f"SELECT {', '.join(select_list)} FROM {quote_ident(resource.table_name)}"

    clauses = _where_clauses(query.filters, params)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    if query.sort:
        sql += " ORDER BY " + ", ".join(
            f"{quote_ident(term.field)} {term.direction.value}" for term in query.sort
        )

    effective_limit = limit if limit is not None else query.limit
    if effective_limit is not None:
        sql += f" LIMIT {params.add(effective_limit)}"
    if query.offset:
        sql += f" OFFSET {params.add(query.offset)}"

    return sql, params.values


def _where_clauses(filters: Mapping[str, Any], params: _Params) -> List[str]:
    clauses = []
    for column, condition in filters.items():
        col = quote_ident(column)
        if isinstance(condition, Mapping):
            for op, value in condition.items():
                clauses.append(_operator_clause(col, op, value, params))
        elif condition is None:
            clauses.append(f"{col} IS NULL")
        elif isinstance(condition, (list, tuple, set, frozenset)):
            clauses.append(f"{col} = ANY({params.add(list(condition))})")
        else:
            clauses.append(f"{col} = {params.add(condition)}")
    return clauses


def _operator_clause(col: str, op: str, value: Any, params: _Params) -> str:
    if op == "is_null":
        return f"{col} IS NULL" if value else f"{col} IS NOT NULL"
    if op == "in":
        return f"{col} = ANY({params.add(list(value))})"
    if op == "not_in":
        return f"{col} <> ALL({params.add(list(value))})"
    if value is None and op in ("eq", "ne"):
        return f"{col} IS NULL" if op == "eq" else f"{col} IS NOT NULL"
    if op in OPERATORS:
        return f"{col} {OPERATORS[op]} {params.add(value)}"
    raise QueryEngineError("Unsupported filter operator", details={"operator": op, "column": col})


class PostgresQueryEngine:
    """asyncpg-backed implementation of the QueryEngine protocol."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool: Optional[asyncpg.Pool] = None,
        resources: Optional[Iterable[Resource]] = None,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30,
    ):
        if dsn is None and pool is None:
            raise PreconditionError("PostgresQueryEngine needs a dsn or a pool")
        self.dsn = dsn
        self.pool = pool
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.resources: Dict[str, Resource] = {r.name: r for r in (resources or ())}
        self.logger = get_logger("querycache.engine.postgres")

    async def start(self):
        """Create the connection pool."""
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL engine", error=str(e))
            raise QueryEngineError(str(e), details={"operation": "create_pool"}) from e
        self.logger.info("PostgreSQL engine started")

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL engine stopped")

    def register(self, resource: Resource) -> None:
        """Make a resource's table known for relation loading."""
        self.resources[resource.name] = resource

    async def fetch_many(self, resource: Resource, query: EngineQuery) -> List[Row]:
        sql, params = build_select(resource, query)
        rows = await self._fetch(sql, params)
        await self._load_relations(rows, query.relations)
        return _strip(rows, query)

    async def fetch_one(self, resource: Resource, query: EngineQuery) -> List[Row]:
        sql, params = build_select(resource, query, limit=1)
        rows = await self._fetch(sql, params)
        await self._load_relations(rows, query.relations)
        return _strip(rows, query)

    async def _load_relations(self, rows: List[Row], relations: Tuple[RelationSpec, ...]) -> None:
        for relation in relations:
            if not relation.foreign_key:
                raise QueryEngineError(
                    "Relation needs a foreign_key to be loaded",
                    details={"relation": relation.resource},
                )

            for row in rows:
                if relation.local_key not in row:
                    raise QueryEngineError(
                        "Parent rows lack the relation's local key",
                        details={"relation": relation.resource, "local_key": relation.local_key},
                    )
            keys = list(dict.fromkeys(
                row[relation.local_key] for row in rows if row[relation.local_key] is not None
            ))

            grouped: Dict[Any, List[Row]] = {}
            if keys:
                related = self.resources.get(relation.resource) or Resource(relation.resource)
                columns = list(relation.fields)
                if columns and relation.foreign_key not in columns:
                    columns.append(relation.foreign_key)
                select_list = ", ".join(quote_ident(c) for c in columns) if columns else "*"
                sql = (
                    f"SELECT {select_list} FROM {quote_ident(related.table_name)} "
                    f"WHERE {quote_ident(relation.foreign_key)} = ANY($1)"
                )
                for child in await self._fetch(sql, [keys]):
                    grouped.setdefault(child.get(relation.foreign_key), []).append(child)

            for row in rows:
                children = grouped.get(row[relation.local_key], [])
                if relation.many:
                    row[relation.attribute] = children
                else:
                    row[relation.attribute] = children[0] if children else None

    async def _fetch(self, sql: str, params: List[Any]) -> List[Row]:
        if self.pool is None:
            raise PreconditionError("PostgreSQL engine not started. Call start() first.")
        try:
            async with self.pool.acquire() as conn:
                records = await conn.fetch(sql, *params)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("PostgreSQL query failed", error=str(e))
            raise QueryEngineError(str(e), details={"sql": sql}) from e
        return [dict(record) for record in records]


def _strip(rows: List[Row], query: EngineQuery) -> List[Row]:
    """Drop join-only columns, unless a relation was attached under that name."""
    attributes = {relation.attribute for relation in query.relations}
    columns = [c for c in implicit_columns(query) if c not in attributes]
    if not columns:
        return rows
    for row in rows:
        for column in columns:
            row.pop(column, None)
    return rows
