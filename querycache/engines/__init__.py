"""
Query engine adapters.

An engine takes a Resource and an EngineQuery and returns ordered rows as
dicts. The cache layer never interprets engine errors.
"""

from .postgres import PostgresQueryEngine

__all__ = ["PostgresQueryEngine"]
