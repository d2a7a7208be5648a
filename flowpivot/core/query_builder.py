#!/usr/bin/env python3
"""
Fluent SELECT / CTE assembler.
Clauses are emitted in fixed order and omitted clauses are skipped.
"""

from typing import List, Optional, Tuple, Union

from .errors import CompilationError
from .fragment import SqlFragment


class SqlQueryBuilder:
    """Builds one SELECT statement as a SqlFragment"""

    def __init__(self, columns: Optional[List[str]] = None, distinct: bool = False):
        self._columns: List[str] = list(columns or [])
        self._distinct = distinct
        self._from: Optional[str] = None
        self._where = SqlFragment.empty()
        self._group_by: List[str] = []
        self._order_by: List[str] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None

    @classmethod
    def select(cls, *columns: str) -> 'SqlQueryBuilder':
        return cls(list(columns))

    @classmethod
    def select_distinct(cls, *columns: str) -> 'SqlQueryBuilder':
        return cls(list(columns), distinct=True)

    @staticmethod
    def cte() -> 'CteQueryBuilder':
        return CteQueryBuilder()

    def from_(self, table: str) -> 'SqlQueryBuilder':
        self._from = table
        return self

    def where(self, fragment: SqlFragment) -> 'SqlQueryBuilder':
        """Replace the WHERE condition; a blank fragment is ignored"""
        if fragment is not None and not fragment.is_blank():
            self._where = fragment
        return self

    def and_where(self, fragment: SqlFragment) -> 'SqlQueryBuilder':
        self._where = SqlFragment.and_(self._where, fragment)
        return self

    def group_by(self, *columns: str) -> 'SqlQueryBuilder':
        self._group_by.extend(c for c in columns if c)
        return self

    def order_by(self, column: str, direction: str = 'ASC') -> 'SqlQueryBuilder':
        normalized = str(direction or '').strip().upper()
        if normalized not in ('ASC', 'DESC'):
            raise CompilationError(f"ORDER BY direction must be ASC or DESC, got {direction!r}")
        self._order_by.append(f"{column} {normalized}")
        return self

    def order_by_raw(self, clause: str) -> 'SqlQueryBuilder':
        if clause and clause.strip():
            self._order_by.append(clause.strip())
        return self

    def limit(self, n: int) -> 'SqlQueryBuilder':
        if int(n) < 1:
            raise CompilationError(f"LIMIT must be >= 1, got {n}")
        self._limit = int(n)
        return self

    def offset(self, n: int) -> 'SqlQueryBuilder':
        if int(n) < 0:
            raise CompilationError(f"OFFSET must be >= 0, got {n}")
        self._offset = int(n)
        return self

    def build(self) -> SqlFragment:
        if not self._from or not self._from.strip():
            raise CompilationError("FROM clause is required")

        cols = ', '.join(self._columns) if self._columns else '*'
        head = 'SELECT DISTINCT' if self._distinct else 'SELECT'
        parts = [SqlFragment.raw(f"{head} {cols}"), SqlFragment.raw(f"FROM {self._from}")]

        if not self._where.is_blank():
            parts.append(SqlFragment.sequence([SqlFragment.raw('WHERE'), self._where]))
        if self._group_by:
            parts.append(SqlFragment.raw(f"GROUP BY {', '.join(self._group_by)}"))
        if self._order_by:
            parts.append(SqlFragment.raw(f"ORDER BY {', '.join(self._order_by)}"))
        if self._limit is not None:
            parts.append(SqlFragment.raw(f"LIMIT {self._limit}"))
        if self._offset is not None:
            parts.append(SqlFragment.raw(f"OFFSET {self._offset}"))

        return SqlFragment.join('\n', parts)


class CteQueryBuilder:
    """Builds ``WITH a AS (...), b AS (...) <main>`` keeping argument order"""

    def __init__(self):
        self._ctes: List[Tuple[str, SqlFragment]] = []
        self._main: Optional[Union[SqlQueryBuilder, SqlFragment]] = None

    def with_(self, name: str, query: Union[SqlQueryBuilder, SqlFragment]) -> 'CteQueryBuilder':
        fragment = query.build() if isinstance(query, SqlQueryBuilder) else query
        self._ctes.append((name, fragment))
        return self

    def main_query(self, query: Union[SqlQueryBuilder, SqlFragment]) -> 'CteQueryBuilder':
        self._main = query
        return self

    def build(self) -> SqlFragment:
        if self._main is None:
            raise CompilationError("Main query is required for a CTE statement")
        main = self._main.build() if isinstance(self._main, SqlQueryBuilder) else self._main
        if not self._ctes:
            return main

        ctes = [
            SqlFragment(f"{name} AS (\n{fragment.sql}\n)", fragment.args)
            for name, fragment in self._ctes
        ]
        with_clause = SqlFragment.join(',\n', ctes)
        return SqlFragment(f"WITH {with_clause.sql}\n{main.sql}", with_clause.args + main.args)
