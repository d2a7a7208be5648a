#!/usr/bin/env python3
"""
Query execution channel.
Runs compiled fragments with positional parameters and returns rows as dicts.
"""

from dataclasses import dataclass
from typing import Any, Dict, List
import logging
import time

import duckdb

from .errors import QueryExecutionError
from .fragment import SqlFragment


@dataclass
class QueryResult:
    """Query execution results"""
    data: List[Dict[str, Any]]
    columns: List[str]
    row_count: int
    execution_time: float


class QueryEngine:
    """Executes parameterized SQL against the data source"""

    def __init__(self, data_source):
        self.data_source = data_source
        self.logger = logging.getLogger('flowpivot.query_engine')

    def execute(self, query: SqlFragment, debug: bool = False) -> QueryResult:
        """
        Execute a compiled fragment.

        Args:
            query: SQL text with ? placeholders and its arguments
            debug: Log the SQL at INFO instead of DEBUG

        Returns:
            QueryResult with one column->value dict per row
        """
        log = self.logger.info if debug else self.logger.debug
        log(f"Executing SQL:\n{query.sql}\nargs={list(query.args)}")

        # one cursor per query, the shared connection is not thread safe
        cursor = self.data_source.connect().cursor()
        start_time = time.time()
        try:
            result = cursor.execute(query.sql, list(query.args))
            columns = [desc[0] for desc in result.description] if result.description else []
            rows = result.fetchall()
        except duckdb.Error as e:
            self.logger.error(f"Query failed: {e}\nSQL:\n{query.sql}")
            raise QueryExecutionError(str(e), query.sql) from e
        finally:
            cursor.close()

        data = [dict(zip(columns, row)) for row in rows]
        execution_time = time.time() - start_time
        self.logger.debug(f"Query returned {len(data)} rows in {execution_time:.3f}s")

        return QueryResult(
            data=data,
            columns=columns,
            row_count=len(data),
            execution_time=execution_time
        )

    def scalar(self, query: SqlFragment) -> Any:
        """First column of the first row, or None"""
        result = self.execute(query)
        if not result.data:
            return None
        return result.data[0][result.columns[0]]
