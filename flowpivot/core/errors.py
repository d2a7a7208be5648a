#!/usr/bin/env python3
"""
Error taxonomy for the query engine.

Validation errors are raised before any SQL is built and map to a client
error at the request boundary. Compilation errors are programming errors
(placeholder/argument drift, missing FROM). Execution errors wrap whatever
the database driver raised and keep it chained as ``__cause__``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Machine readable error codes with their default human message"""
    INVALID_FILTER_MODEL = 'Malformed filter model'
    INVALID_TIME_WINDOW = 'Invalid time window'
    LAYER_NOT_FOUND = 'Unknown layer'
    FIELD_NOT_ALLOWED = 'Field not allowed'
    INVALID_OPERATOR = 'Unsupported filter operator'
    INVALID_VALUE = 'Invalid filter value'
    INVALID_SORT = 'Invalid sort'
    INVALID_PAGINATION = 'Invalid pagination'
    INVALID_CURSOR = 'Invalid cursor'
    INVALID_METRIC = 'Invalid metric'
    MISSING_PARAMETER = 'Missing required parameter'
    QUERY_EXECUTION_FAILED = 'Query execution failed'

    @property
    def message(self) -> str:
        return self.value


class FlowPivotError(Exception):
    """Base class for all engine errors"""


class ValidationError(FlowPivotError, ValueError):
    """Request description rejected before SQL compilation"""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        text = code.message if not detail else f"{code.message}: {detail}"
        super().__init__(text)

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code.name, 'message': str(self)}


class CompilationError(FlowPivotError, RuntimeError):
    """Internal SQL composition invariant was violated"""


class QueryExecutionError(FlowPivotError):
    """The execution channel failed while running a compiled query"""

    def __init__(self, detail: str, sql: Optional[str] = None):
        self.code = ErrorCode.QUERY_EXECUTION_FAILED
        self.sql = sql
        super().__init__(f"{self.code.message}: {detail}")
