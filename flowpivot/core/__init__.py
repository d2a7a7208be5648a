#!/usr/bin/env python3
"""
Core module for flowpivot - SQL composition, filter compilation, data access
and the pivot, distinct-values and grid views.
"""

from .errors import ErrorCode, FlowPivotError, ValidationError, CompilationError, QueryExecutionError
from .fragment import SqlFragment
from .query_builder import SqlQueryBuilder, CteQueryBuilder
from .config import EngineSettings
from .layers import LAYERS, Layer, LayerSchema, SchemaCatalog, resolve_layer
from .time_utils import TimeWindow
from .filter_model import FilterEntry, FilterModelCompiler, Operator, parse_filters
from .cursor import CursorCodec
from .data_source import FlowDataSource
from .query_engine import QueryEngine, QueryResult
from .distinct_values import DistinctValuesRequest, DistinctValuesPage, DistinctValuesResolver
from .pivot_context import (
    AxisDef,
    ChartRequest,
    DrilldownRequest,
    HeatmapRequest,
    MetricDef,
    PivotQueryContext,
)
from .heatmap import HeatmapPage, HeatmapRenderer
from .pivot_engine import PivotAggregationEngine, ChartResponse, ByColumnResponse, DrilldownResponse
from .pivot_table import PivotTableRequest, PivotTableService
from .grid import GridPage, GridQueryService

__all__ = [
    'ErrorCode',
    'FlowPivotError',
    'ValidationError',
    'CompilationError',
    'QueryExecutionError',
    'SqlFragment',
    'SqlQueryBuilder',
    'CteQueryBuilder',
    'EngineSettings',
    'LAYERS',
    'Layer',
    'LayerSchema',
    'SchemaCatalog',
    'resolve_layer',
    'TimeWindow',
    'FilterEntry',
    'FilterModelCompiler',
    'Operator',
    'parse_filters',
    'CursorCodec',
    'FlowDataSource',
    'QueryEngine',
    'QueryResult',
    'DistinctValuesRequest',
    'DistinctValuesPage',
    'DistinctValuesResolver',
    'AxisDef',
    'ChartRequest',
    'DrilldownRequest',
    'HeatmapRequest',
    'MetricDef',
    'PivotQueryContext',
    'HeatmapPage',
    'HeatmapRenderer',
    'PivotAggregationEngine',
    'ChartResponse',
    'ByColumnResponse',
    'DrilldownResponse',
    'PivotTableRequest',
    'PivotTableService',
    'GridPage',
    'GridQueryService'
]

__version__ = '1.0'
