#!/usr/bin/env python3
"""
Pivot aggregation engine.

Runs the grouped-aggregate queries for charts, column-wise breakdowns,
heatmap tables and drilldown time series, and reshapes the rows into the
category/matrix/series responses. Each request gets its own context; axis
values are always resolved before the queries that depend on them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import statistics

from .config import EngineSettings
from .errors import ValidationError, ErrorCode
from .filter_model import FilterEntry, normalize_key, parse_int
from .heatmap import HeatmapPage
from .layers import SchemaCatalog, resolve_layer
from .pivot_context import (
    AxisDef, ChartRequest, DrilldownRequest, HeatmapRequest, MetricDef,
    PivotQueryContext, TopNFilter, split_top_n_filters,
)
from .pivot_queries import COL_KEY, KEY, METRIC, ROW_KEY, TS, PivotQueries
from .time_utils import epoch_millis
from ..sql.expressions import time_bucket_width


def median(values: List[float]) -> Optional[float]:
    """Midpoint median of sorted values; duplicates count by multiplicity"""
    if not values:
        return None
    return float(statistics.median(values))


def _number(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class ChartSeries:
    id: str
    label: str
    field: str
    agg: str
    values: List[List[Optional[float]]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'label': self.label, 'field': self.field, 'agg': self.agg, 'values': self.values}


@dataclass
class ChartResponse:
    """values are indexed [y][x]; None marks a combination with no rows"""
    x_field: Optional[str] = None
    y_field: Optional[str] = None
    x_categories: List[str] = field(default_factory=list)
    y_categories: List[str] = field(default_factory=list)
    series: List[ChartSeries] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'xField': self.x_field,
            'yField': self.y_field,
            'xCategories': self.x_categories,
            'yCategories': self.y_categories,
            'series': [s.to_dict() for s in self.series],
        }


@dataclass
class ColumnChart:
    col_key: str
    row_categories: List[str] = field(default_factory=list)
    values: List[Optional[float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'colKey': self.col_key, 'rowCategories': self.row_categories, 'values': self.values}


@dataclass
class ByColumnResponse:
    col_field: str
    row_field: str
    metric_field: str
    metric_agg: str
    metric_label: str
    charts: List[ColumnChart] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'colField': self.col_field,
            'rowField': self.row_field,
            'metricField': self.metric_field,
            'metricAgg': self.metric_agg,
            'metricLabel': self.metric_label,
            'charts': [c.to_dict() for c in self.charts],
        }


@dataclass
class DrilldownSeries:
    row_key: str
    points: List[Dict[str, Any]] = field(default_factory=list)
    median: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'rowKey': self.row_key, 'points': self.points, 'median': self.median}


@dataclass
class DrilldownResponse:
    time_field: Optional[str] = None
    metric_field: Optional[str] = None
    metric_agg: Optional[str] = None
    global_min_time: Optional[int] = None
    global_max_time: Optional[int] = None
    global_median: Optional[float] = None
    series: List[DrilldownSeries] = field(default_factory=list)

    @property
    def series_median_map(self) -> Dict[str, Optional[float]]:
        return {s.row_key: s.median for s in self.series}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timeField': self.time_field,
            'metricField': self.metric_field,
            'metricAgg': self.metric_agg,
            'globalMinTime': self.global_min_time,
            'globalMaxTime': self.global_max_time,
            'globalMedian': self.global_median,
            'series': [s.to_dict() for s in self.series],
            'seriesMedianMap': self.series_median_map,
        }


class PivotAggregationEngine:
    """Chart, breakdown, heatmap and drilldown views over one execution channel"""

    def __init__(self, engine, catalog: SchemaCatalog, settings: Optional[EngineSettings] = None):
        self.engine = engine
        self.catalog = catalog
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger('flowpivot.pivot_engine')

    # -- context -----------------------------------------------------------

    def context(self, layer: Optional[str], time: Any = None, filters: Any = None,
                time_field: Optional[str] = None, metrics: Optional[List[MetricDef]] = None) -> PivotQueryContext:
        """
        Build a request context, replacing filter-level top-N settings with
        the IN list they select. Each top-N is computed over the remaining
        filters, without any top-N applied.
        """
        schema = self.catalog.schema(resolve_layer(layer, self.settings.default_layer))
        entries, top_n_filters = split_top_n_filters(filters)
        ctx = PivotQueryContext(schema, time, entries, time_field, self.settings)
        if not top_n_filters:
            return ctx

        resolved = []
        queries = PivotQueries(ctx)
        for top_n in top_n_filters:
            metric = self._metric_for(top_n, metrics or [])
            keys = self._keys(queries.top_keys(top_n.field, metric, top_n.n, order=top_n.order))
            self.logger.debug(f"Top-N filter on {top_n.field}: {keys}")
            resolved.append(queries.axis_filter(top_n.field, keys))
        return ctx.with_filters(resolved)

    @staticmethod
    def _metric_for(top_n: TopNFilter, metrics: List[MetricDef]) -> MetricDef:
        if not metrics:
            raise ValidationError(ErrorCode.INVALID_METRIC, f"topN on {top_n.field!r} needs a metric")
        if top_n.value_key is None:
            return metrics[0]
        for metric in metrics:
            if top_n.value_key in (metric.alias, metric.id, metric.field):
                return metric
        raise ValidationError(ErrorCode.INVALID_METRIC, f"topN valueKey {top_n.value_key!r} matches no metric")

    def _keys(self, query) -> List[str]:
        keys: List[str] = []
        for row in self.engine.execute(query).data:
            key = row[KEY]
            if key not in keys:
                keys.append(key)
        return keys

    def resolve_axis_keys(self, ctx: PivotQueryContext, axis: AxisDef, metric: MetricDef,
                          max_count: int, extra: Optional[List[FilterEntry]] = None) -> List[str]:
        """Manual items as given (capped), or the top-N keys by the metric"""
        ctx.schema.require(axis.field)
        if axis.is_manual:
            return axis.manual_keys(max_count)
        n = min(axis.top_n or self.settings.default_top_n, max_count)
        return self._keys(PivotQueries(ctx).top_keys(axis.field, metric, n, extra, axis.order))

    # -- chart -------------------------------------------------------------

    def chart(self, request: ChartRequest) -> ChartResponse:
        if isinstance(request, dict):
            request = ChartRequest.from_dict(request)
        ctx = self.context(request.layer, request.time, request.filters, request.time_field, [request.metric])

        max_cols = (self.settings.chart_max_columns_multiple_pie if request.chart_type == 'multiplePie'
                    else self.settings.chart_max_columns)
        x_keys = self.resolve_axis_keys(ctx, request.col, request.metric, max_cols)
        y_keys = self.resolve_axis_keys(ctx, request.row, request.metric, self.settings.chart_max_rows)
        if not x_keys or not y_keys:
            return ChartResponse(request.col.field, request.row.field)

        query = PivotQueries(ctx).matrix(request.col.field, request.row.field, request.metric, x_keys, y_keys)
        x_index = {k: i for i, k in enumerate(x_keys)}
        y_index = {k: i for i, k in enumerate(y_keys)}
        values: List[List[Optional[float]]] = [[None] * len(x_keys) for _ in y_keys]
        for row in self.engine.execute(query).data:
            xi, yi = x_index.get(row[COL_KEY]), y_index.get(row[ROW_KEY])
            if xi is not None and yi is not None:
                values[yi][xi] = _number(row[METRIC])

        metric = request.metric
        series = ChartSeries(metric.id, metric.label, metric.field, metric.agg, values)
        return ChartResponse(request.col.field, request.row.field, x_keys, y_keys, [series])

    def chart_by_column(self, request: ChartRequest) -> ByColumnResponse:
        """One chart per column key, each with its own row top-N"""
        if isinstance(request, dict):
            request = ChartRequest.from_dict(request)
        ctx = self.context(request.layer, request.time, request.filters, request.time_field, [request.metric])
        metric = request.metric
        response = ByColumnResponse(request.col.field, request.row.field, metric.field, metric.agg, metric.label)

        max_cols = request.charts_per_row * 2 if request.charts_per_row > 0 else self.settings.chart_max_columns * 2
        col_keys = self.resolve_axis_keys(ctx, request.col, metric, max_cols)
        queries = PivotQueries(ctx)
        for col_key in col_keys:
            restrict = [queries.axis_filter(request.col.field, [col_key])]
            ranked = self.engine.execute(queries.top_keys(
                request.row.field, metric,
                min(request.row.top_n or self.settings.default_top_n, self.settings.chart_max_rows),
                restrict, request.row.order,
            )).data
            response.charts.append(ColumnChart(
                col_key,
                [row[KEY] for row in ranked],
                [_number(row[METRIC]) for row in ranked],
            ))
        return response

    # -- heatmap -----------------------------------------------------------

    def heatmap_table(self, request: HeatmapRequest) -> HeatmapPage:
        """Full X axis, one page of Y categories ranked by the metric"""
        if isinstance(request, dict):
            request = HeatmapRequest.from_dict(request)
        offset = parse_int(request.offset, 'offset', 0)
        limit = parse_int(request.limit, 'limit', self.settings.heatmap_default_limit)
        if offset < 0 or limit < 1:
            raise ValidationError(ErrorCode.INVALID_PAGINATION, f"offset={offset} limit={limit}")
        limit = min(limit, self.settings.heatmap_max_limit)

        ctx = self.context(request.layer, request.time, request.filters, request.time_field, [request.metric])
        ctx.schema.require(request.col_field)
        ctx.schema.require(request.row_field)
        queries = PivotQueries(ctx)

        x_keys = self._keys(queries.top_keys(request.col_field, request.metric, self.settings.heatmap_max_x))
        total = int(self.engine.scalar(queries.key_count(request.row_field)) or 0)
        if not x_keys or total == 0:
            return HeatmapPage.empty(request.col_field, request.row_field)

        y_keys = self._keys(queries.top_keys(request.row_field, request.metric, limit, offset=offset))
        if not y_keys:
            return HeatmapPage(request.col_field, request.row_field, x_keys, [], total, offset, limit)

        rows = self.engine.execute(
            queries.matrix(request.col_field, request.row_field, request.metric, x_keys, y_keys)).data
        return HeatmapPage.assemble(
            request.col_field, request.row_field, x_keys, y_keys,
            ((r[COL_KEY], r[ROW_KEY], r[METRIC]) for r in rows),
            total, offset, limit,
        )

    # -- drilldown ---------------------------------------------------------

    def drilldown_time_series(self, request: DrilldownRequest) -> DrilldownResponse:
        """Per-row-key series for one clicked column key, with medians"""
        if isinstance(request, dict):
            request = DrilldownRequest.from_dict(request)
        try:
            time_bucket_width(request.time_bucket)
        except ValueError as e:
            raise ValidationError(ErrorCode.INVALID_VALUE, str(e))

        ctx = self.context(request.layer, request.time, request.filters, request.time_field, [request.metric])
        queries = PivotQueries(ctx)
        ctx.schema.require(request.col_field)
        extra = []
        if request.selected_col_key is not None:
            extra.append(queries.axis_filter(request.col_field, [normalize_key(request.selected_col_key)]))
        if request.row_keys:
            extra.append(queries.axis_filter(request.row_field, [normalize_key(k) for k in request.row_keys]))

        metric = request.metric
        rows = self.engine.execute(queries.time_series(request.row_field, metric, request.time_bucket, extra)).data
        response = DrilldownResponse(ctx.time_field, metric.field, metric.agg)
        if not rows:
            return response

        by_key: Dict[str, DrilldownSeries] = {}
        for row in rows:
            series = by_key.get(row[ROW_KEY])
            if series is None:
                series = by_key[row[ROW_KEY]] = DrilldownSeries(row[ROW_KEY])
            series.points.append({'ts': epoch_millis(row[TS]), 'value': _number(row[METRIC])})

        if request.row_keys:
            order = {normalize_key(k): i for i, k in enumerate(request.row_keys)}
            ordered = sorted(by_key.values(), key=lambda s: order.get(s.row_key, len(order)))
        else:
            ordered = list(by_key.values())

        all_values: List[float] = []
        timestamps: List[int] = []
        for series in ordered:
            values = [p['value'] for p in series.points if p['value'] is not None]
            series.median = median(values)
            all_values.extend(values)
            timestamps.extend(p['ts'] for p in series.points)

        response.series = ordered
        response.global_min_time = min(timestamps)
        response.global_max_time = max(timestamps)
        response.global_median = median(all_values)
        return response

