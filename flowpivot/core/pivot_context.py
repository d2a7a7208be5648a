#!/usr/bin/env python3
"""
Pivot query context and pivot request models.

A PivotQueryContext belongs to one request. It binds the layer schema, the
time column and window, and the resolved filters, and hands out WHERE
fragments that carry their own positional arguments, so composed
sub-queries cannot drift out of step with their parameters.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import EngineSettings
from .errors import ValidationError, ErrorCode
from .filter_model import FilterEntry, FilterModelCompiler, normalize_key, parse_filters, parse_int
from .fragment import SqlFragment
from .layers import Layer, LayerSchema
from ..sql.expressions import AGGREGATIONS, aggregate_expr, normalize_aggregation

TOP = 'top'
BOTTOM = 'bottom'


def _require(data: Dict[str, Any], key: str, what: str) -> Any:
    value = data.get(key) if isinstance(data, dict) else None
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(ErrorCode.MISSING_PARAMETER, f"{what} is required")
    return value


@dataclass
class MetricDef:
    """Aggregated measure; the alias is the series label and sort key reference"""
    field: str
    agg: str = 'sum'
    alias: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, what: str = 'metric') -> 'MetricDef':
        if isinstance(data, MetricDef):
            return data
        if not isinstance(data, dict):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, f"{what} is required")
        name = _require(data, 'field', f"{what}.field")
        raw_agg = data.get('agg', data.get('aggregation', data.get('aggregate')))
        agg = normalize_aggregation(raw_agg)
        if agg is None:
            raise ValidationError(
                ErrorCode.INVALID_METRIC,
                f"aggregation {raw_agg!r}, expected one of {', '.join(AGGREGATIONS)}"
            )
        return cls(str(name), agg, data.get('alias') or None)

    @property
    def id(self) -> str:
        return f"{self.field}::{self.agg}"

    @property
    def label(self) -> str:
        return self.alias or f"{self.agg.upper()}: {self.field}"

    def expr(self, ctx: 'PivotQueryContext') -> str:
        if self.agg == 'count':
            return aggregate_expr('count', '*')
        return aggregate_expr(self.agg, ctx.col(self.field))


@dataclass
class AxisDef:
    """Row or column axis: top-N by the metric, or an explicit item list"""
    field: str
    mode: str = 'topN'
    top_n: Optional[int] = None
    order: str = TOP
    selected_items: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any, what: str) -> 'AxisDef':
        if isinstance(data, AxisDef):
            return data
        if isinstance(data, str):
            return cls(data)
        name = _require(data, 'field', f"{what}.field")
        items = data.get('selectedItems') or data.get('items') or []
        if not isinstance(items, list):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, f"{what}.selectedItems must be a list")
        mode = str(data.get('mode') or ('manual' if items else 'topN')).strip()
        if mode.lower() not in ('topn', 'manual'):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, f"{what}.mode {mode!r}")

        top_n = data.get('topN')
        order = TOP
        if isinstance(top_n, dict):
            order = str(top_n.get('mode') or top_n.get('order') or TOP).lower()
            top_n = top_n.get('n')
        if order not in (TOP, BOTTOM):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, f"{what}.topN.mode {order!r}")
        n = parse_int(top_n, f"{what}.topN.n", 0, ErrorCode.MISSING_PARAMETER) or None
        return cls(str(name), 'manual' if mode.lower() == 'manual' else 'topN', n, order, list(items))

    @property
    def is_manual(self) -> bool:
        return self.mode == 'manual'

    def manual_keys(self, max_count: int) -> List[str]:
        keys: List[str] = []
        for item in self.selected_items:
            key = normalize_key(item)
            if key not in keys:
                keys.append(key)
        return keys[:max_count]


@dataclass
class TopNFilter:
    """Filter that keeps the top (or bottom) n values of a field by a metric"""
    field: str
    n: int
    order: str = TOP
    value_key: Optional[str] = None


def split_top_n_filters(raw: Any) -> Tuple[List[FilterEntry], List[TopNFilter]]:
    """
    Separate filter-level top-N settings from ordinary filters.

    ``{"field": "http_host", "topN": {"enabled": true, "n": 5,
    "mode": "top", "valueKey": "bytes_sum"}}`` becomes a TopNFilter; a
    disabled top-N with no other condition is dropped.
    """
    if not isinstance(raw, list):
        return parse_filters(raw), []

    plain, top_n = [], []
    for item in raw:
        spec = item.get('topN') if isinstance(item, dict) else None
        if not isinstance(spec, dict):
            plain.append(item)
            continue
        if spec.get('enabled'):
            name = _require(item, 'field', 'filter.field')
            n = parse_int(spec.get('n'), 'topN.n', 5, ErrorCode.MISSING_PARAMETER)
            order = str(spec.get('mode') or TOP).lower()
            if n < 1 or order not in (TOP, BOTTOM):
                raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"topN for {name!r}")
            top_n.append(TopNFilter(name, n, order, spec.get('valueKey')))
        stripped = {k: v for k, v in item.items() if k != 'topN'}
        if any(k in stripped for k in ('mode', 'op', 'operator', 'conditions')):
            plain.append(stripped)
    return parse_filters(plain), top_n


class PivotQueryContext:
    """Per-request binding of layer, time column, time window and filters"""

    def __init__(self, schema: LayerSchema, time: Optional[Dict[str, Any]] = None,
                 filters: Optional[List[Union[FilterEntry, SqlFragment]]] = None, time_field: Optional[str] = None,
                 settings: Optional[EngineSettings] = None):
        self.schema = schema
        self.settings = settings or EngineSettings()
        self.compiler = FilterModelCompiler(schema, self.settings)
        self.filters: List[Union[FilterEntry, SqlFragment]] = list(filters or [])

        window = dict(time) if isinstance(time, dict) else time
        explicit = time_field or (window.get('field') if isinstance(window, dict) else None)
        if explicit or window is not None:
            self.time_field = schema.require(explicit or schema.layer.default_time_field)
        else:
            self.time_field = schema.resolve_name(schema.layer.default_time_field) or schema.layer.default_time_field
        if isinstance(window, dict):
            window['field'] = self.time_field
        self.time = window

    @property
    def layer(self) -> Layer:
        return self.schema.layer

    def table(self) -> str:
        return self.schema.from_clause

    def col(self, name: str) -> str:
        return self.schema.col(name)

    def base_where(self) -> SqlFragment:
        """Time window AND every context filter"""
        entries = [f for f in self.filters if isinstance(f, FilterEntry)]
        fragments = [f for f in self.filters if isinstance(f, SqlFragment)]
        return SqlFragment.join(' AND ', [self.compiler.compile_where(entries, self.time)] + fragments)

    def where_with(self, extra: Optional[List[Union[FilterEntry, SqlFragment]]] = None) -> SqlFragment:
        """Base predicate plus ad-hoc filters, compiled through the same path"""
        extra = list(extra or [])
        entries = [e for e in extra if isinstance(e, FilterEntry)]
        fragments = [e for e in extra if isinstance(e, SqlFragment)]
        return SqlFragment.join(' AND ', [self.base_where(), self.compiler.compile_filters(entries)] + fragments)

    def with_filters(self, extra: List[Union[FilterEntry, SqlFragment]]) -> 'PivotQueryContext':
        """New context whose base filters also include ``extra``"""
        return PivotQueryContext(self.schema, self.time, self.filters + list(extra),
                                 self.time_field, self.settings)


@dataclass
class PivotRequest:
    """Fields shared by every pivot request shape"""
    layer: Optional[str] = None
    time: Optional[Dict[str, Any]] = None
    filters: Any = None
    time_field: Optional[str] = None

    @staticmethod
    def common(data: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'request must be a JSON object')
        return {
            'layer': data.get('layer'),
            'time': data.get('time'),
            'filters': data.get('filters', data.get('filterModel')),
            'time_field': data.get('timeField'),
        }


def _first_metric(data: Dict[str, Any]) -> MetricDef:
    metric = data.get('metric')
    if metric is None and isinstance(data.get('metrics'), list) and data['metrics']:
        metric = data['metrics'][0]
    return MetricDef.from_dict(metric)


@dataclass
class ChartRequest(PivotRequest):
    col: Optional[AxisDef] = None
    row: Optional[AxisDef] = None
    metric: Optional[MetricDef] = None
    chart_type: Optional[str] = None
    charts_per_row: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChartRequest':
        common = cls.common(data)
        layout = data.get('layout') or {}
        return cls(
            col=AxisDef.from_dict(data.get('col'), 'col'),
            row=AxisDef.from_dict(data.get('row'), 'row'),
            metric=_first_metric(data),
            chart_type=data.get('chartType'),
            charts_per_row=parse_int(layout.get('chartsPerRow') if isinstance(layout, dict) else None,
                                     'layout.chartsPerRow', 0, ErrorCode.MISSING_PARAMETER),
            **common
        )


@dataclass
class HeatmapRequest(PivotRequest):
    col_field: str = ''
    row_field: str = ''
    metric: Optional[MetricDef] = None
    offset: Any = None
    limit: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HeatmapRequest':
        common = cls.common(data)
        col = data.get('colField') or data.get('xField') or (data.get('col') or {}).get('field')
        row = data.get('rowField') or data.get('yField') or (data.get('row') or {}).get('field')
        if not col:
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'colField is required')
        if not row:
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'rowField is required')
        page = data.get('page') or {}
        return cls(
            col_field=col,
            row_field=row,
            metric=_first_metric(data),
            offset=page.get('offset', data.get('offset')),
            limit=page.get('limit', data.get('limit')),
            **common
        )


@dataclass
class DrilldownRequest(PivotRequest):
    col_field: str = ''
    row_field: str = ''
    selected_col_key: Any = None
    row_keys: List[Any] = field(default_factory=list)
    metric: Optional[MetricDef] = None
    time_bucket: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DrilldownRequest':
        common = cls.common(data)
        row_keys = data.get('rowKeys') or []
        if not isinstance(row_keys, list):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'rowKeys must be a list')
        return cls(
            col_field=_require(data, 'colField', 'colField'),
            row_field=_require(data, 'rowField', 'rowField'),
            selected_col_key=data.get('selectedColKey'),
            row_keys=row_keys,
            metric=_first_metric(data),
            time_bucket=data.get('timeBucket'),
            **common
        )
