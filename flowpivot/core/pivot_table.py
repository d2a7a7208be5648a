#!/usr/bin/env python3
"""
Pivot table view.

The table has one column field whose most frequent values become the
column headers, and one or more row fields. Row groups only carry their
distinct key count and per-column summary cells; the row items of a group
are fetched page by page, optionally sorted by one metric under one column
value.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from .config import EngineSettings
from .errors import ValidationError, ErrorCode
from .filter_model import FilterModelCompiler, normalize_key
from .layers import SchemaCatalog
from .pivot_context import MetricDef, PivotQueryContext, PivotRequest
from .pivot_engine import PivotAggregationEngine
from .pivot_queries import KEY, PivotQueries

Cells = Dict[str, Dict[str, Any]]


def _field_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get('field')
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


@dataclass
class PivotSort:
    """Order row items by ``metric`` under one column value"""
    column_value: str
    metric: MetricDef
    direction: str = 'DESC'

    @classmethod
    def from_dict(cls, data: Any, metrics: List[MetricDef]) -> Optional['PivotSort']:
        if not isinstance(data, dict) or data.get('columnValue') is None:
            return None
        direction = str(data.get('direction') or 'desc').upper()
        if direction not in ('ASC', 'DESC'):
            raise ValidationError(ErrorCode.INVALID_SORT, f"direction {data.get('direction')!r}")
        value_field = data.get('valueField')
        agg = str(data.get('agg') or '').lower()
        for metric in metrics:
            if metric.field == value_field and (not agg or metric.agg == agg):
                return cls(normalize_key(data['columnValue']), metric, direction)
        raise ValidationError(ErrorCode.INVALID_SORT, f"no metric {value_field}/{agg or '*'}")


@dataclass
class PivotTableRequest(PivotRequest):
    column_field: Optional[str] = None
    row_fields: List[str] = field(default_factory=list)
    metrics: List[MetricDef] = field(default_factory=list)
    sort: Optional[PivotSort] = None
    row_field: Optional[str] = None
    offset: Any = None
    limit: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PivotTableRequest':
        common = cls.common(data)
        metrics = [MetricDef.from_dict(m, 'values') for m in data.get('values') or data.get('metrics') or []]
        rows = [_field_of(r) for r in data.get('rows') or []]
        return cls(
            column_field=_field_of(data.get('column', data.get('columnField'))),
            row_fields=[r for r in rows if r],
            metrics=metrics,
            sort=PivotSort.from_dict(data.get('sort'), metrics),
            row_field=_field_of(data.get('rowField')),
            offset=data.get('offset'),
            limit=data.get('limit'),
            **common
        )


class PivotTableService:
    """Column headers, row groups and paged row items of the pivot table"""

    def __init__(self, engine, catalog: SchemaCatalog, settings: Optional[EngineSettings] = None):
        self.engine = engine
        self.settings = settings or EngineSettings()
        self.pivot = PivotAggregationEngine(engine, catalog, self.settings)
        self.logger = logging.getLogger('flowpivot.pivot_table')

    def _context(self, request: PivotTableRequest) -> PivotQueryContext:
        ctx = self.pivot.context(request.layer, request.time, request.filters,
                                 request.time_field, request.metrics)
        for name in [request.column_field, request.row_field] + request.row_fields:
            if name:
                ctx.schema.require(name)
        for metric in request.metrics:
            if metric.agg != 'count':
                ctx.schema.require(metric.field)
        return ctx

    def column_values(self, ctx: PivotQueryContext, column_field: str) -> List[str]:
        """Column keys by row count, most frequent first"""
        ranked = PivotQueries(ctx).top_keys(column_field, MetricDef(column_field, 'count'),
                                            self.settings.pivot_max_columns)
        values = [row[KEY] for row in self.engine.execute(ranked).data]
        self.logger.debug(f"Column values for {column_field}: {values}")
        return values

    def _cells(self, ctx: PivotQueryContext, fields: List[str], metrics: List[MetricDef]) -> Dict[tuple, Dict[str, Any]]:
        rows = self.engine.execute(PivotQueries(ctx).grouped(fields, metrics)).data
        cells = {}
        for row in rows:
            key = tuple(row[f"pv_k{i}"] for i in range(len(fields)))
            cells[key] = {m.label: row[f"pv_m{i}"] for i, m in enumerate(metrics)}
        return cells

    def query(self, request: PivotTableRequest) -> Dict[str, Any]:
        """Column header values, one group per row field, and a row count summary"""
        if isinstance(request, dict):
            request = PivotTableRequest.from_dict(request)
        if not request.row_fields:
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'rows is required')
        ctx = self._context(request)
        queries = PivotQueries(ctx)

        column_values: List[str] = []
        summary: Cells = {}
        if request.column_field:
            column_values = self.column_values(ctx, request.column_field)
            if request.metrics:
                by_col = self._cells(ctx, [request.column_field], request.metrics)
                summary = {cv: by_col.get((cv,), {}) for cv in column_values}

        groups = []
        for row_field in request.row_fields:
            count = int(self.engine.scalar(queries.key_count(row_field)) or 0)
            groups.append({
                'rowLabel': row_field,
                'displayLabel': f"{row_field} ({count})",
                'rowInfo': {'count': count},
                'cells': summary,
                'items': [],
            })

        total = int(self.engine.scalar(queries.grouped([], [MetricDef(request.row_fields[0], 'count')])) or 0)
        return {
            'columnField': {
                'name': request.column_field,
                'values': column_values,
                'metrics': [{'alias': m.label, 'field': m.field, 'agg': m.agg} for m in request.metrics],
            },
            'rowGroups': groups,
            'summary': {'rowCount': total, 'rowCountText': f"Total: {total} rows"},
        }

    def row_items(self, request: PivotTableRequest) -> Dict[str, Any]:
        """
        One page of a row group's items with their per-column cells.

        Without a sort the keys are paged in SQL in ascending order. With a
        sort every key is ranked by the chosen cell; keys without a value
        go last and ties fall back to ascending key order.
        """
        if isinstance(request, dict):
            request = PivotTableRequest.from_dict(request)
        if not request.row_field:
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'rowField is required')
        offset, limit = FilterModelCompiler.page(request.offset, request.limit,
                                                 self.settings.pivot_default_limit,
                                                 self.settings.pivot_max_limit)
        ctx = self._context(request)
        queries = PivotQueries(ctx)
        row_field = request.row_field

        column_values: List[str] = []
        breakdown: Dict[tuple, Dict[str, Any]] = {}
        if request.column_field and request.metrics:
            column_values = self.column_values(ctx, request.column_field)
            breakdown = self._cells(ctx, [row_field, request.column_field], request.metrics)

        total = int(self.engine.scalar(queries.key_count(row_field)) or 0)
        sort = request.sort if column_values else None
        if sort is None:
            rows = self.engine.execute(queries.sorted_keys(row_field, offset, limit)).data
            page = [row[KEY] for row in rows]
        else:
            all_keys = [row[KEY] for row in self.engine.execute(queries.sorted_keys(row_field)).data]
            page = self._sort_keys(all_keys, breakdown, sort)[offset:offset + limit]

        items = []
        for row_key in page:
            cells = {cv: breakdown.get((row_key, cv), {}) for cv in column_values}
            items.append({'valueLabel': row_key, 'displayLabel': row_key, 'cells': cells})
        return {
            'rowField': row_field,
            'rowLabel': f"{row_field} ({total})",
            'items': items,
            'total': total,
            'offset': offset,
            'limit': limit,
            'hasMore': offset + len(items) < total,
        }

    @staticmethod
    def _sort_keys(keys: List[str], breakdown: Dict[tuple, Dict[str, Any]], sort: PivotSort) -> List[str]:
        label = sort.metric.label

        def value(key: str) -> Optional[float]:
            cell = breakdown.get((key, sort.column_value)) or {}
            raw = cell.get(label)
            return None if raw is None else float(raw)

        present = [k for k in keys if value(k) is not None]
        missing = [k for k in keys if value(k) is None]
        # keys arrive ascending and sorted() is stable
        sign = 1 if sort.direction == 'ASC' else -1
        return sorted(present, key=lambda k: sign * value(k)) + missing
