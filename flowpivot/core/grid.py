#!/usr/bin/env python3
"""
Grid view queries: paged raw rows and per-field footer aggregates.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from .config import EngineSettings
from .errors import ValidationError, ErrorCode
from .filter_model import FilterModelCompiler
from .fragment import SqlFragment
from .layers import SchemaCatalog, resolve_layer
from .query_builder import SqlQueryBuilder
from ..sql.expressions import text_expr

NUMBER_EXPRS = {
    'count': 'COUNT({col})',
    'sum': 'SUM({col})',
    'avg': 'AVG({col})',
    'min': 'MIN({col})',
    'max': 'MAX({col})',
}
NUMBER_OPS = tuple(NUMBER_EXPRS)
TEXT_OPS = ('count', 'distinct', 'top1', 'top2', 'top3')


@dataclass
class GridPage:
    columns: List[Dict[str, Any]] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    offset: int = 0
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.rows) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'columns': self.columns,
            'rows': self.rows,
            'total': self.total,
            'offset': self.offset,
            'limit': self.limit,
            'hasMore': self.has_more,
        }


class GridQueryService:
    """Row search and aggregates for one layer at a time"""

    def __init__(self, engine, catalog: SchemaCatalog, settings: Optional[EngineSettings] = None):
        self.engine = engine
        self.catalog = catalog
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger('flowpivot.grid')

    def _compiler(self, layer: Optional[str]) -> FilterModelCompiler:
        schema = self.catalog.schema(resolve_layer(layer, self.settings.default_layer))
        return FilterModelCompiler(schema, self.settings)

    def search(self, request: Dict[str, Any]) -> GridPage:
        """
        One page of rows.

        Request keys: layer, columns, time, baseSpec, filterModel, sort
        ({field, direction}), offset, limit.
        """
        compiler = self._compiler(request.get('layer'))
        schema = compiler.schema
        columns = request.get('columns') or list(schema.columns)
        names = [schema.require(c) for c in columns]
        offset, limit = compiler.page(request.get('offset'), request.get('limit'),
                                      self.settings.grid_default_limit, self.settings.grid_max_limit)

        page_query = compiler.compile_query(
            names, request.get('filterModel', request.get('filters')), request.get('time'),
            request.get('sort'), offset, limit, request.get('baseSpec'),
        )
        where = SqlFragment.and_(
            compiler.compile_where(request.get('filterModel', request.get('filters')), request.get('time')),
            compiler.compile_base_spec(request.get('baseSpec')),
        )
        count_query = (SqlQueryBuilder.select('COUNT(*) AS total')
                       .from_(schema.from_clause)
                       .where(where)
                       .build())

        result = self.engine.execute(page_query)
        total = int(self.engine.scalar(count_query) or 0)
        self.logger.debug(f"Grid {schema.layer.code}: {result.row_count} of {total} rows at offset {offset}")
        meta = {m.name: m for m in schema.field_meta()}
        return GridPage(
            columns=[meta[n].to_dict() for n in names],
            rows=result.data,
            total=total,
            offset=offset,
            limit=limit,
        )

    def aggregate(self, request: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """
        Footer aggregates, ``metrics: {field: {ops: [...], type?}}``.

        Numbers support count/sum/avg/min/max; other types support
        count/distinct/top1-3. Date fields are skipped.
        """
        compiler = self._compiler(request.get('layer'))
        schema = compiler.schema
        where = SqlFragment.and_(
            compiler.compile_where(request.get('filterModel', request.get('filters')), request.get('time')),
            compiler.compile_base_spec(request.get('baseSpec')),
        )

        result: Dict[str, Dict[str, Any]] = {}
        for name, spec in (request.get('metrics') or {}).items():
            spec = spec or {}
            field_type = (spec.get('type') or schema.field_type(name)).lower()
            if field_type == 'date':
                continue
            col = schema.col(name)
            ops = spec.get('ops') or []
            allowed = NUMBER_OPS if field_type == 'number' else TEXT_OPS
            unknown = [op for op in ops if op not in allowed]
            if unknown:
                raise ValidationError(ErrorCode.INVALID_METRIC, f"{unknown} for {field_type} field {name!r}")

            if field_type == 'number':
                result[name] = self._number_aggregate(schema.from_clause, col, where, ops)
            else:
                result[name] = self._text_aggregate(schema.from_clause, col, where, ops)
        return result

    def _number_aggregate(self, table: str, col: str, where: SqlFragment, ops: List[str]) -> Dict[str, Any]:
        query = (SqlQueryBuilder.select(*(f"{expr.format(col=col)} AS agg_{op}" for op, expr in NUMBER_EXPRS.items()))
                 .from_(table)
                 .where(where)
                 .build())
        row = self.engine.execute(query).data[0]
        return {op: row[f"agg_{op}"] for op in ops}

    def _text_aggregate(self, table: str, col: str, where: SqlFragment, ops: List[str]) -> Dict[str, Any]:
        query = (SqlQueryBuilder.select(f"COUNT({col}) AS cnt", f"COUNT(DISTINCT {text_expr(col)}) AS uniq")
                 .from_(table)
                 .where(where)
                 .build())
        row = self.engine.execute(query).data[0]
        count, uniq = int(row['cnt'] or 0), int(row['uniq'] or 0)

        agg: Dict[str, Any] = {}
        if 'count' in ops:
            agg['count'] = count
        if 'distinct' in ops:
            agg['distinct'] = uniq

        tops = [op for op in ops if op.startswith('top')]
        if tops and count > uniq:
            top_query = (SqlQueryBuilder.select(f"{text_expr(col)} AS val", "COUNT(*) AS c")
                         .from_(table)
                         .where(SqlFragment.and_(where, SqlFragment.raw(f"{col} IS NOT NULL")))
                         .group_by(text_expr(col))
                         .order_by_raw('c DESC, val ASC')
                         .limit(3)
                         .build())
            ranked = self.engine.execute(top_query).data
            for op in tops:
                i = int(op[3:]) - 1
                agg[op] = {'value': ranked[i]['val'], 'count': ranked[i]['c']} if i < len(ranked) else None
        return agg
