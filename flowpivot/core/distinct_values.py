#!/usr/bin/env python3
"""
Distinct-values resolver for column filter pickers.

By default the target field's own filter is left out of the predicate so
the picker lists every selectable value, not only the ones already chosen;
``include_self`` keeps it. Pages are keyset-paginated over the sorted
distinct set with an opaque cursor.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from .config import EngineSettings
from .cursor import CursorCodec
from .errors import ValidationError, ErrorCode
from .filter_model import FilterModelCompiler, normalize_key, parse_int
from .fragment import SqlFragment
from .layers import SchemaCatalog, resolve_layer
from .query_builder import SqlQueryBuilder
from ..sql.expressions import escape_like, ilike_expr


@dataclass
class DistinctValuesRequest:
    """Distinct values of one field under the current filters"""
    layer: str
    field: str
    filters: Any = None
    time: Optional[Dict[str, Any]] = None
    search: Optional[str] = None
    cursor: Optional[str] = None
    limit: Optional[int] = None
    include_self: bool = False
    order: str = 'ASC'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DistinctValuesRequest':
        if not isinstance(data, dict):
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'request must be a JSON object')
        target = data.get('field')
        if not target:
            raise ValidationError(ErrorCode.MISSING_PARAMETER, 'field is required')
        return cls(
            layer=data.get('layer'),
            field=target,
            filters=data.get('filters', data.get('filterModel')),
            time=data.get('time'),
            search=data.get('search', data.get('keyword')),
            cursor=data.get('cursor'),
            limit=data.get('limit'),
            include_self=bool(data.get('includeSelf', False)),
            order=data.get('order') or 'ASC',
        )


@dataclass
class DistinctValuesPage:
    items: List[str] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    total_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': self.items,
            'nextCursor': self.next_cursor,
            'hasMore': self.has_more,
            'totalCount': self.total_count,
        }


class DistinctValuesResolver:
    """Builds and runs paged DISTINCT queries over one field"""

    def __init__(self, engine, catalog: SchemaCatalog, settings: Optional[EngineSettings] = None):
        self.engine = engine
        self.catalog = catalog
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger('flowpivot.distinct_values')

    def compile(self, request: DistinctValuesRequest) -> Tuple[SqlFragment, SqlFragment, int]:
        """Return the page query, the count query and the page size"""
        if isinstance(request, dict):
            request = DistinctValuesRequest.from_dict(request)
        schema = self.catalog.schema(self._layer(request))
        compiler = FilterModelCompiler(schema, self.settings)
        target = schema.require(request.field)
        col = schema.col(target)

        order = str(request.order or 'ASC').strip().upper()
        if order not in ('ASC', 'DESC'):
            raise ValidationError(ErrorCode.INVALID_SORT, f"order {request.order!r}")

        limit = parse_int(request.limit, 'limit', self.settings.distinct_default_limit)
        if limit < 1:
            raise ValidationError(ErrorCode.INVALID_PAGINATION, 'limit must be >= 1')
        limit = min(limit, self.settings.distinct_max_limit)

        where = compiler.compile_where(
            request.filters, request.time,
            exclude_field=None if request.include_self else target,
        )
        where = SqlFragment.and_(where, SqlFragment.raw(f"{col} IS NOT NULL"))
        if request.search is not None and str(request.search).strip():
            pattern = f"%{escape_like(str(request.search).strip())}%"
            where = SqlFragment.and_(where, SqlFragment.of(ilike_expr(col), [pattern]))

        base = (SqlQueryBuilder.select(f"{col} AS v")
                .from_(schema.from_clause)
                .where(where))

        page = (SqlQueryBuilder.select_distinct('v')
                .from_('base')
                .order_by('v', order)
                .limit(limit + 1))
        position = CursorCodec.decode(request.cursor)
        if position is not None:
            if position.get('f') != target or position.get('o', 'ASC') != order:
                raise ValidationError(ErrorCode.INVALID_CURSOR, 'cursor does not belong to this query')
            page.where(SqlFragment.of('v > ?' if order == 'ASC' else 'v < ?', [position['v']]))

        page_query = SqlQueryBuilder.cte().with_('base', base).main_query(page).build()
        count_query = (SqlQueryBuilder.cte()
                       .with_('base', base)
                       .main_query(SqlQueryBuilder.select('COUNT(DISTINCT v) AS total').from_('base'))
                       .build())
        return page_query, count_query, limit

    def resolve(self, request: DistinctValuesRequest) -> DistinctValuesPage:
        if isinstance(request, dict):
            request = DistinctValuesRequest.from_dict(request)
        page_query, count_query, limit = self.compile(request)

        result = self.engine.execute(page_query)
        raw_values = [row['v'] for row in result.data]
        has_more = len(raw_values) > limit
        raw_values = raw_values[:limit]

        next_cursor = None
        if has_more and raw_values:
            target = self.catalog.schema(self._layer(request)).require(request.field)
            next_cursor = CursorCodec.encode({
                'f': target,
                'o': str(request.order or 'ASC').strip().upper(),
                'v': _cursor_value(raw_values[-1]),
            })

        total = self.engine.scalar(count_query) or 0
        self.logger.debug(f"Distinct {request.field}: {len(raw_values)} of {total}, more={has_more}")
        return DistinctValuesPage(
            items=[normalize_key(v) for v in raw_values],
            next_cursor=next_cursor,
            has_more=has_more,
            total_count=int(total),
        )

    def _layer(self, request: DistinctValuesRequest):
        return resolve_layer(request.layer, self.settings.default_layer)


def _cursor_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)
