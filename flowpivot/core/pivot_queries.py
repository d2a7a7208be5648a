#!/usr/bin/env python3
"""
SQL for pivot views.

Grouping keys are rendered as text, with NULL and blank folded into
'(empty)', so axis values read back from one query can be fed to the next
query's IN list unchanged. Top-N ordering is metric first, then the
earliest row (``rowid``) of each group, which makes ties resolve in
first-seen order and keeps Y pages disjoint.
"""

from typing import List, Optional, Union

from .filter_model import EMPTY_LABEL, FilterEntry
from .fragment import SqlFragment
from .pivot_context import BOTTOM, MetricDef, PivotQueryContext
from .query_builder import SqlQueryBuilder
from ..sql.expressions import text_expr, time_bucket_expr

KEY = 'pv_key'
COL_KEY = 'pv_col'
ROW_KEY = 'pv_row'
TS = 'pv_ts'
METRIC = 'pv_metric'
FIRST_SEEN = 'pv_first_seen'


def key_expr(col: str) -> str:
    return f"COALESCE(NULLIF({text_expr(col)}, ''), '{EMPTY_LABEL}')"


class PivotQueries:
    """Builds the grouped-aggregate queries used by the pivot engine"""

    def __init__(self, ctx: PivotQueryContext):
        self.ctx = ctx

    def top_keys(self, field: str, metric: MetricDef, n: Optional[int],
                 extra: Optional[List[FilterEntry]] = None, order: str = 'top',
                 offset: Optional[int] = None) -> SqlFragment:
        """Group keys of ``field`` ranked by the metric, with an optional page"""
        key = key_expr(self.ctx.col(field))
        direction = 'ASC' if order == BOTTOM else 'DESC'
        query = (SqlQueryBuilder.select(f"{key} AS {KEY}",
                                        f"{metric.expr(self.ctx)} AS {METRIC}",
                                        f"MIN(t.rowid) AS {FIRST_SEEN}")
                 .from_(self.ctx.table())
                 .where(self.ctx.where_with(extra))
                 .group_by(key)
                 .order_by_raw(f"{METRIC} {direction} NULLS LAST, {FIRST_SEEN} ASC"))
        if n is not None:
            query.limit(n)
        if offset:
            query.offset(offset)
        return query.build()

    def axis_filter(self, field: str, keys: List[str]) -> Union[FilterEntry, SqlFragment]:
        """Restrict a field to axis keys; temporal fields compare on the key text"""
        if self.ctx.schema.field_type(field) != 'date':
            return FilterEntry.checkbox(field, keys)
        if not keys:
            return SqlFragment.raw('1=0')
        expr = key_expr(self.ctx.col(field))
        return SqlFragment.of(f"{expr} IN ({', '.join('?' * len(keys))})", list(keys))

    def key_count(self, field: str, extra: Optional[List[FilterEntry]] = None) -> SqlFragment:
        """Number of distinct group keys of ``field``, counting '(empty)' once"""
        key = key_expr(self.ctx.col(field))
        groups = (SqlQueryBuilder.select(f"{key} AS {KEY}")
                  .from_(self.ctx.table())
                  .where(self.ctx.where_with(extra))
                  .group_by(key))
        return (SqlQueryBuilder.cte()
                .with_('pv_groups', groups)
                .main_query(SqlQueryBuilder.select('COUNT(*) AS pv_count').from_('pv_groups'))
                .build())

    def matrix(self, col_field: str, row_field: str, metric: MetricDef,
               col_keys: List[str], row_keys: List[str],
               extra: Optional[List[FilterEntry]] = None) -> SqlFragment:
        """Metric per (column key, row key) restricted to the given keys"""
        col_key = key_expr(self.ctx.col(col_field))
        row_key = key_expr(self.ctx.col(row_field))
        restrict = list(extra or []) + [
            self.axis_filter(col_field, col_keys),
            self.axis_filter(row_field, row_keys),
        ]
        return (SqlQueryBuilder.select(f"{col_key} AS {COL_KEY}",
                                       f"{row_key} AS {ROW_KEY}",
                                       f"{metric.expr(self.ctx)} AS {METRIC}")
                .from_(self.ctx.table())
                .where(self.ctx.where_with(restrict))
                .group_by(col_key, row_key)
                .build())

    def time_series(self, row_field: str, metric: MetricDef, time_bucket=None,
                    extra: Optional[List[FilterEntry]] = None) -> SqlFragment:
        """Metric per row key and time bucket, in time order"""
        time_field = self.ctx.time_field
        bucket = time_bucket_expr(self.ctx.col(time_field), self.ctx.schema.temporal_kind(time_field),
                                  time_bucket)
        row_key = key_expr(self.ctx.col(row_field))
        return (SqlQueryBuilder.select(f"{row_key} AS {ROW_KEY}",
                                       f"{bucket} AS {TS}",
                                       f"{metric.expr(self.ctx)} AS {METRIC}")
                .from_(self.ctx.table())
                .where(self.ctx.where_with(extra))
                .group_by(row_key, bucket)
                .order_by_raw(f"{TS} ASC, {ROW_KEY} ASC")
                .build())

    def sorted_keys(self, field: str, offset: Optional[int] = None,
                    limit: Optional[int] = None) -> SqlFragment:
        """Group keys of ``field`` in ascending key order, optionally paged"""
        key = key_expr(self.ctx.col(field))
        query = (SqlQueryBuilder.select(f"{key} AS {KEY}")
                 .from_(self.ctx.table())
                 .where(self.ctx.where_with())
                 .group_by(key)
                 .order_by(KEY, 'ASC'))
        if limit is not None:
            query.limit(limit)
        if offset:
            query.offset(offset)
        return query.build()

    def grouped(self, fields: List[str], metrics: List[MetricDef]) -> SqlFragment:
        """
        Every metric per combination of ``fields`` keys.

        Keys come back as pv_k0, pv_k1, ... and metrics as pv_m0, pv_m1, ...
        in argument order.
        """
        keys = [key_expr(self.ctx.col(f)) for f in fields]
        columns = [f"{k} AS pv_k{i}" for i, k in enumerate(keys)]
        columns += [f"{m.expr(self.ctx)} AS pv_m{i}" for i, m in enumerate(metrics)]
        return (SqlQueryBuilder.select(*columns)
                .from_(self.ctx.table())
                .where(self.ctx.where_with())
                .group_by(*keys)
                .build())
