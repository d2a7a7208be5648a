#!/usr/bin/env python3
"""
SQL expression snippets used by the filter compiler and pivot queries.
All column arguments are expected to be quoted, allow-listed expressions.
"""

from typing import Optional

LIKE_ESCAPE = '\\'

AGGREGATIONS = {
    'sum': 'SUM({col})',
    'avg': 'AVG({col})',
    'min': 'MIN({col})',
    'max': 'MAX({col})',
    'count': 'COUNT(*)',
    'count_distinct': 'COUNT(DISTINCT {col})',
}

AGGREGATION_ALIASES = {
    'average': 'avg',
    'mean': 'avg',
    'cnt': 'count',
    'distinct': 'count_distinct',
    'countdistinct': 'count_distinct',
}

# Bucket widths in seconds; RAW keeps the stored timestamp
TIME_BUCKETS = {
    'RAW': None,
    'S10': 10,
    'SECOND': 1,
    'MI': 60,
    'MINUTE': 60,
    'HH': 3600,
    'HOUR': 3600,
    'DAY': 86400,
}


def normalize_aggregation(agg: Optional[str]) -> Optional[str]:
    """Canonical aggregation name, or None when unsupported"""
    key = (agg or 'sum').strip().lower().replace(' ', '_')
    key = AGGREGATION_ALIASES.get(key, key)
    return key if key in AGGREGATIONS else None


def aggregate_expr(agg: str, col: str) -> str:
    """``SUM(t."bytes")`` style aggregate for a normalized aggregation name"""
    key = normalize_aggregation(agg)
    if key is None:
        raise ValueError(f"Unsupported aggregation: {agg}")
    return AGGREGATIONS[key].format(col=col)


def text_expr(col: str) -> str:
    return f"CAST({col} AS VARCHAR)"


def epoch_expr(col: str, kind: Optional[str]) -> str:
    """Epoch seconds for temporal columns; numeric time columns are used as is"""
    if kind in ('timestamp', 'timestamptz', 'date'):
        return f"epoch({col})"
    return col


def date_expr(col: str, kind: Optional[str], time_zone: str = 'UTC',
              without_tz_is_utc: bool = True) -> str:
    """Calendar date of a column in the configured time zone"""
    if kind == 'timestamptz':
        return f"CAST(timezone('{_zone(time_zone)}', {col}) AS DATE)"
    if kind == 'timestamp':
        if without_tz_is_utc and time_zone.upper() != 'UTC':
            return f"CAST(timezone('{_zone(time_zone)}', timezone('UTC', {col})) AS DATE)"
        return f"CAST({col} AS DATE)"
    if kind == 'date':
        return col
    # numeric epoch seconds
    return f"CAST(to_timestamp({col}) AS DATE)"


def time_bucket_width(bucket) -> Optional[int]:
    """Resolve a bucket name or a number of seconds to a width; None means RAW"""
    if bucket is None or bucket == '':
        return None
    if isinstance(bucket, bool):
        raise ValueError(f"invalid time bucket {bucket!r}")
    if isinstance(bucket, (int, float)):
        width = int(bucket)
    else:
        key = str(bucket).strip().upper()
        if key in TIME_BUCKETS:
            return TIME_BUCKETS[key]
        if key.endswith('S') and key[:-1].isdigit():
            key = key[:-1]
        if not key.isdigit():
            raise ValueError(f"invalid time bucket {bucket!r}")
        width = int(key)
    if width <= 0:
        raise ValueError(f"invalid time bucket {bucket!r}")
    return width


def time_bucket_expr(col: str, kind: Optional[str], bucket) -> str:
    """Epoch-seconds expression of a column, floored to the bucket width"""
    seconds = epoch_expr(col, kind)
    width = time_bucket_width(bucket)
    if width is None:
        return seconds
    return f"FLOOR({seconds} / {width}) * {width}"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text matches literally"""
    return (str(value)
            .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
            .replace('%', LIKE_ESCAPE + '%')
            .replace('_', LIKE_ESCAPE + '_'))


def ilike_expr(col: str) -> str:
    return f"{text_expr(col)} ILIKE ? ESCAPE '{LIKE_ESCAPE}'"


def _zone(name: str) -> str:
    # time zone names are configuration, never request data
    if "'" in name:
        raise ValueError(f"Invalid time zone name: {name}")
    return name
