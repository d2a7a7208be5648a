#!/usr/bin/env python3
"""
Tests for the pivot aggregation engine: charts, breakdowns and heatmaps.
"""

import pytest

from flowpivot.core.errors import ErrorCode, ValidationError
from flowpivot.core.filter_model import FilterEntry
from flowpivot.core.layers import SchemaCatalog
from flowpivot.core.pivot_context import AxisDef, ChartRequest, MetricDef, PivotQueryContext
from flowpivot.core.pivot_engine import PivotAggregationEngine

WINDOW = {'fromEpoch': 1000, 'toEpoch': 2000}
STATUS_FILTER = {'status_code': {'mode': 'checkbox', 'values': [200, 404]}}
BYTES_SUM = {'field': 'bytes', 'agg': 'sum'}


@pytest.fixture
def pivot(engine, catalog, settings):
    return PivotAggregationEngine(engine, catalog, settings)


def chart_request(**overrides):
    request = {
        'layer': 'HTTP_PAGE',
        'time': WINDOW,
        'filters': STATUS_FILTER,
        'row': {'field': 'http_host', 'mode': 'topN', 'topN': 3},
        'col': {'field': 'status_code', 'mode': 'manual', 'selectedItems': [200, 404]},
        'metric': BYTES_SUM,
    }
    request.update(overrides)
    return request


# Context

def test_context_shares_one_predicate_path(http_schema):
    ctx = PivotQueryContext(http_schema, dict(WINDOW), [FilterEntry.checkbox('status_code', [200])])
    assert ctx.time_field == 'ts_server_nsec'
    base = ctx.base_where()
    assert base.sql == 't."ts_server_nsec" BETWEEN ? AND ? AND t."status_code" IN (?)'
    assert base.args == (1000, 2000, 200)

    extended = ctx.where_with([FilterEntry.checkbox('http_host', ['a.com'])])
    assert extended.sql == base.sql + ' AND CAST(t."http_host" AS VARCHAR) IN (?)'
    assert extended.args == base.args + ('a.com',)
    assert ctx.where_with().sql == base.sql


def test_context_rejects_unknown_time_field(http_schema):
    with pytest.raises(ValidationError) as excinfo:
        PivotQueryContext(http_schema, dict(WINDOW), time_field='nope')
    assert excinfo.value.code is ErrorCode.FIELD_NOT_ALLOWED


def test_metric_and_axis_parsing():
    metric = MetricDef.from_dict({'field': 'bytes', 'agg': 'AVERAGE'})
    assert metric.agg == 'avg'
    assert metric.id == 'bytes::avg'
    assert metric.label == 'AVG: bytes'
    with pytest.raises(ValidationError) as excinfo:
        MetricDef.from_dict({'field': 'bytes', 'agg': 'p99'})
    assert excinfo.value.code is ErrorCode.INVALID_METRIC

    axis = AxisDef.from_dict({'field': 'http_host', 'topN': {'n': 4, 'mode': 'bottom'}}, 'row')
    assert (axis.mode, axis.top_n, axis.order) == ('topN', 4, 'bottom')
    manual = AxisDef.from_dict({'field': 'status_code', 'selectedItems': [200, '200', None]}, 'col')
    assert manual.is_manual
    assert manual.manual_keys(5) == ['200', '(empty)']


# Chart

def test_chart_end_to_end(pivot):
    response = pivot.chart(chart_request()).to_dict()
    assert response['xField'] == 'status_code'
    assert response['yField'] == 'http_host'
    assert response['xCategories'] == ['200', '404']
    assert response['yCategories'] == ['a.com', 'b.com', 'c.com']
    series = response['series'][0]
    assert series['id'] == 'bytes::sum'
    assert series['values'] == [
        [500.0, 100.0],
        [300.0, 50.0],
        [250.0, None],
    ]


def test_chart_top_n_tie_break_is_first_seen(engine, data_source, settings):
    conn = data_source.connect()
    conn.execute("CREATE TABLE http_uri_sample (ts_server_nsec DOUBLE, uri VARCHAR, method VARCHAR, bytes BIGINT)")
    conn.executemany("INSERT INTO http_uri_sample VALUES (?, ?, ?, ?)", [
        (1, '/z', 'GET', 10),
        (2, '/a', 'GET', 10),
        (3, '/m', 'GET', 10),
        (4, '/top', 'GET', 50),
    ])
    pivot = PivotAggregationEngine(engine, SchemaCatalog(data_source), settings)
    response = pivot.chart({
        'layer': 'HTTP_URI',
        'row': {'field': 'uri', 'topN': 3},
        'col': {'field': 'method'},
        'metric': BYTES_SUM,
    })
    assert response.y_categories == ['/top', '/z', '/a']


def test_chart_bottom_n(pivot):
    response = pivot.chart(chart_request(
        row={'field': 'http_host', 'topN': {'n': 2, 'mode': 'bottom'}},
    ))
    assert response.y_categories == ['(empty)', 'e.com']


def test_chart_caps_axes(pivot, settings):
    response = pivot.chart(chart_request(
        time=None, filters=None,
        row={'field': 'http_host', 'topN': 50},
        col={'field': 'status_code', 'topN': 50},
    ))
    assert len(response.y_categories) == settings.chart_max_rows
    assert len(response.x_categories) == 3


def test_chart_with_no_rows_is_empty(pivot):
    response = pivot.chart(chart_request(time={'fromEpoch': 5000, 'toEpoch': 6000})).to_dict()
    assert response['yCategories'] == []
    assert response['series'] == []


def test_chart_filter_level_top_n(pivot):
    response = pivot.chart(chart_request(
        filters=[
            {'field': 'status_code', 'mode': 'checkbox', 'values': [200, 404]},
            {'field': 'http_host', 'topN': {'enabled': True, 'n': 2, 'mode': 'top'}},
        ],
        row={'field': 'http_host', 'topN': 5},
    ))
    assert response.y_categories == ['a.com', 'b.com']


def test_chart_validation(pivot):
    with pytest.raises(ValidationError) as excinfo:
        pivot.chart(chart_request(layer='SMTP'))
    assert excinfo.value.code is ErrorCode.LAYER_NOT_FOUND
    with pytest.raises(ValidationError) as excinfo:
        pivot.chart(chart_request(row={'field': 'nope'}))
    assert excinfo.value.code is ErrorCode.FIELD_NOT_ALLOWED
    with pytest.raises(ValidationError) as excinfo:
        pivot.chart(chart_request(time={'fromEpoch': 2000000, 'toEpoch': 1000000}))
    assert excinfo.value.code is ErrorCode.INVALID_TIME_WINDOW
    with pytest.raises(ValidationError) as excinfo:
        ChartRequest.from_dict(chart_request(metric=None))
    assert excinfo.value.code is ErrorCode.MISSING_PARAMETER


# Column-wise breakdown

def test_breakdown_ranks_rows_per_column(pivot):
    response = pivot.chart_by_column(chart_request(
        col={'field': 'status_code', 'topN': 5},
        row={'field': 'http_host', 'topN': 2},
    )).to_dict()
    assert response['metricLabel'] == 'SUM: bytes'
    assert [c['colKey'] for c in response['charts']] == ['200', '404']
    assert response['charts'][0] == {'colKey': '200', 'rowCategories': ['a.com', 'b.com'], 'values': [500.0, 300.0]}
    assert response['charts'][1] == {'colKey': '404', 'rowCategories': ['a.com', 'b.com'], 'values': [100.0, 50.0]}


# Heatmap

def heatmap_request(offset, limit, time=None):
    return {
        'layer': 'HTTP_PAGE',
        'time': time or {'fromEpoch': 1000, 'toEpoch': 1500},
        'colField': 'status_code',
        'rowField': 'http_host',
        'metric': BYTES_SUM,
        'page': {'offset': offset, 'limit': limit},
    }


def test_heatmap_pages_only_over_y(pivot):
    first = pivot.heatmap_table(heatmap_request(0, 2))
    second = pivot.heatmap_table(heatmap_request(2, 2))

    assert first.x_categories == ['200', '500', '404']
    assert second.x_categories == first.x_categories
    assert first.y_categories == ['d.com', 'a.com']
    assert second.y_categories == ['b.com', 'c.com']
    assert first.total_row_count == second.total_row_count == 4

    assert first.rows[0].cells == [None, 1000.0, None]
    assert first.rows[1].cells == [500.0, None, 100.0]
    assert first.rows[1].row_total == 600.0
    assert (first.page_min, first.page_max) == (100.0, 1000.0)
    assert (second.page_min, second.page_max) == (50.0, 300.0)


def test_heatmap_past_the_last_page(pivot):
    page = pivot.heatmap_table(heatmap_request(10, 2))
    assert page.rows == []
    assert page.total_row_count == 4
    assert page.page_min is None


def test_heatmap_empty_shape(pivot):
    page = pivot.heatmap_table(heatmap_request(0, 10, time={'fromEpoch': 5000, 'toEpoch': 6000}))
    data = page.to_dict()
    assert data['xCategories'] == []
    assert data['rows'] == []
    assert data['totalRowCount'] == 0
    assert data['pageMin'] is None
    assert data['pageMax'] is None


def test_heatmap_pagination_validation(pivot, settings):
    with pytest.raises(ValidationError) as excinfo:
        pivot.heatmap_table(heatmap_request(-1, 2))
    assert excinfo.value.code is ErrorCode.INVALID_PAGINATION
    page = pivot.heatmap_table(heatmap_request(0, 100000))
    assert page.limit == settings.heatmap_max_limit
