#!/usr/bin/env python3
"""
Tests for grid row search and footer aggregates.
"""

import pytest

from flowpivot.core.errors import ErrorCode, ValidationError
from flowpivot.core.grid import GridQueryService


@pytest.fixture
def grid(engine, catalog, settings):
    return GridQueryService(engine, catalog, settings)


def test_search_pages_sorted_rows(grid):
    page = grid.search({
        'layer': 'HTTP_PAGE',
        'columns': ['http_host', 'bytes'],
        'sort': {'field': 'bytes', 'direction': 'desc'},
        'limit': 3,
    })
    assert [row['bytes'] for row in page.rows] == [9999, 1000, 500]
    assert page.rows[0] == {'http_host': 'c.com', 'bytes': 9999}
    assert page.total == 9
    assert page.has_more is True
    assert [c['name'] for c in page.columns] == ['http_host', 'bytes']
    assert page.columns[1]['type'] == 'number'


def test_search_with_filters_and_base_spec(grid):
    page = grid.search({
        'layer': 'HTTP_PAGE',
        'columns': ['http_host'],
        'time': {'fromEpoch': 1000, 'toEpoch': 2000},
        'filterModel': {'status_code': {'mode': 'checkbox', 'values': [200]}},
        'baseSpec': {'conditions': [{'field': 'bytes', 'op': '>=', 'values': [250]}]},
        'sort': {'field': 'http_host', 'direction': 'asc'},
        'offset': 1,
        'limit': 10,
    })
    assert page.to_dict()['rows'] == [{'http_host': 'b.com'}, {'http_host': 'c.com'}]
    assert page.total == 3
    assert page.to_dict()['hasMore'] is False


def test_search_rejects_bad_sort(grid):
    with pytest.raises(ValidationError) as excinfo:
        grid.search({'layer': 'HTTP_PAGE', 'sort': {'field': 'missing'}})
    assert excinfo.value.code is ErrorCode.INVALID_SORT


def test_aggregate(grid):
    result = grid.aggregate({
        'layer': 'HTTP_PAGE',
        'metrics': {
            'bytes': {'ops': ['sum', 'max', 'count']},
            'http_host': {'ops': ['count', 'distinct', 'top1', 'top3']},
        },
    })
    assert result['bytes'] == {'sum': 12214, 'max': 9999, 'count': 9}
    assert result['http_host']['count'] == 8
    assert result['http_host']['distinct'] == 5
    assert result['http_host']['top1'] == {'value': 'a.com', 'count': 2}
    assert result['http_host']['top3'] == {'value': 'c.com', 'count': 2}


def test_aggregate_rejects_unknown_ops(grid):
    with pytest.raises(ValidationError) as excinfo:
        grid.aggregate({'layer': 'HTTP_PAGE', 'metrics': {'http_host': {'ops': ['sum']}}})
    assert excinfo.value.code is ErrorCode.INVALID_METRIC
