#!/usr/bin/env python3
"""
Tests for sample file loading, schema discovery and query execution.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from flowpivot.core.data_source import FlowDataSource
from flowpivot.core.errors import ErrorCode, QueryExecutionError, ValidationError
from flowpivot.core.fragment import SqlFragment
from flowpivot.core.layers import SchemaCatalog
from flowpivot.core.pivot_engine import PivotAggregationEngine
from flowpivot.core.query_engine import QueryEngine


@pytest.fixture
def datadir(tmp_path):
    (tmp_path / 'http_page_sample_1.csv').write_text(
        'ts_server_nsec,http_host,status_code,bytes\n'
        '1000,a.com,200,500\n'
        '1100,b.com,404,300\n'
    )
    (tmp_path / 'http_page_sample_2.csv').write_text(
        'ts_server_nsec,http_host,status_code,bytes\n'
        '1200,c.com,200,250\n'
    )
    (tmp_path / 'http_page_fields.csv').write_text(
        'field_key,label\n'
        'http_host,Host\n'
        'status_code,Status\n'
    )
    return tmp_path


def test_load_layers_and_discover_schema(datadir):
    with FlowDataSource(str(datadir), duckdb_threads=1) as ds:
        assert ds.load_layers() == {'HTTP_PAGE': 3}
        schema = SchemaCatalog(ds).schema('HTTP_PAGE')
        assert list(schema.columns) == ['ts_server_nsec', 'http_host', 'status_code', 'bytes']
        assert schema.labels == {'http_host': 'Host', 'status_code': 'Status'}
        meta = {m.name: m.to_dict() for m in schema.field_meta()}
        assert meta['http_host']['label'] == 'Host'
        assert meta['bytes']['type'] == 'number'


def test_unloaded_layer_is_not_found(datadir):
    with FlowDataSource(str(datadir)) as ds:
        ds.load_layers()
        with pytest.raises(ValidationError) as excinfo:
            SchemaCatalog(ds).schema('TCP')
        assert excinfo.value.code is ErrorCode.LAYER_NOT_FOUND


def test_missing_datadir(tmp_path):
    with pytest.raises(ValueError):
        FlowDataSource(str(tmp_path / 'nope'))
    with pytest.raises(ValueError):
        FlowDataSource().load_layers()


def test_query_engine_execute_and_scalar(data_source):
    engine = QueryEngine(data_source)
    result = engine.execute(SqlFragment.of(
        'SELECT http_host, bytes FROM http_page_sample WHERE bytes > ? ORDER BY bytes DESC', [900]))
    assert result.columns == ['http_host', 'bytes']
    assert result.data == [{'http_host': 'c.com', 'bytes': 9999}, {'http_host': 'd.com', 'bytes': 1000}]
    assert result.row_count == 2
    assert engine.scalar(SqlFragment.raw('SELECT COUNT(*) FROM tcp_sample')) == 8
    assert engine.scalar(SqlFragment.raw('SELECT 1 WHERE 1=0')) is None


def test_query_engine_wraps_driver_errors(data_source):
    engine = QueryEngine(data_source)
    with pytest.raises(QueryExecutionError) as excinfo:
        engine.execute(SqlFragment.raw('SELECT * FROM no_such_table'))
    assert excinfo.value.code is ErrorCode.QUERY_EXECUTION_FAILED
    assert excinfo.value.sql == 'SELECT * FROM no_such_table'
    assert excinfo.value.__cause__ is not None


def test_concurrent_requests_share_one_data_source(data_source):
    pivot = PivotAggregationEngine(QueryEngine(data_source), SchemaCatalog(data_source))
    request = {
        'layer': 'HTTP_PAGE',
        'time': {'fromEpoch': 1000, 'toEpoch': 2000},
        'col': {'field': 'status_code', 'topN': 3},
        'row': {'field': 'http_host', 'topN': 3},
        'metric': {'field': 'bytes', 'agg': 'sum'},
    }
    expected = pivot.chart(request).to_dict()

    def run(_):
        return [pivot.chart(request).to_dict() for _ in range(20)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = [r for batch in pool.map(run, range(8)) for r in batch]
    assert len(results) == 160
    assert all(r == expected for r in results)
