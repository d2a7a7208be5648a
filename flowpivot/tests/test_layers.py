#!/usr/bin/env python3
"""
Tests for the layer registry and column allow-lists.
"""

import pytest

from flowpivot.core.errors import ErrorCode, ValidationError
from flowpivot.core.layers import (
    LAYERS, SchemaCatalog, frontend_type, resolve_layer, safe_field_name, temporal_kind,
)


def test_resolve_layer_is_case_insensitive():
    assert resolve_layer('http_page') is LAYERS['HTTP_PAGE']
    assert resolve_layer(' Http-Uri ') is LAYERS['HTTP_URI']
    assert resolve_layer('eth') is LAYERS['ETHERNET']
    assert resolve_layer('L4_TCP').data_table == 'tcp_sample'


def test_unknown_or_blank_layer():
    for raw in ('SMTP', '', None):
        with pytest.raises(ValidationError) as excinfo:
            resolve_layer(raw)
        assert excinfo.value.code is ErrorCode.LAYER_NOT_FOUND
    assert resolve_layer('', default='TCP').code == 'TCP'


def test_every_layer_has_a_time_field():
    for layer in LAYERS.values():
        assert layer.default_time_field == 'ts_server_nsec'
        assert layer.data_table.endswith('_sample')


def test_safe_field_name():
    assert safe_field_name('bytes-desc') == 'bytes'
    assert safe_field_name(' http_host ') == 'http_host'
    assert safe_field_name(None) == ''


@pytest.mark.parametrize('engine_type, column, expected', [
    ('VARCHAR', 'src_ip', 'ip'),
    ('VARCHAR', 'src_mac', 'mac'),
    ('INTEGER', 'dst_port', 'string'),
    ('BIGINT', 'bytes', 'number'),
    ('DOUBLE', 'ratio', 'number'),
    ('TIMESTAMP WITH TIME ZONE', 'created_at', 'date'),
    ('DATE', 'day', 'date'),
    ('BOOLEAN', 'is_tls', 'boolean'),
    ('JSON', 'headers', 'json'),
    ('BLOB', 'payload', 'string'),
])
def test_frontend_type(engine_type, column, expected):
    assert frontend_type(engine_type, column) == expected


def test_temporal_kind():
    assert temporal_kind('TIMESTAMP WITH TIME ZONE') == 'timestamptz'
    assert temporal_kind('TIMESTAMP') == 'timestamp'
    assert temporal_kind('DATE') == 'date'
    assert temporal_kind('BIGINT') is None


def test_schema_allow_list(http_schema):
    assert http_schema.require('HTTP_HOST') == 'http_host'
    assert http_schema.col('bytes') == 't."bytes"'
    assert http_schema.from_clause == 'http_page_sample t'
    for bad in ('t.bytes', 'nope', '1abc', 'bytes"--'):
        with pytest.raises(ValidationError) as excinfo:
            http_schema.require(bad)
        assert excinfo.value.code is ErrorCode.FIELD_NOT_ALLOWED


def test_field_meta(http_schema):
    meta = {m.name: m.to_dict() for m in http_schema.field_meta()}
    assert meta['status_code'] == {'name': 'status_code', 'type': 'number',
                                   'engineType': 'INTEGER', 'label': None}
    assert meta['src_ip']['type'] == 'ip'


def test_catalog_discovers_tables(catalog):
    schema = catalog.schema('tcp')
    assert list(schema.columns) == ['ts_server_nsec', 'src_ip', 'dst_port', 'bytes']
    assert catalog.schema('TCP') is schema


def test_catalog_without_table(catalog):
    with pytest.raises(ValidationError) as excinfo:
        catalog.schema('ETHERNET')
    assert excinfo.value.code is ErrorCode.LAYER_NOT_FOUND
