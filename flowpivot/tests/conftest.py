#!/usr/bin/env python3
"""
Shared fixtures: in-memory DuckDB sample tables for the HTTP page and TCP layers.
"""

import sys
import os

import pytest

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from flowpivot.core.config import EngineSettings
from flowpivot.core.data_source import FlowDataSource
from flowpivot.core.layers import SchemaCatalog
from flowpivot.core.query_engine import QueryEngine

# (ts_server_nsec, http_host, status_code, bytes), in insertion order
HTTP_PAGE_ROWS = [
    (1000, 'a.com', 200, 500),
    (1100, 'b.com', 200, 300),
    (1200, 'a.com', 404, 100),
    (1300, 'c.com', 200, 250),
    (1400, 'd.com', 500, 1000),
    (1500, 'b.com', 404, 50),
    (1600, 'e.com', 200, 10),
    (3000, 'c.com', 404, 9999),
    (1700, None, 200, 5),
]

# (ts_server_nsec, src_ip, dst_port, bytes)
TCP_ROWS = [
    (0, 'x', 80, 10),
    (60, 'x', 80, 20),
    (120, 'x', 80, 30),
    (180, 'x', 80, 40),
    (0, 'y', 80, 10),
    (60, 'y', 80, 20),
    (120, 'y', 80, 30),
    (0, 'z', 443, 999),
]

HTTP_PAGE_COLUMNS = {
    'ts_server_nsec': 'DOUBLE',
    'http_host': 'VARCHAR',
    'status_code': 'INTEGER',
    'bytes': 'BIGINT',
    'src_ip': 'VARCHAR',
    'created_at': 'TIMESTAMP',
}


@pytest.fixture
def data_source():
    """Data source with http_page_sample and tcp_sample loaded"""
    ds = FlowDataSource(duckdb_threads=1)
    conn = ds.connect()
    conn.execute("""
        CREATE TABLE http_page_sample (
            ts_server_nsec DOUBLE, http_host VARCHAR, status_code INTEGER, bytes BIGINT
        )
    """)
    conn.executemany("INSERT INTO http_page_sample VALUES (?, ?, ?, ?)", HTTP_PAGE_ROWS)
    conn.execute("CREATE TABLE tcp_sample (ts_server_nsec BIGINT, src_ip VARCHAR, dst_port INTEGER, bytes BIGINT)")
    conn.executemany("INSERT INTO tcp_sample VALUES (?, ?, ?, ?)", TCP_ROWS)
    yield ds
    ds.close()


@pytest.fixture
def catalog(data_source):
    return SchemaCatalog(data_source)


@pytest.fixture
def engine(data_source):
    return QueryEngine(data_source)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def http_schema():
    """Registered schema for compile-only tests, no database needed"""
    return SchemaCatalog().register('HTTP_PAGE', HTTP_PAGE_COLUMNS)
