#!/usr/bin/env python3
"""
Data access layer for captured flow samples.
Manages the DuckDB connection, loads per-layer sample files into tables
and discovers table schemas for the column allow-lists.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import duckdb

from .layers import LAYERS, Layer, IDENTIFIER_PATTERN

LABEL_COLUMNS = ('label', 'label_en', 'label_ko', 'description')


class FlowDataSource:
    """Manages access to layer tables via DuckDB"""

    def __init__(self, datadir: Optional[str] = None, duckdb_threads: Optional[int] = None,
                 database: str = ':memory:'):
        """
        Initialize data source.

        Args:
            datadir: Directory containing <data_table>*.csv / *.parquet files (optional)
            duckdb_threads: Number of DuckDB threads (None for default, 1 for deterministic)
            database: DuckDB database path, in-memory by default
        """
        self.datadir = Path(datadir) if datadir else None
        self.duckdb_threads = duckdb_threads
        self.database = database
        self.conn = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger('flowpivot.data_source')

        if self.datadir is not None and not self.datadir.exists():
            raise ValueError(f"Data directory does not exist: {datadir}")

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Get or create DuckDB connection"""
        with self._lock:
            if self.conn is None:
                self.conn = duckdb.connect(self.database)
                if self.duckdb_threads is not None:
                    self.conn.execute(f"SET threads TO {int(self.duckdb_threads)}")
            return self.conn

    def close(self):
        """Close DuckDB connection"""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def load_layers(self, layers: Optional[Iterable[Layer]] = None) -> Dict[str, int]:
        """
        Load every layer that has sample files in the data directory.

        Returns:
            Dictionary mapping layer code to loaded row count
        """
        if self.datadir is None:
            raise ValueError("No data directory configured")

        loaded = {}
        for layer in layers or LAYERS.values():
            start_time = time.time()
            rows = self._load_table(layer.data_table)
            if rows is None:
                self.logger.debug(f"No files for layer {layer.code}")
                continue
            self._load_table(layer.fields_table)
            loaded[layer.code] = rows
            self.logger.info(f"Loaded {layer.code}: {rows} rows in {time.time() - start_time:.2f}s")
        return loaded

    def _load_table(self, table: str) -> Optional[int]:
        """Create a table from matching files; None if there are none"""
        conn = self.connect()
        for suffix, reader in (('parquet', 'read_parquet'), ('csv', 'read_csv_auto')):
            if not any(self.datadir.glob(f"{table}*.{suffix}")):
                continue
            pattern = str(self.datadir / f"{table}*.{suffix}").replace("'", "''")
            conn.execute(f"CREATE OR REPLACE TABLE {self._ident(table)} AS SELECT * FROM {reader}('{pattern}')")
            return conn.execute(f"SELECT COUNT(*) FROM {self._ident(table)}").fetchone()[0]
        return None

    def table_exists(self, table: str) -> bool:
        with self.connect().cursor() as cursor:
            row = cursor.execute(
                "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?", [table]
            ).fetchone()
        return bool(row and row[0])

    def describe_table(self, table: str) -> List[Tuple[str, str]]:
        """Column (name, type) pairs in table order"""
        with self.connect().cursor() as cursor:
            rows = cursor.execute(f"DESCRIBE {self._ident(table)}").fetchall()
        return [(row[0], row[1]) for row in rows]

    def load_field_labels(self, fields_table: str) -> Dict[str, str]:
        """Field labels from a layer's fields table, empty when it is absent"""
        if not self.table_exists(fields_table):
            return {}
        columns = {name.lower(): name for name, _ in self.describe_table(fields_table)}
        key_col = columns.get('field_key') or columns.get('field')
        label_col = next((columns[c] for c in LABEL_COLUMNS if c in columns), None)
        if key_col is None or label_col is None:
            self.logger.warning(f"Fields table {fields_table} has no key/label columns")
            return {}
        with self.connect().cursor() as cursor:
            rows = cursor.execute(
                f'SELECT "{key_col}", "{label_col}" FROM {self._ident(fields_table)}'
            ).fetchall()
        return {str(k): v for k, v in rows if k is not None}

    @staticmethod
    def _ident(name: str) -> str:
        if not IDENTIFIER_PATTERN.match(name or ''):
            raise ValueError(f"Invalid table name: {name}")
        return name
