#!/usr/bin/env python3
"""
Layer registry and per-layer column allow-lists.

A layer is a named data domain (Ethernet, TCP, HTTP page, HTTP URI) bound to
one sample table, one field metadata table and a default time column. The
registry is a closed lookup table; adding a layer is a data change.

Column identifiers are the only user supplied text ever interpolated into
SQL, so every field name goes through ``LayerSchema.require`` first.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ValidationError, ErrorCode

logger = logging.getLogger('flowpivot.layers')

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

TABLE_ALIAS = 't'


@dataclass(frozen=True)
class Layer:
    """Static metadata for one layer"""
    code: str
    data_table: str
    fields_table: str
    default_time_field: str


LAYERS: Dict[str, Layer] = {
    'HTTP_PAGE': Layer('HTTP_PAGE', 'http_page_sample', 'http_page_fields', 'ts_server_nsec'),
    'HTTP_URI': Layer('HTTP_URI', 'http_uri_sample', 'http_uri_fields', 'ts_server_nsec'),
    'TCP': Layer('TCP', 'tcp_sample', 'tcp_fields', 'ts_server_nsec'),
    'ETHERNET': Layer('ETHERNET', 'ethernet_sample', 'ethernet_fields', 'ts_server_nsec'),
}

# Alternate spellings sent by older clients
LAYER_ALIASES = {
    'L4_TCP': 'TCP',
    'HTTPPAGE': 'HTTP_PAGE',
    'HTTPURI': 'HTTP_URI',
    'ETH': 'ETHERNET',
}


def resolve_layer(raw: Optional[str], default: Optional[str] = None) -> Layer:
    """
    Resolve a layer selector case-insensitively.

    A blank selector resolves to ``default`` when one is configured,
    otherwise it is rejected like any unknown code.
    """
    key = (raw or '').strip().upper().replace('-', '_')
    if not key:
        if default:
            return resolve_layer(default)
        raise ValidationError(ErrorCode.LAYER_NOT_FOUND, 'layer is required')
    key = LAYER_ALIASES.get(key, key)
    layer = LAYERS.get(key)
    if layer is None:
        raise ValidationError(ErrorCode.LAYER_NOT_FOUND, str(raw))
    return layer


def safe_field_name(name: str) -> str:
    """Strip client-side suffixes like ``bytes-desc`` down to the column name"""
    if name is None:
        return ''
    name = str(name).strip()
    dash = name.find('-')
    return name[:dash] if dash >= 0 else name


def quote_ident(name: str) -> str:
    """Quote an identifier that has already passed the allow-list"""
    if not IDENTIFIER_PATTERN.match(name or ''):
        raise ValidationError(ErrorCode.FIELD_NOT_ALLOWED, repr(name))
    return f'"{name}"'


def frontend_type(engine_type: str, column: str) -> str:
    """Map an engine column type to the client's filter type"""
    t = (engine_type or '').lower()
    tokens = (column or '').lower().split('_')
    if 'inet' in t or 'ip' in tokens:
        return 'ip'
    if 'mac' in tokens:
        return 'mac'
    if 'port' in tokens:
        return 'string'
    if any(k in t for k in ('char', 'text', 'string', 'uuid')):
        return 'string'
    if any(k in t for k in ('int', 'numeric', 'decimal', 'float', 'double', 'real')):
        return 'number'
    if 'date' in t or 'time' in t:
        return 'date'
    if 'bool' in t:
        return 'boolean'
    if 'json' in t:
        return 'json'
    return 'string'


def temporal_kind(engine_type: str) -> Optional[str]:
    """Return 'timestamptz', 'timestamp', 'date' or None"""
    t = (engine_type or '').lower()
    if 'timestamp' in t:
        if 'time zone' in t or 'tz' in t:
            return 'timestamptz'
        return 'timestamp'
    if t == 'date':
        return 'date'
    return None


@dataclass
class FieldMeta:
    """Client facing description of one layer field"""
    name: str
    engine_type: str
    type: str
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {'name': self.name, 'type': self.type, 'engineType': self.engine_type, 'label': self.label}


@dataclass
class LayerSchema:
    """Known columns of a layer table, in table order"""
    layer: Layer
    columns: Dict[str, str] = field(default_factory=dict)  # column -> engine type
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self._lower = {name.lower(): name for name in self.columns}

    @property
    def table(self) -> str:
        return self.layer.data_table

    @property
    def from_clause(self) -> str:
        return f"{self.layer.data_table} {TABLE_ALIAS}"

    def has(self, name: str) -> bool:
        return self.resolve_name(name) is not None

    def resolve_name(self, name: str) -> Optional[str]:
        name = safe_field_name(name)
        if not name or '.' in name or not IDENTIFIER_PATTERN.match(name):
            return None
        if name in self.columns:
            return name
        return self._lower.get(name.lower())

    def require(self, name: str) -> str:
        """Return the actual column name or raise FIELD_NOT_ALLOWED"""
        resolved = self.resolve_name(name)
        if resolved is None:
            raise ValidationError(ErrorCode.FIELD_NOT_ALLOWED, f"{name!r} is not a column of {self.layer.code}")
        return resolved

    def col(self, name: str) -> str:
        """Qualified, quoted column expression for an allowed field"""
        return f"{TABLE_ALIAS}.{quote_ident(self.require(name))}"

    def engine_type(self, name: str) -> str:
        resolved = self.resolve_name(name)
        return self.columns.get(resolved, '') if resolved else ''

    def field_type(self, name: str) -> str:
        resolved = self.resolve_name(name)
        if resolved is None:
            return 'string'
        return frontend_type(self.columns[resolved], resolved)

    def temporal_kind(self, name: str) -> Optional[str]:
        return temporal_kind(self.engine_type(name))

    def field_meta(self) -> List[FieldMeta]:
        return [
            FieldMeta(name, engine_type, frontend_type(engine_type, name), self.labels.get(name))
            for name, engine_type in self.columns.items()
        ]


class SchemaCatalog:
    """Per-layer schemas, discovered from the data source or registered directly"""

    def __init__(self, data_source=None):
        self.data_source = data_source
        self._schemas: Dict[str, LayerSchema] = {}

    def register(self, layer_code: str, columns, labels: Optional[Dict[str, str]] = None) -> LayerSchema:
        """Register columns given as a mapping or a list of (name, type) pairs"""
        layer = resolve_layer(layer_code)
        if not isinstance(columns, dict):
            columns = dict(columns)
        schema = LayerSchema(layer, dict(columns), dict(labels or {}))
        self._schemas[layer.code] = schema
        return schema

    def schema(self, layer_code) -> LayerSchema:
        layer = layer_code if isinstance(layer_code, Layer) else resolve_layer(layer_code)
        schema = self._schemas.get(layer.code)
        if schema is None:
            schema = self._discover(layer)
        return schema

    def field_meta(self, layer_code) -> List[FieldMeta]:
        return self.schema(layer_code).field_meta()

    def _discover(self, layer: Layer) -> LayerSchema:
        if self.data_source is None or not self.data_source.table_exists(layer.data_table):
            raise ValidationError(ErrorCode.LAYER_NOT_FOUND, f"no table loaded for {layer.code}")

        columns: List[Tuple[str, str]] = self.data_source.describe_table(layer.data_table)
        labels = self.data_source.load_field_labels(layer.fields_table)
        logger.debug(f"Discovered {len(columns)} columns for {layer.code}")
        schema = LayerSchema(layer, dict(columns), labels)
        self._schemas[layer.code] = schema
        return schema
