#!/usr/bin/env python3
"""
Filter model compiler.

Turns the client's per-column filter description, time window, sort and
page into one parameterized query. Field names are checked against the
layer schema before they reach SQL text; values only ever travel as bound
parameters.

Accepted filter shapes:
    {"status_code": {"mode": "checkbox", "values": [200, 404]},
     "http_host": {"mode": "condition", "op": "LIKE", "value": "example"}}
    [{"field": "http_host", "op": "=", "value": "a.example"}]
    {"bytes": {"mode": "condition", "conditions": [{"op": ">", "value": 10},
                                                   {"op": "<", "value": 99}],
               "logicOps": ["AND"]}}
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import EngineSettings
from .errors import ValidationError, ErrorCode
from .fragment import SqlFragment
from .layers import LayerSchema, quote_ident
from .query_builder import SqlQueryBuilder
from .time_utils import TimeWindow
from ..sql.expressions import date_expr, escape_like, ilike_expr, text_expr

CHECKBOX = 'checkbox'
CONDITION = 'condition'
FILTER_MODES = (CHECKBOX, CONDITION)

EMPTY_LABEL = '(empty)'

TEXT_TYPES = ('string', 'ip', 'mac', 'json')


class Operator(Enum):
    EQ = '='
    NE = '<>'
    LIKE = 'LIKE'
    STARTS_WITH = 'STARTS_WITH'
    ENDS_WITH = 'ENDS_WITH'
    IN = 'IN'
    NOT_IN = 'NOT IN'
    BETWEEN = 'BETWEEN'
    GT = '>'
    GTE = '>='
    LT = '<'
    LTE = '<='
    IS_NULL = 'IS NULL'
    IS_NOT_NULL = 'IS NOT NULL'


OPERATOR_ALIASES = {
    '=': Operator.EQ, '==': Operator.EQ, 'EQUALS': Operator.EQ, 'EQUAL': Operator.EQ,
    '!=': Operator.NE, '<>': Operator.NE, 'NOT': Operator.NE, 'NOT_EQUALS': Operator.NE,
    'NOTEQUAL': Operator.NE, 'NOTEQUALS': Operator.NE,
    'CONTAINS': Operator.LIKE, 'STARTSWITH': Operator.STARTS_WITH, 'ENDSWITH': Operator.ENDS_WITH,
    '>': Operator.GT, 'AFTER': Operator.GT, '>=': Operator.GTE,
    '<': Operator.LT, 'BEFORE': Operator.LT, '<=': Operator.LTE,
    'NOTIN': Operator.NOT_IN, 'ISNULL': Operator.IS_NULL, 'ISNOTNULL': Operator.IS_NOT_NULL,
}

COMPARISONS = {Operator.GT: '>', Operator.GTE: '>=', Operator.LT: '<', Operator.LTE: '<='}

LIKE_PATTERNS = {
    Operator.LIKE: '%{}%',
    Operator.STARTS_WITH: '{}%',
    Operator.ENDS_WITH: '%{}',
}

# Two-value spellings used by older grid clients
_RANGE_KEYS = (('val1', 'val2'), ('min', 'max'), ('from', 'to'))


def parse_operator(raw: Any) -> Operator:
    """Resolve an operator name, symbol or grid alias"""
    if isinstance(raw, Operator):
        return raw
    if raw is None or not str(raw).strip():
        raise ValidationError(ErrorCode.INVALID_OPERATOR, 'op is required')
    key = str(raw).strip().upper().replace(' ', '_')
    if key in Operator.__members__:
        return Operator[key]
    op = OPERATOR_ALIASES.get(key) or OPERATOR_ALIASES.get(key.replace('_', ''))
    if op is None:
        raise ValidationError(ErrorCode.INVALID_OPERATOR, repr(raw))
    return op


def is_empty_marker(value: Any) -> bool:
    """NULL, blank and '(empty)' all select the missing value"""
    if value is None:
        return True
    return isinstance(value, str) and (not value.strip() or value == EMPTY_LABEL)


def normalize_key(value: Any) -> str:
    """Category label for a grouped value; missing values become '(empty)'"""
    if is_empty_marker(value):
        return EMPTY_LABEL
    return str(value)


@dataclass
class Condition:
    op: Operator
    values: List[Any] = field(default_factory=list)


@dataclass
class FilterEntry:
    """One field's filter: a checkbox value set or a chain of conditions"""
    field: str
    mode: str = CONDITION
    values: List[Any] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)
    logic_ops: List[str] = field(default_factory=list)
    type: Optional[str] = None
    negate: bool = False

    @classmethod
    def checkbox(cls, field_name: str, values: Iterable[Any]) -> 'FilterEntry':
        return cls(field_name, CHECKBOX, values=list(values))

    @classmethod
    def condition(cls, field_name: str, op: Any, *values: Any) -> 'FilterEntry':
        return cls(field_name, CONDITION, conditions=[Condition(parse_operator(op), list(values))])


def _condition_values(spec: Dict[str, Any]) -> List[Any]:
    for key in ('values', 'value', 'val'):
        if key in spec:
            raw = spec[key]
            return list(raw) if isinstance(raw, (list, tuple)) else [raw]
    for low, high in _RANGE_KEYS:
        if low in spec or high in spec:
            return [spec.get(low), spec.get(high)]
    return []


def _parse_condition(field_name: str, spec: Any) -> Condition:
    if not isinstance(spec, dict):
        raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"condition for {field_name!r} must be an object")
    op = spec.get('op', spec.get('operator'))
    return Condition(parse_operator(op), _condition_values(spec))


def _parse_logic_ops(field_name: str, raw: Any) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"logicOps for {field_name!r} must be a list")
    ops = []
    for op in raw:
        op = str(op or 'AND').strip().upper()
        if op not in ('AND', 'OR'):
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"logic op {op!r} for {field_name!r}")
        ops.append(op)
    return ops


def _parse_entry(field_name: str, spec: Any) -> FilterEntry:
    if not field_name or not isinstance(field_name, str):
        raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'filter field is required')
    if not isinstance(spec, dict):
        raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"filter for {field_name!r} must be an object")

    mode = spec.get('mode')
    if mode is None and ('op' in spec or 'operator' in spec or 'conditions' in spec):
        mode = CONDITION
    mode = str(mode or '').strip().lower()
    if mode not in FILTER_MODES:
        raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"mode {spec.get('mode')!r} for {field_name!r}")

    declared_type = spec.get('type') or spec.get('dataType')
    declared_type = str(declared_type).strip().lower() if declared_type else None
    if declared_type == 'text':
        declared_type = 'string'
    if declared_type == 'datetime':
        declared_type = 'date'

    entry = FilterEntry(field_name, mode, type=declared_type, negate=bool(spec.get('not', False)))
    if mode == CHECKBOX:
        values = spec.get('values', [])
        if values is None:
            values = []
        if not isinstance(values, (list, tuple)):
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"values for {field_name!r} must be a list")
        entry.values = list(values)
        return entry

    if 'conditions' in spec:
        conditions = spec['conditions'] or []
        if not isinstance(conditions, list):
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"conditions for {field_name!r} must be a list")
        entry.conditions = [_parse_condition(field_name, c) for c in conditions]
        entry.logic_ops = _parse_logic_ops(field_name, spec.get('logicOps'))
    else:
        entry.conditions = [_parse_condition(field_name, spec)]
    return entry


def parse_filters(raw: Any) -> List[FilterEntry]:
    """
    Parse a filter description into entries.

    Accepts None or blank (no filters), a JSON string, a field-keyed mapping
    or a list of entries carrying their own ``field``.
    """
    if raw is None:
        return []
    if isinstance(raw, FilterEntry):
        return [raw]
    if isinstance(raw, (str, bytes)):
        text = raw.decode() if isinstance(raw, bytes) else raw
        if not text.strip():
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"not valid JSON ({e.msg})")
        if raw is None:
            return []

    if isinstance(raw, dict):
        return [_parse_entry(name, spec) for name, spec in raw.items()]
    if isinstance(raw, (list, tuple)):
        entries = []
        for item in raw:
            if isinstance(item, FilterEntry):
                entries.append(item)
                continue
            if not isinstance(item, dict):
                raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'filter entries must be objects')
            entries.append(_parse_entry(item.get('field'), item))
        return entries
    raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'filter model must be a JSON object')


def parse_int(raw: Any, name: str, default: int, code: ErrorCode = ErrorCode.INVALID_PAGINATION) -> int:
    if raw is None or raw == '':
        return default
    if isinstance(raw, bool):
        raise ValidationError(code, f"{name} must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().lstrip('-').isdigit():
        return int(raw.strip())
    raise ValidationError(code, f"{name} must be an integer, got {raw!r}")


class FilterModelCompiler:
    """Compiles filters, time window, sort and page against one layer schema"""

    def __init__(self, schema: LayerSchema, settings: Optional[EngineSettings] = None):
        self.schema = schema
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger('flowpivot.filter_model')

    # -- WHERE -----------------------------------------------------------

    def compile_where(self, filters: Any = None, time: Any = None,
                      exclude_field: Optional[str] = None) -> SqlFragment:
        """Time predicate AND every filter entry, blank entries dropped"""
        where = SqlFragment.and_(self.time_predicate(time), self.compile_filters(filters, exclude_field))
        self.logger.debug(f"Compiled WHERE: {where.sql} args={list(where.args)}")
        return where

    def time_predicate(self, time: Any) -> SqlFragment:
        window = TimeWindow.from_dict(time)
        if window is None:
            return SqlFragment.empty()
        field_name = window.field or self.schema.layer.default_time_field
        col = self.schema.col(field_name)
        return window.predicate(col, self.schema.temporal_kind(field_name))

    def compile_filters(self, filters: Any, exclude_field: Optional[str] = None) -> SqlFragment:
        entries = filters if isinstance(filters, list) and all(
            isinstance(e, FilterEntry) for e in filters) else parse_filters(filters)
        excluded = self.schema.resolve_name(exclude_field) if exclude_field else None

        parts = []
        for entry in entries:
            if excluded is not None and self.schema.resolve_name(entry.field) == excluded:
                self.logger.debug(f"Excluding own filter on {excluded}")
                continue
            parts.append(self.compile_entry(entry))
        return SqlFragment.join(' AND ', parts)

    def compile_entry(self, entry: FilterEntry) -> SqlFragment:
        self.schema.require(entry.field)
        field_type = entry.type or self.schema.field_type(entry.field)

        if entry.mode == CHECKBOX:
            fragment = self.in_predicate(entry.field, entry.values, field_type)
        else:
            fragment = self._condition_chain(entry, field_type)

        if entry.negate and not fragment.is_blank():
            fragment = SqlFragment.sequence([SqlFragment.raw('NOT'), SqlFragment.wrap(fragment)])
        return fragment

    def _condition_chain(self, entry: FilterEntry, field_type: str) -> SqlFragment:
        acc = SqlFragment.empty()
        last_op = None
        for i, cond in enumerate(entry.conditions):
            part = self.compile_condition(entry.field, cond.op, cond.values, field_type)
            if part.is_blank():
                continue
            if acc.is_blank():
                acc = part
                continue
            logic = entry.logic_ops[i - 1] if i - 1 < len(entry.logic_ops) else 'AND'
            if last_op is not None and logic != last_op:
                acc = SqlFragment.wrap(acc)
            acc = SqlFragment.sequence([acc, SqlFragment.raw(logic), part])
            last_op = logic
        return SqlFragment.wrap(acc)

    def compile_condition(self, field_name: str, op: Any, values: List[Any],
                          field_type: Optional[str] = None) -> SqlFragment:
        """Compile one operator against a field; missing operands yield blank"""
        op = parse_operator(op)
        field_type = field_type or self.schema.field_type(field_name)
        col = self.schema.col(field_name)
        values = list(values or [])

        if op is Operator.IS_NULL:
            return SqlFragment.raw(f"{col} IS NULL")
        if op is Operator.IS_NOT_NULL:
            return SqlFragment.raw(f"{col} IS NOT NULL")
        if op in (Operator.IN, Operator.NOT_IN):
            return self.in_predicate(field_name, values, field_type, negate=op is Operator.NOT_IN)

        if op in (Operator.EQ, Operator.NE):
            if not values:
                return SqlFragment.empty()
            if is_empty_marker(values[0]):
                return self._empty_predicate(col, field_type, negate=op is Operator.NE)
            lhs, rhs, arg = self._operand(col, field_type, values[0])
            return SqlFragment.of(f"{lhs} {op.value} {rhs}", [arg])

        if op in LIKE_PATTERNS:
            if not values or values[0] is None or str(values[0]) == '':
                return SqlFragment.empty()
            pattern = LIKE_PATTERNS[op].format(escape_like(values[0]))
            return SqlFragment.of(ilike_expr(col), [pattern])

        if op is Operator.BETWEEN:
            if len(values) < 2 or is_empty_marker(values[0]) or is_empty_marker(values[1]):
                return SqlFragment.empty()
            lhs, rhs, low = self._operand(col, field_type, values[0])
            _, _, high = self._operand(col, field_type, values[1])
            return SqlFragment.of(f"{lhs} BETWEEN {rhs} AND {rhs}", [low, high])

        if not values or is_empty_marker(values[0]):
            return SqlFragment.empty()
        lhs, rhs, arg = self._operand(col, field_type, values[0])
        return SqlFragment.of(f"{lhs} {COMPARISONS[op]} {rhs}", [arg])

    def in_predicate(self, field_name: str, values: List[Any], field_type: Optional[str] = None,
                     negate: bool = False) -> SqlFragment:
        """
        Set membership with '(empty)' handling.

        An empty set matches nothing for IN and restricts nothing for NOT IN.
        """
        field_type = field_type or self.schema.field_type(field_name)
        col = self.schema.col(field_name)
        concrete = [v for v in values if not is_empty_marker(v)]
        wants_empty = len(concrete) != len(values)

        if not values:
            return SqlFragment.empty() if negate else SqlFragment.raw('1=0')

        member = SqlFragment.empty()
        if concrete:
            lhs, rhs, _ = self._operand(col, field_type, concrete[0])
            args = [self._operand(col, field_type, v)[2] for v in concrete]
            keyword = 'NOT IN' if negate else 'IN'
            member = SqlFragment.of(f"{lhs} {keyword} ({', '.join([rhs] * len(args))})", args)

        if not wants_empty:
            return member
        empty = self._empty_predicate(col, field_type, negate=negate)
        if member.is_blank():
            return empty
        joiner = ' AND ' if negate else ' OR '
        return SqlFragment.wrap(SqlFragment.join(joiner, [member, empty]))

    def _empty_predicate(self, col: str, field_type: str, negate: bool = False) -> SqlFragment:
        if field_type in TEXT_TYPES:
            if negate:
                return SqlFragment.raw(f"({col} IS NOT NULL AND {text_expr(col)} <> '')")
            return SqlFragment.raw(f"({col} IS NULL OR {text_expr(col)} = '')")
        return SqlFragment.raw(f"{col} IS NOT NULL" if negate else f"{col} IS NULL")

    def _operand(self, col: str, field_type: str, value: Any) -> Tuple[str, str, Any]:
        """Left-hand expression, placeholder expression and bound value for a type"""
        if field_type == 'number':
            return col, '?', self._to_number(col, value)
        if field_type == 'boolean':
            return col, '?', self._to_bool(col, value)
        if field_type == 'date':
            kind = self._kind_of(col)
            lhs = date_expr(col, kind, self.settings.time_zone, self.settings.timestamp_without_tz_is_utc)
            return lhs, 'CAST(? AS DATE)', str(value).strip()
        return text_expr(col), '?', str(value)

    def _kind_of(self, col: str) -> Optional[str]:
        # col is t."name"
        return self.schema.temporal_kind(col.split('.', 1)[1].strip('"'))

    @staticmethod
    def _to_number(col: str, value: Any):
        if isinstance(value, bool):
            raise ValidationError(ErrorCode.INVALID_VALUE, f"{value!r} is not a number for {col}")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_VALUE, f"{value!r} is not a number for {col}")

    @staticmethod
    def _to_bool(col: str, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ('true', '1', 'y', 'yes'):
            return True
        if text in ('false', '0', 'n', 'no'):
            return False
        raise ValidationError(ErrorCode.INVALID_VALUE, f"{value!r} is not a boolean for {col}")

    # -- base spec -------------------------------------------------------

    def compile_base_spec(self, base_spec: Any) -> SqlFragment:
        """
        Compile a grid base spec ``{time, conditions: [{field, op, values,
        dataType, join, not}]}``; each condition joins the previous one with
        its ``join`` (AND by default).
        """
        if base_spec is None or base_spec == '':
            return SqlFragment.empty()
        if isinstance(base_spec, str):
            try:
                base_spec = json.loads(base_spec)
            except json.JSONDecodeError as e:
                raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"base spec is not valid JSON ({e.msg})")
        if not isinstance(base_spec, dict):
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'base spec must be a JSON object')

        where = self.time_predicate(base_spec.get('time'))
        conditions = base_spec.get('conditions') or []
        if not isinstance(conditions, list):
            raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'base spec conditions must be a list')

        chain = SqlFragment.empty()
        for cond in conditions:
            if not isinstance(cond, dict):
                raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, 'base spec conditions must be objects')
            entry = _parse_entry(cond.get('field'), dict(cond, mode=CONDITION))
            part = self.compile_entry(entry)
            if part.is_blank():
                continue
            if chain.is_blank():
                chain = part
                continue
            join = str(cond.get('join') or 'AND').strip().upper()
            if join not in ('AND', 'OR'):
                raise ValidationError(ErrorCode.INVALID_FILTER_MODEL, f"join {join!r}")
            chain = SqlFragment.sequence([chain, SqlFragment.raw(join), part])
        return SqlFragment.and_(where, SqlFragment.wrap(chain))

    # -- ORDER BY / page -------------------------------------------------

    def order_by(self, sort: Any, default_field: Optional[str] = None) -> Tuple[str, str]:
        """
        Validate ``{field, direction}`` (or a bare field name) and return the
        column expression and direction. Missing sort uses the default field.
        """
        if isinstance(sort, dict):
            field_name, direction = sort.get('field'), sort.get('direction', sort.get('dir'))
        else:
            field_name, direction = sort, None

        if not field_name:
            field_name = default_field or self.schema.layer.default_time_field
        if not self.schema.has(field_name):
            raise ValidationError(ErrorCode.INVALID_SORT, f"cannot sort by {field_name!r}")

        direction = str(direction or 'DESC').strip().upper()
        if direction not in ('ASC', 'DESC'):
            raise ValidationError(ErrorCode.INVALID_SORT, f"direction {direction!r}")
        return self.schema.col(field_name), direction

    @staticmethod
    def page(offset: Any, limit: Any, default_limit: int, max_limit: int) -> Tuple[int, int]:
        offset = parse_int(offset, 'offset', 0)
        limit = parse_int(limit, 'limit', default_limit)
        if offset < 0:
            raise ValidationError(ErrorCode.INVALID_PAGINATION, 'offset must be >= 0')
        if limit < 1:
            raise ValidationError(ErrorCode.INVALID_PAGINATION, 'limit must be >= 1')
        return offset, min(limit, max_limit)

    def compile_query(self, columns: Optional[List[str]] = None, filters: Any = None, time: Any = None,
                      sort: Any = None, offset: Any = None, limit: Any = None,
                      base_spec: Any = None) -> SqlFragment:
        """Full row query: SELECT columns, WHERE, ORDER BY, LIMIT/OFFSET"""
        cols = ([f"{self.schema.col(c)} AS {quote_ident(self.schema.require(c))}" for c in columns]
                if columns else ['t.*'])
        where = SqlFragment.and_(self.compile_where(filters, time), self.compile_base_spec(base_spec))
        col, direction = self.order_by(sort)
        offset, limit = self.page(offset, limit, self.settings.grid_default_limit, self.settings.grid_max_limit)
        return (SqlQueryBuilder.select(*cols)
                .from_(self.schema.from_clause)
                .where(where)
                .order_by(f"{col}", direction)
                .limit(limit)
                .offset(offset)
                .build())
