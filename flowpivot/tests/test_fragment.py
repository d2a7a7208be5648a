#!/usr/bin/env python3
"""
Tests for SqlFragment composition.
"""

import pytest

from flowpivot.core.errors import CompilationError
from flowpivot.core.fragment import SqlFragment, count_placeholders


def test_and_concatenates_args_in_order():
    a = SqlFragment.of('x = ?', [1])
    b = SqlFragment.of('y BETWEEN ? AND ?', [2, 3])
    both = SqlFragment.and_(a, b)
    assert both.sql == 'x = ? AND y BETWEEN ? AND ?'
    assert both.args == (1, 2, 3)
    assert both.placeholder_count == a.placeholder_count + b.placeholder_count


def test_blank_is_identity_for_and():
    a = SqlFragment.of('x = ?', [1])
    assert SqlFragment.and_(a, SqlFragment.empty()) == a
    assert SqlFragment.and_(SqlFragment.empty(), a) == a
    assert SqlFragment.and_(SqlFragment.empty(), SqlFragment.empty()).is_blank()


def test_join_skips_blank_fragments():
    a = SqlFragment.of('x = ?', ['a'])
    b = SqlFragment.raw('y IS NULL')
    assert SqlFragment.join(' OR ', [a, SqlFragment.empty(), b]) == SqlFragment.join(' OR ', [a, b])
    assert SqlFragment.join(' OR ', []).is_blank()


def test_wrap():
    f = SqlFragment.of('a = ? OR b = ?', [1, 2])
    wrapped = SqlFragment.wrap(f)
    assert wrapped.sql == '(a = ? OR b = ?)'
    assert wrapped.args == f.args
    assert SqlFragment.wrap(SqlFragment.empty()).is_blank()
    assert SqlFragment.raw('   ').is_blank()
    assert SqlFragment.wrap(SqlFragment.raw('  ')).sql == ''


def test_sequence_joins_with_spaces():
    f = SqlFragment.sequence([SqlFragment.raw('NOT'), SqlFragment.of('(x = ?)', [5])])
    assert f.sql == 'NOT (x = ?)'
    assert f.args == (5,)


def test_placeholder_mismatch_is_a_compilation_error():
    with pytest.raises(CompilationError):
        SqlFragment.of('x = ? AND y = ?', [1])
    with pytest.raises(CompilationError):
        SqlFragment.of('x = 1', [1])


def test_placeholders_inside_quotes_are_ignored():
    assert count_placeholders("x = '?' AND \"we?rd\" = ?") == 1
    assert count_placeholders("CAST(? AS DATE)") == 1
    f = SqlFragment.of("label = 'what?' AND v = ?", ['x'])
    assert f.args == ('x',)


def test_args_are_stored_as_tuple():
    f = SqlFragment('a IN (?, ?)', [1, 2])
    assert f.args == (1, 2)
    assert str(f) == 'a IN (?, ?)'
