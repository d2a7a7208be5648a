#!/usr/bin/env python3
"""
Parameterized SQL fragments.

A fragment pairs SQL text that uses positional ``?`` placeholders with the
values bound to them. Fragments are immutable; every composition returns a
new fragment and keeps the placeholder count equal to the argument count.
The blank fragment is the identity for AND composition and is dropped by
``join``.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Sequence, Tuple

from .errors import CompilationError


def count_placeholders(sql: str) -> int:
    """Count ``?`` placeholders outside quoted literals and identifiers"""
    count = 0
    quote = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == '?':
            count += 1
    return count


@dataclass(frozen=True)
class SqlFragment:
    """Immutable SQL text plus its positional arguments"""
    sql: str = ''
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not isinstance(self.args, tuple):
            object.__setattr__(self, 'args', tuple(self.args))
        expected = count_placeholders(self.sql)
        if expected != len(self.args):
            raise CompilationError(
                f"Placeholder count {expected} does not match {len(self.args)} args in: {self.sql}"
            )

    @classmethod
    def of(cls, sql: str, args: Iterable[Any] = ()) -> 'SqlFragment':
        return cls(sql, tuple(args))

    @classmethod
    def raw(cls, sql: str) -> 'SqlFragment':
        return cls(sql, ())

    @classmethod
    def empty(cls) -> 'SqlFragment':
        return _EMPTY

    def is_blank(self) -> bool:
        """Empty or whitespace-only text; such a fragment never carries arguments"""
        return not self.sql or not self.sql.strip()

    @property
    def placeholder_count(self) -> int:
        return count_placeholders(self.sql)

    @staticmethod
    def and_(left: 'SqlFragment', right: 'SqlFragment') -> 'SqlFragment':
        """AND two fragments; a blank side yields the other side unchanged"""
        if left is None or left.is_blank():
            return right if right is not None else _EMPTY
        if right is None or right.is_blank():
            return left
        return SqlFragment(f"{left.sql} AND {right.sql}", left.args + right.args)

    @staticmethod
    def join(separator: str, fragments: Iterable['SqlFragment']) -> 'SqlFragment':
        """Join the non-blank fragments with ``separator``"""
        parts = [f for f in fragments if f is not None and not f.is_blank()]
        if not parts:
            return _EMPTY
        args: Tuple[Any, ...] = ()
        for part in parts:
            args += part.args
        return SqlFragment(separator.join(p.sql for p in parts), args)

    @staticmethod
    def wrap(fragment: 'SqlFragment') -> 'SqlFragment':
        """
        Parenthesize a fragment.

        A blank fragment stays blank rather than becoming "()", so wrapping an
        absent predicate can be passed to and_() or join() unchanged.
        """
        if fragment is None or fragment.is_blank():
            return _EMPTY
        return SqlFragment(f"({fragment.sql})", fragment.args)

    @staticmethod
    def sequence(fragments: Sequence['SqlFragment']) -> 'SqlFragment':
        """Concatenate texts with single spaces and arguments in order"""
        return SqlFragment.join(' ', fragments)

    def __str__(self) -> str:
        return self.sql


_EMPTY = SqlFragment('', ())
