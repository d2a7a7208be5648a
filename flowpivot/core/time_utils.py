#!/usr/bin/env python3
"""
Time window handling.
Parses the client's ``time`` object and compiles it to a predicate on the time column.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Union
import math

from .errors import ValidationError, ErrorCode
from .fragment import SqlFragment
from ..sql.expressions import epoch_expr

Number = Union[int, float]


def _epoch_value(raw: Any, name: str) -> Optional[Number]:
    if raw is None or raw == '':
        return None
    if isinstance(raw, bool):
        raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, f"{name} must be a number")
    if isinstance(raw, (int, float)):
        value = raw
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, f"{name} must be a number, got {raw!r}")
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, f"{name} must be finite")
    return value


@dataclass(frozen=True)
class TimeWindow:
    """Epoch-second bounds on a time column; the field defaults to the layer's"""
    from_epoch: Optional[Number] = None
    to_epoch: Optional[Number] = None
    field: Optional[str] = None
    inclusive: bool = True

    def __post_init__(self):
        if self.from_epoch is None and self.to_epoch is None:
            raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, 'fromEpoch or toEpoch is required')
        if (self.from_epoch is not None and self.to_epoch is not None
                and self.from_epoch > self.to_epoch):
            raise ValidationError(
                ErrorCode.INVALID_TIME_WINDOW,
                f"fromEpoch {self.from_epoch} is after toEpoch {self.to_epoch}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['TimeWindow']:
        """Parse ``{field?, fromEpoch, toEpoch, inclusive?}``; None stays None"""
        if data is None:
            return None
        if isinstance(data, TimeWindow):
            return data
        if not isinstance(data, dict):
            raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, 'time must be a JSON object')
        field = data.get('field')
        if field is not None and not isinstance(field, str):
            raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, 'time.field must be a string')
        inclusive = data.get('inclusive')
        if inclusive is not None and not isinstance(inclusive, bool):
            raise ValidationError(ErrorCode.INVALID_TIME_WINDOW, 'time.inclusive must be a boolean')
        return cls(
            from_epoch=_epoch_value(data.get('fromEpoch'), 'fromEpoch'),
            to_epoch=_epoch_value(data.get('toEpoch'), 'toEpoch'),
            field=field.strip() if field and field.strip() else None,
            inclusive=True if inclusive is None else inclusive,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'fromEpoch': self.from_epoch,
            'toEpoch': self.to_epoch,
            'inclusive': self.inclusive,
        }

    def predicate(self, col: str, kind: Optional[str] = None) -> SqlFragment:
        """
        Compile to a predicate on an allow-listed column expression.

        Both bounds give BETWEEN (or strict bounds when not inclusive),
        a single bound gives >= / <=.
        """
        expr = epoch_expr(col, kind)
        if self.from_epoch is not None and self.to_epoch is not None:
            if self.inclusive:
                return SqlFragment.of(f"{expr} BETWEEN ? AND ?", [self.from_epoch, self.to_epoch])
            return SqlFragment.of(f"{expr} > ? AND {expr} < ?", [self.from_epoch, self.to_epoch])
        if self.from_epoch is not None:
            op = '>=' if self.inclusive else '>'
            return SqlFragment.of(f"{expr} {op} ?", [self.from_epoch])
        op = '<=' if self.inclusive else '<'
        return SqlFragment.of(f"{expr} {op} ?", [self.to_epoch])


def epoch_millis(value: Any) -> Optional[int]:
    """Epoch seconds (number or datetime) to integer milliseconds, floored"""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.timestamp()
    elif isinstance(value, date):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()
    return int(math.floor(float(value) * 1000))
