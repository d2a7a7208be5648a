#!/usr/bin/env python3
"""
Tests for time window parsing and epoch conversion.
"""

import unittest
from datetime import date, datetime, timezone

from flowpivot.core.errors import ErrorCode, ValidationError
from flowpivot.core.time_utils import TimeWindow, epoch_millis


class TestTimeWindow(unittest.TestCase):
    """Test cases for TimeWindow"""

    def test_from_dict(self):
        window = TimeWindow.from_dict({'field': ' ts ', 'fromEpoch': '10', 'toEpoch': 20})
        self.assertEqual(window.field, 'ts')
        self.assertEqual(window.from_epoch, 10.0)
        self.assertEqual(window.to_epoch, 20)
        self.assertTrue(window.inclusive)
        self.assertIsNone(TimeWindow.from_dict(None))

    def test_to_dict(self):
        window = TimeWindow(1, 2, 'ts', False)
        self.assertEqual(window.to_dict(), {'field': 'ts', 'fromEpoch': 1, 'toEpoch': 2, 'inclusive': False})

    def test_invalid_windows(self):
        for data in ({'fromEpoch': 5, 'toEpoch': 4}, {}, {'fromEpoch': True}, {'toEpoch': float('nan')}, [],
                     {'fromEpoch': 1, 'toEpoch': 2, 'inclusive': 'false'},
                     {'fromEpoch': 1, 'toEpoch': 2, 'inclusive': 0}):
            with self.assertRaises(ValidationError) as ctx:
                TimeWindow.from_dict(data)
            self.assertIs(ctx.exception.code, ErrorCode.INVALID_TIME_WINDOW)

    def test_predicate(self):
        fragment = TimeWindow(1, 2).predicate('t."ts"')
        self.assertEqual(fragment.sql, 't."ts" BETWEEN ? AND ?')
        self.assertEqual(fragment.args, (1, 2))


class TestEpochMillis(unittest.TestCase):
    """Test cases for epoch_millis"""

    def test_numbers_are_floored(self):
        self.assertEqual(epoch_millis(1.2345), 1234)
        self.assertEqual(epoch_millis(60), 60000)
        self.assertIsNone(epoch_millis(None))

    def test_datetimes(self):
        self.assertEqual(epoch_millis(datetime(1970, 1, 1, 0, 1, tzinfo=timezone.utc)), 60000)
        self.assertEqual(epoch_millis(datetime(1970, 1, 1, 0, 1)), 60000)
        self.assertEqual(epoch_millis(date(1970, 1, 2)), 86400000)


if __name__ == '__main__':
    unittest.main()
