"""
Unit Tests for Log Timestamps
"""

from datetime import datetime, timedelta, timezone

import pytest

from tracker.parsers.components.timestamps import (
    extract_timestamp, format_log_timestamp, parse_log_timestamp, replace_timestamp, shift_timestamps,
)
from tracker.utils.exceptions import ParserException, TimestampParseError


class TestParseLogTimestamp:
    """Test engine timestamp parsing"""

    def test_full_timestamp(self):
        """Test a three digit millisecond part"""
        assert parse_log_timestamp('2025.10.04-14.31.05:706') == datetime(
            2025, 10, 4, 14, 31, 5, 706000, tzinfo=timezone.utc)

    @pytest.mark.parametrize('raw, millis', [
        ('2025.10.04-15.23.38:7', 7),
        ('2025.10.04-15.23.38:79', 79),
        ('2025.10.04-15.23.38:790', 790),
    ])
    def test_millisecond_digits_taken_literally(self, raw, millis):
        """Test one, two and three digit millisecond parts"""
        parsed = parse_log_timestamp(raw)
        assert parsed.microsecond == millis * 1000
        assert parsed.second == 38

    def test_result_is_utc(self):
        assert parse_log_timestamp('2025.10.04-14.31.05:706').tzinfo == timezone.utc

    @pytest.mark.parametrize('raw', [
        '2025.10.04-14.31.05',
        '2025.10.04-14.31.05:7060',
        '2025.10.04-14.31.05:abc',
        '2025.13.04-14.31.05:706',
        'not a timestamp',
        '',
        None,
    ])
    def test_invalid_timestamps_raise(self, raw):
        """Test that malformed input raises TimestampParseError"""
        with pytest.raises(TimestampParseError):
            parse_log_timestamp(raw)

    def test_error_is_a_parser_exception(self):
        with pytest.raises(ParserException):
            parse_log_timestamp('bad')


class TestTimestampRewriting:
    """Test timestamp formatting and rebasing helpers"""

    def test_format_pads_milliseconds(self):
        dt = datetime(2025, 10, 4, 14, 31, 5, 7000, tzinfo=timezone.utc)
        assert format_log_timestamp(dt) == '2025.10.04-14.31.05:007'

    def test_extract_timestamp(self):
        line = '[2025.10.04-14.31.05:706][800]LogGameplayEvents: Display: Game over'
        assert extract_timestamp(line) == '2025.10.04-14.31.05:706'
        assert extract_timestamp('Log file open, 10/04/25 13:46:20') is None

    def test_replace_timestamp_keeps_message(self):
        line = '[2025.10.04-14.31.05:706][800]LogGameplayEvents: Display: Game over'
        new_time = datetime(2026, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc)
        assert replace_timestamp(line, new_time) == \
            '[2026.01.02-03.04.05:600][800]LogGameplayEvents: Display: Game over'

    def test_replace_timestamp_ignores_header_lines(self):
        line = 'Log file open, 10/04/25 13:46:20'
        assert replace_timestamp(line, datetime.now(timezone.utc)) == line

    def test_shift_timestamps_preserves_spacing(self):
        """Test rebasing a recorded log onto a new start time"""
        lines = [
            'Log file open, 10/04/25 13:46:20',
            '[2025.10.04-13.46.26:141][  0]LogLoad: LoadMap: /Game/Maps/Canyon/Canyon',
            '[2025.10.04-13.46.36:141][ 10]LogGameplayEvents: Display: Game over',
        ]
        base = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        shifted = shift_timestamps(lines, base)

        assert shifted[0] == lines[0]
        assert parse_log_timestamp(extract_timestamp(shifted[1])) == base
        assert parse_log_timestamp(extract_timestamp(shifted[2])) == base + timedelta(seconds=10)

    def test_shift_timestamps_without_timestamps(self):
        lines = ['no timestamps here']
        assert shift_timestamps(lines, datetime.now(timezone.utc)) == lines
