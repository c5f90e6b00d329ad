"""
Test Units Module
=================
Unit tests cho quantity / duration parsing.
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scaling_engine.units import (
    ConfigurationError,
    parse_quantity,
    parse_duration,
    format_cpu,
    format_memory,
)


class TestParseQuantity:
    """Test cases cho parse_quantity."""

    def test_millicores(self):
        """Test CPU millicores."""
        assert parse_quantity("100m") == pytest.approx(0.1)
        assert parse_quantity("1500m") == pytest.approx(1.5)

    def test_plain_numbers(self):
        """Test số không có suffix."""
        assert parse_quantity("2") == 2.0
        assert parse_quantity(0.5) == 0.5
        assert parse_quantity(3) == 3.0

    def test_binary_suffixes(self):
        """Test Ki / Mi / Gi."""
        assert parse_quantity("512Mi") == 512 * 2 ** 20
        assert parse_quantity("1Gi") == 2 ** 30
        assert parse_quantity("4Ki") == 4096

    def test_decimal_suffixes(self):
        """Test k / M / G."""
        assert parse_quantity("100M") == pytest.approx(1e8)
        assert parse_quantity("1G") == pytest.approx(1e9)

    def test_exponent(self):
        """Test scientific notation."""
        assert parse_quantity("1e3") == pytest.approx(1000.0)

    def test_invalid(self):
        """Test format không hợp lệ."""
        with pytest.raises(ConfigurationError):
            parse_quantity("abc")
        with pytest.raises(ConfigurationError):
            parse_quantity("10Xi")
        with pytest.raises(ConfigurationError):
            parse_quantity(True)

    def test_configuration_error_is_value_error(self):
        """ConfigurationError là ValueError."""
        with pytest.raises(ValueError):
            parse_quantity("")


class TestParseDuration:
    """Test cases cho parse_duration."""

    def test_units(self):
        """Test các đơn vị."""
        assert parse_duration("30s") == 30.0
        assert parse_duration("10m") == 600.0
        assert parse_duration("1h") == 3600.0
        assert parse_duration("500ms") == pytest.approx(0.5)

    def test_compound(self):
        """Test duration kết hợp."""
        assert parse_duration("1h30m") == 5400.0
        assert parse_duration("2m30s") == 150.0

    def test_numbers(self):
        """Số được hiểu là seconds."""
        assert parse_duration(90) == 90.0
        assert parse_duration("90") == 90.0

    def test_invalid(self):
        """Test format không hợp lệ."""
        with pytest.raises(ConfigurationError):
            parse_duration("10x")
        with pytest.raises(ConfigurationError):
            parse_duration("m10")
        with pytest.raises(ConfigurationError):
            parse_duration(-5)


class TestFormatting:
    """Test format helpers."""

    def test_format_cpu(self):
        assert format_cpu(0.25) == "250m"
        assert format_cpu(1) == "1000m"

    def test_format_memory(self):
        assert format_memory(512 * 2 ** 20) == "512Mi"
