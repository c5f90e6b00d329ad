"""
Units Module
============
Parse Kubernetes quantities và durations từ manifest / flags.

Định dạng hỗ trợ:
    - CPU: "100m" -> 0.1 cores, "2" -> 2.0 cores
    - Memory: "512Mi", "1Gi", "100M", "1e9" -> bytes
    - Duration: "30s", "10m", "1h", "1h30m", "90" (seconds)

Usage:
    >>> parse_quantity("100m")
    0.1
    >>> parse_quantity("512Mi")
    536870912.0
    >>> parse_duration("10m")
    600.0
"""

import re
from typing import Union


class ConfigurationError(ValueError):
    """Configuration không hợp lệ - reject ngay khi attach, không retry."""


# Binary và decimal suffixes theo Kubernetes resource.Quantity
BINARY_SUFFIXES = {
    'Ki': 2 ** 10,
    'Mi': 2 ** 20,
    'Gi': 2 ** 30,
    'Ti': 2 ** 40,
    'Pi': 2 ** 50,
    'Ei': 2 ** 60,
}

DECIMAL_SUFFIXES = {
    'n': 1e-9,
    'u': 1e-6,
    'm': 1e-3,
    '': 1.0,
    'k': 1e3,
    'M': 1e6,
    'G': 1e9,
    'T': 1e12,
    'P': 1e15,
    'E': 1e18,
}

QUANTITY_PATTERN = re.compile(r'^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)([a-zA-Z]*)$')

DURATION_PATTERN = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h)')

DURATION_UNITS = {'ms': 0.001, 's': 1.0, 'm': 60.0, 'h': 3600.0}


def parse_quantity(value: Union[str, int, float]) -> float:
    """
    Parse một Kubernetes quantity thành float.

    Args:
        value: Quantity (vd: "100m", "512Mi", 2)

    Returns:
        Giá trị float (cores cho CPU, bytes cho memory)

    Raises:
        ConfigurationError: Nếu format không đúng
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    match = QUANTITY_PATTERN.match(text)
    if not match:
        raise ConfigurationError(f"Invalid quantity: {value!r}")

    number, suffix = match.groups()
    if suffix in BINARY_SUFFIXES:
        return float(number) * BINARY_SUFFIXES[suffix]
    if suffix in DECIMAL_SUFFIXES:
        return float(number) * DECIMAL_SUFFIXES[suffix]

    raise ConfigurationError(f"Unknown quantity suffix '{suffix}' in {value!r}")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse duration (Go-style "10m", "1h30m" hoặc số giây) thành seconds.

    Args:
        value: Duration string hoặc số giây

    Returns:
        Số giây (float)

    Raises:
        ConfigurationError: Nếu format không đúng hoặc âm
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            parts = DURATION_PATTERN.findall(text)
            if not parts or ''.join(n + u for n, u in parts) != text:
                raise ConfigurationError(f"Invalid duration: {value!r}")
            seconds = sum(float(n) * DURATION_UNITS[u] for n, u in parts)

    if seconds < 0:
        raise ConfigurationError(f"Duration must not be negative: {value!r}")
    return seconds


def format_cpu(cores: float) -> str:
    """Format CPU cores thành millicores string (vd: 0.25 -> '250m')."""
    return f"{int(round(cores * 1000))}m"


def format_memory(num_bytes: float) -> str:
    """Format bytes thành Mi string."""
    return f"{int(round(num_bytes / BINARY_SUFFIXES['Mi']))}Mi"
