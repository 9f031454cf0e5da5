"""Utility functions for firedragon."""

from firedragon.utils.date_parser import parse_date, parse_datetime, parse_duration
from firedragon.utils.amount_parser import format_amount, parse_amount, parse_rate

__all__ = [
    "parse_date",
    "parse_datetime",
    "parse_duration",
    "parse_amount",
    "parse_rate",
    "format_amount",
]
