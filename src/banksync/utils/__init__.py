"""Utility functions for banksync."""

from banksync.utils.date_parser import parse_date, parse_timestamp, utcnow
from banksync.utils.amount_parser import parse_amount, to_minor_units

__all__ = ["parse_date", "parse_timestamp", "utcnow", "parse_amount", "to_minor_units"]
