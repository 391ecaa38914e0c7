"""Utility functions for ronin-onvif."""

from ronin_onvif.utils.timezone import (
    ensure_utc,
    format_duration,
    parse_duration,
    parse_xsd_datetime,
    to_datetime,
    to_utc_isoformat,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "to_utc_isoformat",
    "parse_xsd_datetime",
    "to_datetime",
    "parse_duration",
    "format_duration",
]
