"""
Utility helpers for the Visual Turing Test

Simple utility functions for timestamps and filenames.
"""

import re
from datetime import datetime, timezone


def utc_now_iso():
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(timestamp):
    """
    Parse an ISO 8601 string (a trailing 'Z' is accepted).

    Returns:
        datetime or None if the value is empty or unparseable
    """
    if not timestamp:
        return None
    try:
        return datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    except ValueError:
        return None


def generate_export_filename(tester, prefix="vtt_results"):
    """
    Build the download filename for a tester's export

    Runs of whitespace in the tester name become a single underscore.

    Args:
        tester (str): Tester name
        prefix (str): Filename prefix

    Returns:
        str: Generated filename

    Examples:
        >>> generate_export_filename("Dr  Ada Lovelace")
        'vtt_results_Dr_Ada_Lovelace.json'
    """
    name = re.sub(r"\s+", "_", tester or "")
    return f"{prefix}_{name}.json"
