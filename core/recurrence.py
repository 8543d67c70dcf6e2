"""
core/recurrence.py -- Next-due-date calculation for maintenance policies.

Pure functions only: no I/O, no module state, safe to call from any thread.
Month and year steps use dateutil's relativedelta, which clamps to the last
day of the target month (Jan 31 + 1 month = Feb 28/29) instead of rolling
over into March the way naive day arithmetic would.
"""

import re
from datetime import date

from dateutil.relativedelta import relativedelta

from core.errors import InvalidPolicy
from core.models import FREQUENCY_UNITS, Frequency

_FREQUENCY_RE = re.compile(r"^\s*(-?\d+)\s*([a-zA-Z]+)\s*$")


def parse_frequency(text: str) -> Frequency:
    """Parse "90 days", "6 months", "1 year" into a validated Frequency.

    Singular units are accepted and normalized to the plural form.
    Raises InvalidPolicy for anything else.
    """
    match = _FREQUENCY_RE.match(text or "")
    if match is None:
        raise InvalidPolicy(f"Unparseable frequency: {text!r}")
    count, unit = int(match.group(1)), match.group(2).lower()
    if not unit.endswith("s"):
        unit += "s"
    return validate_frequency(Frequency(count=count, unit=unit))


def validate_frequency(frequency: Frequency) -> Frequency:
    if frequency.unit not in FREQUENCY_UNITS:
        raise InvalidPolicy(f"Unknown frequency unit '{frequency.unit}' (expected one of {', '.join(FREQUENCY_UNITS)})")
    if frequency.count <= 0:
        raise InvalidPolicy(f"Frequency count must be positive, got {frequency.count}")
    return frequency


def next_due_date(last_date: date, frequency: Frequency) -> date:
    """Return last_date advanced by one frequency interval.

    The result is always strictly after last_date.
    """
    validate_frequency(frequency)
    return last_date + relativedelta(**{frequency.unit: frequency.count})


def interval_days(anchor: date, frequency: Frequency) -> int:
    """Length in days of the interval that starts at anchor."""
    return (next_due_date(anchor, frequency) - anchor).days
