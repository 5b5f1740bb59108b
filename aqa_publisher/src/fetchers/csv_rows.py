"""Strict CSV decoding shared by the FRED and NY Fed fetchers.

Both providers publish a header row followed by one row per business day.
Rows are read strictly: a missing column or a row with the wrong number of
fields fails the whole response rather than being skipped.
"""

import csv
import io
from datetime import date

from ..scaling import parse_date, percent_to_scaled
from .base import FetcherParseError

# Placeholders providers use for "no value published on this day".
MISSING_VALUES = frozenset({"", "."})


def parse_rate_rows(
    body: str,
    date_column: str,
    value_column: str,
    *,
    allow_missing: bool = True,
) -> dict[date, int]:
    """Decode ``(date, rate)`` rows from a CSV body.

    :param body: CSV text including the header row.
    :param date_column: Header of the date column.
    :param value_column: Header of the percent value column.
    :param allow_missing: Skip rows whose value is empty or ``.``; when False
        such rows fail the parse.
    :returns: Scaled rates keyed by date.
    :raises FetcherParseError: On missing columns, ragged rows or bad values.
    """
    reader = csv.reader(io.StringIO(body.strip()))
    try:
        header = [h.strip() for h in next(reader)]
    except StopIteration:
        raise FetcherParseError("empty CSV response") from None

    missing = [c for c in (date_column, value_column) if c not in header]
    if missing:
        raise FetcherParseError(f"CSV missing columns {missing}; header={header}")

    date_idx = header.index(date_column)
    value_idx = header.index(value_column)

    rows: dict[date, int] = {}
    for line_no, row in enumerate(reader, start=2):
        if not row:
            continue
        if len(row) != len(header):
            raise FetcherParseError(
                f"CSV line {line_no}: expected {len(header)} fields, got {len(row)}"
            )

        raw_value = row[value_idx].strip()
        if raw_value in MISSING_VALUES:
            if allow_missing:
                continue
            raise FetcherParseError(f"CSV line {line_no}: missing {value_column!r}")

        try:
            rows[parse_date(row[date_idx])] = percent_to_scaled(raw_value)
        except ValueError as e:
            raise FetcherParseError(f"CSV line {line_no}: {e}") from e

    return rows


def latest_rate(rows: dict[date, int]) -> tuple[date, int]:
    """Pick the most recent ``(date, rate)``; providers differ on row order.

    :raises FetcherParseError: If there are no rows.
    """
    if not rows:
        raise FetcherParseError("no observation found in CSV")
    latest = max(rows)
    return latest, rows[latest]
