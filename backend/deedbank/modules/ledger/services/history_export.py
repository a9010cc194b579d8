from __future__ import annotations

import csv
from datetime import datetime
from decimal import Decimal
import io
from typing import Iterable

from sqlalchemy.orm import Session

from deedbank.core.clock import AsUtc
from deedbank.modules.ledger.services.ledger_service import GetHistory, HistoryEntry

HISTORY_CSV_HEADER = [
    "entry_type",
    "points",
    "dollar_value",
    "note",
    "occurred_at",
    "recorded_by",
]
HISTORY_CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


def FormatTimestamp(value: datetime) -> str:
    return AsUtc(value).isoformat()


def FormatDollars(value: Decimal) -> str:
    # Fixed-point keeps every digit and never switches to exponent notation.
    return format(value, "f")


def RenderHistoryCsv(entries: Iterable[HistoryEntry]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(HISTORY_CSV_HEADER)
    for entry in entries:
        writer.writerow(
            [
                entry.EntryType,
                entry.Points,
                FormatDollars(entry.DollarValue),
                entry.Note or "",
                FormatTimestamp(entry.OccurredAt),
                entry.RecordedBy,
            ]
        )
    return output.getvalue()


def ExportHistoryCsv(db: Session, child_id: int) -> str:
    return RenderHistoryCsv(GetHistory(db, child_id))


def HistoryCsvFilename(child_id: int) -> str:
    return f"child-{child_id}-history.csv"
