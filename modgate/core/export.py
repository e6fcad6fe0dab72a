"""Session export (JSON document or CSV of analysis rows)."""

from __future__ import annotations

import csv
import io
from typing import Any

from modgate.core.models import CATEGORIES, ActionType, AnalysisRecord, utc_now

EXPORT_FORMATS: tuple[str, ...] = ("json", "csv")

CSV_COLUMNS: tuple[str, ...] = (
    "analysis_id",
    "content_id",
    "content_type",
    "action",
    "severity",
    "enforced",
    "triggered_category",
    *CATEGORIES,
    "overall_risk",
    "confidence",
    "cached",
    "degraded",
    "processing_time_ms",
    "timestamp",
)


def export_document(info: dict[str, Any], statistics: dict[str, Any], records: list[AnalysisRecord]) -> dict[str, Any]:
    """``records`` oldest first."""

    return {
        "session": info,
        "statistics": statistics,
        "analysis_results": [record.to_payload() for record in records],
        "actions": [
            {
                "analysis_id": record.analysis_id,
                "content_id": record.item.content_id,
                **record.action.model_dump(mode="json"),
                "filtered_content": record.filtered_content,
                "user_notified": record.user_notified,
                "timestamp": record.created_at.isoformat(),
            }
            for record in records
            if record.action.action is not ActionType.ALLOW
        ],
        "export_timestamp": utc_now().isoformat(),
        "total_items": len(records),
    }


def _csv_row(record: AnalysisRecord) -> dict[str, Any]:
    row: dict[str, Any] = {
        "analysis_id": record.analysis_id,
        "content_id": record.item.content_id,
        "content_type": record.item.content_type,
        "action": record.action.action.value,
        "severity": record.action.severity.value,
        "enforced": record.action.enforced,
        "triggered_category": record.action.triggered_category or "",
        "overall_risk": record.scores.overall_risk,
        "confidence": record.scores.confidence,
        "cached": record.cached,
        "degraded": record.degraded,
        "processing_time_ms": round(record.processing_time_ms, 2),
        "timestamp": record.created_at.isoformat(),
    }
    row.update(record.scores.categories())
    return row


def records_to_csv(records: list[AnalysisRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(CSV_COLUMNS), lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow(_csv_row(record))
    return buffer.getvalue()
