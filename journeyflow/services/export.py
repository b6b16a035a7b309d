"""CSV export of a version's leads."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Mapping
from typing import Any

from journeyflow.db.models import UserJourney

CSV_HEADERS = ("ID", "Email", "CreatedAt", "AIReport", "Variables")


def labelled_variables(
    variables: Mapping[str, Any], question_mapping: Mapping[str, str]
) -> dict[str, Any]:
    """Re-key stored variables by question text.

    Entries saved with their ``questionText`` use it; plain legacy values
    fall back to the version's question mapping, then to the raw id.
    """
    labelled: dict[str, Any] = {}
    for question_id, entry in variables.items():
        if isinstance(entry, Mapping) and "value" in entry:
            label = entry.get("questionText") or question_mapping.get(question_id, question_id)
            labelled[label] = entry["value"]
        else:
            labelled[question_mapping.get(question_id, question_id)] = entry
    return labelled


def leads_to_csv(
    journeys: Iterable[UserJourney], question_mapping: Mapping[str, str] | None = None
) -> str:
    """Render journeys as RFC 4180 CSV, one row per journey."""
    question_mapping = question_mapping or {}
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for journey in journeys:
        summary = journey.summary or {}
        variables = labelled_variables(summary.get("variables") or {}, question_mapping)
        writer.writerow(
            (
                journey.id,
                journey.email,
                journey.created_at.isoformat() if journey.created_at else "",
                summary.get("aiReport", ""),
                json.dumps(variables, ensure_ascii=False),
            )
        )
    return buffer.getvalue()
