"""
Display helpers and CSV / Excel export for stored report documents.

Scores are stored at full precision; rounding happens only here, at the
point of display.
"""

import csv
import html
import io
import re
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font

NOT_AVAILABLE = "N/A"

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_END_RE = re.compile(r"</(p|div|li|h[1-6])>|<br\s*/?>", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"[ \t]+")

RATER_COLUMNS = [
    ("all_raters", "All Raters"),
    ("peer", "Peer"),
    ("direct_report", "Direct Report"),
    ("supervisor", "Supervisor"),
    ("self", "Self"),
    ("other", "Other"),
]


def round_score(value: Optional[float], places: int = 2) -> Optional[float]:
    if value is None:
        return None
    return round(value, places)


def format_score(value: Optional[float]) -> str:
    """Two-decimal score, or N/A. 0 formats as 0.00, never N/A."""
    if value is None:
        return NOT_AVAILABLE
    return f"{value:.2f}"


def strip_html(text: Optional[str]) -> str:
    """Plain text from a feedback HTML snippet."""
    if not text:
        return ""
    text = _BLOCK_END_RE.sub("\n", text)
    text = html.unescape(_TAG_RE.sub("", text))
    lines = [_WHITESPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def participant_summary_label(summary: dict) -> str:
    completed, total = summary.get("completed", 0), summary.get("total", 0)
    noun = "response" if total == 1 else "responses"
    return f"{completed} of {total} {noun} received"


def participant_name(document: dict) -> str:
    """Display name of the report's subject, falling back to email."""
    return (
        document.get("subject_name")
        or document.get("subject_email")
        or document.get("target_name")
        or document.get("target_email")
        or ""
    )


def export_report_csv(document: dict) -> str:
    """Flatten a stored report document into a CSV sheet.

    Layout: a header block, one breakdown row per dimension, then a
    feedback block. Missing values are N/A.
    """
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")

    writer.writerow(["Assessment", document.get("assessment_title", "")])
    writer.writerow(["Participant", participant_name(document)])
    writer.writerow(["Group", document.get("group_name") or ""])
    writer.writerow(["Overall Score", format_score(document.get("overall_score"))])
    writer.writerow(["Responses", participant_summary_label(document.get("participant_response_summary", {}))])
    if document.get("partial"):
        writer.writerow(["Status", "Partial report: no completed responses yet"])
    writer.writerow([])

    writer.writerow(
        ["Dimension", "Code"]
        + [label for _, label in RATER_COLUMNS]
        + ["Industry Benchmark", "Geonorm", "Improvement Needed"]
    )
    for section in document.get("dimensions", []):
        breakdown = section.get("rater_breakdown", {})
        geonorm = section.get("geonorm")
        geonorm_cell = NOT_AVAILABLE
        if geonorm is not None:
            geonorm_cell = f"{format_score(geonorm)} (n={section.get('geonorm_participant_count', 0)})"
        writer.writerow(
            [section.get("dimension_name", ""), section.get("dimension_code", "")]
            + [format_score(breakdown.get(key)) for key, _ in RATER_COLUMNS]
            + [
                format_score(section.get("industry_benchmark")),
                geonorm_cell,
                "Yes" if section.get("improvement_needed") else "No",
            ]
        )

    writer.writerow([])
    writer.writerow(["Dimension", "Overall Feedback", "Specific Feedback"])
    for section in document.get("dimensions", []):
        writer.writerow(
            [
                section.get("dimension_name", ""),
                strip_html(section.get("overall_feedback")),
                strip_html(section.get("specific_feedback")),
            ]
        )
    return out.getvalue()


def _score_cell(value: Optional[float]):
    """Excel keeps real numbers; only missing values become N/A."""
    rounded = round_score(value)
    return NOT_AVAILABLE if rounded is None else rounded


def _write_sheet(sheet, header: list[str], rows: list[list], widths: list[int]) -> None:
    sheet.append(header)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in rows:
        sheet.append(row)
    sheet.freeze_panes = "A2"
    for column, width in zip(sheet.columns, widths):
        sheet.column_dimensions[column[0].column_letter].width = width


def export_report_xlsx(document: dict) -> bytes:
    """Workbook with Summary, Dimension Breakdown and Feedback sheets."""
    workbook = Workbook()

    summary = workbook.active
    summary.title = "Summary"
    summary_rows = [
        ["Assessment", document.get("assessment_title", "")],
        ["Participant", participant_name(document)],
        ["Email", document.get("subject_email") or document.get("target_email") or ""],
        ["Group", document.get("group_name") or ""],
        ["Overall Score", _score_cell(document.get("overall_score"))],
        ["Responses", participant_summary_label(document.get("participant_response_summary", {}))],
        ["Generated At", document.get("generated_at") or ""],
    ]
    if document.get("partial"):
        summary_rows.append(["Status", "Partial report: no completed responses yet"])
    _write_sheet(summary, ["Metric", "Value"], summary_rows, [30, 40])

    breakdown_rows = []
    feedback_rows = []
    for section in document.get("dimensions", []):
        name = section.get("dimension_name", "")
        breakdown = section.get("rater_breakdown", {})
        geonorm = section.get("geonorm")
        breakdown_rows.append(
            [name, section.get("dimension_code", "")]
            + [_score_cell(breakdown.get(key)) for key, _ in RATER_COLUMNS]
            + [
                _score_cell(section.get("industry_benchmark")),
                _score_cell(geonorm),
                section.get("geonorm_participant_count", 0) if geonorm is not None else 0,
                "Yes" if section.get("improvement_needed") else "No",
            ]
        )
        for kind, key in (("Overall", "overall_feedback"), ("Specific", "specific_feedback")):
            if section.get(key):
                feedback_rows.append([name, kind, strip_html(section[key])])
        for comment in section.get("text_feedback", []):
            feedback_rows.append([name, "Comment", strip_html(comment)])

    _write_sheet(
        workbook.create_sheet("Dimension Breakdown"),
        ["Dimension", "Code"]
        + [label for _, label in RATER_COLUMNS]
        + ["Industry Benchmark", "Geonorm", "Geonorm Participants", "Improvement Needed"],
        breakdown_rows,
        [30, 12] + [14] * len(RATER_COLUMNS) + [18, 12, 20, 18],
    )
    _write_sheet(
        workbook.create_sheet("Feedback"),
        ["Dimension", "Type", "Feedback"],
        feedback_rows,
        [30, 12, 80],
    )

    out = io.BytesIO()
    workbook.save(out)
    return out.getvalue()
