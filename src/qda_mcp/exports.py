"""Project, codebook and research-data exports.

- Project JSON: ``{exportedAt, documents, codes, themes, excerpts, memos}``,
  re-importable by ``import_project``.
- Code CSV: one row per code with its statistics and parent name.
- Research CSV: one row per analytics entry plus a summary block.
"""

import csv
import io
import json
import logging

from qda_mcp.store import QDAStore, StudyController
from qda_mcp.store.errors import ProjectImportError, ValidationError
from qda_mcp.store.models import Code, Document, Excerpt, Memo, Theme, encode_datetime, utcnow

logger = logging.getLogger(__name__)

PROJECT_COLLECTIONS = ("documents", "codes", "themes", "excerpts", "memos")

CODE_CSV_HEADER = ["Code", "Frequency", "Document Count", "Level", "Parent"]

RESEARCH_CSV_HEADER = [
    "Timestamp",
    "Participant ID",
    "Action",
    "Document ID",
    "Excerpt ID",
    "Code ID",
    "Code Name",
    "AI Suggestion",
    "AI Accepted",
    "Duration",
    "Excerpt Length",
]


def _csv_text(rows: list[list], quoting: int = csv.QUOTE_MINIMAL) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=quoting, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def export_project(controller: StudyController) -> str:
    """Serialize one study's five collections as pretty-printed JSON."""
    study = controller.snapshot()
    project = {
        "exportedAt": encode_datetime(utcnow()),
        "documents": [d.to_dict() for d in study.documents.values()],
        "codes": [c.to_dict() for c in study.codes.values()],
        "themes": [t.to_dict() for t in study.themes.values()],
        "excerpts": [e.to_dict() for e in study.excerpts.values()],
        "memos": [m.to_dict() for m in study.memos.values()],
    }
    return json.dumps(project, indent=2, ensure_ascii=False)


def import_project(controller: StudyController, json_string: str) -> dict:
    """Replace a study's collections with an exported project.

    Missing collections default to empty. Code statistics are rebuilt from
    the imported excerpts.

    Returns:
        Dict with the number of imported entities per collection.

    Raises:
        ProjectImportError: If the JSON is malformed or references are broken.
            The study is left untouched.
    """
    try:
        project = json.loads(json_string)
    except json.JSONDecodeError as e:
        logger.error("Failed to import project: invalid JSON (%s)", e)
        raise ProjectImportError(f"Invalid project JSON: {e}") from e

    if not isinstance(project, dict):
        logger.error("Failed to import project: top level is not an object")
        raise ProjectImportError("Project JSON must be an object")

    try:
        documents = [Document.from_dict(d) for d in project.get("documents") or []]
        codes = [Code.from_dict(c) for c in project.get("codes") or []]
        themes = [Theme.from_dict(t) for t in project.get("themes") or []]
        excerpts = [Excerpt.from_dict(e) for e in project.get("excerpts") or []]
        memos = [Memo.from_dict(m) for m in project.get("memos") or []]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.error("Failed to import project: %s", e)
        raise ProjectImportError(f"Malformed project entry: {e}") from e

    try:
        controller.replace_collections(documents, codes, themes, excerpts, memos)
    except ValidationError as e:
        logger.error("Failed to import project: %s", e)
        raise ProjectImportError(str(e)) from e

    counts = {
        "documents": len(documents),
        "codes": len(codes),
        "themes": len(themes),
        "excerpts": len(excerpts),
        "memos": len(memos),
    }
    logger.info("Imported project into study %s: %s", controller.study_id, counts)
    return counts


def export_codes_csv(controller: StudyController) -> str:
    """Codebook as CSV: name, frequency, document count, level, parent name."""
    codes = controller.list_codes()
    names = {code.id: code.name for code in codes}
    rows = [
        [
            code.name,
            code.frequency,
            code.document_count,
            code.level,
            names.get(code.parent_id, "") if code.parent_id else "",
        ]
        for code in codes
    ]
    return _csv_text([CODE_CSV_HEADER]) + _csv_text(rows, quoting=csv.QUOTE_NONNUMERIC)


def _research_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def export_research_csv(store: QDAStore, workspace_id: str) -> str:
    """Analytics log of one workspace as CSV, followed by summary metrics.

    The summary block is only written when the workspace is in research mode
    with a participant id.
    """
    workspace = store.get_workspace(workspace_id)
    metrics = store.get_research_metrics(workspace_id)

    rows = []
    for log in store.analytics_logs(workspace_id):
        details = log.details
        rows.append([
            encode_datetime(log.timestamp),
            _research_cell(log.participant_id),
            log.action,
            _research_cell(details.get("documentId")),
            _research_cell(details.get("excerptId")),
            _research_cell(details.get("codeId")),
            _research_cell(details.get("codeName")),
            _research_cell(details.get("aiSuggestion")),
            _research_cell(details.get("suggestionAccepted")),
            _research_cell(details.get("duration")),
            _research_cell(details.get("excerptLength")),
        ])

    text = _csv_text([RESEARCH_CSV_HEADER]) + _csv_text(rows, quoting=csv.QUOTE_ALL)

    if metrics is not None:
        summary = [
            ["Participant ID", metrics.participant_id],
            ["Total Excerpts", metrics.total_excerpts],
            ["Total Codes", metrics.total_codes],
            ["Unique Codes", metrics.unique_codes],
            ["Coding Speed (per hour)", f"{metrics.coding_speed:.2f}"],
            ["AI Enabled", "Yes" if workspace.ai_enabled else "No"],
            ["AI Suggestions Requested", metrics.ai_suggestions_requested],
            ["AI Suggestions Accepted", metrics.ai_suggestions_accepted],
            ["AI Acceptance Rate", f"{metrics.ai_acceptance_rate * 100:.1f}%"],
            ["Total Active Time (minutes)", f"{metrics.total_active_time / 60000:.2f}"],
            [
                "Average Time Per Excerpt (seconds)",
                f"{metrics.average_time_per_excerpt / 1000:.2f}",
            ],
            ["Documents Processed", metrics.documents_processed],
            ["Total Text Coded (characters)", metrics.total_text_coded],
        ]
        text += "\nSUMMARY METRICS\n" + _csv_text(summary)

    return text
