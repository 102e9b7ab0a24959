"""Normalise tenant diagnostics payloads into :class:`SetupDiagnostics`."""

from __future__ import annotations

import json
from typing import Any

from tuttiud.models.enums import DiagnosticsStatus, IssueType
from tuttiud.models.setup import DiagnosticsIssue, DiagnosticsSqlSnippet, SetupDiagnostics

_ISSUE_SOURCES = (
    ("missing_tables", IssueType.TABLE),
    ("missing_policies", IssueType.POLICY),
    ("permission_issues", IssueType.PERMISSION),
    ("other_issues", IssueType.OTHER),
)

DEFAULT_SNIPPET_TITLE = "Suggested SQL"


def _map_issues(entries: Any, issue_type: IssueType) -> list[DiagnosticsIssue]:
    if not isinstance(entries, list):
        return []
    issues = []
    for entry in entries:
        if not entry:
            continue
        if isinstance(entry, str):
            description = entry
        elif isinstance(entry, dict) and "description" in entry:
            description = str(entry["description"])
        elif isinstance(entry, dict) and "name" in entry:
            description = str(entry["name"])
        else:
            description = json.dumps(entry, default=str)
        issues.append(DiagnosticsIssue(type=issue_type, description=description))
    return issues


def _normalise_snippets(sql: Any) -> list[DiagnosticsSqlSnippet]:
    if not sql:
        return []
    if isinstance(sql, str):
        return [DiagnosticsSqlSnippet(title=DEFAULT_SNIPPET_TITLE, sql=sql)]
    if isinstance(sql, dict) and "sql" in sql:
        title = sql.get("title") if isinstance(sql.get("title"), str) else DEFAULT_SNIPPET_TITLE
        return [DiagnosticsSqlSnippet(title=title, sql=str(sql["sql"]))]
    if isinstance(sql, list):
        snippets = []
        for index, entry in enumerate(sql, start=1):
            if not entry:
                continue
            fallback_title = f"SQL statement {index}"
            if isinstance(entry, str):
                snippets.append(DiagnosticsSqlSnippet(title=fallback_title, sql=entry))
            elif isinstance(entry, dict) and "sql" in entry:
                title = entry.get("title") if isinstance(entry.get("title"), str) else fallback_title
                snippets.append(DiagnosticsSqlSnippet(title=title, sql=str(entry["sql"])))
            else:
                snippets.append(DiagnosticsSqlSnippet(title=fallback_title, sql=json.dumps(entry, default=str)))
        return snippets
    return []


def _from_check_rows(rows: list) -> SetupDiagnostics:
    # Rows shaped (check_name, success, details), as returned by the shipped SQL function
    failed = [row for row in rows if isinstance(row, dict) and not row.get("success")]
    issues = [
        DiagnosticsIssue(
            type=IssueType.OTHER,
            description=str(row.get("details") or row.get("check_name") or json.dumps(row, default=str)),
        )
        for row in failed
    ]
    if failed:
        return SetupDiagnostics(
            status=DiagnosticsStatus.ERROR,
            summary=f"{len(failed)} of {len(rows)} setup checks failed.",
            issues=issues,
            raw=rows,
        )
    return SetupDiagnostics(
        status=DiagnosticsStatus.OK,
        summary=f"All {len(rows)} setup checks passed.",
        raw=rows,
    )


def normalise_diagnostics(payload: Any) -> SetupDiagnostics:
    """Normalise a raw diagnostics RPC result."""
    if not payload:
        return SetupDiagnostics(
            status=DiagnosticsStatus.OK,
            summary="Diagnostics finished without findings.",
            raw=payload,
        )

    if isinstance(payload, list):
        return _from_check_rows(payload)

    if not isinstance(payload, dict):
        return SetupDiagnostics(
            status=DiagnosticsStatus.WARNING,
            summary="Diagnostics returned an unrecognised payload.",
            raw=payload,
        )

    raw_status = payload.get("status")
    try:
        status = DiagnosticsStatus(raw_status)
    except ValueError:
        status = DiagnosticsStatus.WARNING

    summary = payload.get("summary")
    if not isinstance(summary, str):
        summary = (
            "Everything looks good. You can continue."
            if status is DiagnosticsStatus.OK
            else "Some items need attention."
        )

    issues: list[DiagnosticsIssue] = []
    for key, issue_type in _ISSUE_SOURCES:
        issues.extend(_map_issues(payload.get(key), issue_type))

    sql = payload.get("suggested_sql")
    if sql is None:
        sql = payload.get("sql")

    return SetupDiagnostics(
        status=status,
        summary=summary,
        issues=issues,
        sql_snippets=_normalise_snippets(sql),
        raw=payload,
    )


def missing_function_diagnostics(function_name: str) -> SetupDiagnostics:
    """Advisory result used when the diagnostics RPC is not installed."""
    return SetupDiagnostics(
        status=DiagnosticsStatus.WARNING,
        summary=f"The {function_name} function is not installed; diagnostics were skipped.",
        raw={"missingFunction": True},
    )
