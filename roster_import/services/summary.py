from __future__ import annotations

from ..models.processing_result import ImportReport

"""Summary line rendering for the roster importer.

Format:
SUMMARY records={n} imported={i} failed={f} chunks={c} strategy={direct|chunked|none}
skipped_sheets={s} elapsed_sec={e}
(one line, space separated)
"""

__all__ = [
    "format_seconds",
    "render_error_details",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Plain decimal without scientific notation; integral values lose the fraction."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # Format very small numbers to avoid scientific notation
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(report: ImportReport) -> str:
    """Render the SUMMARY line for ``report``.

    >>> render_summary_line(ImportReport(total_records=3, total_imported=3, total_failed=0))
    'SUMMARY records=3 imported=3 failed=0 chunks=0 strategy=none skipped_sheets=0 elapsed_sec=0'
    """
    strategy = report.strategy.value if report.strategy is not None else "none"
    return (
        f"SUMMARY records={report.total_records} "
        f"imported={report.total_imported} "
        f"failed={report.total_failed} "
        f"chunks={report.total_chunks} "
        f"strategy={strategy} "
        f"skipped_sheets={len(report.skipped_sheets)} "
        f"elapsed_sec={format_seconds(report.elapsed_seconds)}"
    )


def render_error_details(report: ImportReport, limit: int | None = None) -> list[str]:
    """One line per failed record, with the 1-based row and sheet name."""
    errors = report.errors if limit is None else report.errors[:limit]
    lines = []
    for err in errors:
        sheet = f" sheet={err.sheet}" if err.sheet else ""
        lines.append(f"row={err.display_row}{sheet} type={err.error_type} message={err.message}")
    if limit is not None and len(report.errors) > limit:
        lines.append(f"... {len(report.errors) - limit} more error(s)")
    return lines
