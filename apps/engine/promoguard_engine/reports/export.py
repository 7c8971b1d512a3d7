"""JSON file export for rollup reports."""

import logging
from pathlib import Path
from typing import Union

from promoguard_engine.schemas.reports import DailyReport, MonthlySummary, WeeklyReport

logger = logging.getLogger(__name__)

Report = Union[DailyReport, WeeklyReport, MonthlySummary]


def report_filename(report: Report) -> tuple[str, str]:
    """(subdirectory, filename) for a report."""
    if isinstance(report, DailyReport):
        return "daily", f"{report.date.isoformat()}.json"
    if isinstance(report, WeeklyReport):
        return "weekly", f"week-{report.week_start.isoformat()}.json"
    if isinstance(report, MonthlySummary):
        return "monthly", f"{report.year}-{report.month:02d}.json"
    raise TypeError(f"Unsupported report type: {type(report).__name__}")


def export_report(report: Report, base_path: Union[str, Path]) -> Path:
    """Write ``report`` under ``base_path`` and return the file path.

    Re-exporting an unchanged range overwrites the file with identical bytes.
    """
    subdir, filename = report_filename(report)
    target_dir = Path(base_path) / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / filename
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Report exported", extra={"path": str(path), "kind": subdir})
    return path
