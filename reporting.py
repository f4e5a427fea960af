#!/usr/bin/env python3
"""
Wallpaper Downloader - Reporting

Per-run statistics and the summary logged at the end of a download run.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from downloader import UrlOutcome

logger = logging.getLogger("wallpaper_dl")


@dataclass
class RunStats:
    """Complete download run statistics."""
    # Timing
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Input
    invalid_urls: list[str] = field(default_factory=list)
    known_urls: list[str] = field(default_factory=list)  # skipped by the source pre-check

    # One outcome per dispatched URL
    outcomes: list["UrlOutcome"] = field(default_factory=list)

    # Persistence (None = not attempted)
    database_saved: Optional[bool] = None
    config_saved: Optional[bool] = None

    @property
    def duration_sec(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def state_counts(self) -> Counter:
        """Terminal state -> number of URLs."""
        return Counter(outcome.state.value for outcome in self.outcomes)

    @property
    def files_saved(self) -> int:
        return sum(1 for o in self.outcomes for f in o.files if not f.duplicate)

    @property
    def files_duplicate(self) -> int:
        return sum(1 for o in self.outcomes for f in o.files if f.duplicate)

    @property
    def files_failed(self) -> int:
        return sum(len(o.file_errors) for o in self.outcomes)

    @property
    def persisted(self) -> bool:
        """False only if a save was attempted and failed."""
        return self.database_saved is not False and self.config_saved is not False


def _format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def generate_report(stats: RunStats) -> dict[str, Any]:
    """
    Build a report dictionary from run statistics.

    Args:
        stats: RunStats of a finished run.

    Returns:
        Report as dictionary.
    """
    return {
        "run": {
            "start": stats.start_time.isoformat() if stats.start_time else None,
            "end": stats.end_time.isoformat() if stats.end_time else None,
            "duration": _format_duration(stats.duration_sec),
        },
        "urls": {
            "dispatched": len(stats.outcomes),
            "already_downloaded": len(stats.known_urls),
            "invalid": len(stats.invalid_urls),
            "by_state": dict(sorted(stats.state_counts().items())),
        },
        "files": {
            "saved": stats.files_saved,
            "duplicates": stats.files_duplicate,
            "failed": stats.files_failed,
        },
        "failures": {
            outcome.url: outcome.errors
            for outcome in stats.outcomes
            if outcome.errors
        },
        "persisted": stats.persisted,
    }


def log_summary(stats: RunStats) -> dict[str, Any]:
    """Log a formatted summary of the run and return the report."""
    report = generate_report(stats)
    urls, files = report["urls"], report["files"]

    lines = [
        "",
        "=" * 60,
        "DOWNLOAD SUMMARY",
        "=" * 60,
        f"  URLs dispatched:      {urls['dispatched']}",
        f"  Already downloaded:   {urls['already_downloaded']}",
        f"  Invalid:              {urls['invalid']}",
    ]
    for state, count in urls["by_state"].items():
        lines.append(f"    - {state.replace('_', ' ').title():20} {count}")

    lines.extend([
        "",
        f"  Files saved:          {files['saved']}",
        f"  Duplicates:           {files['duplicates']}",
        f"  Files failed:         {files['failed']}",
        f"  Duration:             {report['run']['duration']}",
    ])

    if report["failures"]:
        lines.extend(["", "❌ FAILURES", "-" * 60])
        for url, errors in report["failures"].items():
            lines.append(f"  {url}")
            lines.extend(f"    {error}" for error in errors)

    lines.append("=" * 60)
    logger.info("\n".join(lines))
    return report
