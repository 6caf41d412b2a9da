"""Copy recent day reports out of the versioned store during housekeeping."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

from smarttime import notify

logger = logging.getLogger(__name__)


@dataclass
class ReportExporter:
    """Export hook: mirrors ``reports/YYYY/MM/DD.json`` into *export_dir*.

    Reports older than *export_age_days* and reports already present in the
    export directory are left alone. Failures are reported, never raised.
    """

    data_dir: Path
    export_dir: Optional[Path]
    export_age_days: int = 90

    def __call__(self) -> int:
        if self.export_dir is None:
            return 0
        try:
            return self._export(self.export_dir)
        except OSError as exc:
            notify.warn(f"Failed to export time reports: {exc}")
            return 0

    def _export(self, export_dir: Path) -> int:
        reports_dir = self.data_dir / "reports"
        if not reports_dir.is_dir():
            logger.info("No reports directory found, skipping export")
            return 0

        export_dir.mkdir(parents=True, exist_ok=True)
        cutoff = date.today() - timedelta(days=self.export_age_days)
        exported = 0

        for source in sorted(reports_dir.glob("*/*/*.json")):
            month_dir = source.parent
            year_dir = month_dir.parent
            try:
                report_day = date(int(year_dir.name), int(month_dir.name), int(source.stem))
            except ValueError:
                continue
            if report_day < cutoff:
                continue

            target = export_dir / year_dir.name / month_dir.name / source.name
            if target.exists():
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            exported += 1

        logger.info("Exported %d time report(s)", exported)
        return exported
