"""
Export service for tag statistics.
"""
import json
import logging
from pathlib import Path
from typing import Iterable, List

import pandas as pd

from tradetags.core.models import TagAnalytics, TagIndexEntry

logger = logging.getLogger(__name__)


def entries_to_dataframe(entries: Iterable[TagIndexEntry]) -> pd.DataFrame:
    """
    Flatten index entries into one row per tag.

    Columns: tag, count, last_used, total_trades, win_rate, average_pnl,
    total_pnl, profit_factor.
    """
    rows = []
    for entry in entries:
        performance = entry.performance
        rows.append({
            "tag": entry.tag,
            "count": entry.count,
            "last_used": entry.last_used.isoformat() if entry.last_used else None,
            "total_trades": performance.total_trades,
            "win_rate": round(performance.win_rate, 2),
            "average_pnl": round(performance.average_pnl, 2),
            "total_pnl": round(performance.total_pnl, 2),
            "profit_factor": round(performance.profit_factor, 2),
        })
    columns = ["tag", "count", "last_used", "total_trades", "win_rate",
               "average_pnl", "total_pnl", "profit_factor"]
    return pd.DataFrame(rows, columns=columns)


class TagExporter:
    """
    Exports tag statistics to CSV or JSON.
    """

    def export_csv(self, entries: Iterable[TagIndexEntry], output_path: Path) -> Path:
        """
        Write per-tag statistics to a CSV file.

        Args:
            entries: Index entries to export
            output_path: Output file path

        Returns:
            Path to the created file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df = entries_to_dataframe(entries)
        df.to_csv(output_path, index=False)
        logger.info("Exported %d tags to %s", len(df), output_path)
        return output_path

    def export_json(self, analytics: TagAnalytics, output_path: Path) -> Path:
        """
        Write the full analytics summary to a JSON file.

        Args:
            analytics: Summary to export
            output_path: Output file path

        Returns:
            Path to the created file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(analytics.to_dict(), f, indent=2)
        logger.info("Exported tag analytics to %s", output_path)
        return output_path

    def export(self, entries: List[TagIndexEntry], analytics: TagAnalytics, output_path: Path) -> Path:
        """Export in the format implied by the file suffix (.csv or .json)."""
        if Path(output_path).suffix.lower() == ".csv":
            return self.export_csv(entries, output_path)
        return self.export_json(analytics, output_path)
