import json
import logging
from pathlib import Path
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from stgtrade.core.config import StorageConfig
from stgtrade.core.types import HistoryRecord

logger = logging.getLogger(__name__)

DateBound = Optional[Union[date, str]]


def _to_day(value: DateBound) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


class RunArchive:
    """Newest-first JSON archive of completed runs.

    Single-writer local store. Reads tolerate an absent or corrupt file and
    return no records; writes log and re-raise.
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        path: Optional[Union[str, Path]] = None,
        max_records: Optional[int] = None,
    ):
        self.config = config or StorageConfig()
        self.path = Path(path) if path is not None else self.config.history_path
        self.max_records = max_records if max_records is not None else self.config.max_history_records
        logger.debug("Initializing RunArchive", extra={"path": str(self.path), "max_records": self.max_records})

    def _read_raw(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            logger.warning("Could not read run archive %s: %s", self.path, e)
            return []
        if not isinstance(data, list):
            logger.warning("Run archive %s is not a list; ignoring it", self.path)
            return []
        return data

    def load_all(self) -> List[HistoryRecord]:
        """Every readable record, newest first. Unreadable entries are skipped."""
        records = []
        for raw in self._read_raw():
            try:
                records.append(HistoryRecord.from_dict(raw))
            except Exception as e:
                logger.warning("Skipping unreadable archive entry: %s", e)
        return records

    def append(self, record: HistoryRecord) -> None:
        """Prepend `record` and persist, trimming the oldest entries past max_records."""
        entries = [record.to_dict()] + self._read_raw()
        if self.max_records is not None and len(entries) > self.max_records:
            logger.info("Archive retention cap reached; dropping %d oldest record(s)", len(entries) - self.max_records)
            entries = entries[:self.max_records]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2, ensure_ascii=False)
            tmp_path.replace(self.path)
        except Exception as e:
            logger.error("Failed to save run archive to %s: %s", self.path, e)
            raise
        logger.info("Archived run", extra={"record_id": record.id, "ticker": record.symbol, "total_records": len(entries)})

    def list(
        self,
        text_query: Optional[str] = None,
        date_range: Optional[Tuple[DateBound, DateBound]] = None,
    ) -> List[HistoryRecord]:
        """
        Filter archived runs.

        Args:
            text_query: Case-insensitive substring of symbol or stock name
            date_range: (start, end) days, inclusive; either bound may be None

        Returns:
            Matching records, newest first
        """
        query = (text_query or "").strip().lower()
        start, end = (None, None) if date_range is None else (_to_day(date_range[0]), _to_day(date_range[1]))

        matches = []
        for record in self.load_all():
            if query and query not in record.symbol.lower() and query not in record.stock_name.lower():
                continue
            if start is not None or end is not None:
                try:
                    day = record.recorded_at.date()
                except ValueError:
                    logger.debug("Record %s has an unparseable timestamp", record.id)
                    continue
                if start is not None and day < start:
                    continue
                if end is not None and day > end:
                    continue
            matches.append(record)
        return matches

    def get(self, record_id: str) -> Optional[HistoryRecord]:
        for record in self.load_all():
            if record.id == record_id:
                return record
        return None

    def to_frame(self) -> pd.DataFrame:
        """One row per archived run with its final forecast move."""
        rows = []
        for record in self.load_all():
            forecast = record.forecast
            rows.append({
                "id": record.id,
                "symbol": record.symbol,
                "stock_name": record.stock_name,
                "timestamp": record.timestamp,
                "task_name": record.task_name,
                "stages": len(record.actions),
                "base_price": record.base_price,
                "final_price": forecast.last_price,
                "projected_change_pct": forecast.projected_change_pct,
            })
        columns = ["id", "symbol", "stock_name", "timestamp", "task_name", "stages",
                   "base_price", "final_price", "projected_change_pct"]
        return pd.DataFrame(rows, columns=columns)
