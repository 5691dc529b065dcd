"""Local archive of daily and monthly consumption.

The provider only returns a short rolling window of daily usage, so every
run merges its samples into ``history_data.json``:

- daily samples are unioned per meter, keyed by day (stored entries win)
- samples without a reading are never stored
- days older than the retention window are pruned
- the monthly series is replaced wholesale on every run
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pystategrid.models.usage import DailySample, MonthlySample

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeterHistory:
    """Stored samples for one meter."""

    daily: list[DailySample] = field(default_factory=list)
    monthly: list[MonthlySample] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryArchive:
    """All stored samples, keyed by meter account number."""

    day_list: dict[str, list[DailySample]] = field(default_factory=dict)
    month_list: dict[str, list[MonthlySample]] = field(default_factory=dict)
    last_update: str | None = None
    last_update_cons_no: str | None = None

    def get(self, meter_id: str) -> MeterHistory:
        return MeterHistory(
            daily=list(self.day_list.get(meter_id, [])),
            monthly=list(self.month_list.get(meter_id, [])),
        )

    @classmethod
    def from_dict(cls, data: Any) -> HistoryArchive:
        """Parse the on-disk JSON layout, skipping malformed entries."""
        if not isinstance(data, dict):
            return cls()

        day_list: dict[str, list[DailySample]] = {}
        for meter_id, records in (data.get("dayList") or {}).items():
            day_list[str(meter_id)] = _parse_records(DailySample, records, meter_id)

        month_list: dict[str, list[MonthlySample]] = {}
        for meter_id, records in (data.get("monthList") or {}).items():
            month_list[str(meter_id)] = _parse_records(MonthlySample, records, meter_id)

        return cls(
            day_list=day_list,
            month_list=month_list,
            last_update=data.get("lastUpdate"),
            last_update_cons_no=data.get("lastUpdateConsNo"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dayList": {meter: [s.to_record() for s in samples] for meter, samples in self.day_list.items()},
            "monthList": {meter: [s.to_record() for s in samples] for meter, samples in self.month_list.items()},
            "lastUpdate": self.last_update,
            "lastUpdateConsNo": self.last_update_cons_no,
        }


def _parse_records(model: type[Any], records: Any, meter_id: str) -> list[Any]:
    parsed: list[Any] = []
    for record in records if isinstance(records, list) else []:
        try:
            parsed.append(model.model_validate(record))
        except (ValidationError, ValueError):
            _logger.debug("Skipping malformed history record meter=%s record=%r", meter_id, record)
    return parsed


def merge(
    archive: HistoryArchive,
    meter_id: str,
    new_daily: Iterable[DailySample],
    new_monthly: Iterable[MonthlySample],
    retention_days: int,
    *,
    today: dt.date | None = None,
    now: dt.datetime | None = None,
) -> HistoryArchive:
    """Return a new archive with *meter_id*'s samples merged in."""
    today = today or dt.date.today()
    now = now or dt.datetime.now(dt.UTC)

    by_day: dict[dt.date, DailySample] = {}
    for sample in archive.day_list.get(meter_id, []):
        if sample.has_reading:
            by_day.setdefault(sample.day, sample)
    for sample in new_daily:
        if sample.has_reading:
            by_day.setdefault(sample.day, sample)

    cutoff = today - dt.timedelta(days=retention_days)
    daily = sorted((s for s in by_day.values() if s.day >= cutoff), key=lambda s: s.day)

    return replace(
        archive,
        day_list={**archive.day_list, meter_id: daily},
        month_list={**archive.month_list, meter_id: list(new_monthly)},
        last_update=now.isoformat(),
        last_update_cons_no=meter_id,
    )


class HistoryStore:
    """File-backed :class:`HistoryArchive` with whole-file read-modify-write.

    Only one process may write at a time; concurrent runs would need a file
    lock around :meth:`save`.
    """

    def __init__(self, path: str | Path, *, retention_days: int = 365, enabled: bool = True) -> None:
        self._path = Path(path)
        self._retention_days = retention_days
        self._enabled = enabled

    @property
    def path(self) -> Path:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._enabled

    def load(self) -> HistoryArchive:
        if not self._path.is_file():
            return HistoryArchive()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _logger.warning("Failed to load history data from %s: %s", self._path, exc)
            return HistoryArchive()
        return HistoryArchive.from_dict(data)

    def get(self, meter_id: str) -> MeterHistory:
        return self.load().get(meter_id)

    def save(
        self,
        meter_id: str,
        daily: Iterable[DailySample],
        monthly: Iterable[MonthlySample],
        *,
        today: dt.date | None = None,
    ) -> HistoryArchive | None:
        """Merge and persist samples for one meter; no-op when disabled."""
        if not self._enabled:
            return None

        archive = merge(self.load(), meter_id, daily, monthly, self._retention_days, today=today)
        try:
            self._write(archive)
        except OSError as exc:
            _logger.warning("Failed to save history data to %s: %s", self._path, exc)
            return None
        _logger.info(
            "History saved meter=%s daily_records=%d",
            meter_id,
            len(archive.day_list.get(meter_id, [])),
        )
        return archive

    def _write(self, archive: HistoryArchive) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f".{self._path.name}.tmp")
        tmp.write_text(json.dumps(archive.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)
