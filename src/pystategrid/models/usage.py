"""Daily and monthly consumption models."""

from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pystategrid._constants import NO_READING
from pystategrid._normalize import format_month, parse_day, safe_float, text


class DailySample(BaseModel):
    """Consumption for one calendar day.

    ``value`` is kept as the provider sent it; ``"-"`` means no reading.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    day: dt.date
    value: str = Field(default=NO_READING, validation_alias=AliasChoices("dayElePq", "value"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        return merged

    @field_validator("day", mode="before")
    @classmethod
    def _parse_day(cls, value: Any) -> dt.date:
        return parse_day(value)

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> str:
        return NO_READING if value is None else text(value)

    @property
    def has_reading(self) -> bool:
        return self.value != NO_READING

    @property
    def kwh(self) -> float | None:
        return safe_float(self.value)

    def to_record(self) -> dict[str, Any]:
        """Provider fields with ``day`` formatted as ``YYYY-MM-DD``."""
        record = dict(self.raw)
        record["day"] = self.day.isoformat()
        record.setdefault("dayElePq", self.value)
        return record


class MonthlySample(BaseModel):
    """Consumption and cost for one calendar month (``YYYY-MM``)."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    month: str
    value: float | None = Field(default=None, validation_alias=AliasChoices("monthEleNum", "value"))
    cost: float | None = Field(default=None, validation_alias=AliasChoices("monthEleCost", "cost"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        return merged

    @field_validator("month", mode="before")
    @classmethod
    def _format_month(cls, value: Any) -> str:
        return format_month(value)

    @field_validator("value", "cost", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    def to_record(self) -> dict[str, Any]:
        record = dict(self.raw)
        record["month"] = self.month
        return record


class DailyUsage(BaseModel):
    """Result of one daily usage query."""

    model_config = ConfigDict(frozen=True)

    samples: list[DailySample] = Field(default_factory=list)
    total_pq: float | None = None
    start: dt.date | None = None
    end: dt.date | None = None

    def readings(self) -> list[DailySample]:
        """Samples with an actual reading."""
        return [sample for sample in self.samples if sample.has_reading]


class MonthlyUsage(BaseModel):
    """Monthly series, oldest first, plus current-year totals."""

    model_config = ConfigDict(frozen=True)

    samples: list[MonthlySample] = Field(default_factory=list)
    total_ele_num: float = 0.0
    total_ele_cost: float = 0.0
    data_info: dict[str, Any] = Field(default_factory=dict)
    """Current-year ``dataInfo`` as the provider sent it."""
