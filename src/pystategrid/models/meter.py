"""Meter binding and balance models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pystategrid._normalize import safe_float, text


class MeterBinding(BaseModel):
    """A physical meter bound to the authenticated account.

    Fields are mapped from ``bizrt.powerUserList`` of the member lookup.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    cons_no: str = Field(default="", validation_alias=AliasChoices("consNo", "cons_no"))
    """Internal account number, used for balance queries."""
    cons_no_dst: str = Field(default="", validation_alias=AliasChoices("consNo_dst", "cons_no_dst"))
    """Public account number printed on the bill."""
    cons_name_dst: str = Field(default="", validation_alias=AliasChoices("consName_dst", "cons_name_dst"))
    """Masked account holder name."""
    pro_code: str = Field(default="", validation_alias=AliasChoices("proNo", "pro_code"))
    province_id: str = Field(default="", validation_alias=AliasChoices("provinceId", "province_id"))
    org_no: str = Field(default="", validation_alias=AliasChoices("orgNo", "org_no"))
    org_name: str = Field(default="", validation_alias=AliasChoices("orgName", "org_name"))
    """Supplying power company."""
    cons_type: str = Field(default="", validation_alias=AliasChoices("constType", "cons_type"))
    """Scene type; ``"02"`` for non-residential accounts."""
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        return merged

    @field_validator(
        "cons_no",
        "cons_no_dst",
        "cons_name_dst",
        "pro_code",
        "province_id",
        "org_no",
        "org_name",
        "cons_type",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return text(value)

    @property
    def target_province(self) -> str:
        return self.pro_code or self.province_id

    @property
    def usage_cons_type(self) -> str:
        return "02" if self.cons_type == "02" else "01"

    def matches(self, identifiers: set[str] | frozenset[str]) -> bool:
        return self.cons_no in identifiers or self.cons_no_dst in identifiers


class Balance(BaseModel):
    """Account balance and current-period consumption for one meter."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    cons_no: str = Field(default="", validation_alias=AliasChoices("consNo", "cons_no"))
    sum_money: float | None = Field(default=None, validation_alias=AliasChoices("sumMoney", "sum_money"))
    """Account balance in yuan."""
    total_pq: float | None = Field(default=None, validation_alias=AliasChoices("totalPq", "total_pq"))
    """Consumption in the current billing period (kWh)."""
    date: str = Field(default="", validation_alias=AliasChoices("date"))
    """As-of date reported by the provider."""
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged.setdefault("raw", values)
        return merged

    @field_validator("cons_no", "date", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return text(value)

    @field_validator("sum_money", "total_pq", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)
