"""Data models for pystategrid."""

from pystategrid.models.meter import Balance, MeterBinding
from pystategrid.models.usage import DailySample, DailyUsage, MonthlySample, MonthlyUsage

__all__ = [
    "Balance",
    "DailySample",
    "DailyUsage",
    "MeterBinding",
    "MonthlySample",
    "MonthlyUsage",
]
