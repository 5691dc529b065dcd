"""pystategrid - Async Python client for State Grid (95598) electricity data."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pystategrid")
except PackageNotFoundError:
    __version__ = "0+local"
from pystategrid.client import StateGridClient
from pystategrid.config import MqttSettings, StateGridConfig
from pystategrid.exceptions import (
    CaptchaVerificationError,
    CredentialsMissingError,
    StateGridApiError,
    StateGridAuthenticationError,
    StateGridConfigError,
    StateGridError,
    StateGridTransportError,
)
from pystategrid.history import HistoryArchive, HistoryStore, MeterHistory
from pystategrid.models import (
    Balance,
    DailySample,
    DailyUsage,
    MeterBinding,
    MonthlySample,
    MonthlyUsage,
)
from pystategrid.publisher import MqttPublisher

__all__ = [
    "__version__",
    "Balance",
    "CaptchaVerificationError",
    "CredentialsMissingError",
    "DailySample",
    "DailyUsage",
    "HistoryArchive",
    "HistoryStore",
    "MeterBinding",
    "MeterHistory",
    "MonthlySample",
    "MonthlyUsage",
    "MqttPublisher",
    "MqttSettings",
    "StateGridApiError",
    "StateGridAuthenticationError",
    "StateGridClient",
    "StateGridConfig",
    "StateGridConfigError",
    "StateGridError",
    "StateGridTransportError",
]
