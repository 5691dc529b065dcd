"""Client configuration for pystategrid."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from pystategrid._constants import BASE_URL, DEFAULT_QUERY_DAYS, RELAY_URL
from pystategrid._runtime import HostRuntime, detect_runtime
from pystategrid.exceptions import CredentialsMissingError, StateGridConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(value: str | None, default: int) -> int:
    # Unparseable or zero values fall back to the default, like the
    # ``parseInt(x) || default`` idiom used by existing config.env files.
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed or default


def _env_float(value: str | None, default: float) -> float:
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed or default


def _parse_date(value: str | dt.date | None, name: str) -> dt.date | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError as exc:
        raise StateGridConfigError(f"{name} must be YYYY-MM-DD, got {value!r}") from exc


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_env_file(path: str | Path = "config.env", *, runtime: HostRuntime | None = None) -> bool:
    """Load a ``config.env`` file into ``os.environ`` for standalone runs.

    Qinglong panels manage their own environment, so nothing is loaded there.
    Existing variables are never overridden.
    """
    runtime = runtime or detect_runtime()
    if runtime is HostRuntime.QINGLONG:
        return False
    env_path = Path(path)
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Downstream MQTT broker settings."""

    enabled: bool = False
    host: str = ""
    port: int = 1883
    username: str = ""
    password: str = ""
    drain_seconds: float = 2.0
    connect_timeout: float = 2.0


@dataclasses.dataclass(frozen=True)
class StateGridConfig:
    """Client configuration.

    Parameters
    ----------
    username : str
        95598 account (phone number or login name).
    password : str
        95598 account password.
    relay_url : str
        Base URL of the encryption relay.
    base_url : str
        Provider base URL that relay-relative paths resolve against.
    data_store_dir : Path
        Directory for the credential namespace and the history archive.
    token_cache_hours : float
        Lifetime of a cached session.  Older sessions are discarded without
        being tried.
    query_days : int
        Size of the default daily window, ending yesterday.
    query_start_date, query_end_date : date or None
        Explicit daily window; takes precedence over ``query_days``.
    cons_no_filter : tuple[str, ...]
        Only process meters whose account number matches one of these.
    save_history : bool
        Merge fetched samples into the local archive.
    history_retention_days : int
        Daily samples older than this are pruned from the archive.
    show_recent : bool
        Include the per-day list in the console summary.
    request_timeout : float or None
        Per-request timeout in seconds; ``None`` uses the host default.
    log_debug : bool
        Enable DEBUG logging from the CLI.
    mqtt : MqttSettings
        Publisher settings.
    """

    username: str
    password: str
    relay_url: str = RELAY_URL
    base_url: str = BASE_URL
    data_store_dir: Path = Path("data")
    token_cache_hours: float = 24.0
    query_days: int = DEFAULT_QUERY_DAYS
    query_start_date: dt.date | None = None
    query_end_date: dt.date | None = None
    cons_no_filter: tuple[str, ...] = ()
    save_history: bool = True
    history_retention_days: int = 365
    show_recent: bool = False
    request_timeout: float | None = None
    log_debug: bool = False
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)

    @property
    def token_cache_ms(self) -> int:
        return int(self.token_cache_hours * 3600 * 1000)

    @property
    def history_file(self) -> Path:
        return Path(self.data_store_dir) / "history_data.json"

    def require_credentials(self) -> None:
        """Raise :class:`CredentialsMissingError` unless both credentials are set."""
        if not self.username or not self.password:
            raise CredentialsMissingError("WSGW_USERNAME and WSGW_PASSWORD must be configured")

    @classmethod
    def from_env(cls, **overrides: Any) -> StateGridConfig:
        """Create configuration from environment variables.

        Reads ``WSGW_USERNAME``, ``WSGW_PASSWORD`` and the optional variables
        documented in ``config.env.example``.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        StateGridConfig
            Populated configuration.
        """
        env = os.environ

        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, MqttSettings):
            mqtt = mqtt_overrides
        else:
            mqtt_kwargs: dict[str, Any] = {
                "enabled": _env_bool(env.get("MQTT_ENABLED"), False),
                "host": env.get("WSGW_mqtt_host", ""),
                "port": _env_int(env.get("WSGW_mqtt_port"), 1883),
                "username": env.get("WSGW_mqtt_username", ""),
                "password": env.get("WSGW_mqtt_password", ""),
            }
            if isinstance(mqtt_overrides, dict):
                mqtt_kwargs.update(mqtt_overrides)
            mqtt = MqttSettings(**mqtt_kwargs)

        config_kwargs: dict[str, Any] = {
            "username": env.get("WSGW_USERNAME", ""),
            "password": env.get("WSGW_PASSWORD", ""),
            "data_store_dir": Path(env.get("DATA_STORE_DIR") or "data"),
            "token_cache_hours": _env_float(env.get("TOKEN_CACHE_HOURS"), 24.0),
            "query_days": _env_int(env.get("QUERY_DAYS"), DEFAULT_QUERY_DAYS),
            "query_start_date": _parse_date(env.get("QUERY_START_DATE"), "QUERY_START_DATE"),
            "query_end_date": _parse_date(env.get("QUERY_END_DATE"), "QUERY_END_DATE"),
            "cons_no_filter": _split_list(env.get("QUERY_CONS_NO")),
            # History is on unless explicitly disabled.
            "save_history": env.get("SAVE_HISTORY_DATA") != "false",
            "history_retention_days": _env_int(env.get("HISTORY_RETENTION_DAYS"), 365),
            "show_recent": _env_bool(env.get("WSGW_RECENT_ELC_FEE"), False),
            "log_debug": _env_bool(env.get("WSGW_LOG_DEBUG"), False),
            "mqtt": mqtt,
        }

        relay_env = env.get("WSGW_RELAY_URL")
        if relay_env:
            config_kwargs["relay_url"] = relay_env.rstrip("/")

        timeout_env = env.get("WSGW_REQUEST_TIMEOUT")
        if timeout_env:
            try:
                config_kwargs["request_timeout"] = float(timeout_env)
            except ValueError as exc:
                raise StateGridConfigError(
                    f"WSGW_REQUEST_TIMEOUT must be a number of seconds, got {timeout_env!r}"
                ) from exc

        for date_field in ("query_start_date", "query_end_date"):
            if date_field in overrides:
                overrides[date_field] = _parse_date(overrides[date_field], date_field)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
