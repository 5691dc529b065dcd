"""MQTT publication of per-meter results.

One retained message per meter on ``nodejs/state-grid/<consNo>``, sent over a
short-lived paho-mqtt connection.  Publishing is best-effort: a disabled or
unreachable broker is logged and skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, cast

import paho.mqtt.client as mqtt

from pystategrid._constants import MQTT_TOPIC_PREFIX
from pystategrid.config import MqttSettings
from pystategrid.models.meter import Balance
from pystategrid.models.usage import DailyUsage, MonthlyUsage

_logger = logging.getLogger(__name__)


def topic_for(cons_no: str) -> str:
    return f"{MQTT_TOPIC_PREFIX}{cons_no}"


def build_payload(balance: Balance, daily: DailyUsage, monthly: MonthlyUsage) -> dict[str, Any]:
    """Assemble the outbound record for one meter.

    Balance fields are passed through as the provider sent them, followed by
    the day list (readings only, ``YYYY-MM-DD``), the month list
    (``YYYY-MM``) and the year-to-date totals as reported, ``0`` when absent.
    """
    data = dict(balance.raw)
    data["dayList"] = [sample.to_record() for sample in daily.readings()]
    data["monthList"] = [sample.to_record() for sample in monthly.samples]
    data["totalEleNum"] = monthly.data_info.get("totalEleNum") or 0
    data["totalEleCost"] = monthly.data_info.get("totalEleCost") or 0
    return data


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
        protocol=mqtt.MQTTv311,
    )


class MqttPublisher:
    """Open, publish, drain, disconnect."""

    def __init__(
        self,
        settings: MqttSettings,
        *,
        client_factory: Callable[[str], Any] = _default_client_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        keepalive: int = 60,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._sleep = sleep
        self._keepalive = keepalive

    @property
    def available(self) -> bool:
        return self._settings.enabled and bool(self._settings.host)

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> bool:
        """Publish *payload* retained on *topic*; returns whether it was sent."""
        settings = self._settings
        if not settings.enabled:
            _logger.info("MQTT disabled, skipping publish")
            return False
        if not settings.host:
            _logger.warning("MQTT host not configured, skipping publish")
            return False

        loop = asyncio.get_running_loop()
        connected: asyncio.Future[bool] = loop.create_future()

        def _resolve(ok: bool) -> None:
            if not connected.done():
                connected.set_result(ok)

        def on_connect(
            _client: Any,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                _logger.warning("MQTT connect failed: %s", reason_code)
            loop.call_soon_threadsafe(_resolve, reason_code.value == 0)

        client = self._client_factory(f"mqtt_state_grid_{int(time.time() * 1000)}")
        client.enable_logger(_logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password or None)
        client.on_connect = on_connect

        _logger.debug("MQTT connecting host=%s port=%s", settings.host, settings.port)
        try:
            await asyncio.to_thread(client.connect, settings.host, settings.port, self._keepalive)
        except OSError as exc:
            _logger.warning("MQTT broker %s:%s unreachable, skipping publish: %s", settings.host, settings.port, exc)
            return False

        client.loop_start()
        try:
            try:
                ok = await asyncio.wait_for(connected, settings.connect_timeout)
            except TimeoutError:
                _logger.warning("MQTT connect timed out after %ss, skipping publish", settings.connect_timeout)
                return False
            if not ok:
                return False

            body = json.dumps(payload, ensure_ascii=False)
            info = client.publish(topic, body, qos=0, retain=True)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                _logger.warning("MQTT publish to %s failed rc=%s", topic, info.rc)
                return False

            # Fixed drain interval before disconnecting; not an acknowledgment wait.
            await self._sleep(settings.drain_seconds)
            _logger.info("MQTT published topic=%s bytes=%d", topic, len(body))
            return True
        finally:
            client.disconnect()
            client.loop_stop()
