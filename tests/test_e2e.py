from __future__ import annotations

# pylint: disable=redefined-outer-name

import dataclasses
import datetime as dt
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from pystategrid._constants import API_PATHS, BASE_URL, RELAY_URL, SESSION_BLOB_KEY
from pystategrid._credentials import CredentialStore, MemoryCredentialBackend
from pystategrid._runtime import HostRuntime
from pystategrid._transport import RequestEnvelope, TransportResponse
from pystategrid.client import StateGridClient
from pystategrid.config import MqttSettings, StateGridConfig
from pystategrid.exceptions import CredentialsMissingError, StateGridAuthenticationError
from pystategrid.history import HistoryStore
from pystategrid.publisher import MqttPublisher
from pystategrid.runner import run

TODAY = dt.date(2024, 1, 10)

_METERS = [
    {
        "consNo": "1000000001",
        "consNo_dst": "3300000001",
        "consName_dst": "*明",
        "proNo": "33101",
        "orgNo": "33401",
        "orgName": "国网杭州供电公司",
        "constType": "01",
    },
    {
        "consNo": "1000000002",
        "consNo_dst": "3300000002",
        "consName_dst": "*华",
        "proNo": "33101",
        "orgNo": "33401",
        "orgName": "国网杭州供电公司",
        "constType": "02",
    },
]


def _response(payload: Any) -> TransportResponse:
    body = json.dumps(payload, ensure_ascii=False)
    return TransportResponse(status_code=200, ok=True, body=body, body_bytes=body.encode())


@dataclass
class FakeStateGridBackend:
    """Relay and provider in one: encryption is an identity transform."""

    calls: dict[str, int] = field(default_factory=dict)
    expire_once_endpoints: set[str] = field(default_factory=set)
    always_expired_endpoints: set[str] = field(default_factory=set)
    _expired_already: set[str] = field(default_factory=set)

    def count(self, name: str) -> int:
        return self.calls.get(API_PATHS[name], 0)

    async def send(self, envelope: RequestEnvelope) -> TransportResponse:
        url = envelope.url
        if url == f"{RELAY_URL}/wsgw/encrypt":
            logical = json.loads(str(envelope.body))["yuheng"]
            outgoing = {
                "url": logical["url"],
                "method": "post",
                "headers": logical["headers"],
                "data": logical.get("data", {}),
                "encryptKey": "EK",
            }
            return _response({"code": 1, "data": outgoing})
        if url == f"{RELAY_URL}/wsgw/get_x":
            return _response({"code": 1, "data": "137"})
        if url == f"{RELAY_URL}/wsgw/decrypt":
            payload = json.loads(str(envelope.body))["yuheng"]
            config = payload["config"]
            data = self._result(config["url"], config.get("data") or {})
            return _response({"code": 1, "data": {"code": "1", "message": "成功", "data": data}})

        assert url.startswith(BASE_URL), url
        path = url[len(BASE_URL) :]
        self.calls[path] = self.calls.get(path, 0) + 1
        if path in self.always_expired_endpoints or (
            path in self.expire_once_endpoints and path not in self._expired_already
        ):
            self._expired_already.add(path)
            return _response({"code": 10010, "message": "会话已失效"})
        return _response({"encryptData": "opaque"})

    def _result(self, path: str, data: dict[str, Any]) -> Any:
        if path == API_PATHS["key_code"]:
            return {"keyCode": "KC", "publicKey": "PK"}
        if path == API_PATHS["verify_code"]:
            return {"canvasSrc": "data:image/png;base64,AAAA", "ticket": "TICKET"}
        if path == API_PATHS["login"]:
            return {
                "bizrt": {
                    "token": "TOKEN-1",
                    "userInfo": [{"userId": "U1", "loginAccount": "13800000000", "nickname": ""}],
                }
            }
        if path == API_PATHS["authorize"]:
            return {"redirect_url": "https://www.95598.cn/?code=AUTH-1"}
        if path == API_PATHS["web_token"]:
            return {"access_token": "ACC-1"}
        if path == API_PATHS["search_user"]:
            return {"bizrt": {"powerUserList": _METERS}}
        if path == API_PATHS["balance"]:
            cons_no = data["data"]["list"][0]["consNo"]
            return {"list": [{"consNo": cons_no, "sumMoney": "88.50", "totalPq": "120", "date": "2024-01-09"}]}
        if path == API_PATHS["usage"]:
            query = data["params3"]["data"]
            if data["params4"] == "010103":
                return {
                    "sevenEleList": [
                        {"day": "20240107", "dayElePq": "5.10"},
                        {"day": "20240108", "dayElePq": "4.20"},
                        {"day": "20240109", "dayElePq": "-"},
                    ],
                    "totalPq": "9.30",
                }
            year = int(query["queryYear"])
            count = 1 if year == TODAY.year else 12
            return {
                "mothEleList": [
                    {"month": f"{year}{m:02d}", "monthEleNum": "300", "monthEleCost": "160"} for m in range(1, count + 1)
                ],
                "dataInfo": {"totalEleNum": "300", "totalEleCost": "160"},
            }
        raise AssertionError(f"unexpected provider path {path}")


@pytest.fixture
def backend() -> FakeStateGridBackend:
    return FakeStateGridBackend()


@pytest.fixture
def credentials() -> MemoryCredentialBackend:
    return MemoryCredentialBackend()


@pytest.fixture
def config(tmp_path: Path) -> StateGridConfig:
    return StateGridConfig(username="13800000000", password="secret", data_store_dir=tmp_path)


def _client(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> StateGridClient:
    return StateGridClient(
        config,
        transport=backend,
        credential_store=CredentialStore(credentials),
        runtime=HostRuntime.STANDALONE,
    )


async def _run(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> Any:
    return await run(
        config,
        client=_client(config, backend, credentials),
        publisher=MqttPublisher(MqttSettings(enabled=False)),
        today=TODAY,
    )


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_run_fetches_archives_every_meter(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    report = await _run(config, backend, credentials)

    assert [m.meter_id for m in report.meters] == ["1000000001", "1000000002"]
    first = report.meters[0]
    assert first.balance.sum_money == 88.5
    assert len(first.daily.readings()) == 2
    assert len(first.monthly.samples) == 13
    assert first.monthly.samples[0].month == "2023-01"
    assert first.history_saved is True
    assert first.published is False

    assert backend.count("login") == 1
    assert backend.count("search_user") == 1
    assert backend.count("balance") == 2
    assert backend.count("usage") == 6

    stored = json.loads(config.history_file.read_text(encoding="utf-8"))
    assert stored["dayList"]["1000000001"] == [
        {"day": "2024-01-07", "dayElePq": "5.10"},
        {"day": "2024-01-08", "dayElePq": "4.20"},
    ]
    assert len(stored["monthList"]["1000000002"]) == 13
    assert stored["lastUpdateConsNo"] == "1000000002"
    assert json.loads(credentials.values[SESSION_BLOB_KEY])["token"] == "TOKEN-1"


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_second_run_reuses_cached_session(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    await _run(config, backend, credentials)
    await _run(config, backend, credentials)

    assert backend.count("login") == 1
    assert backend.count("authorize") == 2
    assert backend.count("web_token") == 2


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_expired_session_mid_run_relogs_once(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    backend.expire_once_endpoints.add(API_PATHS["balance"])

    report = await _run(config, backend, credentials)

    assert len(report.meters) == 2
    assert backend.count("login") == 2
    assert backend.count("balance") == 3


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_meter_filter_and_fallback(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    filtered = dataclasses.replace(config, cons_no_filter=("3300000002",))
    report = await _run(filtered, backend, credentials)
    assert [m.meter_id for m in report.meters] == ["1000000002"]

    unmatched = dataclasses.replace(config, cons_no_filter=("nope",))
    report = await _run(unmatched, backend, credentials)
    assert len(report.meters) == 2


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_auth_failure_clears_cache_and_propagates(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    backend.always_expired_endpoints.add(API_PATHS["web_token"])

    with pytest.raises(StateGridAuthenticationError):
        await _run(config, backend, credentials)

    assert credentials.values == {}
    assert not config.history_file.exists()


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_history_disabled_still_reports(
    tmp_path: Path,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    config = StateGridConfig(username="u", password="p", data_store_dir=tmp_path, save_history=False)

    report = await run(
        config,
        client=_client(config, backend, credentials),
        history=HistoryStore(config.history_file, enabled=False),
        publisher=MqttPublisher(MqttSettings(enabled=False)),
        today=TODAY,
    )

    assert len(report.meters) == 2
    assert all(m.history_saved is False for m in report.meters)
    assert not config.history_file.exists()


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_request(
    tmp_path: Path,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    config = StateGridConfig(username="", password="", data_store_dir=tmp_path)

    with pytest.raises(CredentialsMissingError):
        await _run(config, backend, credentials)

    assert backend.calls == {}


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_e2e_second_session_rejection_in_a_run_is_not_retried(
    config: StateGridConfig,
    backend: FakeStateGridBackend,
    credentials: MemoryCredentialBackend,
) -> None:
    backend.expire_once_endpoints.update({API_PATHS["balance"], API_PATHS["usage"]})

    with pytest.raises(StateGridAuthenticationError):
        await _run(config, backend, credentials)

    assert backend.count("login") == 2
    assert backend.count("balance") == 2
    assert backend.count("usage") == 1
    assert credentials.values == {}
