from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any

import pytest

from pystategrid._api.meters import (
    fetch_balance,
    fetch_bindings,
    fetch_daily,
    fetch_monthly,
    resolve_daily_window,
)
from pystategrid._constants import API_PATHS, DAILY_USAGE_KIND, MONTHLY_USAGE_KIND
from pystategrid._relay import ProviderRequest
from pystategrid.context import AuthState, RunContext
from pystategrid.exceptions import StateGridApiError
from pystategrid.models.meter import MeterBinding
from pystategrid.session import Session

TODAY = dt.date(2024, 6, 15)

_BINDING = {
    "consNo": "1000000001",
    "consNo_dst": "3300000001",
    "consName_dst": "*明",
    "proNo": "33101",
    "orgNo": "33401",
    "orgName": "国网杭州供电公司",
    "constType": "01",
}


def _months(year: int, count: int) -> list[dict[str, Any]]:
    return [
        {"month": f"{year}{month:02d}", "monthEleNum": str(100 + month), "monthEleCost": str(50 + month)}
        for month in range(1, count + 1)
    ]


@dataclass
class FakeRelay:
    responses: dict[tuple[str, str], Any] = field(default_factory=dict)
    requests: list[ProviderRequest] = field(default_factory=list)

    async def request(self, request: ProviderRequest) -> Any:
        self.requests.append(request)
        key = request.url
        if request.url == API_PATHS["usage"]:
            params3 = request.data["params3"]["data"]
            key = f"{request.data['params4']}:{params3['queryYear']}"
        return self.responses[(request.url, key)]


def _ctx() -> RunContext:
    session = Session.from_bizrt(
        {"token": "TOK", "userInfo": [{"userId": "U1", "loginAccount": "13800000000", "nickname": ""}]},
        saved_at_ms=0,
    )
    return RunContext(
        state=AuthState.ACCESS_TOKEN_OBTAINED,
        request_key={"keyCode": "KC"},
        session=session,
        access_token="ACC",
        bindings=[MeterBinding.model_validate(_BINDING)],
    )


def _usage_key(kind: str, year: int) -> tuple[str, str]:
    return API_PATHS["usage"], f"{kind}:{year}"


def test_window_explicit_start_and_end_win() -> None:
    start, end = dt.date(2024, 5, 1), dt.date(2024, 5, 10)
    assert resolve_daily_window(TODAY, start=start, end=end, days=3) == (start, end)


def test_window_start_only_ends_yesterday() -> None:
    assert resolve_daily_window(TODAY, start=dt.date(2024, 6, 1)) == (dt.date(2024, 6, 1), dt.date(2024, 6, 14))


def test_window_day_count() -> None:
    assert resolve_daily_window(TODAY, days=3) == (dt.date(2024, 6, 11), dt.date(2024, 6, 14))


def test_window_default() -> None:
    assert resolve_daily_window(TODAY) == (dt.date(2024, 6, 7), dt.date(2024, 6, 14))
    assert resolve_daily_window(TODAY, days=0) == resolve_daily_window(TODAY)


@pytest.mark.asyncio
async def test_fetch_bindings_uses_access_token() -> None:
    relay = FakeRelay(
        responses={
            (API_PATHS["search_user"], API_PATHS["search_user"]): {"bizrt": {"powerUserList": [_BINDING, "junk"]}},
        }
    )

    bindings = await fetch_bindings(relay, _ctx())  # type: ignore[arg-type]

    assert [b.cons_no for b in bindings] == ["1000000001"]
    request = relay.requests[0]
    assert request.headers["acctoken"] == "ACC"
    assert request.headers["token"] == "TOK"
    assert request.data["serviceCode"] == "0101143"
    assert request.data["quInfo"] == {"userId": "U1"}


@pytest.mark.asyncio
async def test_fetch_bindings_requires_power_user_list() -> None:
    relay = FakeRelay(responses={(API_PATHS["search_user"], API_PATHS["search_user"]): {"bizrt": {}}})

    with pytest.raises(StateGridApiError):
        await fetch_bindings(relay, _ctx())  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_fetch_balance_sends_binding_fields() -> None:
    relay = FakeRelay(
        responses={
            (API_PATHS["balance"], API_PATHS["balance"]): {
                "list": [{"consNo": "1000000001", "sumMoney": "88.50", "totalPq": "120", "date": "2024-06-14"}],
            }
        }
    )

    balance = await fetch_balance(relay, _ctx(), 0)  # type: ignore[arg-type]

    assert balance.sum_money == 88.5
    assert balance.total_pq == 120.0
    assert balance.date == "2024-06-14"
    body = relay.requests[0].data
    assert body["target"] == "33101"
    assert body["data"]["userName"] == "13800000000"
    assert body["data"]["list"] == [
        {"consNoSrc": "3300000001", "proCode": "33101", "sceneType": "01", "consNo": "1000000001", "orgNo": "33401"}
    ]


@pytest.mark.asyncio
async def test_fetch_daily_keeps_sentinel_samples() -> None:
    relay = FakeRelay(
        responses={
            _usage_key(DAILY_USAGE_KIND, 2024): {
                "sevenEleList": [
                    {"day": "20240612", "dayElePq": "5.10"},
                    {"day": "20240613", "dayElePq": "4.20"},
                    {"day": "20240614", "dayElePq": "-"},
                ],
                "totalPq": "9.3",
            }
        }
    )

    daily = await fetch_daily(relay, _ctx(), 0, today=TODAY, days=3)  # type: ignore[arg-type]

    assert [s.day for s in daily.samples] == [dt.date(2024, 6, 12), dt.date(2024, 6, 13), dt.date(2024, 6, 14)]
    assert [s.day.day for s in daily.readings()] == [12, 13]
    assert daily.total_pq == 9.3
    query = relay.requests[0].data["params3"]["data"]
    assert query["startTime"] == "2024-06-11"
    assert query["endTime"] == "2024-06-14"
    assert query["userName"] == "13800000000"
    assert query["consNo"] == "3300000001"


@pytest.mark.asyncio
async def test_fetch_monthly_backfills_prior_year_once() -> None:
    relay = FakeRelay(
        responses={
            _usage_key(MONTHLY_USAGE_KIND, 2024): {
                "mothEleList": _months(2024, 5),
                "dataInfo": {"totalEleNum": "515", "totalEleCost": "265"},
            },
            _usage_key(MONTHLY_USAGE_KIND, 2023): {"mothEleList": _months(2023, 12)},
        }
    )

    monthly = await fetch_monthly(relay, _ctx(), 0, today=TODAY)  # type: ignore[arg-type]

    assert len(relay.requests) == 2
    assert len(monthly.samples) == 17
    assert monthly.samples[0].month == "2023-01"
    assert monthly.samples[11].month == "2023-12"
    assert monthly.samples[12].month == "2024-01"
    assert monthly.total_ele_num == 515.0
    assert monthly.total_ele_cost == 265.0


@pytest.mark.asyncio
async def test_fetch_monthly_full_year_needs_no_backfill() -> None:
    relay = FakeRelay(responses={_usage_key(MONTHLY_USAGE_KIND, 2024): {"mothEleList": _months(2024, 12)}})

    monthly = await fetch_monthly(relay, _ctx(), 0, today=TODAY)  # type: ignore[arg-type]

    assert len(relay.requests) == 1
    assert len(monthly.samples) == 12
    assert monthly.total_ele_num == 0.0


@pytest.mark.asyncio
async def test_fetch_monthly_short_prior_year_is_not_backfilled_again() -> None:
    relay = FakeRelay(
        responses={
            _usage_key(MONTHLY_USAGE_KIND, 2024): {"mothEleList": _months(2024, 2)},
            _usage_key(MONTHLY_USAGE_KIND, 2023): {"mothEleList": _months(2023, 3)},
        }
    )

    monthly = await fetch_monthly(relay, _ctx(), 0, today=TODAY)  # type: ignore[arg-type]

    assert len(relay.requests) == 2
    assert len(monthly.samples) == 5


@pytest.mark.asyncio
async def test_fetch_daily_unparseable_day_is_an_api_error() -> None:
    relay = FakeRelay(
        responses={
            _usage_key(DAILY_USAGE_KIND, 2024): {
                "sevenEleList": [
                    {"day": "20240613", "dayElePq": "4.20"},
                    {"day": "2024/06/14", "dayElePq": "3.10"},
                ],
            }
        }
    )

    with pytest.raises(StateGridApiError) as exc_info:
        await fetch_daily(relay, _ctx(), 0, today=TODAY, days=3)  # type: ignore[arg-type]

    assert exc_info.value.code == "invalid_response"
    assert exc_info.value.endpoint == API_PATHS["usage"]


@pytest.mark.asyncio
async def test_fetch_monthly_keeps_totals_as_sent() -> None:
    relay = FakeRelay(
        responses={
            _usage_key(MONTHLY_USAGE_KIND, 2024): {
                "mothEleList": _months(2024, 12),
                "dataInfo": {"totalEleNum": "1234.50", "totalEleCost": "617.25"},
            },
        }
    )

    monthly = await fetch_monthly(relay, _ctx(), 0, today=TODAY)  # type: ignore[arg-type]

    assert monthly.data_info == {"totalEleNum": "1234.50", "totalEleCost": "617.25"}
    assert monthly.total_ele_num == 1234.5
