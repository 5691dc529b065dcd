"""Meter data endpoints.

Endpoints:
  - /api/osg-open-uc0001/member/c9/f02 (bound meters)
  - /api/osg-open-bc0001/member/c05/f01 (balance)
  - /api/osg-web0004/member/c24/f01 (daily and monthly usage)
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from pystategrid._api._common import build_member_params, validate_response
from pystategrid._constants import (
    ACCOUNT_CHANNEL_CODE,
    ACCOUNT_FUNC_CODE,
    API_PATHS,
    DAILY_USAGE_KIND,
    DEFAULT_QUERY_DAYS,
    MONTHLY_USAGE_KIND,
    MONTHS_PER_YEAR,
    SOURCE,
    USAGE_QUERY,
    USER_INFORM_SERVICE_CODE,
)
from pystategrid._normalize import safe_float
from pystategrid._relay import ProviderRequest, RelayClient
from pystategrid.context import RunContext
from pystategrid.exceptions import StateGridApiError
from pystategrid.models.meter import Balance, MeterBinding
from pystategrid.models.usage import DailySample, DailyUsage, MonthlySample, MonthlyUsage

_logger = logging.getLogger(__name__)


def resolve_daily_window(
    today: dt.date,
    *,
    start: dt.date | None = None,
    end: dt.date | None = None,
    days: int | None = None,
) -> tuple[dt.date, dt.date]:
    """Resolve the daily query window.

    Precedence: explicit start (end defaults to yesterday) > ``days`` >
    the default window.  Both day-count forms end yesterday.
    """
    yesterday = today - dt.timedelta(days=1)
    if start is not None:
        return start, end or yesterday
    count = days if days and days > 0 else DEFAULT_QUERY_DAYS
    return today - dt.timedelta(days=count + 1), yesterday


async def fetch_bindings(relay: RelayClient, ctx: RunContext) -> list[MeterBinding]:
    """Fetch the meters bound to the authenticated account."""
    session = ctx.session
    assert session is not None  # noqa: S101
    request = ProviderRequest(
        url=API_PATHS["search_user"],
        headers=ctx.data_headers(),
        data={
            **build_member_params(session, service_code=USER_INFORM_SERVICE_CODE),
            "Channels": "web",
        },
    )
    data = await relay.request(request)
    bizrt = data.get("bizrt") if isinstance(data, dict) else None
    items = bizrt.get("powerUserList") if isinstance(bizrt, dict) else None
    if not isinstance(items, list):
        raise StateGridApiError(
            "Member lookup returned no powerUserList",
            code="missing_bindings",
            endpoint=API_PATHS["search_user"],
        )
    return [
        validate_response(MeterBinding, item, endpoint=API_PATHS["search_user"])
        for item in items
        if isinstance(item, dict)
    ]


async def fetch_balance(relay: RelayClient, ctx: RunContext, index: int) -> Balance:
    """Fetch balance and current-period consumption for meter *index*."""
    binding = ctx.binding(index)
    account = ctx.primary
    request = ProviderRequest(
        url=API_PATHS["balance"],
        headers=ctx.data_headers(),
        data={
            "data": {
                "srvCode": "",
                "serialNo": "",
                "channelCode": ACCOUNT_CHANNEL_CODE,
                "funcCode": ACCOUNT_FUNC_CODE,
                "acctId": account.user_id,
                "userName": account.account_name,
                "promotType": "1",
                "promotCode": "1",
                "userAccountId": account.user_id,
                "list": [
                    {
                        "consNoSrc": binding.cons_no_dst,
                        "proCode": binding.pro_code,
                        "sceneType": binding.cons_type,
                        "consNo": binding.cons_no,
                        "orgNo": binding.org_no,
                    }
                ],
            },
            "serviceCode": USER_INFORM_SERVICE_CODE,
            "source": SOURCE,
            "target": binding.target_province,
        },
    )
    data = await relay.request(request)
    items = data.get("list") if isinstance(data, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise StateGridApiError(
            f"Balance query returned no entry for {binding.cons_no}",
            code="missing_balance",
            endpoint=API_PATHS["balance"],
        )
    return validate_response(Balance, items[0], endpoint=API_PATHS["balance"])


def _build_usage_request(
    ctx: RunContext,
    binding: MeterBinding,
    kind: str,
    query: dict[str, Any],
) -> ProviderRequest:
    session = ctx.session
    assert session is not None  # noqa: S101
    account = ctx.primary
    query_data = {
        "acctId": account.user_id,
        "consNo": binding.cons_no_dst,
        "consType": binding.usage_cons_type,
        "orgNo": binding.org_no,
        "proCode": binding.target_province,
        "serialNo": "",
        "srvCode": "",
        "userName": account.display_name,
        "funcCode": USAGE_QUERY["funcCode"],
        "channelCode": USAGE_QUERY["channelCode"],
        "clearCache": USAGE_QUERY["clearCache"],
        "promotCode": USAGE_QUERY["promotCode"],
        "promotType": USAGE_QUERY["promotType"],
        **query,
    }
    return ProviderRequest(
        url=API_PATHS["usage"],
        headers=ctx.data_headers(),
        data={
            "params1": build_member_params(session),
            "params3": {
                "data": query_data,
                "serviceCode": USAGE_QUERY["serviceCode"],
                "source": USAGE_QUERY["source"],
                "target": binding.target_province,
            },
            "params4": kind,
        },
    )


async def fetch_daily(
    relay: RelayClient,
    ctx: RunContext,
    index: int,
    *,
    today: dt.date | None = None,
    start: dt.date | None = None,
    end: dt.date | None = None,
    days: int | None = None,
) -> DailyUsage:
    """Fetch daily consumption; samples may carry the no-reading sentinel."""
    today = today or dt.date.today()
    window_start, window_end = resolve_daily_window(today, start=start, end=end, days=days)
    _logger.info("Daily usage window %s ~ %s", window_start, window_end)

    request = _build_usage_request(
        ctx,
        ctx.binding(index),
        DAILY_USAGE_KIND,
        {
            "startTime": window_start.isoformat(),
            "endTime": window_end.isoformat(),
            "queryYear": str(today.year),
        },
    )
    data = await relay.request(request)
    data = data if isinstance(data, dict) else {}
    items = data.get("sevenEleList") or []
    return DailyUsage(
        samples=[
            validate_response(DailySample, item, endpoint=API_PATHS["usage"])
            for item in items
            if isinstance(item, dict) and item.get("day")
        ],
        total_pq=safe_float(data.get("totalPq")),
        start=window_start,
        end=window_end,
    )


async def fetch_monthly(
    relay: RelayClient,
    ctx: RunContext,
    index: int,
    *,
    today: dt.date | None = None,
) -> MonthlyUsage:
    """Fetch the monthly series for the current year.

    When the current year has fewer than twelve months, the previous year is
    fetched once and prepended.
    """
    today = today or dt.date.today()
    binding = ctx.binding(index)
    province = binding.target_province

    def _request(year: int) -> ProviderRequest:
        return _build_usage_request(
            ctx,
            binding,
            MONTHLY_USAGE_KIND,
            {"provinceCode": province, "queryYear": str(year)},
        )

    current = await relay.request(_request(today.year))
    current = current if isinstance(current, dict) else {}
    items: list[Any] = list(current.get("mothEleList") or [])

    if len(items) < MONTHS_PER_YEAR:
        _logger.debug("Only %d months in %d, backfilling %d", len(items), today.year, today.year - 1)
        previous = await relay.request(_request(today.year - 1))
        previous_items = previous.get("mothEleList") if isinstance(previous, dict) else None
        items = list(previous_items or []) + items

    data_info = current.get("dataInfo") if isinstance(current.get("dataInfo"), dict) else {}
    return MonthlyUsage(
        samples=[
            validate_response(MonthlySample, item, endpoint=API_PATHS["usage"])
            for item in items
            if isinstance(item, dict) and item.get("month")
        ],
        total_ele_num=safe_float(data_info.get("totalEleNum")) or 0.0,
        total_ele_cost=safe_float(data_info.get("totalEleCost")) or 0.0,
        data_info=data_info,
    )
