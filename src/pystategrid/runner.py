"""One complete run: authenticate, fetch every meter, archive, publish."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from pystategrid.client import StateGridClient
from pystategrid.config import StateGridConfig
from pystategrid.exceptions import StateGridAuthenticationError
from pystategrid.history import HistoryStore
from pystategrid.models.meter import Balance, MeterBinding
from pystategrid.models.usage import DailyUsage, MonthlyUsage
from pystategrid.publisher import MqttPublisher, build_payload, topic_for
from pystategrid.session import SessionCache

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeterResult:
    binding: MeterBinding
    balance: Balance
    daily: DailyUsage
    monthly: MonthlyUsage
    history_saved: bool
    published: bool

    @property
    def meter_id(self) -> str:
        return self.balance.cons_no or self.binding.cons_no


@dataclass
class RunReport:
    meters: list[MeterResult] = field(default_factory=list)


def select_bindings(bindings: Sequence[MeterBinding], cons_no_filter: Sequence[str]) -> list[tuple[int, MeterBinding]]:
    """Pick the meters to process, keeping their index in the full list.

    When the filter matches nothing every meter is processed.
    """
    indexed = list(enumerate(bindings))
    if not cons_no_filter:
        return indexed
    wanted = frozenset(cons_no_filter)
    matched = [(index, binding) for index, binding in indexed if binding.matches(wanted)]
    _logger.info("Meter filter %s matched %d meter(s)", ", ".join(cons_no_filter), len(matched))
    if not matched:
        _logger.warning("No meter matched the filter, processing all bound meters")
        return indexed
    return matched


def format_summary(
    binding: MeterBinding,
    balance: Balance,
    daily: DailyUsage,
    monthly: MonthlyUsage,
    *,
    show_recent: bool = False,
) -> str:
    """Human-readable console summary for one meter."""
    lines: list[str] = []
    head = []
    if balance.total_pq:
        head.append(f"period usage: {balance.total_pq:g} kWh")
    if balance.sum_money is not None:
        head.append(f"balance: {balance.sum_money:g} CNY")
    if head:
        lines.append("  ".join(head))
    lines.append(f"as of: {balance.date}")
    if monthly.total_ele_num and monthly.total_ele_cost:
        lines.append(f"year usage: {monthly.total_ele_num:g} kWh  year cost: {monthly.total_ele_cost:g} CNY")
    if binding.cons_no_dst:
        account = binding.cons_no_dst + (f"|{binding.cons_name_dst}" if binding.cons_name_dst else "")
        lines.append(f"account: {account}")
    if binding.org_name:
        lines.append(f"supplier: {binding.org_name}")
    if daily.total_pq:
        lines.append(f"recent usage: {daily.total_pq:g} kWh")
    if show_recent:
        for sample in daily.readings():
            if sample.kwh:
                lines.append(f"{sample.day.isoformat()}: {sample.kwh:g} kWh")
    return "\n".join(lines)


async def run(
    config: StateGridConfig,
    *,
    client: StateGridClient | None = None,
    history: HistoryStore | None = None,
    publisher: MqttPublisher | None = None,
    today: dt.date | None = None,
) -> RunReport:
    """Process every selected meter in order.

    A failure on one meter aborts the loop; meters already processed keep
    their archived history.  On an authentication failure the cached session
    is cleared before the error propagates.
    """
    config.require_credentials()
    history = history or HistoryStore(
        config.history_file,
        retention_days=config.history_retention_days,
        enabled=config.save_history,
    )
    publisher = publisher or MqttPublisher(config.mqtt)
    client = client or StateGridClient(config)

    report = RunReport()
    async with client:
        try:
            await client.login()
            bindings = await client.get_bindings()
            for index, binding in select_bindings(bindings, config.cons_no_filter):
                report.meters.append(await _process_meter(config, client, history, publisher, index, binding, today))
        except StateGridAuthenticationError:
            SessionCache(client.credential_store).clear()
            _logger.info("Cached session cleared after authentication failure")
            raise

    _logger.info("Run complete meters=%d", len(report.meters))
    return report


async def _process_meter(
    config: StateGridConfig,
    client: StateGridClient,
    history: HistoryStore,
    publisher: MqttPublisher,
    index: int,
    binding: MeterBinding,
    today: dt.date | None,
) -> MeterResult:
    balance = await client.get_balance(index)
    daily = await client.get_daily(
        index,
        start=config.query_start_date,
        end=config.query_end_date,
        days=config.query_days,
        today=today,
    )
    monthly = await client.get_monthly(index, today=today)

    meter_id = balance.cons_no or binding.cons_no
    _logger.info(
        "Meter %s\n%s",
        meter_id,
        format_summary(binding, balance, daily, monthly, show_recent=config.show_recent),
    )

    saved = history.save(meter_id, daily.readings(), monthly.samples, today=today) is not None
    published = await publisher.publish(topic_for(meter_id), build_payload(balance, daily, monthly))
    return MeterResult(
        binding=binding,
        balance=balance,
        daily=daily,
        monthly=monthly,
        history_saved=saved,
        published=published,
    )
