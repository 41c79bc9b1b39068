# run.py
from __future__ import annotations

import logging
import time
from time import perf_counter
from typing import List

from config import Settings, get_settings
from core.alerting import Dispatcher, TelegramConfig
from core.bus import TradeBus
from core.enrichment import EnrichmentCache
from core.models import FlowReport, Trade
from core.pipeline import run_pipeline
from core.polygon_client import PolygonClient
from core.status_report import StatusReporter

from scanners.options_flow import scan_underlying

log = logging.getLogger("runner")


def _scan_safely(
    underlying: str,
    client: PolygonClient,
    bus: TradeBus,
    status_reporter: StatusReporter,
    settings: Settings,
) -> None:
    start = perf_counter()
    try:
        trades: List[Trade] = scan_underlying(
            client,
            underlying,
            max_contracts=settings.max_contracts_per_underlying,
            apply_filters=settings.apply_flow_filters,
        )
        bus.publish(trades)
        status_reporter.record_success(underlying, perf_counter() - start, len(trades))
    except Exception as exc:  # noqa: BLE001
        status_reporter.record_error(underlying, exc, perf_counter() - start)
        log.exception("Scan %s failed: %s", underlying, exc)


def scan_cycle(
    client: PolygonClient,
    bus: TradeBus,
    dispatcher: Dispatcher,
    status_reporter: StatusReporter,
    settings: Settings,
) -> FlowReport:
    # 1) Scan every underlying, recording status
    for underlying in settings.underlying_universe:
        _scan_safely(underlying, client, bus, status_reporter, settings)

    raw_trades = bus.drain()
    if raw_trades:
        log.info("Collected %s raw trades", len(raw_trades))

    # 2) Classify, enrich and grade with a cache scoped to this cycle
    cache = EnrichmentCache(
        client,
        benchmark=settings.benchmark_ticker,
        std_dev_lookback_days=settings.std_dev_lookback_days,
        relative_strength_lookback_days=settings.relative_strength_lookback_days,
        max_workers=settings.enrichment_max_workers,
    )
    report = run_pipeline(
        raw_trades,
        cache,
        efi_only=settings.efi_only,
        block_min_premium=settings.block_min_premium,
    )
    summary = report.summary
    log.info(
        "Flow summary: trades=%d premium=%.0f calls=%d puts=%d bull$=%.0f bear$=%.0f unusual=%d",
        summary.total_trades,
        summary.total_premium,
        summary.calls,
        summary.puts,
        summary.bullish_premium,
        summary.bearish_premium,
        summary.unusual_count,
    )

    # 3) Alerts for well-graded trades
    sent = sum(1 for scored in report.trades if dispatcher.dispatch(scored))
    if sent:
        log.info("Dispatched %d alerts", sent)

    return report


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    settings = get_settings()
    client = PolygonClient(
        api_key=settings.polygon_api_key,
        timeout=settings.polygon_timeout_seconds,
        max_retries=settings.polygon_max_retries,
    )
    bus = TradeBus()

    dispatcher = Dispatcher(
        tg_config=TelegramConfig(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
        ),
        min_alert_interval_seconds=settings.min_alert_interval_seconds,
        min_score=settings.min_alert_score,
    )

    status_reporter = StatusReporter(
        tg_config=TelegramConfig(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_status_chat_id or settings.telegram_chat_id,
        ),
        report_interval_seconds=settings.status_report_interval_seconds,
    )

    log.info("Starting options flow loop for %s", ", ".join(settings.underlying_universe))

    while True:
        try:
            scan_cycle(client, bus, dispatcher, status_reporter, settings)
            status_reporter.maybe_report()
        except Exception as exc:  # noqa: BLE001
            log.exception("Error in main loop: %s", exc)

        log.info("Sleeping %s seconds...", settings.scan_interval_seconds)
        time.sleep(settings.scan_interval_seconds)


if __name__ == "__main__":
    main()
