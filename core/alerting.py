# core/alerting.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests

from core.classifier import trade_direction
from core.models import Direction, ScoredTrade
from core.options_utils import format_option_label, parse_polygon_option_ticker

log = logging.getLogger(__name__)


@dataclass
class TelegramConfig:
    bot_token: Optional[str]
    chat_id: Optional[str]


def send_telegram_message(
    cfg: TelegramConfig,
    text: str,
    parse_mode: str = "Markdown",
) -> bool:
    """
    Fire-and-forget Telegram send. Used by both Dispatcher and StatusReporter.
    Returns True when Telegram accepted the message.
    """
    if not cfg.bot_token or not cfg.chat_id:
        log.debug("TelegramConfig missing bot_token or chat_id, skipping send.")
        return False

    url = f"https://api.telegram.org/bot{cfg.bot_token}/sendMessage"
    payload = {
        "chat_id": cfg.chat_id,
        "text": text,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }

    try:
        resp = requests.post(url, json=payload, timeout=5)
        resp.raise_for_status()
    except requests.RequestException as exc:
        log.warning("Failed to send Telegram message: %s", exc)
        return False
    return True


class Dispatcher:
    """
    Alert dispatcher for graded trades with a per-(contract, trade type, direction)
    cooldown. Trades scoring below `min_score` are never sent.
    """

    def __init__(
        self,
        tg_config: TelegramConfig,
        min_alert_interval_seconds: int = 60,
        min_score: float = 70.0,
    ):
        self.tg_config = tg_config
        self.min_alert_interval_seconds = max(0, int(min_alert_interval_seconds or 0))
        self.min_score = min_score
        # key -> last_sent_ts
        self._last_sent: Dict[Tuple[str, str, str], float] = {}

    # ---------- internal helpers ----------

    @staticmethod
    def _key_for(scored: ScoredTrade) -> Tuple[str, str, str]:
        trade = scored.trade
        kind = trade.trade_type.value if trade.trade_type else "UNCLASSIFIED"
        return (trade.ticker, kind, trade_direction(trade).value)

    def _should_send(self, scored: ScoredTrade) -> bool:
        if scored.positioning.score < self.min_score:
            return False
        if self.min_alert_interval_seconds <= 0:
            return True

        now = time.time()
        key = self._key_for(scored)
        last_ts = self._last_sent.get(key)

        if last_ts is not None and (now - last_ts) < self.min_alert_interval_seconds:
            log.debug("Throttling alert for %s (key=%s)", scored.trade.ticker, key)
            return False

        self._last_sent[key] = now
        return True

    # ---------- formatting ----------

    def format_trade(self, scored: ScoredTrade) -> str:
        trade = scored.trade
        positioning = scored.positioning
        direction = trade_direction(trade)

        direction_emoji = {
            Direction.BULL: "🟢",
            Direction.BEAR: "🔴",
            Direction.NEUTRAL: "⚪️",
        }[direction]

        label = format_option_label(parse_polygon_option_ticker(trade.ticker))
        kind = trade.trade_type.value if trade.trade_type else "TRADE"

        header = (
            f"{direction_emoji} *{kind}* `{label}` "
            f"— grade *{positioning.grade}* ({positioning.score:g}/100)"
        )
        body_lines = [
            f"• {trade.trade_size:,} @ ${trade.premium_per_contract:.2f} = ${int(trade.total_premium):,}",
            f"• fill `{trade.fill_style.value}` | spot ${trade.spot_price:.2f} | dte {trade.days_to_expiry}",
        ]
        if scored.enrichment and scored.enrichment.option_price:
            body_lines.append(f"• now ${scored.enrichment.option_price:.2f}")

        breakdown = "\n".join(f"_{line}_" for line in positioning.breakdown.splitlines()[1:])
        return f"{header}\n" + "\n".join(body_lines) + f"\n\n{breakdown}"

    # ---------- public API ----------

    def dispatch(self, scored: ScoredTrade) -> bool:
        """Send an alert for this trade if it clears the score bar and cooldown."""
        if not self._should_send(scored):
            return False

        text = self.format_trade(scored)
        return send_telegram_message(self.tg_config, text)
