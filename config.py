# config.py
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    polygon_api_key: str
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None          # alerts
    telegram_status_chat_id: str | None = None   # optional separate status channel

    scan_interval_seconds: int = 60

    # Underlyings scanned each cycle
    underlying_universe: tuple = ("SPY", "QQQ", "TSLA", "NVDA", "AMD")

    # Vendor client
    polygon_timeout_seconds: float = 5.0
    polygon_max_retries: int = 3

    # Scanner
    max_contracts_per_underlying: int = 50
    apply_flow_filters: bool = True
    efi_only: bool = False

    # Classification
    block_min_premium: float = 100_000.0

    # Enrichment
    benchmark_ticker: str = "SPY"
    std_dev_lookback_days: int = 30
    relative_strength_lookback_days: int = 21
    enrichment_max_workers: int = 8

    # Alerts
    min_alert_score: float = 70.0
    min_alert_interval_seconds: int = 600
    status_report_interval_seconds: int = 600


def _env_universe() -> tuple | None:
    raw = os.getenv("FLOW_UNIVERSE")
    if not raw:
        return None
    symbols = tuple(s.strip().upper() for s in raw.split(",") if s.strip())
    return symbols or None


def get_settings() -> Settings:
    api_key = os.getenv("POLYGON_API_KEY") or os.getenv("POLYGON_KEY")
    if not api_key:
        raise RuntimeError("Missing POLYGON_API_KEY (or POLYGON_KEY) env variable")

    settings = Settings(
        polygon_api_key=api_key,
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
        telegram_status_chat_id=os.getenv("TELEGRAM_STATUS_CHAT_ID"),
    )

    universe = _env_universe()
    if universe:
        settings.underlying_universe = universe

    if os.getenv("FLOW_MIN_ALERT_SCORE"):
        settings.min_alert_score = float(os.environ["FLOW_MIN_ALERT_SCORE"])
    if os.getenv("FLOW_SCAN_INTERVAL_SECONDS"):
        settings.scan_interval_seconds = int(os.environ["FLOW_SCAN_INTERVAL_SECONDS"])
    settings.efi_only = os.getenv("FLOW_EFI_ONLY", "").lower() in ("1", "true", "yes")

    return settings
