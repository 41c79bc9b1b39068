# core/status_report.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from .alerting import TelegramConfig, send_telegram_message


@dataclass
class ScanRunRecord:
    last_runtime: float = 0.0
    last_ok: bool = True
    last_error: Optional[str] = None
    last_ts: float = 0.0
    last_trades: int = 0
    runs: int = 0
    errors: int = 0


@dataclass
class StatusReporter:
    tg_config: TelegramConfig
    report_interval_seconds: int = 600
    _scans: Dict[str, ScanRunRecord] = field(default_factory=dict)
    _last_report_ts: float = field(default_factory=lambda: 0.0)

    @property
    def scans(self) -> Dict[str, ScanRunRecord]:
        return dict(self._scans)

    def record_success(self, scan_name: str, runtime: float, trades: int = 0) -> None:
        rec = self._scans.get(scan_name) or ScanRunRecord()
        rec.last_runtime = runtime
        rec.last_ok = True
        rec.last_error = None
        rec.last_ts = time.time()
        rec.last_trades = trades
        rec.runs += 1
        self._scans[scan_name] = rec

    def record_error(self, scan_name: str, error: Exception, runtime: float) -> None:
        rec = self._scans.get(scan_name) or ScanRunRecord()
        rec.last_runtime = runtime
        rec.last_ok = False
        rec.last_error = str(error)
        rec.last_ts = time.time()
        rec.last_trades = 0
        rec.runs += 1
        rec.errors += 1
        self._scans[scan_name] = rec

    def render(self) -> str:
        if not self._scans:
            return "🩺 Flow status: no scans recorded yet."

        lines = ["🩺 *Options Flow Status Heartbeat*"]
        for scan_name, rec in sorted(self._scans.items()):
            status_emoji = "✅" if rec.last_ok else "❌"
            rt_ms = int(rec.last_runtime * 1000)
            line = (
                f"{status_emoji} `{scan_name}` — last {rt_ms} ms, trades={rec.last_trades}, "
                f"runs={rec.runs}, errors={rec.errors}"
            )
            if rec.last_error:
                err = rec.last_error
                if len(err) > 80:
                    err = err[:77] + "..."
                line += f"\n  ↳ _{err}_"
            lines.append(line)
        return "\n".join(lines)

    def maybe_report(self) -> bool:
        now = time.time()
        if self._last_report_ts and (now - self._last_report_ts) < self.report_interval_seconds:
            return False
        self._last_report_ts = now
        send_telegram_message(self.tg_config, self.render())
        return True
