# core/bus.py
from __future__ import annotations

from typing import Iterable, List

from .models import Trade


class TradeBus:
    """In-memory bus where scanners publish trades for the current scan cycle."""

    def __init__(self) -> None:
        self._trades: List[Trade] = []

    def publish(self, trades: Iterable[Trade]) -> None:
        self._trades.extend(trades)

    def drain(self) -> List[Trade]:
        trades = self._trades
        self._trades = []
        return trades
