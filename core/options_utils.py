# core/options_utils.py
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

_OPTION_TICKER_RE = re.compile(r"^(?:O:)?([A-Z.]+)(\d{6})([CP])(\d{8})$")


class UnparseableTickerError(ValueError):
    """Raised when a contract symbol does not match the OCC/Polygon pattern."""


@dataclass
class ParsedOption:
    underlying: Optional[str]
    expiry: Optional[date]
    cp: Optional[str]  # "C" or "P"
    strike: Optional[float]

    @property
    def option_type(self) -> Optional[str]:
        if self.cp == "C":
            return "call"
        if self.cp == "P":
            return "put"
        return None


def parse_polygon_option_ticker(sym: str) -> ParsedOption:
    """
    Lenient parse of a Polygon-style option ticker:
      "O:TSLA240118C00255000" or "TSLA240118C00255000"

    Missing / malformed parts come back as None.
    """
    if not sym:
        return ParsedOption(None, None, None, None)

    s = sym
    if s.startswith("O:"):
        s = s[2:]

    # underlying = leading letters until first digit
    idx = 0
    while idx < len(s) and not s[idx].isdigit():
        idx += 1

    underlying = s[:idx] or None
    rest = s[idx:]
    if len(rest) < 7:
        return ParsedOption(underlying, None, None, None)

    exp_raw = rest[:6]   # YYMMDD
    cp_char = rest[6]    # C or P
    strike_raw = rest[7:]

    try:
        expiry = date(2000 + int(exp_raw[0:2]), int(exp_raw[2:4]), int(exp_raw[4:6]))
    except ValueError:
        expiry = None

    try:
        strike = int(strike_raw) / 1000.0 if strike_raw else None
    except ValueError:
        strike = None

    if cp_char not in ("C", "P"):
        cp_char = None

    return ParsedOption(underlying, expiry, cp_char, strike)


def parse_option_ticker(sym: str) -> ParsedOption:
    """Strict parse; raises UnparseableTickerError instead of returning partial data."""
    match = _OPTION_TICKER_RE.match(sym or "")
    if not match:
        raise UnparseableTickerError(f"Unparseable option ticker: {sym!r}")

    parsed = parse_polygon_option_ticker(sym)
    if parsed.expiry is None or parsed.strike is None:
        raise UnparseableTickerError(f"Invalid expiry/strike in option ticker: {sym!r}")
    return parsed


def build_option_ticker(underlying: str, expiry: date, option_type: str, strike: float) -> str:
    """Inverse of parse_option_ticker: ("AMD", 2026-02-27, "call", 205) -> O:AMD260227C00205000"""
    cp = "C" if option_type.lower() == "call" else "P"
    strike_part = str(int(round(strike * 1000))).zfill(8)
    return f"O:{underlying.upper()}{expiry.strftime('%y%m%d')}{cp}{strike_part}"


def days_to_expiry(expiry: Optional[date], as_of: Optional[date] = None) -> Optional[int]:
    if not expiry:
        return None
    today = as_of or datetime.now(timezone.utc).date()
    return (expiry - today).days


def format_option_label(parsed: ParsedOption) -> str:
    """
    Build a clean label like: TSLA 255C 1/18
    Falls back gracefully if info is missing.
    """
    if not parsed.underlying:
        return "UNKNOWN"

    under = parsed.underlying.upper()
    cp = parsed.cp or "?"

    if parsed.strike is None:
        strike_str = "?"
    else:
        strike_val = parsed.strike
        strike_str = str(int(strike_val)) if float(strike_val).is_integer() else f"{strike_val}"

    if parsed.expiry:
        exp = parsed.expiry
        exp_str = f"{exp.month}/{exp.day}"
    else:
        exp_str = "?"

    return f"{under} {strike_str}{cp} {exp_str}"
