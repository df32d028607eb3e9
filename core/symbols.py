"""
Option symbol grammar and time-to-expiry helpers.

Symbols follow <UNDERLYING><YYMMDD><C|P><strike x 1000, 8 digits>,
e.g. QQQ250801C00560000 = QQQ, 2025-08-01 expiry, call, strike 560.00.
"""

import re
import logging
from datetime import datetime, date, time, timezone
from typing import Optional, Union

from core.models import OptionSymbol, OptionType

logger = logging.getLogger(__name__)

_SYMBOL_BODY = re.compile(r"(\d{6})([CP])(\d{8})")

SECONDS_PER_YEAR = 365.25 * 24 * 3600
MARKET_CLOSE = time(16, 0)


def parse_option_symbol(symbol: str) -> Optional[OptionSymbol]:
    """
    Parse an option symbol into its components.

    The first position (after at least one underlying character) where the
    date/type/strike body matches wins. Returns None when nothing matches or
    the date is not a calendar date.
    """
    if not symbol or len(symbol) < 16:
        return None

    match = _SYMBOL_BODY.search(symbol, 1)
    if match is None:
        return None

    expiry, type_code, strike_digits = match.groups()
    try:
        datetime.strptime(expiry, "%y%m%d")
    except ValueError:
        logger.debug(f"Rejecting {symbol}: bad expiry {expiry}")
        return None

    return OptionSymbol(
        symbol=symbol,
        underlying=symbol[:match.start()],
        expiry=expiry,
        option_type=OptionType.from_code(type_code),
        strike=int(strike_digits) / 1000.0,
    )


def build_option_symbol(underlying: str, expiration: date, option_type: OptionType, strike: float) -> str:
    """Inverse of parse_option_symbol."""
    return f"{underlying}{expiration:%y%m%d}{option_type.code}{int(round(strike * 1000)):08d}"


def extract_underlying(symbol: str) -> Optional[str]:
    parsed = parse_option_symbol(symbol)
    return parsed.underlying if parsed else None


def format_option_symbol(symbol: str) -> str:
    """Human-readable form, e.g. 'QQQ 08/01/25 $560.00 Call'. Unparseable symbols pass through."""
    parsed = parse_option_symbol(symbol)
    if parsed is None:
        return symbol
    kind = "Call" if parsed.is_call else "Put"
    return f"{parsed.underlying} {parsed.expiration:%m/%d/%y} ${parsed.strike:.2f} {kind}"


def expiry_datetime(expiry: Union[str, date]) -> datetime:
    """Expiry day at the 16:00 close, as UTC wall time."""
    if isinstance(expiry, str):
        expiry = datetime.strptime(expiry, "%y%m%d").date()
    return datetime.combine(expiry, MARKET_CLOSE, tzinfo=timezone.utc)


def time_to_expiry_years(expiry: Union[str, date], now: Optional[datetime] = None) -> float:
    """
    Years from `now` until the expiry close. 0.0 once expired or for a bad expiry.

    Naive `now` values are taken as UTC.
    """
    try:
        close = expiry_datetime(expiry)
    except ValueError:
        return 0.0

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = (close - now).total_seconds()
    if seconds <= 0:
        return 0.0
    return seconds / SECONDS_PER_YEAR
