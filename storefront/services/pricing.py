"""
Price parsing: stored display prices ("349€", "34,50 €", 123.4) -> integer cents.
"""
from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = re.compile(r"[€$£¥₹\s]")
_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")

_CENT = Decimal("0.01")


def _to_minor(amount: Decimal) -> int:
    if not amount.is_finite():
        return 0
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_price_to_minor(value: Any) -> int:
    """
    Convert a major-unit price to minor units.

    Numbers are taken as major units.  Strings may carry a currency symbol and
    a decimal comma.  Unparsable input yields 0; callers treat 0 as invalid.
    """
    if isinstance(value, bool) or value is None:
        return 0

    if isinstance(value, (int, float, Decimal)):
        try:
            return _to_minor(Decimal(str(value)))
        except InvalidOperation:
            return 0

    if not isinstance(value, str):
        return 0

    cleaned = _CURRENCY_SYMBOLS.sub("", value).replace(",", ".", 1)
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        logger.debug("Unparsable price %r", value)
        return 0
    try:
        return _to_minor(Decimal(match.group(0)))
    except InvalidOperation:
        return 0


def minor_to_major(minor: int) -> Decimal:
    return (Decimal(minor) / 100).quantize(_CENT)
