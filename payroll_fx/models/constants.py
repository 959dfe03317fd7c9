"""Domain constants and enumerations for validation."""

import re
from decimal import Decimal
from typing import Tuple

CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

ROUNDING_METHODS: Tuple[str, ...] = ("up", "down", "half_up", "half_down", "half_even")
DEFAULT_ROUNDING_METHOD = "half_up"
DEFAULT_DECIMAL_PLACES = 2
MAX_DECIMAL_PLACES = 8  # per-call conversions
MAX_CONFIG_DECIMAL_PLACES = 4

# Magnitude bounds for amounts and stored rates
MAX_AMOUNT = Decimal("1e21")
MIN_RATE = Decimal("1e-12")
MAX_RATE = Decimal("1e12")

# Sources a stored row may carry
STORED_RATE_SOURCES: Tuple[str, ...] = ("manual", "imported")