"""Estimated cost per charged unit.

Not provider billing-accurate; used for margin guardrails and anomaly review.
Override the table with COST_TABLE_JSON, e.g.::

    {"gemini": {"gemini-2.5-flash": 0.00035, "default": 0.0003}}
"""

import json
import math
from typing import Any, Dict, Optional

from usage_guard.config import config
from usage_guard.core.logging import logger

DEFAULT_COST_TABLE: Dict[str, Dict[str, float]] = {
    "gemini": {
        "gemini-2.5-flash": 0.00025,
        "gemini-2.5-flash-lite": 0.00015,
        "gemini-2.5-pro": 0.00150,
        "gemini-2.5-flash-native-audio-preview": 0.00100,
    },
    "imagen": {
        "imagen-4.0-generate-001": 0.01000,
        "imagen-3": 0.00800,
    },
    "anthropic": {
        "claude-3-5-sonnet": 0.00180,
    },
    "openai": {
        "gpt-4o-mini": 0.00020,
        "gpt-4o": 0.00100,
    },
}


def load_cost_table() -> Dict[str, Any]:
    """COST_TABLE_JSON if it parses to an object, otherwise the defaults."""
    raw = config.cost_table_json()
    if not raw:
        return DEFAULT_COST_TABLE
    try:
        table = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("cost_table_invalid", error=str(e))
        return DEFAULT_COST_TABLE
    if not isinstance(table, dict):
        logger.warning("cost_table_invalid", error="top level must be an object")
        return DEFAULT_COST_TABLE
    return table


def estimate_cost_usd(
    provider: Optional[str],
    model: Optional[str],
    charged_units: Optional[int],
    table: Optional[Dict[str, Any]] = None,
) -> Optional[float]:
    """Estimate USD cost of a charge.

    Returns:
        0.0 for non-positive units, None when the table holds a nonsensical
        rate, otherwise the cost rounded to 6 decimals
    """
    try:
        units = float(charged_units or 0)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(units) or units <= 0:
        return 0.0

    table = load_cost_table() if table is None else table
    rates = table.get((provider or "gemini").lower()) or {}
    if not isinstance(rates, dict):
        return None

    rate = rates.get(model or "unknown", rates.get("default", 0))
    try:
        per_unit = float(rate)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(per_unit) or per_unit < 0:
        return None

    estimate = per_unit * units
    if not math.isfinite(estimate):
        return None
    return round(estimate, 6)
